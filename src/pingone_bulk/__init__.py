"""Bulk PingOne user import, modify and delete with streamed progress."""

__version__ = "0.1.0"
