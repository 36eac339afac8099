"""PingOne API access: worker tokens, user CRUD and per-record operations."""

from __future__ import annotations

from .client import PingOneClient, TokenCache
from .operations import DeleteOperation, ImportOperation, ModifyOperation, build_operation

__all__ = [
    "PingOneClient",
    "TokenCache",
    "ImportOperation",
    "ModifyOperation",
    "DeleteOperation",
    "build_operation",
]
