"""Core modules for pingone-bulk: config, errors, logging, job summaries."""

from .config import ServiceConfig
from .errors import (
    BulkOperationError,
    ChannelError,
    FatalJobError,
    InvalidInput,
    JobNotFound,
    RecordError,
)

__all__ = [
    "ServiceConfig",
    "BulkOperationError",
    "ChannelError",
    "FatalJobError",
    "InvalidInput",
    "JobNotFound",
    "RecordError",
]
