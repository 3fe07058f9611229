from .contracts import Credentials, StorageAdapter
from .errors import (
    AuthFailureError,
    ConflictError,
    NotConfiguredError,
    NotFoundError,
    RetryExhaustedError,
    StorageError,
    TransportFailureError,
)
from .manager import StorageManager
from .models import HistoryEntry, ListEntry, ModeInfo, StoredFile, WriteResult

__all__ = [
    "StorageManager",
    "StorageAdapter",
    "Credentials",
    "StoredFile",
    "WriteResult",
    "ListEntry",
    "HistoryEntry",
    "ModeInfo",
    "StorageError",
    "NotConfiguredError",
    "NotFoundError",
    "ConflictError",
    "RetryExhaustedError",
    "AuthFailureError",
    "TransportFailureError",
]
