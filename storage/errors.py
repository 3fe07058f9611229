"""Typed storage errors shared by every adapter."""

from __future__ import annotations


class StorageError(Exception):
    """Base class for all storage failures."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = path


class StorageConfigError(StorageError):
    pass


class NotConfiguredError(StorageError):
    pass


class NotFoundError(StorageError):
    pass


class ConflictError(StorageError):
    """The version token the caller observed is no longer current."""


class RetryExhaustedError(ConflictError):
    """A forced write conflicted again after its single retry."""


class AuthFailureError(StorageError):
    pass


class TransportFailureError(StorageError):
    pass


class ContentEncodingError(StorageError):
    pass


class IncompatibleBundleError(StorageError):
    pass


class UnsupportedOperationError(StorageError):
    pass


class GitCommandError(StorageError):
    """A git invocation exited non-zero."""

    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"git {' '.join(args)} failed: {detail}")
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr
