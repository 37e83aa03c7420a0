from __future__ import annotations

from typing import Any, Mapping


class MediaSyncError(RuntimeError):
    """Base class for every failure raised by the reconciliation tooling."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.context: dict[str, Any] = dict(context or {})

    def describe(self) -> str:
        if not self.context:
            return str(self)
        details = " ".join(f"{key}={self.context[key]}" for key in sorted(self.context))
        return f"{self} ({details})"


class AuthError(MediaSyncError):
    """Credentials missing or rejected. Fatal for the whole run."""


class TransientNetworkError(MediaSyncError):
    """Timeout, transport failure, throttling or 5xx. Safe to retry."""


class RemoteServiceError(MediaSyncError):
    """Non-retryable 4xx answer from the CDN or CMS API."""


class ValidationError(MediaSyncError):
    """Malformed inventory entry; the item is skipped and counted."""


class ConflictError(MediaSyncError):
    """Target folder or entry was in an unexpected state at mutation time."""


class FolderCycleError(MediaSyncError):
    """The CMS folder tree contains a cycle. Fatal for the whole run."""


RUN_LEVEL_ERRORS: tuple[type[MediaSyncError], ...] = (AuthError, FolderCycleError)
ITEM_LEVEL_ERRORS: tuple[type[MediaSyncError], ...] = (
    TransientNetworkError,
    RemoteServiceError,
    ConflictError,
    ValidationError,
)


__all__ = [
    "AuthError",
    "ConflictError",
    "FolderCycleError",
    "ITEM_LEVEL_ERRORS",
    "MediaSyncError",
    "RUN_LEVEL_ERRORS",
    "RemoteServiceError",
    "TransientNetworkError",
    "ValidationError",
]
