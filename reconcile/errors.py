"""Error taxonomy shared by adapters, the store and the orchestrator.

Only ``Transient`` and ``RateLimited`` are ever retried, and only inside the
HTTP client.  Everything else propagates to the orchestrator, which turns it
into a per-platform ``SyncResult.error``.
"""

from __future__ import annotations


class MusyncError(Exception):
    """Base class; ``kind`` is the stable machine-readable category."""

    kind = "error"
    retryable = False

    def __init__(
        self,
        detail: str,
        *,
        platform: str | None = None,
        status_code: int | None = None,
    ):
        self.detail = detail
        self.platform = platform
        self.status_code = status_code
        super().__init__(detail)

    def describe(self) -> str:
        """Human-readable reason suitable for the sync report."""
        prefix = f"{self.platform}: " if self.platform else ""
        return f"{prefix}{self._summary()} ({self.detail})"

    def _summary(self) -> str:
        return "request failed"


class AuthExpired(MusyncError):
    kind = "auth_expired"

    def _summary(self) -> str:
        return "credential expired or revoked, reconnect the account"


class RateLimited(MusyncError):
    kind = "rate_limited"
    retryable = True

    def __init__(self, detail: str, *, retry_after: float | None = None, **kwargs):
        super().__init__(detail, **kwargs)
        self.retry_after = retry_after

    def _summary(self) -> str:
        return "rate limited by the platform, try again later"


class QuotaExceeded(RateLimited):
    kind = "quota_exceeded"
    retryable = False

    def _summary(self) -> str:
        return "daily API quota exhausted"


class NotFound(MusyncError):
    kind = "not_found"

    def _summary(self) -> str:
        return "not found"


class PermissionDenied(MusyncError):
    kind = "permission_denied"

    def _summary(self) -> str:
        return "permission denied"


class Transient(MusyncError):
    kind = "transient"
    retryable = True

    def _summary(self) -> str:
        return "platform temporarily unavailable"


class ValidationError(MusyncError):
    kind = "validation"

    def _summary(self) -> str:
        return "invalid request"


class StoreUnavailable(MusyncError):
    kind = "store_unavailable"

    def _summary(self) -> str:
        return "playlist store unavailable"


class SyncInProgress(MusyncError):
    kind = "sync_in_progress"

    def _summary(self) -> str:
        return "another sync of this playlist is already running"
