"""Resilient HTTP client shared by the platform adapters.

Features:
  - Every non-2xx response is classified into the error taxonomy
  - 429 (and YouTube ``rateLimitExceeded``) retried once after Retry-After
  - 5xx / 409 / network errors retried with linear backoff
  - 401 never retried; tokens are never refreshed here
  - Configurable timeouts
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import httpx

from musync.config import get_settings
from reconcile.errors import (
    AuthExpired,
    MusyncError,
    NotFound,
    PermissionDenied,
    QuotaExceeded,
    RateLimited,
    Transient,
    ValidationError,
)

logger = logging.getLogger(__name__)

# YouTube reports quota and throttling as 403 with a reason code.
_RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}
_QUOTA_REASONS = {"quotaExceeded", "dailyLimitExceeded"}


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def _error_payload(resp: httpx.Response) -> tuple[str, str | None]:
    """Return ``(message, reason)`` from a platform error body."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase, None
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        reason = None
        errors = error.get("errors") or []
        if errors and isinstance(errors[0], dict):
            reason = errors[0].get("reason")
        return str(error.get("message") or resp.reason_phrase), reason
    if isinstance(error, str):
        return body.get("error_description") or error, None
    return resp.text or resp.reason_phrase, None


def _retry_after(resp: httpx.Response) -> float | None:
    value = resp.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def classify(platform: str, resp: httpx.Response) -> MusyncError:
    """Map an unsuccessful response onto the error taxonomy."""
    status = resp.status_code
    message, reason = _error_payload(resp)
    kwargs: dict[str, Any] = {"platform": platform, "status_code": status}

    if status == 401:
        return AuthExpired(message, **kwargs)
    if status == 429:
        return RateLimited(message, retry_after=_retry_after(resp), **kwargs)
    if status == 404:
        return NotFound(message, **kwargs)
    if status == 403:
        if reason in _QUOTA_REASONS:
            return QuotaExceeded(message, **kwargs)
        if reason in _RATE_LIMIT_REASONS:
            return RateLimited(message, retry_after=_retry_after(resp), **kwargs)
        return PermissionDenied(message, **kwargs)
    if status >= 500 or status == 409:
        return Transient(message, **kwargs)
    return ValidationError(message, **kwargs)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class PlatformClient:
    """Authenticated requests against one platform API.

    ``transport`` is forwarded to ``httpx.AsyncClient`` so tests can plug in
    an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        platform: str,
        base_url: str,
        token: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.platform = platform
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._transport = transport

    def __repr__(self) -> str:
        return f"PlatformClient({self.platform!r}, {self.base_url!r})"

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        settings = get_settings()
        timeout = httpx.Timeout(settings.http_read_timeout, connect=settings.http_connect_timeout)
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {self._token}"
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            return await client.request(method, url, headers=headers, **kwargs)

    async def request(
        self,
        method: str,
        path: str,
        *,
        on_attempt: Callable[[], None] | None = None,
        **kwargs,
    ) -> httpx.Response:
        """Make a request, retrying only what is worth retrying.

        Parameters
        ----------
        method : str
            HTTP method.
        path : str
            Path relative to the platform base URL, or an absolute URL
            (pagination cursors).
        on_attempt : callable, optional
            Called before every attempt, retries included. Errors it raises
            propagate without a request being sent.
        **kwargs
            Forwarded to ``httpx.AsyncClient.request`` (json, params, ...).

        Raises
        ------
        MusyncError
            The classified error once retries are exhausted.
        """
        settings = get_settings()
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        transient_attempts = 0
        rate_limit_retried = False

        while True:
            if on_attempt is not None:
                on_attempt()
            try:
                resp = await self._send(method, url, **kwargs)
            except httpx.TimeoutException as exc:
                error: MusyncError = Transient(
                    f"timeout: {exc.__class__.__name__}", platform=self.platform
                )
            except httpx.TransportError as exc:
                error = Transient(f"network error: {exc}", platform=self.platform)
            else:
                if resp.status_code < 400:
                    return resp
                error = classify(self.platform, resp)

            # ── Rate limit → wait once ──────────────────────────────
            if isinstance(error, RateLimited) and error.retryable:
                if rate_limit_retried:
                    raise error
                rate_limit_retried = True
                wait = error.retry_after if error.retry_after is not None else settings.rate_limit_delay
                wait = min(wait, settings.rate_limit_delay_cap)
                logger.warning(
                    "%s rate limited on %s %s, waiting %.1fs", self.platform, method, path, wait
                )
                await asyncio.sleep(wait)
                continue

            # ── Transient → linear backoff ──────────────────────────
            if isinstance(error, Transient):
                if transient_attempts >= settings.transient_retries:
                    raise error
                transient_attempts += 1
                delay = settings.transient_backoff * transient_attempts
                logger.warning(
                    "%s transient failure on %s %s (attempt %d): %s",
                    self.platform, method, path, transient_attempts, error.detail,
                )
                await asyncio.sleep(delay)
                continue

            raise error

    async def get_json(self, path: str, **kwargs) -> dict:
        resp = await self.request("GET", path, **kwargs)
        return resp.json()
