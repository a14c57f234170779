"""Map model SDK exceptions into ``APIError`` with retry metadata.

Clients attach retry metadata so transport retries stay bounded and
deterministic without brittle substring matching.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from buildroute.errors import APIError, RateLimitError, _walk_exception_chain
from buildroute.registry import API_KEY_ENV_VARS, ModelProvider
from buildroute.retry import RETRYABLE_STATUS_CODES


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def _parse_retry_after(raw: Any) -> float | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers = getattr(response, "headers", None)
        if isinstance(headers, (httpx.Headers, dict)):
            seconds = _parse_retry_after(headers.get("Retry-After"))
            if seconds is not None:
                return seconds
    return None


def _auth_hint(provider: str, status_code: int | None) -> str | None:
    """Name the credential env var on auth failures."""
    if status_code not in {401, 403}:
        return None
    try:
        env_var = API_KEY_ENV_VARS[ModelProvider(provider)]
    except ValueError:
        env_var = "the provider API key"
    return f"Check credentials/permissions (try setting {env_var})."


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    allow_network_errors: bool,
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Map an SDK exception into APIError with stable retry metadata."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        if hint is not None and exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)

    retryable = retry_after_s is not None
    if isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES:
        retryable = True
    elif allow_network_errors:
        retryable = retryable or any(
            isinstance(e, (httpx.TimeoutException, httpx.RequestError))
            for e in _walk_exception_chain(exc)
        )

    err_cls: type[APIError] = RateLimitError if status_code == 429 else APIError
    msg = message or f"{provider} {phase} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=hint if hint is not None else _auth_hint(provider, status_code),
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )
