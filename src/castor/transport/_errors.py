"""Transport-side error mapping.

Transports attach retry metadata via TransportError so core retry logic can be
bounded and deterministic without brittle substring matching.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from castor._http import RETRYABLE_STATUS_CODES
from castor.errors import (
    RateLimitError,
    TransportError,
    _walk_exception_chain,
)


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def _extract_retry_info_seconds(exc: BaseException) -> float | None:
    """Extract retry delay from Google API-style RetryInfo in error details.

    The google-genai ``APIError`` exposes the parsed JSON body via ``.details``
    shaped like::

        {"error": {"details": [{"@type": "...RetryInfo", "retryDelay": "8s"}]}}
    """
    details: Any = getattr(exc, "details", None)
    if not isinstance(details, dict):
        return None
    error: Any = details.get("error")
    if not isinstance(error, dict):
        return None
    detail_list: Any = error.get("details")
    if not isinstance(detail_list, list):
        return None
    for entry in detail_list:
        if not isinstance(entry, dict):
            continue
        at_type = entry.get("@type", "")
        if not isinstance(at_type, str) or "RetryInfo" not in at_type:
            continue
        delay_raw = entry.get("retryDelay")
        if not isinstance(delay_raw, str):
            continue
        m = _PROTO_DURATION_RE.match(delay_raw)
        if m:
            return float(m.group(1))
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        if headers is not None:
            raw: Any = None
            try:
                raw = headers.get("Retry-After")
            except (AttributeError, TypeError):
                raw = None
            if isinstance(raw, str) and raw.strip():
                try:
                    seconds = float(raw)
                except ValueError:
                    seconds = -1.0
                if seconds >= 0:
                    return seconds

        retry_info = _extract_retry_info_seconds(e)
        if retry_info is not None:
            return retry_info
    return None


def _auth_hint(status_code: int | None, cause_message: str) -> str | None:
    """Name the credential env var when the failure looks like an auth problem."""
    cause_lower = cause_message.lower()
    if status_code in {401, 403} or (
        status_code == 400 and ("api key" in cause_lower or "api_key" in cause_lower)
    ):
        return "Check credentials/permissions (try setting GEMINI_API_KEY or Config.api_key)."
    return None


def _is_timeout(exc: BaseException) -> bool:
    return any(
        isinstance(e, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException))
        for e in _walk_exception_chain(exc)
    )


def wrap_transport_error(
    exc: BaseException,
    *,
    phase: str,
    message: str | None = None,
    hint: str | None = None,
) -> TransportError:
    """Map backend SDK and httpx exceptions into TransportError with retry metadata."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, TransportError):
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
    elif status_code is None:
        for e in _walk_exception_chain(exc):
            if isinstance(
                e, (httpx.TimeoutException, httpx.RequestError, TimeoutError)
            ):
                retryable = True
                break

    derived_hint = hint if hint is not None else _auth_hint(status_code, str(exc))
    if derived_hint is None and _is_timeout(exc):
        derived_hint = "The request timed out; raise Config.timeout_s if this persists."

    msg = message or f"gemini {phase} failed"
    err_cls: type[TransportError] = RateLimitError if status_code == 429 else TransportError

    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc) or type(exc).__name__
    return err_cls(
        f"{msg}{status_note}: {cause}",
        hint=derived_hint,
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        phase=phase,
    )
