"""Small HTTP-related constants shared across Castor.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

# Retryable status codes shared by transport error mapping and core retry.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

DEFAULT_API_VERSION = "v1beta"
