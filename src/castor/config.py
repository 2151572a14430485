"""Configuration: frozen Config with explicit credential resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
import os

from dotenv import load_dotenv

from castor._http import DEFAULT_API_VERSION
from castor.errors import ConfigurationError
from castor.retry import RetryPolicy

load_dotenv()

# Checked in order when no api_key is passed explicitly.
_API_KEY_ENV_VARS: tuple[str, ...] = ("GEMINI_API_KEY", "GOOGLE_API_KEY")


@dataclass(frozen=True)
class Config:
    """Immutable transport configuration.

    The API key is resolved once, here, and threaded into the transport
    constructor. Nothing in Castor reads credentials from global state after
    construction.

    Example:
        config = Config()  # resolves GEMINI_API_KEY
        model = GenerativeModel("gemini-2.0-flash", config=config)
    """

    #: Auto-resolved from ``GEMINI_API_KEY`` then ``GOOGLE_API_KEY`` when *None*.
    api_key: str | None = None
    api_version: str = DEFAULT_API_VERSION
    #: Override the backend endpoint (proxies, regional endpoints).
    base_url: str | None = None
    #: Per-request timeout owned by the transport; *None* means no timeout.
    timeout_s: float | None = None
    use_mock: bool = False
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        """Auto-resolve API key and validate configuration."""
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="Pass timeout_s=None to disable the transport timeout.",
            )
        if not isinstance(self.api_version, str) or not self.api_version.strip():
            raise ConfigurationError(
                "api_version must be a non-empty string",
                hint="Use 'v1beta' (default) or 'v1'.",
            )

        if self.api_key is None and not self.use_mock:
            resolved_key = next(
                (os.environ[v] for v in _API_KEY_ENV_VARS if os.environ.get(v)),
                None,
            )
            object.__setattr__(self, "api_key", resolved_key)

        if not self.use_mock and not self.api_key:
            raise ConfigurationError(
                "API key required for the Gemini backend",
                hint="Set GEMINI_API_KEY environment variable or pass api_key=...",
            )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(api_key={'[REDACTED]' if self.api_key else None}, "
            f"api_version={self.api_version!r}, base_url={self.base_url!r}, "
            f"timeout_s={self.timeout_s}, use_mock={self.use_mock})"
        )

    __repr__ = __str__
