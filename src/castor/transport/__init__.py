"""Transport implementations."""

from .base import Transport
from .gemini import GeminiTransport
from .mock import MockTransport

__all__ = [
    "GeminiTransport",
    "MockTransport",
    "Transport",
]
