"""Generation parameters and safety policy."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel

from castor.errors import ConfigurationError

ResponseSchemaInput = Union[type[BaseModel], dict[str, Any]]

JSON_MIME_TYPE = "application/json"
_MAX_STOP_SEQUENCES = 5


def schema_to_json(schema: ResponseSchemaInput) -> dict[str, Any]:
    """Return a JSON Schema dict for a pydantic model class or a schema dict."""
    if isinstance(schema, dict):
        return schema
    return schema.model_json_schema()


def _is_schema_input(value: Any) -> bool:
    return isinstance(value, dict) or (
        isinstance(value, type) and issubclass(value, BaseModel)
    )


@dataclass(frozen=True)
class GenerationConfig:
    """Sampling and output controls for a generation request.

    All fields are optional; *None* leaves the backend default in place.
    """

    temperature: float | None = None
    top_k: int | None = None
    top_p: float | None = None
    max_output_tokens: int | None = None
    candidate_count: int | None = None
    stop_sequences: tuple[str, ...] | None = None
    response_mime_type: str | None = None
    #: Pydantic ``BaseModel`` subclass or JSON Schema dict for structured output.
    response_schema: ResponseSchemaInput | None = None

    def __post_init__(self) -> None:
        """Validate value ranges early for clear errors."""
        if self.temperature is not None and self.temperature < 0:
            raise ConfigurationError(
                f"temperature must be ≥ 0, got {self.temperature}",
                hint="Typical values range from 0.0 (deterministic) to 2.0.",
            )
        if self.top_p is not None and not 0 <= self.top_p <= 1:
            raise ConfigurationError(f"top_p must be within [0, 1], got {self.top_p}")
        if self.top_k is not None and self.top_k < 1:
            raise ConfigurationError(f"top_k must be ≥ 1, got {self.top_k}")
        if self.max_output_tokens is not None and self.max_output_tokens < 1:
            raise ConfigurationError(
                f"max_output_tokens must be ≥ 1, got {self.max_output_tokens}"
            )
        if self.candidate_count is not None and self.candidate_count < 1:
            raise ConfigurationError(
                f"candidate_count must be ≥ 1, got {self.candidate_count}"
            )
        if self.stop_sequences is not None:
            if isinstance(self.stop_sequences, str):
                raise ConfigurationError(
                    "stop_sequences must be a sequence of strings",
                    hint="Pass stop_sequences=('END',) rather than a bare string.",
                )
            stops = tuple(self.stop_sequences)
            if len(stops) > _MAX_STOP_SEQUENCES:
                raise ConfigurationError(
                    f"At most {_MAX_STOP_SEQUENCES} stop sequences are allowed, got {len(stops)}"
                )
            object.__setattr__(self, "stop_sequences", stops)
        if self.response_schema is not None and not _is_schema_input(
            self.response_schema
        ):
            raise ConfigurationError(
                "response_schema must be a Pydantic model class or JSON schema dict",
                hint="Pass a BaseModel subclass or a dict following JSON Schema.",
            )

    def response_schema_json(self) -> dict[str, Any] | None:
        """Return JSON Schema for the backend, if a schema was given."""
        if self.response_schema is None:
            return None
        return schema_to_json(self.response_schema)


class HarmCategory(str, Enum):
    """Safety categories understood by the backend."""

    HARASSMENT = "HARM_CATEGORY_HARASSMENT"
    HATE_SPEECH = "HARM_CATEGORY_HATE_SPEECH"
    SEXUALLY_EXPLICIT = "HARM_CATEGORY_SEXUALLY_EXPLICIT"
    DANGEROUS_CONTENT = "HARM_CATEGORY_DANGEROUS_CONTENT"
    CIVIC_INTEGRITY = "HARM_CATEGORY_CIVIC_INTEGRITY"


class BlockThreshold(str, Enum):
    """Probability threshold at and above which content is blocked."""

    UNSPECIFIED = "HARM_BLOCK_THRESHOLD_UNSPECIFIED"
    LOW_AND_ABOVE = "BLOCK_LOW_AND_ABOVE"
    MEDIUM_AND_ABOVE = "BLOCK_MEDIUM_AND_ABOVE"
    ONLY_HIGH = "BLOCK_ONLY_HIGH"
    NONE = "BLOCK_NONE"
    OFF = "OFF"


@dataclass(frozen=True)
class SafetySetting:
    """One category/threshold pair of the safety policy."""

    category: HarmCategory
    threshold: BlockThreshold

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "category", HarmCategory(self.category))
            object.__setattr__(self, "threshold", BlockThreshold(self.threshold))
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid safety setting: {e}",
                hint="Use the HarmCategory and BlockThreshold enums.",
            ) from e
