"""Response types: stream fragments, aggregated results, token counts."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from castor.content import Content, FunctionCallPart, Part, TextPart
from castor.errors import (
    InvalidResponseError,
    PromptBlockedError,
    ResponseStoppedError,
)

if TYPE_CHECKING:
    from collections.abc import Iterable


class FinishReason(str, Enum):
    """Why a candidate stopped generating."""

    UNSPECIFIED = "FINISH_REASON_UNSPECIFIED"
    STOP = "STOP"
    MAX_TOKENS = "MAX_TOKENS"
    SAFETY = "SAFETY"
    RECITATION = "RECITATION"
    OTHER = "OTHER"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: object) -> FinishReason | None:
        """Map a backend value (enum, name or string) onto this enum."""
        if value is None:
            return None
        raw = getattr(value, "name", None) or getattr(value, "value", None) or value
        try:
            return cls(str(raw))
        except ValueError:
            return cls.UNKNOWN


class BlockReason(str, Enum):
    """Why a prompt was blocked."""

    UNSPECIFIED = "BLOCK_REASON_UNSPECIFIED"
    SAFETY = "SAFETY"
    OTHER = "OTHER"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: object) -> BlockReason | None:
        if value is None:
            return None
        raw = getattr(value, "name", None) or getattr(value, "value", None) or value
        try:
            return cls(str(raw))
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class UsageMetadata:
    """Token accounting reported by the backend."""

    prompt_token_count: int = 0
    candidates_token_count: int = 0
    total_token_count: int = 0


@dataclass(frozen=True)
class PartialResponse:
    """One fragment of a streamed generation.

    ``parts`` is the delta carried by this fragment. A function call always
    arrives whole inside a single fragment.
    """

    parts: tuple[Part, ...] = ()
    finish_reason: FinishReason | None = None
    usage: UsageMetadata | None = None
    block_reason: BlockReason | None = None

    @property
    def text(self) -> str:
        """The text delta of this fragment."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def finished(self) -> bool:
        """Completion flag: the backend reported a finish reason."""
        return self.finish_reason is not None


@dataclass(frozen=True)
class AggregatedResponse:
    """The terminal result of one generation round."""

    content: Content
    function_calls: tuple[FunctionCallPart, ...] = ()
    usage: UsageMetadata = field(default_factory=UsageMetadata)
    finish_reason: FinishReason | None = None

    @classmethod
    def from_parts(
        cls,
        parts: Iterable[Part],
        *,
        usage: UsageMetadata | None = None,
        finish_reason: FinishReason | None = None,
    ) -> AggregatedResponse:
        """Build a model-role response; an empty part list becomes empty text."""
        parts = tuple(parts) or (TextPart(""),)
        content = Content(parts, role="model")
        return cls(
            content=content,
            function_calls=content.function_calls,
            usage=usage or UsageMetadata(),
            finish_reason=finish_reason,
        )

    @property
    def text(self) -> str:
        return self.content.text


@dataclass(frozen=True)
class CountTokensResponse:
    """Result of a token-count request."""

    total_tokens: int


def _check_finish(finish_reason: FinishReason | None, response: object) -> None:
    if finish_reason is None or finish_reason in (
        FinishReason.STOP,
        FinishReason.UNSPECIFIED,
    ):
        return
    raise ResponseStoppedError(
        f"Content generation stopped. Reason: {finish_reason.value}",
        response=response,
        hint="Raise max_output_tokens or adjust safety_settings."
        if finish_reason in (FinishReason.MAX_TOKENS, FinishReason.SAFETY)
        else None,
    )


def validate_fragment(fragment: PartialResponse) -> PartialResponse:
    """Raise if a stream fragment reports a blocked prompt or an abnormal stop."""
    if fragment.block_reason is not None:
        raise PromptBlockedError(
            f"Prompt was blocked: {fragment.block_reason.value}", response=fragment
        )
    _check_finish(fragment.finish_reason, fragment)
    return fragment


def validate_response(
    response: AggregatedResponse | None,
    *,
    block_reason: BlockReason | None = None,
) -> AggregatedResponse:
    """Raise if a blocking response is empty, blocked, or stopped abnormally."""
    if block_reason is not None:
        raise PromptBlockedError(
            f"Prompt was blocked: {block_reason.value}", response=response
        )
    if response is None:
        raise InvalidResponseError(
            "Response contained neither candidates nor prompt feedback"
        )
    _check_finish(response.finish_reason, response)
    return response
