"""Mock transport for testing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from castor.content import FunctionResponsePart, TextPart
from castor.response import (
    AggregatedResponse,
    CountTokensResponse,
    FinishReason,
    PartialResponse,
    UsageMetadata,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from castor.content import Content
    from castor.request import CountTokensRequest, GenerateContentRequest


def _reply_text(contents: tuple[Content, ...]) -> str:
    """Echo the last turn.

    A tool-result turn is answered with its payloads so tool loops settle
    after one round in mock mode.
    """
    last = contents[-1]
    if last.is_tool_result:
        results = ", ".join(
            f"{p.name}={dict(p.response)}"
            for p in last.parts
            if isinstance(p, FunctionResponsePart)
        )
        return f"tool results: {results}"
    return f"echo: {last.text[:100]}"


def _word_count(contents: tuple[Content, ...]) -> int:
    return sum(len(c.text.split()) for c in contents)


class MockTransport:
    """Transport that never touches the network.

    Replies deterministically by echoing the last turn; streams the same
    reply one word per fragment.
    """

    async def generate(self, request: GenerateContentRequest) -> AggregatedResponse:
        text = _reply_text(request.contents)
        prompt = _word_count(request.contents)
        output = len(text.split())
        return AggregatedResponse.from_parts(
            [TextPart(text)],
            usage=UsageMetadata(prompt, output, prompt + output),
            finish_reason=FinishReason.STOP,
        )

    async def generate_stream(
        self, request: GenerateContentRequest
    ) -> AsyncIterator[PartialResponse]:
        words = _reply_text(request.contents).split(" ")
        prompt = _word_count(request.contents)
        for i, word in enumerate(words):
            last = i == len(words) - 1
            yield PartialResponse(
                parts=(TextPart(word if last else f"{word} "),),
                finish_reason=FinishReason.STOP if last else None,
                usage=UsageMetadata(prompt, len(words), prompt + len(words))
                if last
                else None,
            )

    async def count_tokens(self, request: CountTokensRequest) -> CountTokensResponse:
        return CountTokensResponse(total_tokens=_word_count(request.contents))

    async def aclose(self) -> None:
        return None
