"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off transport subclasses as coverage expands.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Union

from castor.content import FunctionCallPart, TextPart
from castor.request import CountTokensRequest, GenerateContentRequest
from castor.response import (
    AggregatedResponse,
    CountTokensResponse,
    FinishReason,
    PartialResponse,
    UsageMetadata,
)
from castor.streaming import StreamAggregator

ScriptItem = Union[AggregatedResponse, list[Any], BaseException]


def text_response(text: str) -> AggregatedResponse:
    return AggregatedResponse.from_parts(
        [TextPart(text)],
        usage=UsageMetadata(1, 1, 2),
        finish_reason=FinishReason.STOP,
    )


def call_response(
    name: str, args: dict[str, Any] | None = None, **more: Any
) -> AggregatedResponse:
    """A model response requesting one call, or several via ``more``."""
    calls = [FunctionCallPart(name, args or {})]
    calls += [FunctionCallPart(n, a) for n, a in more.items()]
    return AggregatedResponse.from_parts(calls, finish_reason=FinishReason.STOP)


def fragments(*texts: str) -> list[PartialResponse]:
    """Text fragments; the last one carries the finish reason."""
    return [
        PartialResponse(
            parts=(TextPart(t),),
            finish_reason=FinishReason.STOP if i == len(texts) - 1 else None,
        )
        for i, t in enumerate(texts)
    ]


@dataclass
class ScriptedTransport:
    """Transport returning a scripted sequence of results/exceptions.

    Each item serves one request, blocking or streamed. An item is an
    `AggregatedResponse`, a list of fragments (exceptions inside the list
    are raised mid-stream), or an exception raised before any output.
    """

    script: list[ScriptItem] = field(default_factory=list)
    requests: list[GenerateContentRequest] = field(default_factory=list)
    count_requests: list[CountTokensRequest] = field(default_factory=list)
    streams_closed: int = 0

    def _next(self) -> ScriptItem:
        if not self.script:
            return text_response("ok")
        return self.script.pop(0)

    async def generate(self, request: GenerateContentRequest) -> AggregatedResponse:
        self.requests.append(request)
        item = self._next()
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, AggregatedResponse):
            return item
        aggregator = StreamAggregator()
        for f in item:
            if isinstance(f, BaseException):
                raise f
            aggregator.feed(f)
        return aggregator.complete()

    async def generate_stream(self, request: GenerateContentRequest):
        self.requests.append(request)
        item = self._next()
        try:
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, AggregatedResponse):
                yield PartialResponse(
                    parts=item.content.parts,
                    finish_reason=item.finish_reason,
                    usage=item.usage,
                )
                return
            for f in item:
                if isinstance(f, BaseException):
                    raise f
                yield f
        finally:
            self.streams_closed += 1

    async def count_tokens(self, request: CountTokensRequest) -> CountTokensResponse:
        self.count_requests.append(request)
        return CountTokensResponse(total_tokens=7)


@dataclass
class GateTransport(ScriptedTransport):
    """ScriptedTransport with an explicit barrier for cancellation/race tests.

    Blocking calls wait on ``release`` before answering; streams yield their
    first fragment, then wait.
    """

    started: asyncio.Event = field(default_factory=asyncio.Event)
    release: asyncio.Event = field(default_factory=asyncio.Event)

    async def generate(self, request: GenerateContentRequest) -> AggregatedResponse:
        self.started.set()
        await self.release.wait()
        return await super().generate(request)

    async def generate_stream(self, request: GenerateContentRequest):
        first = True
        async with aclosing(super().generate_stream(request)) as stream:
            async for f in stream:
                yield f
                if first:
                    first = False
                    self.started.set()
                    await self.release.wait()


@dataclass
class RecordingObserver:
    """StreamObserver that records every callback in order."""

    events: list[tuple[str, Any]] = field(default_factory=list)

    def on_fragment(self, fragment: PartialResponse) -> None:
        self.events.append(("fragment", fragment.text))

    def on_complete(self, response: AggregatedResponse) -> None:
        self.events.append(("complete", response))

    def on_error(self, error: BaseException) -> None:
        self.events.append(("error", error))

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.events]
