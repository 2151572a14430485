"""Stream aggregation and the caller-facing response stream.

`StreamAggregator` is a small synchronous state machine::

    IDLE -> STREAMING -> COMPLETED | FAILED | CANCELLED

Fragments are merged strictly in arrival order; the aggregator never
reorders. Exactly one terminal transition happens per aggregator, its
observer callback fires at most once, and no fragment callback fires after
it. Cancellation is terminal but silent.

`ResponseStream` wraps a producer (an async generator of fragments that ends
by yielding the terminal `AggregatedResponse`) and settles a send-level
aggregator around it, so callers can iterate fragments, await the result,
or cancel.
"""

from __future__ import annotations

import asyncio
from enum import Enum
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from castor.content import Part, TextPart
from castor.errors import InternalError, StreamCancelledError
from castor.response import AggregatedResponse, PartialResponse

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from types import TracebackType

    from castor.response import FinishReason, UsageMetadata

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TERMINAL = frozenset({StreamState.COMPLETED, StreamState.FAILED, StreamState.CANCELLED})


@runtime_checkable
class StreamObserver(Protocol):
    """Callbacks for incremental output."""

    def on_fragment(self, fragment: PartialResponse) -> None: ...

    def on_complete(self, response: AggregatedResponse) -> None: ...

    def on_error(self, error: BaseException) -> None: ...


class StreamAggregator:
    """Merge fragments of one stream into an `AggregatedResponse`."""

    def __init__(self, observer: StreamObserver | None = None) -> None:
        self._observer = observer
        self._state = StreamState.IDLE
        self._parts: list[Part] = []
        self._usage: UsageMetadata | None = None
        self._finish_reason: FinishReason | None = None
        self._fragments = 0

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def fragment_count(self) -> int:
        return self._fragments

    def _ensure_open(self, action: str) -> None:
        if self._state in _TERMINAL:
            raise InternalError(
                f"Cannot {action} a stream in state {self._state.value}",
                hint="A stream settles exactly once.",
            )

    def feed(self, fragment: PartialResponse) -> None:
        """Append one fragment and forward it to the observer."""
        self._ensure_open("feed")
        self._state = StreamState.STREAMING
        self._fragments += 1
        for part in fragment.parts:
            last = self._parts[-1] if self._parts else None
            if isinstance(part, TextPart) and isinstance(last, TextPart):
                self._parts[-1] = TextPart(last.text + part.text)
            else:
                self._parts.append(part)
        if fragment.usage is not None:
            self._usage = fragment.usage
        if fragment.finish_reason is not None:
            self._finish_reason = fragment.finish_reason
        if self._observer is not None:
            self._observer.on_fragment(fragment)

    def complete(self, result: AggregatedResponse | None = None) -> AggregatedResponse:
        """Settle successfully.

        Text deltas are concatenated and structured parts kept, all in arrival
        order. A supplied *result* supersedes the merged buffer.
        """
        self._ensure_open("complete")
        if result is None:
            result = AggregatedResponse.from_parts(
                self._parts, usage=self._usage, finish_reason=self._finish_reason
            )
        self._state = StreamState.COMPLETED
        self._parts = []
        if self._observer is not None:
            self._observer.on_complete(result)
        return result

    def fail(self, error: BaseException) -> None:
        """Settle with *error*, discarding the buffer."""
        self._ensure_open("fail")
        self._state = StreamState.FAILED
        self._parts = []
        if self._observer is not None:
            self._observer.on_error(error)

    def cancel(self) -> None:
        """Settle silently. Idempotent once settled."""
        if self._state in _TERMINAL:
            return
        self._state = StreamState.CANCELLED
        self._parts = []


class ResponseStream:
    """Async iterator over the fragments of one streamed send.

    Usage::

        stream = chat.send_stream("Tell me a story")
        async for fragment in stream:
            print(fragment.text, end="")
        print(stream.response.usage)

    or ``response = await stream.result()`` to drain it. ``await
    stream.cancel()`` stops delivery, from the consuming task or any other;
    no terminal callback fires and a pending ``__anext__`` ends the
    iteration. ``result()`` on a cancelled stream raises
    `StreamCancelledError`.
    """

    def __init__(
        self,
        producer: AsyncGenerator[PartialResponse | AggregatedResponse, None],
        *,
        observer: StreamObserver | None = None,
    ) -> None:
        self._producer = producer
        self._aggregator = StreamAggregator(observer)
        self._response: AggregatedResponse | None = None
        self._error: BaseException | None = None
        # The producer step currently awaited by __anext__, if any.
        self._step: asyncio.Future[Any] | None = None

    @property
    def state(self) -> StreamState:
        return self._aggregator.state

    @property
    def response(self) -> AggregatedResponse | None:
        """The terminal response once the stream completed, else *None*."""
        return self._response

    def __aiter__(self) -> ResponseStream:
        return self

    async def _advance(self) -> PartialResponse | AggregatedResponse | None:
        try:
            return await self._producer.__anext__()
        except StopAsyncIteration:
            return None

    async def _discard(self, step: asyncio.Future[Any]) -> None:
        # A step that finished normally leaves the producer suspended.
        if not step.cancelled() and step.exception() is None:
            await self._producer.aclose()

    async def __anext__(self) -> PartialResponse:
        if self._aggregator.state in _TERMINAL:
            raise StopAsyncIteration
        # Each producer step runs as its own task so that cancel() from
        # another task can interrupt it without cancelling the consumer.
        step = asyncio.ensure_future(self._advance())
        self._step = step
        try:
            await asyncio.wait((step,))
        except asyncio.CancelledError:
            step.cancel()
            await asyncio.wait((step,))
            self._aggregator.cancel()
            await self._discard(step)
            raise
        finally:
            self._step = None

        if self._aggregator.state is StreamState.CANCELLED:
            await self._discard(step)
            raise StopAsyncIteration

        try:
            item = step.result()
        except asyncio.CancelledError:
            self._aggregator.cancel()
            raise
        except Exception as exc:
            self._error = exc
            self._aggregator.fail(exc)
            raise

        if item is None:
            err = InternalError("Stream ended without a terminal response")
            self._error = err
            self._aggregator.fail(err)
            raise err
        if isinstance(item, AggregatedResponse):
            self._response = self._aggregator.complete(item)
            await self._producer.aclose()
            raise StopAsyncIteration

        self._aggregator.feed(item)
        return item

    async def result(self) -> AggregatedResponse:
        """Drain remaining fragments and return the terminal response.

        Raises:
            StreamCancelledError: If the stream was cancelled first.
        """
        async for _ in self:
            pass
        if self._error is not None:
            raise self._error
        if self._response is None:
            raise StreamCancelledError(
                "The stream was cancelled before completing",
                hint="Partial fragments are discarded on cancel().",
            )
        return self._response

    async def cancel(self) -> None:
        """Stop delivery without settling callbacks or side effects.

        Returns once the producer has been closed, so a chat session is free
        for the next send.
        """
        if self._aggregator.state in _TERMINAL:
            return
        logger.debug(
            "Cancelling stream after %d fragment(s)", self._aggregator.fragment_count
        )
        self._aggregator.cancel()
        step = self._step
        if step is not None and not step.done():
            step.cancel()
            await asyncio.wait((step,))
        else:
            await self._producer.aclose()

    async def __aenter__(self) -> ResponseStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.cancel()
