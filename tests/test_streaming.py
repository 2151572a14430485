"""Stream aggregation state machine and ResponseStream tests."""

from __future__ import annotations

import asyncio

from hypothesis import given
from hypothesis import strategies as st
import pytest

from castor.content import FunctionCallPart, TextPart
from castor.errors import InternalError, StreamCancelledError, TransportError
from castor.response import (
    AggregatedResponse,
    FinishReason,
    PartialResponse,
    UsageMetadata,
)
from castor.streaming import ResponseStream, StreamAggregator, StreamState
from tests.helpers import RecordingObserver, fragments, text_response

pytestmark = pytest.mark.unit


# =============================================================================
# StreamAggregator
# =============================================================================


@given(st.lists(st.text(), max_size=20))
def test_aggregated_text_is_concatenation_in_arrival_order(texts: list[str]) -> None:
    aggregator = StreamAggregator()
    for t in texts:
        aggregator.feed(PartialResponse(parts=(TextPart(t),)))

    assert aggregator.complete().text == "".join(texts)


def test_function_call_fragment_without_text_is_kept_in_order() -> None:
    aggregator = StreamAggregator()
    call = FunctionCallPart("add", {"a": 2, "b": 2})
    aggregator.feed(PartialResponse(parts=(TextPart("Let me "),)))
    aggregator.feed(PartialResponse(parts=(TextPart("compute"),)))
    aggregator.feed(PartialResponse(parts=(call,)))
    aggregator.feed(PartialResponse(parts=(TextPart("."),)))

    result = aggregator.complete()

    assert result.content.parts == (TextPart("Let me compute"), call, TextPart("."))
    assert result.function_calls == (call,)
    assert result.content.role == "model"


def test_usage_and_finish_reason_come_from_latest_fragment() -> None:
    aggregator = StreamAggregator()
    aggregator.feed(PartialResponse(parts=(TextPart("a"),), usage=UsageMetadata(1, 1, 2)))
    aggregator.feed(
        PartialResponse(
            parts=(TextPart("b"),),
            usage=UsageMetadata(1, 2, 3),
            finish_reason=FinishReason.STOP,
        )
    )
    aggregator.feed(PartialResponse())

    result = aggregator.complete()

    assert result.usage == UsageMetadata(1, 2, 3)
    assert result.finish_reason is FinishReason.STOP
    assert aggregator.fragment_count == 3


def test_state_transitions_and_single_completion_callback() -> None:
    observer = RecordingObserver()
    aggregator = StreamAggregator(observer)
    assert aggregator.state is StreamState.IDLE

    aggregator.feed(PartialResponse(parts=(TextPart("hi"),)))
    assert aggregator.state is StreamState.STREAMING

    aggregator.complete()
    assert aggregator.state is StreamState.COMPLETED
    assert observer.kinds() == ["fragment", "complete"]

    with pytest.raises(InternalError):
        aggregator.feed(PartialResponse(parts=(TextPart("late"),)))
    with pytest.raises(InternalError):
        aggregator.complete()
    with pytest.raises(InternalError):
        aggregator.fail(RuntimeError("late"))
    assert observer.kinds() == ["fragment", "complete"]


def test_failure_discards_buffer_and_notifies_once() -> None:
    observer = RecordingObserver()
    aggregator = StreamAggregator(observer)
    cause = TransportError("connection reset")
    aggregator.feed(PartialResponse(parts=(TextPart("partial"),)))

    aggregator.fail(cause)

    assert aggregator.state is StreamState.FAILED
    assert observer.events[-1] == ("error", cause)
    assert observer.kinds().count("error") == 1
    with pytest.raises(InternalError):
        aggregator.complete()


def test_cancel_is_silent_and_idempotent() -> None:
    observer = RecordingObserver()
    aggregator = StreamAggregator(observer)
    aggregator.feed(PartialResponse(parts=(TextPart("a"),)))

    aggregator.cancel()
    aggregator.cancel()

    assert aggregator.state is StreamState.CANCELLED
    assert observer.kinds() == ["fragment"]


def test_supplied_result_supersedes_buffer() -> None:
    aggregator = StreamAggregator()
    aggregator.feed(PartialResponse(parts=(TextPart("round one"),)))
    final = text_response("final answer")

    assert aggregator.complete(final) is final


def test_empty_stream_completes_with_empty_text() -> None:
    result = StreamAggregator().complete()
    assert result.text == ""
    assert result.function_calls == ()


# =============================================================================
# ResponseStream
# =============================================================================


async def _producer(items):
    for item in items:
        if isinstance(item, BaseException):
            raise item
        yield item


def _terminal(texts: list[str]) -> list:
    frags = fragments(*texts)
    return [*frags, AggregatedResponse.from_parts([TextPart("".join(texts))])]


@pytest.mark.asyncio
async def test_response_stream_yields_fragments_then_settles() -> None:
    observer = RecordingObserver()
    stream = ResponseStream(_producer(_terminal(["Hel", "lo"])), observer=observer)

    texts = [f.text async for f in stream]

    assert texts == ["Hel", "lo"]
    assert stream.state is StreamState.COMPLETED
    assert stream.response is not None
    assert stream.response.text == "Hello"
    assert observer.kinds() == ["fragment", "fragment", "complete"]


@pytest.mark.asyncio
async def test_response_stream_result_drains() -> None:
    stream = ResponseStream(_producer(_terminal(["a", "b", "c"])))
    response = await stream.result()
    assert response.text == "abc"
    # Already settled: iteration stops immediately.
    assert [f async for f in stream] == []


@pytest.mark.asyncio
async def test_response_stream_failure_reaches_observer_once() -> None:
    observer = RecordingObserver()
    err = TransportError("boom")
    stream = ResponseStream(
        _producer([*fragments("partial"), err]), observer=observer
    )

    with pytest.raises(TransportError):
        await stream.result()

    assert stream.state is StreamState.FAILED
    assert observer.kinds() == ["fragment", "error"]
    # The stored error is re-raised on later access.
    with pytest.raises(TransportError):
        await stream.result()


@pytest.mark.asyncio
async def test_response_stream_without_terminal_response_is_internal_error() -> None:
    stream = ResponseStream(_producer(fragments("a")))
    with pytest.raises(InternalError, match="without a terminal response"):
        await stream.result()


@pytest.mark.asyncio
async def test_response_stream_cancel_fires_no_terminal_callback() -> None:
    observer = RecordingObserver()
    closed = asyncio.Event()

    async def producer():
        try:
            yield PartialResponse(parts=(TextPart("first"),))
            yield PartialResponse(parts=(TextPart("second"),))
            yield text_response("firstsecond")
        finally:
            closed.set()

    stream = ResponseStream(producer(), observer=observer)
    first = await stream.__anext__()
    await stream.cancel()

    assert first.text == "first"
    assert closed.is_set()
    assert stream.state is StreamState.CANCELLED
    assert observer.kinds() == ["fragment"]
    assert [f async for f in stream] == []
    assert stream.response is None


@pytest.mark.asyncio
async def test_response_stream_context_manager_cancels_unfinished_stream() -> None:
    stream = ResponseStream(_producer(_terminal(["a", "b"])))
    async with stream as s:
        await s.__anext__()
    assert stream.state is StreamState.CANCELLED


@pytest.mark.asyncio
async def test_result_after_cancel_raises_stream_cancelled() -> None:
    stream = ResponseStream(_producer(_terminal(["a", "b"])))
    await stream.__anext__()
    await stream.cancel()

    with pytest.raises(StreamCancelledError, match="cancelled"):
        await stream.result()


@pytest.mark.asyncio
async def test_cancel_from_another_task_ends_pending_iteration() -> None:
    observer = RecordingObserver()
    waiting = asyncio.Event()
    never = asyncio.Event()
    closed = asyncio.Event()

    async def producer():
        try:
            yield PartialResponse(parts=(TextPart("first"),))
            waiting.set()
            await never.wait()
            yield PartialResponse(parts=(TextPart("second"),))
        finally:
            closed.set()

    stream = ResponseStream(producer(), observer=observer)

    async def consume() -> list[str]:
        return [f.text async for f in stream]

    consumer = asyncio.create_task(consume())
    await waiting.wait()
    await stream.cancel()

    assert closed.is_set()
    assert await consumer == ["first"]
    assert stream.state is StreamState.CANCELLED
    assert observer.kinds() == ["fragment"]
