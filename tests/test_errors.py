from __future__ import annotations

import pytest

from castor.errors import (
    CastorError,
    ChatBusyError,
    ConfigurationError,
    PromptBlockedError,
    RateLimitError,
    ResponseError,
    ToolError,
    ToolExecutionError,
    ToolLoopExceededError,
    TransportError,
    UnknownToolError,
    _walk_exception_chain,
)

pytestmark = pytest.mark.unit


def test_transport_error_structured_metadata() -> None:
    err = TransportError(
        "boom",
        hint="do this",
        retryable=True,
        status_code=429,
        retry_after_s=2.0,
        phase="generate",
    )

    assert str(err) == "boom"
    assert err.hint == "do this"
    assert err.retryable is True
    assert err.status_code == 429
    assert err.retry_after_s == 2.0
    assert err.phase == "generate"


def test_transport_error_defaults_to_none() -> None:
    err = TransportError("fail")
    assert err.hint is None
    assert err.retryable is None
    assert err.status_code is None
    assert err.retry_after_s is None
    assert err.phase is None


def test_subclass_hierarchy() -> None:
    """Every family is catchable as CastorError."""
    assert isinstance(RateLimitError("slow down"), TransportError)
    assert isinstance(PromptBlockedError("blocked"), ResponseError)
    assert isinstance(UnknownToolError("add"), ToolError)
    assert isinstance(ToolLoopExceededError(3), ToolError)
    for err in (
        ConfigurationError("x"),
        ChatBusyError("x"),
        RateLimitError("x"),
        PromptBlockedError("x"),
        UnknownToolError("x"),
    ):
        assert isinstance(err, CastorError)


def test_tool_errors_carry_context() -> None:
    unknown = UnknownToolError("add")
    assert unknown.name == "add"
    assert "'add'" in str(unknown)

    loop = ToolLoopExceededError(4)
    assert loop.max_rounds == 4
    assert "4" in str(loop)

    cause = ValueError("bad input")
    failed = ToolExecutionError("add", cause)
    assert failed.name == "add"
    assert "ValueError: bad input" in str(failed)


def test_response_error_keeps_offending_response() -> None:
    sentinel = object()
    err = PromptBlockedError("blocked", response=sentinel)
    assert err.response is sentinel


def test_walk_exception_chain_follows_cause_and_context_without_cycles() -> None:
    root = OSError("root")
    middle = ValueError("middle")
    top = RuntimeError("top")
    middle.__cause__ = root
    top.__context__ = middle
    root.__context__ = top  # cycle

    chain = list(_walk_exception_chain(top))

    assert chain == [top, middle, root]
