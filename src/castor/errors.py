"""Exception hierarchy for Castor."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class CastorError(Exception):
    """Base exception for all Castor errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CastorError):
    """Configuration validation failed or options contradict each other."""


class InvalidContentError(CastorError):
    """A Content or Part could not be constructed as requested."""


class InvalidHistoryError(CastorError):
    """A chat history violates role alternation."""


class ChatBusyError(CastorError):
    """A chat session already has a request in flight."""


class InternalError(CastorError):
    """A Castor internal error (bug) or invariant violation."""


class StreamCancelledError(CastorError):
    """A stream was cancelled before it produced a terminal response."""


class TransportError(CastorError):
    """The backend call failed.

    Transports attach retry metadata so the retry layer can stay bounded and
    deterministic without brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.phase = phase


class RateLimitError(TransportError):
    """Rate limit exceeded (HTTP 429)."""


class ResponseError(CastorError):
    """The backend answered, but the answer cannot be used."""

    def __init__(
        self, message: str, *, response: Any = None, hint: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)
        self.response = response


class PromptBlockedError(ResponseError):
    """The prompt was blocked by the backend's safety filters."""


class ResponseStoppedError(ResponseError):
    """Generation stopped for a reason other than a natural stop."""


class InvalidResponseError(ResponseError):
    """The response carried neither candidates nor prompt feedback."""


class ToolError(CastorError):
    """Base class for function-calling orchestration failures."""


class UnknownToolError(ToolError):
    """The model requested a tool with no registered handler."""

    def __init__(self, name: str, *, hint: str | None = None) -> None:
        super().__init__(f"No handler registered for tool {name!r}", hint=hint)
        self.name = name


class ToolExecutionError(ToolError):
    """A registered tool handler raised."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(
            f"Tool {name!r} failed: {type(cause).__name__}: {cause}",
            hint="The handler's exception is available as __cause__.",
        )
        self.name = name


class ToolLoopExceededError(ToolError):
    """The model kept requesting tools past the configured round limit."""

    def __init__(self, max_rounds: int) -> None:
        super().__init__(
            f"Function calling did not settle within {max_rounds} round(s)",
            hint="Raise max_tool_rounds or check the tool results sent back to the model.",
        )
        self.max_rounds = max_rounds


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
