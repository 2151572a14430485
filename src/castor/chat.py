"""Chat sessions: history, sends, and automatic tool resolution.

A send commits to history only on success, and then all at once: the user
turn, any tool-result turns injected while resolving calls, and the final
model turn. Failed or cancelled sends leave history untouched.
"""

from __future__ import annotations

from contextlib import aclosing
import logging
from typing import TYPE_CHECKING

from castor.content import Content, to_content, validate_history
from castor.errors import ChatBusyError, InternalError, InvalidContentError
from castor.resolver import DEFAULT_MAX_TOOL_ROUNDS, ToolCallResolver
from castor.response import AggregatedResponse
from castor.streaming import ResponseStream

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterable

    from castor.content import ContentLike
    from castor.model import GenerativeModel
    from castor.resolver import ToolCallPolicy
    from castor.response import PartialResponse
    from castor.streaming import StreamObserver
    from castor.tools import ToolHandler

logger = logging.getLogger(__name__)


class ChatSession:
    """A multi-turn conversation with one model.

    Create sessions with `GenerativeModel.start_chat`. A session serves one
    send at a time; overlapping sends fail with `ChatBusyError`.

    Example:
        chat = model.start_chat()
        response = await chat.send("Hi there")
        async for fragment in chat.send_stream("Tell me more"):
            print(fragment.text, end="")
    """

    def __init__(
        self,
        model: GenerativeModel,
        history: Iterable[Content] | None = None,
        *,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
        tool_call_policy: ToolCallPolicy = "all",
        resolve_tools: bool = True,
    ) -> None:
        self.model = model
        self._history: list[Content] = list(validate_history(history or ()))
        self._registry = model.tool_handlers.copy()
        self._resolver = ToolCallResolver(
            self._registry, policy=tool_call_policy, max_rounds=max_tool_rounds
        )
        self.resolve_tools = resolve_tools
        self._busy = False
        self._last_response: AggregatedResponse | None = None

    @property
    def history(self) -> tuple[Content, ...]:
        """Read-only snapshot of the conversation so far."""
        return tuple(self._history)

    @property
    def last_response(self) -> AggregatedResponse | None:
        return self._last_response

    def register_tool(self, name: str, handler: ToolHandler) -> None:
        """Register a handler for function calls named *name* in this session."""
        self._registry.register(name, handler)

    def _normalize_turn(self, turn: ContentLike) -> Content:
        content = to_content(turn, role="user")
        if content.role != "user":
            raise InvalidContentError(
                f"Turns sent to a chat must have role 'user', got {content.role!r}",
                hint="Model turns enter history only as responses.",
            )
        return content

    async def _produce(
        self, turn: Content, *, stream: bool
    ) -> AsyncGenerator[PartialResponse | AggregatedResponse, None]:
        if self._busy:
            raise ChatBusyError(
                "A send is already in progress on this chat session",
                hint="Await the previous send (or cancel its stream) first.",
            )
        self._busy = True
        try:
            history = tuple(self._history)
            continuation: list[Content] = []

            def run_round(
                injected: tuple[Content, ...],
            ) -> AsyncGenerator[PartialResponse | AggregatedResponse, None]:
                request = self.model.build_request(history, turn, injected)
                return self.model.run_round(request, stream=stream)

            if self.resolve_tools:
                rounds = self._resolver.drive(run_round, continuation)
            else:
                rounds = run_round(())

            response: AggregatedResponse | None = None
            async with aclosing(rounds) as items:
                async for item in items:
                    if isinstance(item, AggregatedResponse):
                        response = item
                    else:
                        yield item
            if response is None:
                raise InternalError("Send finished without a response")

            self._history.extend((turn, *continuation, response.content))
            self._last_response = response
            logger.debug(
                "Committed %d turn(s); history length %d",
                len(continuation) + 2,
                len(self._history),
            )
            yield response
        finally:
            self._busy = False

    async def send(self, turn: ContentLike) -> AggregatedResponse:
        """Send *turn* and return the final response.

        Function calls are resolved through registered handlers (unless the
        session was started with ``resolve_tools=False``) before returning.

        Raises:
            InvalidContentError: If *turn* is not a user turn.
            ChatBusyError: If another send is in flight.
            TransportError: On backend or network failure.
            ToolError: If tool resolution fails.
        """
        content = self._normalize_turn(turn)
        return await ResponseStream(self._produce(content, stream=False)).result()

    def send_stream(
        self, turn: ContentLike, observer: StreamObserver | None = None
    ) -> ResponseStream:
        """Send *turn* and stream the response fragments.

        Fragments of every round, including rounds that end in tool calls,
        are delivered in order. The returned stream's result is the final
        response; history is committed when it completes.
        """
        content = self._normalize_turn(turn)
        return ResponseStream(self._produce(content, stream=True), observer=observer)
