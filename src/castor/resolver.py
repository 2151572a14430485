"""Tool-call resolution: run requested tools and resubmit until the model answers.

One tool round is: a response carrying function calls, handler execution, and
a resubmission with the tool-result turn appended. The resolver drives rounds
until a response carries no calls, or fails once ``max_rounds`` rounds have
run and the model still asks for more.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from contextlib import aclosing
import inspect
import logging
from typing import TYPE_CHECKING, Any, Literal

from castor.content import Content, FunctionResponsePart
from castor.errors import (
    ConfigurationError,
    InternalError,
    ToolExecutionError,
    ToolLoopExceededError,
    UnknownToolError,
)
from castor.response import AggregatedResponse

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator, Callable

    from castor.content import FunctionCallPart
    from castor.response import PartialResponse
    from castor.tools import ToolRegistry

    RoundRunner = Callable[
        [tuple[Content, ...]], AsyncGenerator[PartialResponse | AggregatedResponse, None]
    ]

ToolCallPolicy = Literal["all", "first"]

DEFAULT_MAX_TOOL_ROUNDS = 10

logger = logging.getLogger(__name__)


def wrap_tool_result(value: Any) -> dict[str, Any]:
    """Shape a handler's return value as a function-response payload."""
    if isinstance(value, Mapping):
        return dict(value)
    return {"result": value}


class ToolCallResolver:
    """Execute function calls through a `ToolRegistry` and loop rounds."""

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        policy: ToolCallPolicy = "all",
        max_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ) -> None:
        if policy not in ("all", "first"):
            raise ConfigurationError(
                f"Unknown tool_call_policy: {policy!r}",
                hint="Use 'all' (every call, in order) or 'first'.",
            )
        if not isinstance(max_rounds, int) or max_rounds < 1:
            raise ConfigurationError(
                f"max_tool_rounds must be ≥ 1, got {max_rounds!r}",
            )
        self.registry = registry
        self.policy = policy
        self.max_rounds = max_rounds

    def calls_in(self, response: AggregatedResponse) -> tuple[FunctionCallPart, ...]:
        """Function calls the resolver will act on, per policy."""
        calls = response.function_calls
        if self.policy == "first":
            return calls[:1]
        return calls

    async def _invoke(self, call: FunctionCallPart) -> FunctionResponsePart:
        handler = self.registry.get(call.name)
        if handler is None:
            raise UnknownToolError(
                call.name,
                hint=f"Register it with register_tool({call.name!r}, handler).",
            )
        try:
            result = handler(dict(call.args))
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise ToolExecutionError(call.name, e) from e
        return FunctionResponsePart(
            name=call.name,
            response=wrap_tool_result(result),
            id=call.id,
            args=call.args,
        )

    async def execute(self, calls: tuple[FunctionCallPart, ...]) -> Content:
        """Run *calls* in order and package the results as one user turn."""
        parts = []
        for call in calls:
            logger.debug("Invoking tool %s", call.name)
            parts.append(await self._invoke(call))
        return Content(tuple(parts), role="user")

    async def drive(
        self,
        run_round: RoundRunner,
        continuation: list[Content],
    ) -> AsyncIterator[PartialResponse | AggregatedResponse]:
        """Run rounds until the model stops calling tools.

        ``run_round`` receives the tool-result turns injected so far and
        yields the round's fragments, then its `AggregatedResponse`.
        Fragments are passed through; the terminal response is yielded last.
        Each injected turn is appended to *continuation*, which the caller
        owns and commits on success.
        """
        rounds = 0
        while True:
            response: AggregatedResponse | None = None
            async with aclosing(run_round(tuple(continuation))) as items:
                async for item in items:
                    if isinstance(item, AggregatedResponse):
                        response = item
                    else:
                        yield item
            if response is None:
                raise InternalError("Tool round produced no response")

            calls = self.calls_in(response)
            if not calls:
                yield response
                return
            if rounds >= self.max_rounds:
                raise ToolLoopExceededError(self.max_rounds)
            rounds += 1
            logger.debug(
                "Tool round %d/%d: %s",
                rounds,
                self.max_rounds,
                ", ".join(c.name for c in calls),
            )
            continuation.append(await self.execute(calls))
