"""Model facade: one-shot generation, streaming, token counts, chat sessions."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from castor.config import Config
from castor.content import Content, to_content
from castor.errors import ConfigurationError, InvalidContentError
from castor.request import build_count_tokens_request, build_request
from castor.resolver import DEFAULT_MAX_TOOL_ROUNDS
from castor.response import validate_fragment, validate_response
from castor.streaming import ResponseStream, StreamAggregator
from castor.tools import ToolRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterable, Mapping, Sequence
    from types import TracebackType

    from castor.chat import ChatSession
    from castor.content import ContentLike
    from castor.generation import GenerationConfig, SafetySetting
    from castor.request import GenerateContentRequest
    from castor.resolver import ToolCallPolicy
    from castor.response import AggregatedResponse, CountTokensResponse, PartialResponse
    from castor.streaming import StreamObserver
    from castor.tools import Tool, ToolConfig, ToolHandler
    from castor.transport.base import Transport

logger = logging.getLogger(__name__)


def _get_transport(config: Config) -> Transport:
    """Get the appropriate transport based on configuration."""
    if config.use_mock:
        from castor.transport.mock import MockTransport

        return MockTransport()

    from castor.transport.gemini import GeminiTransport

    if config.api_key is None:
        raise ConfigurationError(
            "API key required for the Gemini backend",
            hint="Set GEMINI_API_KEY environment variable or pass api_key=...",
        )
    return GeminiTransport(
        config.api_key,
        api_version=config.api_version,
        base_url=config.base_url,
        timeout_s=config.timeout_s,
        retry=config.retry,
    )


class GenerativeModel:
    """A configured model: settings shared by every request it issues.

    Example:
        model = GenerativeModel("gemini-2.0-flash", config=Config(use_mock=True))
        response = await model.generate_content("Hello")
        print(response.text)
    """

    def __init__(
        self,
        model_name: str,
        *,
        config: Config | None = None,
        transport: Transport | None = None,
        generation_config: GenerationConfig | None = None,
        safety_settings: Sequence[SafetySetting] | None = None,
        tools: Sequence[Tool] | None = None,
        tool_config: ToolConfig | None = None,
        system_instruction: str | Content | None = None,
        tool_handlers: Mapping[str, ToolHandler] | None = None,
    ) -> None:
        self.model_name = model_name
        self.generation_config = generation_config
        self.safety_settings = tuple(safety_settings) if safety_settings else None
        self.tools = tuple(tools) if tools else None
        self.tool_config = tool_config
        self.system_instruction = (
            to_content(system_instruction) if system_instruction is not None else None
        )
        self.tool_handlers = ToolRegistry(tool_handlers)

        # Validate the static configuration once, up front.
        build_request(
            (),
            Content.from_text("", role=None),
            model=model_name,
            generation_config=generation_config,
            safety_settings=self.safety_settings,
            tools=self.tools,
            tool_config=tool_config,
            system_instruction=self.system_instruction,
        )

        self._owns_transport = transport is None
        self._transport = transport if transport is not None else _get_transport(
            config or Config()
        )

    def __repr__(self) -> str:
        return (
            f"GenerativeModel(model_name={self.model_name!r}, "
            f"transport={self._transport!r})"
        )

    @property
    def transport(self) -> Transport:
        return self._transport

    def build_request(
        self,
        history: Sequence[Content],
        turn: Content,
        continuation: Sequence[Content] = (),
    ) -> GenerateContentRequest:
        """Build a request carrying this model's settings."""
        return build_request(
            history,
            turn,
            model=self.model_name,
            continuation=continuation,
            generation_config=self.generation_config,
            safety_settings=self.safety_settings,
            tools=self.tools,
            tool_config=self.tool_config,
            system_instruction=self.system_instruction,
        )

    async def run_round(
        self, request: GenerateContentRequest, *, stream: bool
    ) -> AsyncGenerator[PartialResponse | AggregatedResponse, None]:
        """Issue one request; yield its fragments, then its `AggregatedResponse`.

        Every fragment and the final response are validated, so a blocked
        prompt or an abnormal stop fails the round.
        """
        logger.debug(
            "Dispatching %s request: model=%s contents=%d",
            "stream" if stream else "blocking",
            request.model,
            len(request.contents),
        )
        if not stream:
            yield validate_response(await self._transport.generate(request))
            return

        aggregator = StreamAggregator()
        fragments = self._transport.generate_stream(request)
        try:
            async for fragment in fragments:
                aggregator.feed(validate_fragment(fragment))
                yield fragment
        except asyncio.CancelledError:
            aggregator.cancel()
            raise
        except Exception as exc:
            aggregator.fail(exc)
            raise
        finally:
            aclose = getattr(fragments, "aclose", None)
            if callable(aclose):
                await aclose()
        logger.debug("Stream completed after %d fragment(s)", aggregator.fragment_count)
        yield validate_response(aggregator.complete())

    def _prompt(
        self, contents: tuple[ContentLike, ...]
    ) -> tuple[tuple[Content, ...], Content]:
        if not contents:
            raise InvalidContentError(
                "No contents given",
                hint="Pass at least one prompt, e.g. generate_content('Hello').",
            )
        normalized = tuple(
            to_content(c, role="user") if isinstance(c, str) else to_content(c)
            for c in contents
        )
        return normalized[:-1], normalized[-1]

    async def generate_content(self, *contents: ContentLike) -> AggregatedResponse:
        """Generate a response for one prompt (or an explicit multi-turn prompt).

        Function calls are returned to the caller, not resolved; use
        `start_chat` for automatic tool resolution.
        """
        history, turn = self._prompt(contents)
        return await ResponseStream(
            self.run_round(self.build_request(history, turn), stream=False)
        ).result()

    def generate_content_stream(
        self, *contents: ContentLike, observer: StreamObserver | None = None
    ) -> ResponseStream:
        """Stream a response for one prompt."""
        history, turn = self._prompt(contents)
        request = self.build_request(history, turn)
        return ResponseStream(self.run_round(request, stream=True), observer=observer)

    async def count_tokens(self, *contents: ContentLike) -> CountTokensResponse:
        """Count the tokens *contents* would consume as a prompt."""
        history, turn = self._prompt(contents)
        request = build_count_tokens_request((*history, turn), model=self.model_name)
        return await self._transport.count_tokens(request)

    def start_chat(
        self,
        history: Iterable[Content] | None = None,
        *,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
        tool_call_policy: ToolCallPolicy = "all",
        resolve_tools: bool = True,
    ) -> ChatSession:
        """Start a chat session, optionally seeded with *history*.

        A session's own ``history`` can seed a new session as long as it
        alternates. Sending into a history that ends with a user turn stores
        two consecutive user prompts, and such a history is rejected here.

        Raises:
            InvalidHistoryError: If *history* breaks role alternation.
        """
        from castor.chat import ChatSession

        return ChatSession(
            self,
            history,
            max_tool_rounds=max_tool_rounds,
            tool_call_policy=tool_call_policy,
            resolve_tools=resolve_tools,
        )

    async def aclose(self) -> None:
        """Close the transport if this model created it."""
        if not self._owns_transport:
            return
        aclose: Any = getattr(self._transport, "aclose", None)
        if not callable(aclose):
            return
        try:
            await aclose()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Cleanup should never mask the primary failure.
            logger.warning("Transport cleanup failed: %s", exc)

    async def __aenter__(self) -> GenerativeModel:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
