"""Gemini transport on the google-genai async client."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from castor._http import DEFAULT_API_VERSION
from castor.content import (
    BlobPart,
    Content,
    FunctionCallPart,
    FunctionResponsePart,
    Part,
    TextPart,
)
from castor.errors import CastorError, TransportError
from castor.response import (
    AggregatedResponse,
    BlockReason,
    CountTokensResponse,
    FinishReason,
    PartialResponse,
    UsageMetadata,
    validate_response,
)
from castor.retry import RetryPolicy, retry_async
from castor.transport._errors import wrap_transport_error

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from castor.request import CountTokensRequest, GenerateContentRequest

logger = logging.getLogger(__name__)


class GeminiTransport:
    """Google Gemini API transport.

    Blocking calls are retried per *retry*; streams are not.
    """

    def __init__(
        self,
        api_key: str,
        *,
        api_version: str = DEFAULT_API_VERSION,
        base_url: str | None = None,
        timeout_s: float | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        """Create a transport bound to one credential."""
        self._api_key = api_key
        self.api_version = api_version
        self.base_url = base_url
        self.timeout_s = timeout_s
        self.retry = retry or RetryPolicy()
        self._client: Any = None

    def __repr__(self) -> str:
        return f"GeminiTransport(api_version={self.api_version!r}, base_url={self.base_url!r})"

    def _get_client(self) -> Any:
        """Lazy-initialize the google-genai client."""
        if self._client is None:
            try:
                from google import genai
                from google.genai import types
            except ImportError as e:
                raise TransportError(
                    "google-genai package not installed",
                    hint="pip install google-genai",
                ) from e

            http_kwargs: dict[str, Any] = {"api_version": self.api_version}
            if self.base_url is not None:
                http_kwargs["base_url"] = self.base_url
            if self.timeout_s is not None:
                # HttpOptions.timeout is in milliseconds.
                http_kwargs["timeout"] = int(self.timeout_s * 1000)
            self._client = genai.Client(
                api_key=self._api_key, http_options=types.HttpOptions(**http_kwargs)
            )
        return self._client

    # ------------------------------------------------------------------
    # Request conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _convert_part(part: Part) -> Any:
        from google.genai import types

        if isinstance(part, TextPart):
            return types.Part(text=part.text)
        if isinstance(part, BlobPart):
            return types.Part(
                inline_data=types.Blob(data=part.data, mime_type=part.mime_type)
            )
        if isinstance(part, FunctionCallPart):
            return types.Part(
                function_call=types.FunctionCall(
                    id=part.id, name=part.name, args=dict(part.args)
                )
            )
        return types.Part(
            function_response=types.FunctionResponse(
                id=part.id, name=part.name, response=dict(part.response)
            )
        )

    def _convert_contents(self, contents: Sequence[Content]) -> list[Any]:
        """Convert turns to SDK contents.

        Gemini rejects a function-response turn that does not directly follow
        the model turn that made the calls. Chat histories keep only the
        tool-result turn, so the call turn is rebuilt from the echoed names
        and arguments.
        """
        from google.genai import types

        converted: list[Any] = []
        previous: Content | None = None
        for c in contents:
            if (
                c.is_tool_result
                and not (previous is not None and previous.function_calls)
            ):
                calls = [
                    FunctionCallPart(name=p.name, args=p.args or {}, id=p.id)
                    for p in c.parts
                    if isinstance(p, FunctionResponsePart)
                ]
                converted.append(
                    types.Content(
                        role="model", parts=[self._convert_part(p) for p in calls]
                    )
                )
            converted.append(
                types.Content(
                    role=c.role, parts=[self._convert_part(p) for p in c.parts]
                )
            )
            previous = c
        return converted

    def _build_config(self, request: GenerateContentRequest) -> Any:
        from google.genai import types

        kwargs: dict[str, Any] = {
            # Tools are resolved by the chat engine, never by the SDK.
            "automatic_function_calling": types.AutomaticFunctionCallingConfig(
                disable=True
            ),
        }
        gc = request.generation_config
        if gc is not None:
            for name in (
                "temperature",
                "top_k",
                "top_p",
                "max_output_tokens",
                "candidate_count",
                "response_mime_type",
            ):
                value = getattr(gc, name)
                if value is not None:
                    kwargs[name] = value
            if gc.stop_sequences is not None:
                kwargs["stop_sequences"] = list(gc.stop_sequences)
            schema = gc.response_schema_json()
            if schema is not None:
                kwargs["response_json_schema"] = schema

        if request.safety_settings:
            kwargs["safety_settings"] = [
                types.SafetySetting(
                    category=s.category.value, threshold=s.threshold.value
                )
                for s in request.safety_settings
            ]

        if request.tools:
            kwargs["tools"] = [
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=d.name,
                            description=d.description,
                            parameters_json_schema=d.parameters_schema(),
                        )
                        for d in t.function_declarations
                    ]
                )
                for t in request.tools
            ]

        tc = request.tool_config
        if tc is not None:
            fcc: dict[str, Any] = {"mode": tc.mode.value}
            if tc.allowed_function_names:
                fcc["allowed_function_names"] = list(tc.allowed_function_names)
            kwargs["tool_config"] = types.ToolConfig(
                function_calling_config=types.FunctionCallingConfig(**fcc)
            )

        if request.system_instruction is not None:
            kwargs["system_instruction"] = types.Content(
                parts=[
                    self._convert_part(p) for p in request.system_instruction.parts
                ]
            )

        return types.GenerateContentConfig(**kwargs)

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_parts(raw_parts: Any) -> tuple[Part, ...]:
        parts: list[Part] = []
        for p in raw_parts or ():
            if getattr(p, "thought", False):
                continue
            fc = getattr(p, "function_call", None)
            if fc is not None:
                parts.append(
                    FunctionCallPart(
                        name=str(fc.name), args=dict(fc.args or {}), id=fc.id or None
                    )
                )
                continue
            blob = getattr(p, "inline_data", None)
            if blob is not None and blob.data is not None:
                parts.append(
                    BlobPart(
                        mime_type=blob.mime_type or "application/octet-stream",
                        data=blob.data,
                    )
                )
                continue
            fr = getattr(p, "function_response", None)
            if fr is not None:
                parts.append(
                    FunctionResponsePart(
                        name=str(fr.name), response=dict(fr.response or {}), id=fr.id
                    )
                )
                continue
            text = getattr(p, "text", None)
            if isinstance(text, str):
                parts.append(TextPart(text))
            else:
                logger.debug("Skipping unsupported part: %s", type(p).__name__)
        return tuple(parts)

    @staticmethod
    def _parse_usage(response: Any) -> UsageMetadata | None:
        um = getattr(response, "usage_metadata", None)
        if um is None:
            return None
        return UsageMetadata(
            prompt_token_count=getattr(um, "prompt_token_count", None) or 0,
            candidates_token_count=getattr(um, "candidates_token_count", None) or 0,
            total_token_count=getattr(um, "total_token_count", None) or 0,
        )

    @staticmethod
    def _block_reason(response: Any) -> BlockReason | None:
        feedback = getattr(response, "prompt_feedback", None)
        return BlockReason.parse(getattr(feedback, "block_reason", None))

    def _parse_fragment(self, chunk: Any) -> PartialResponse:
        candidates = getattr(chunk, "candidates", None) or []
        parts: tuple[Part, ...] = ()
        finish_reason = None
        if candidates:
            first = candidates[0]
            parts = self._parse_parts(getattr(first.content, "parts", None))
            finish_reason = FinishReason.parse(first.finish_reason)
        return PartialResponse(
            parts=parts,
            finish_reason=finish_reason,
            usage=self._parse_usage(chunk),
            block_reason=self._block_reason(chunk),
        )

    def _parse_response(self, response: Any) -> AggregatedResponse:
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return validate_response(None, block_reason=self._block_reason(response))
        first = candidates[0]
        return AggregatedResponse.from_parts(
            self._parse_parts(getattr(first.content, "parts", None)),
            usage=self._parse_usage(response),
            finish_reason=FinishReason.parse(first.finish_reason),
        )

    # ------------------------------------------------------------------
    # Transport protocol
    # ------------------------------------------------------------------

    async def _generate_once(self, request: GenerateContentRequest) -> AggregatedResponse:
        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(
                model=request.model,
                contents=self._convert_contents(request.contents),
                config=self._build_config(request),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_transport_error(
                e, phase="generate", message="Gemini generate failed"
            ) from e
        return self._parse_response(response)

    async def generate(self, request: GenerateContentRequest) -> AggregatedResponse:
        """Generate content, retrying transient failures."""
        logger.debug(
            "generate model=%s contents=%d", request.model, len(request.contents)
        )
        if self.retry.max_attempts <= 1:
            return await self._generate_once(request)
        return await retry_async(
            lambda: self._generate_once(request), policy=self.retry
        )

    async def generate_stream(
        self, request: GenerateContentRequest
    ) -> AsyncIterator[PartialResponse]:
        """Stream fragments in backend order."""
        client = self._get_client()
        logger.debug(
            "generate_stream model=%s contents=%d", request.model, len(request.contents)
        )
        try:
            stream = await client.aio.models.generate_content_stream(
                model=request.model,
                contents=self._convert_contents(request.contents),
                config=self._build_config(request),
            )
            async for chunk in stream:
                yield self._parse_fragment(chunk)
        except asyncio.CancelledError:
            raise
        except CastorError:
            raise
        except Exception as e:
            raise wrap_transport_error(
                e, phase="stream", message="Gemini stream failed"
            ) from e

    async def _count_once(self, request: CountTokensRequest) -> CountTokensResponse:
        client = self._get_client()
        try:
            result = await client.aio.models.count_tokens(
                model=request.model,
                contents=self._convert_contents(request.contents),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_transport_error(
                e, phase="count_tokens", message="Gemini count_tokens failed"
            ) from e
        return CountTokensResponse(total_tokens=int(result.total_tokens or 0))

    async def count_tokens(self, request: CountTokensRequest) -> CountTokensResponse:
        """Count prompt tokens, retrying transient failures."""
        if self.retry.max_attempts <= 1:
            return await self._count_once(request)
        return await retry_async(lambda: self._count_once(request), policy=self.retry)

    async def aclose(self) -> None:
        """Release the underlying HTTP client."""
        if self._client is None:
            return
        aclose = getattr(self._client.aio, "aclose", None)
        self._client = None
        if callable(aclose):
            await aclose()
