"""Request building: history + turn + configuration into one request.

Pure transformation with no network access. Contradictory options are
rejected here, before anything is sent.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from castor.content import Content
from castor.errors import ConfigurationError, InvalidContentError
from castor.generation import JSON_MIME_TYPE, GenerationConfig
from castor.tools import declared_names

if TYPE_CHECKING:
    from collections.abc import Sequence

    from castor.generation import SafetySetting
    from castor.tools import Tool, ToolConfig

_MODEL_PREFIXES = ("models/", "tunedModels/")


def full_model_name(name: str) -> str:
    """Qualify a bare model name as ``models/<name>``."""
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError(
            "model name must be a non-empty string",
            hint="Pass e.g. GenerativeModel('gemini-2.0-flash').",
        )
    name = name.strip()
    return name if name.startswith(_MODEL_PREFIXES) else f"models/{name}"


@dataclass(frozen=True)
class GenerateContentRequest:
    """A fully assembled generation request."""

    model: str
    contents: tuple[Content, ...]
    generation_config: GenerationConfig | None = None
    safety_settings: tuple[SafetySetting, ...] | None = None
    tools: tuple[Tool, ...] | None = None
    tool_config: ToolConfig | None = None
    system_instruction: Content | None = None


@dataclass(frozen=True)
class CountTokensRequest:
    """Token-count request over the same prompt shape as generation."""

    model: str
    contents: tuple[Content, ...]


def _resolve_generation_config(
    config: GenerationConfig | None,
) -> GenerationConfig | None:
    if config is None or config.response_schema is None:
        return config
    mime = config.response_mime_type
    if mime is None:
        return replace(config, response_mime_type=JSON_MIME_TYPE)
    if mime != JSON_MIME_TYPE:
        raise ConfigurationError(
            f"response_schema requires response_mime_type={JSON_MIME_TYPE!r}, got {mime!r}",
            hint="Drop response_mime_type or set it to 'application/json'.",
        )
    return config


def _check_tool_config(
    tools: tuple[Tool, ...] | None, tool_config: ToolConfig | None
) -> None:
    if tool_config is None:
        return
    if not tools:
        raise ConfigurationError(
            "tool_config was given without any tools",
            hint="Pass tools=[Tool(...)] or drop tool_config.",
        )
    allowed = tool_config.allowed_function_names
    if allowed:
        missing = set(allowed) - declared_names(tools)
        if missing:
            raise ConfigurationError(
                f"allowed_function_names lists undeclared functions: {sorted(missing)}"
            )


def build_request(
    history: Sequence[Content],
    turn: Content,
    *,
    model: str,
    continuation: Sequence[Content] = (),
    generation_config: GenerationConfig | None = None,
    safety_settings: Sequence[SafetySetting] | None = None,
    tools: Sequence[Tool] | None = None,
    tool_config: ToolConfig | None = None,
    system_instruction: Content | None = None,
) -> GenerateContentRequest:
    """Assemble ``history + [turn] + continuation`` into a request.

    With no history and no continuation the turn is sent alone and may be
    role-less. Otherwise every content in the prompt sequence must carry a
    role. Configuration objects are attached unchanged, except that a
    response schema without a MIME type implies JSON.

    Raises:
        ConfigurationError: If the configuration contradicts itself.
        InvalidContentError: If a multi-turn prompt contains a role-less turn.
    """
    contents = (*history, turn, *continuation)
    if len(contents) > 1:
        for i, c in enumerate(contents):
            if c.role is None:
                raise InvalidContentError(
                    f"contents[{i}] has no role in a multi-turn request",
                    hint="Set role='user' or role='model' on every history turn.",
                )

    tools_tuple = tuple(tools) if tools else None
    _check_tool_config(tools_tuple, tool_config)

    return GenerateContentRequest(
        model=full_model_name(model),
        contents=contents,
        generation_config=_resolve_generation_config(generation_config),
        safety_settings=tuple(safety_settings) if safety_settings else None,
        tools=tools_tuple,
        tool_config=tool_config,
        system_instruction=system_instruction,
    )


def build_count_tokens_request(
    contents: Sequence[Content], *, model: str
) -> CountTokensRequest:
    """Assemble a token-count request."""
    if not contents:
        raise InvalidContentError("count_tokens needs at least one content")
    return CountTokensRequest(model=full_model_name(model), contents=tuple(contents))
