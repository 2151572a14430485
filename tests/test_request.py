"""Request builder tests: pure transformation, no network."""

from __future__ import annotations

from pydantic import BaseModel
import pytest

from castor.content import Content, FunctionResponsePart
from castor.errors import ConfigurationError, InvalidContentError
from castor.generation import GenerationConfig
from castor.request import (
    build_count_tokens_request,
    build_request,
    full_model_name,
)
from castor.tools import FunctionCallingMode, FunctionDeclaration, Tool, ToolConfig

pytestmark = pytest.mark.unit


class _Answer(BaseModel):
    value: int


_TOOLS = (Tool((FunctionDeclaration("add"),)),)


def _u(text: str) -> Content:
    return Content.from_text(text, role="user")


def _m(text: str) -> Content:
    return Content.from_text(text, role="model")


def test_turn_alone_when_history_empty(model_name: str) -> None:
    turn = Content.build("Hello")

    request = build_request((), turn, model=model_name)

    assert request.contents == (turn,)
    assert request.model == f"models/{model_name}"


def test_history_then_turn_then_continuation_in_order(model_name: str) -> None:
    history = (_u("Hello"), _m("Hi"))
    turn = _u("2+2?")
    result = Content((FunctionResponsePart("add", {"result": 4}),), role="user")

    request = build_request(history, turn, model=model_name, continuation=(result,))

    assert request.contents == (*history, turn, result)


def test_configuration_attached_unchanged(model_name: str) -> None:
    cfg = GenerationConfig(temperature=0.2)
    system = Content.build("Be terse")
    tool_config = ToolConfig(mode=FunctionCallingMode.NONE)

    request = build_request(
        (),
        _u("hi"),
        model=model_name,
        generation_config=cfg,
        tools=list(_TOOLS),
        tool_config=tool_config,
        system_instruction=system,
    )

    assert request.generation_config is cfg
    assert request.tools == _TOOLS
    assert request.tool_config is tool_config
    assert request.system_instruction is system
    assert request.safety_settings is None


def test_role_less_turn_rejected_in_multi_turn_request(model_name: str) -> None:
    with pytest.raises(InvalidContentError, match=r"contents\[1\] has no role"):
        build_request((_u("Hello"),), Content.build("no role"), model=model_name)


def test_schema_with_non_json_mime_type_is_contradictory(model_name: str) -> None:
    cfg = GenerationConfig(response_schema=_Answer, response_mime_type="text/plain")

    with pytest.raises(ConfigurationError, match="response_schema requires"):
        build_request((), _u("hi"), model=model_name, generation_config=cfg)


def test_schema_without_mime_type_implies_json(model_name: str) -> None:
    cfg = GenerationConfig(response_schema=_Answer)

    request = build_request((), _u("hi"), model=model_name, generation_config=cfg)

    assert request.generation_config is not None
    assert request.generation_config.response_mime_type == "application/json"
    assert cfg.response_mime_type is None


def test_tool_config_without_tools_is_contradictory(model_name: str) -> None:
    with pytest.raises(ConfigurationError, match="without any tools"):
        build_request((), _u("hi"), model=model_name, tool_config=ToolConfig())


def test_allowed_names_must_be_declared(model_name: str) -> None:
    tool_config = ToolConfig(
        mode=FunctionCallingMode.ANY, allowed_function_names=("add", "mul")
    )

    with pytest.raises(ConfigurationError, match="mul"):
        build_request(
            (), _u("hi"), model=model_name, tools=_TOOLS, tool_config=tool_config
        )


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("gemini-2.0-flash", "models/gemini-2.0-flash"),
        ("models/gemini-2.0-flash", "models/gemini-2.0-flash"),
        ("tunedModels/my-model", "tunedModels/my-model"),
        ("  gemini-pro ", "models/gemini-pro"),
    ],
)
def test_full_model_name(name: str, expected: str) -> None:
    assert full_model_name(name) == expected


def test_empty_model_name_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        full_model_name("  ")


def test_count_tokens_request(model_name: str) -> None:
    request = build_count_tokens_request([_u("a"), _m("b")], model=model_name)
    assert len(request.contents) == 2
    assert request.model.startswith("models/")

    with pytest.raises(InvalidContentError):
        build_count_tokens_request([], model=model_name)
