"""Tool declarations and the handler registry.

Declarations describe what the model may call; handlers are the caller's
implementations, looked up by name when the model asks for one.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
import re
from typing import Any, Union

from pydantic import BaseModel

from castor.errors import ConfigurationError

_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]{0,63}$")

ToolHandler = Callable[[Mapping[str, Any]], Union[Any, Awaitable[Any]]]
ParametersInput = Union[type[BaseModel], Mapping[str, Any]]


def _check_name(name: str) -> None:
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise ConfigurationError(
            f"Invalid function name: {name!r}",
            hint="Start with a letter or underscore; use letters, digits, '_', '.', '-' (max 64).",
        )


@dataclass(frozen=True)
class FunctionDeclaration:
    """A callable capability the model may request.

    ``parameters`` is either the ``properties`` mapping of a JSON object
    schema or a pydantic model class whose schema supplies properties and
    required fields.
    """

    name: str
    description: str = ""
    parameters: ParametersInput | None = None
    required: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        _check_name(self.name)
        object.__setattr__(self, "required", frozenset(self.required))
        props = self.properties()
        unknown = self.required - set(props)
        if unknown:
            raise ConfigurationError(
                f"{self.name}: required parameters not declared: {sorted(unknown)}",
                hint="Every required name must appear in parameters.",
            )

    def properties(self) -> dict[str, Any]:
        """Return the declared parameter properties."""
        params = self.parameters
        if params is None:
            return {}
        if isinstance(params, type) and issubclass(params, BaseModel):
            return dict(params.model_json_schema().get("properties", {}))
        if isinstance(params, Mapping):
            return dict(params)
        raise ConfigurationError(
            f"{self.name}: parameters must be a mapping or a Pydantic model class"
        )

    def parameters_schema(self) -> dict[str, Any] | None:
        """Return the full JSON object schema, or *None* for no parameters."""
        params = self.parameters
        if params is None:
            return None
        if isinstance(params, type) and issubclass(params, BaseModel):
            schema = params.model_json_schema()
            required = set(schema.get("required", ())) | self.required
        else:
            schema = {"type": "object", "properties": self.properties()}
            required = set(self.required)
        if required:
            schema["required"] = sorted(required)
        return schema


@dataclass(frozen=True)
class Tool:
    """A group of function declarations sent with a request."""

    function_declarations: tuple[FunctionDeclaration, ...]

    def __post_init__(self) -> None:
        decls = tuple(self.function_declarations)
        names = [d.name for d in decls]
        if len(set(names)) != len(names):
            raise ConfigurationError(
                f"Duplicate function names in tool: {names}",
            )
        object.__setattr__(self, "function_declarations", decls)


class FunctionCallingMode(str, Enum):
    """How eagerly the model should call functions."""

    AUTO = "AUTO"
    ANY = "ANY"
    NONE = "NONE"


@dataclass(frozen=True)
class ToolConfig:
    """Function-calling constraints for a request."""

    mode: FunctionCallingMode = FunctionCallingMode.AUTO
    allowed_function_names: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", FunctionCallingMode(self.mode))
        if self.allowed_function_names is not None:
            names = tuple(self.allowed_function_names)
            if self.mode is not FunctionCallingMode.ANY:
                raise ConfigurationError(
                    "allowed_function_names requires mode=ANY",
                    hint="Use ToolConfig(mode=FunctionCallingMode.ANY, allowed_function_names=(...)).",
                )
            object.__setattr__(self, "allowed_function_names", names)


def declared_names(tools: tuple[Tool, ...] | None) -> frozenset[str]:
    """Names of every function declared across *tools*."""
    return frozenset(d.name for t in tools or () for d in t.function_declarations)


class ToolRegistry:
    """Mapping from tool name to a sync or async handler."""

    def __init__(self, handlers: Mapping[str, ToolHandler] | None = None) -> None:
        self._handlers: dict[str, ToolHandler] = {}
        for name, handler in (handlers or {}).items():
            self.register(name, handler)

    def register(self, name: str, handler: ToolHandler) -> None:
        """Register *handler* under *name*, replacing any previous one."""
        _check_name(name)
        if not callable(handler):
            raise ConfigurationError(f"Handler for {name!r} is not callable")
        self._handlers[name] = handler

    def unregister(self, name: str) -> None:
        self._handlers.pop(name, None)

    def get(self, name: str) -> ToolHandler | None:
        return self._handlers.get(name)

    def names(self) -> frozenset[str]:
        return frozenset(self._handlers)

    def copy(self) -> ToolRegistry:
        return ToolRegistry(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
