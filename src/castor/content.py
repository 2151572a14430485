"""Content model: immutable parts, turns, and history validation.

A `Content` is one conversational turn: an ordered, non-empty tuple of parts
plus an optional role. Role is required once a turn enters a chat history and
optional for one-shot prompts.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Literal, Union

from castor.errors import InvalidContentError, InvalidHistoryError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

Role = Literal["user", "model"]

_ROLES: frozenset[str] = frozenset({"user", "model"})


def _freeze(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class TextPart:
    """Plain text."""

    text: str

    def __post_init__(self) -> None:
        if not isinstance(self.text, str):
            raise InvalidContentError(
                f"TextPart.text must be a string, got {type(self.text).__name__}"
            )


@dataclass(frozen=True)
class BlobPart:
    """Inline media: raw bytes plus their MIME type."""

    mime_type: str
    data: bytes = field(repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.mime_type, str) or "/" not in self.mime_type:
            raise InvalidContentError(
                f"BlobPart.mime_type must look like 'type/subtype', got {self.mime_type!r}",
                hint="Pass e.g. BlobPart('image/png', data).",
            )
        if not isinstance(self.data, (bytes, bytearray)):
            raise InvalidContentError("BlobPart.data must be bytes")
        object.__setattr__(self, "data", bytes(self.data))


@dataclass(frozen=True, eq=False)
class FunctionCallPart:
    """A tool invocation requested by the model."""

    name: str
    args: Mapping[str, Any] = field(default_factory=dict)
    id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise InvalidContentError("FunctionCallPart.name must be a non-empty string")
        object.__setattr__(self, "args", _freeze(self.args))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FunctionCallPart):
            return NotImplemented
        return (self.name, dict(self.args), self.id) == (
            other.name,
            dict(other.args),
            other.id,
        )

    __hash__ = None  # type: ignore[assignment]


@dataclass(frozen=True, eq=False)
class FunctionResponsePart:
    """The caller's answer to a `FunctionCallPart`.

    ``args`` echoes the originating call's arguments. Backends that require a
    call turn immediately before every response turn use it to rebuild that
    turn when the history holds only the response.
    """

    name: str
    response: Mapping[str, Any] = field(default_factory=dict)
    id: str | None = None
    args: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise InvalidContentError(
                "FunctionResponsePart.name must be a non-empty string"
            )
        if not isinstance(self.response, Mapping):
            raise InvalidContentError(
                "FunctionResponsePart.response must be a mapping",
                hint="Wrap scalar results, e.g. {'result': 42}.",
            )
        object.__setattr__(self, "response", _freeze(self.response))
        if self.args is not None:
            object.__setattr__(self, "args", _freeze(self.args))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FunctionResponsePart):
            return NotImplemented
        return (
            self.name,
            dict(self.response),
            self.id,
            None if self.args is None else dict(self.args),
        ) == (
            other.name,
            dict(other.response),
            other.id,
            None if other.args is None else dict(other.args),
        )

    __hash__ = None  # type: ignore[assignment]


Part = Union[TextPart, BlobPart, FunctionCallPart, FunctionResponsePart]
PartLike = Union[Part, str]

_PART_TYPES = (TextPart, BlobPart, FunctionCallPart, FunctionResponsePart)


@dataclass(frozen=True)
class Content:
    """One conversational turn.

    Raises:
        InvalidContentError: If ``parts`` is empty, holds a non-part, mixes a
            function response with other part kinds, or ``role`` is unknown.
    """

    parts: tuple[Part, ...]
    role: Role | None = None

    def __post_init__(self) -> None:
        parts = tuple(self.parts)
        if not parts:
            raise InvalidContentError(
                "Content must contain at least one part",
                hint="Use Content.build(['Hello']) or pass a TextPart.",
            )
        for p in parts:
            if not isinstance(p, _PART_TYPES):
                raise InvalidContentError(
                    f"Unsupported part type: {type(p).__name__}",
                    hint="Use TextPart, BlobPart, FunctionCallPart or FunctionResponsePart.",
                )
        responses = sum(isinstance(p, FunctionResponsePart) for p in parts)
        if 0 < responses < len(parts):
            raise InvalidContentError(
                "A turn cannot mix function responses with other parts",
                hint="Send the tool result and any new user text as separate turns.",
            )
        if self.role is not None and self.role not in _ROLES:
            raise InvalidContentError(
                f"Unknown role: {self.role!r}",
                hint="Roles are 'user' or 'model'.",
            )
        object.__setattr__(self, "parts", parts)

    @classmethod
    def build(cls, parts: Iterable[PartLike] | PartLike, role: Role | None = None) -> Content:
        """Build a Content, coercing plain strings to `TextPart`."""
        if isinstance(parts, (str, *_PART_TYPES)):
            parts = [parts]
        coerced: list[Part] = []
        for p in parts:
            if isinstance(p, str):
                coerced.append(TextPart(p))
            elif isinstance(p, (bytes, bytearray)):
                raise InvalidContentError(
                    "Raw bytes need a MIME type",
                    hint="Wrap media as BlobPart('image/png', data).",
                )
            else:
                coerced.append(p)
        return cls(tuple(coerced), role)

    @classmethod
    def from_text(cls, text: str, role: Role | None = "user") -> Content:
        """Build a single-text turn."""
        return cls((TextPart(text),), role)

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def function_calls(self) -> tuple[FunctionCallPart, ...]:
        """Function-call parts in order."""
        return tuple(p for p in self.parts if isinstance(p, FunctionCallPart))

    @property
    def is_tool_result(self) -> bool:
        """Whether this turn answers tool calls (all parts are function responses)."""
        return all(isinstance(p, FunctionResponsePart) for p in self.parts)

    def with_role(self, role: Role) -> Content:
        """Return a copy carrying *role*."""
        return replace(self, role=role)


ContentLike = Union[Content, str]


def to_content(value: ContentLike | Sequence[PartLike], role: Role | None = None) -> Content:
    """Normalize a caller-supplied turn.

    Strings and part sequences become a Content with *role*; an existing
    Content keeps its own role unless it has none.
    """
    if isinstance(value, Content):
        if value.role is None and role is not None:
            return value.with_role(role)
        return value
    return Content.build(value, role)


def validate_history(history: Iterable[Content]) -> tuple[Content, ...]:
    """Validate role alternation for a chat history.

    Rules: every entry carries a role, the first entry is ``user``, two
    ``model`` entries never touch, and ``user`` follows ``user`` only when the
    later one is a tool-result continuation.

    Raises:
        InvalidHistoryError: On the first violation, naming its index.
    """
    entries = tuple(history)
    previous: Content | None = None
    for i, entry in enumerate(entries):
        if not isinstance(entry, Content):
            raise InvalidHistoryError(
                f"history[{i}] is {type(entry).__name__}, expected Content"
            )
        if entry.role is None:
            raise InvalidHistoryError(
                f"history[{i}] has no role",
                hint="History entries must be Content(..., role='user' | 'model').",
            )
        if previous is None:
            if entry.role != "user":
                raise InvalidHistoryError(
                    "history must start with a 'user' turn",
                    hint=f"history[0] has role {entry.role!r}.",
                )
        elif entry.role == "model" and previous.role == "model":
            raise InvalidHistoryError(f"history[{i}] repeats the 'model' role")
        elif entry.role == "user" and previous.role == "user" and not entry.is_tool_result:
            raise InvalidHistoryError(
                f"history[{i}] repeats the 'user' role",
                hint="Only a tool-result turn may directly follow another user turn.",
            )
        previous = entry
    return entries
