"""Castor: async chat orchestration for Gemini.

Public API:
    - GenerativeModel: one-shot generation, streaming, token counts
    - ChatSession: multi-turn chat with automatic function calling
    - Content and parts: the conversation data model
    - Config: configuration dataclass
"""

from __future__ import annotations

import logging

from castor.chat import ChatSession
from castor.config import Config
from castor.content import (
    BlobPart,
    Content,
    FunctionCallPart,
    FunctionResponsePart,
    TextPart,
    validate_history,
)
from castor.errors import (
    CastorError,
    ChatBusyError,
    ConfigurationError,
    InternalError,
    InvalidContentError,
    InvalidHistoryError,
    InvalidResponseError,
    PromptBlockedError,
    RateLimitError,
    ResponseError,
    ResponseStoppedError,
    StreamCancelledError,
    ToolError,
    ToolExecutionError,
    ToolLoopExceededError,
    TransportError,
    UnknownToolError,
)
from castor.generation import (
    BlockThreshold,
    GenerationConfig,
    HarmCategory,
    SafetySetting,
)
from castor.model import GenerativeModel
from castor.response import (
    AggregatedResponse,
    BlockReason,
    CountTokensResponse,
    FinishReason,
    PartialResponse,
    UsageMetadata,
)
from castor.retry import RetryPolicy
from castor.streaming import ResponseStream, StreamAggregator, StreamObserver, StreamState
from castor.tools import (
    FunctionCallingMode,
    FunctionDeclaration,
    Tool,
    ToolConfig,
    ToolRegistry,
)

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor-chat")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())

__all__ = [
    "AggregatedResponse",
    "BlobPart",
    "BlockReason",
    "BlockThreshold",
    "CastorError",
    "ChatBusyError",
    "ChatSession",
    "Config",
    "ConfigurationError",
    "Content",
    "CountTokensResponse",
    "FinishReason",
    "FunctionCallPart",
    "FunctionCallingMode",
    "FunctionDeclaration",
    "FunctionResponsePart",
    "GenerationConfig",
    "GenerativeModel",
    "HarmCategory",
    "InternalError",
    "InvalidContentError",
    "InvalidHistoryError",
    "InvalidResponseError",
    "PartialResponse",
    "PromptBlockedError",
    "RateLimitError",
    "ResponseError",
    "ResponseStoppedError",
    "ResponseStream",
    "RetryPolicy",
    "SafetySetting",
    "StreamAggregator",
    "StreamCancelledError",
    "StreamObserver",
    "StreamState",
    "TextPart",
    "Tool",
    "ToolConfig",
    "ToolError",
    "ToolExecutionError",
    "ToolLoopExceededError",
    "ToolRegistry",
    "TransportError",
    "UnknownToolError",
    "UsageMetadata",
    "validate_history",
]
