"""Transport protocol: the boundary to the remote model backend."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from castor.request import CountTokensRequest, GenerateContentRequest
    from castor.response import AggregatedResponse, CountTokensResponse, PartialResponse


@runtime_checkable
class Transport(Protocol):
    """Minimal transport protocol: blocking generate, streamed generate, count.

    Implementations own timeouts and retries, and raise `TransportError` for
    network or backend failures.
    """

    async def generate(self, request: GenerateContentRequest) -> AggregatedResponse:
        """Send *request* and return the whole response."""
        ...

    def generate_stream(
        self, request: GenerateContentRequest
    ) -> AsyncIterator[PartialResponse]:
        """Send *request* and yield fragments in the order the backend sends them."""
        ...

    async def count_tokens(self, request: CountTokensRequest) -> CountTokensResponse:
        """Count the tokens of *request*'s contents."""
        ...
