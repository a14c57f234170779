"""Model client protocol: the minimal interface the build core calls."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from buildroute.providers.models import ModelRequestParams, ModelResponse


@runtime_checkable
class ModelClient(Protocol):
    """Send one request to a model and return its raw response.

    Implementations call ``params.before_request`` right before the first
    network attempt and ``params.after_request`` once the call is over,
    whatever its outcome. Cancellation propagates as
    ``asyncio.CancelledError``; every other failure is raised as an
    exception for the caller to classify.
    """

    async def request(self, params: ModelRequestParams) -> ModelResponse:
        """Perform the call described by *params*."""
        ...

    async def aclose(self) -> None:
        """Release underlying client resources."""
        ...
