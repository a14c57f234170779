"""Domain models for the model client boundary."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    from buildroute.packs import ModelRoleConfig


@dataclass(frozen=True)
class Message:
    """A standard conversational message turn."""

    role: str
    content: str = ""


@dataclass(frozen=True)
class ModelRequestParams:
    """Everything a model client needs for one call.

    ``model_config`` is the already-resolved role config; clients never
    re-resolve. ``tool_choice`` names a function to force, as
    ``{"name": ...}``.
    """

    model_config: ModelRoleConfig
    messages: tuple[Message, ...]
    purpose: str = ""
    tools: tuple[dict[str, Any], ...] | None = None
    tool_choice: dict[str, str] | None = None
    prediction: str | None = None
    #: Prompt head tokens expected to be served from the provider's cache.
    will_cache_num_tokens: int = 0
    before_request: Callable[[], None] | None = None
    after_request: Callable[[], None] | None = None
    session_id: str | None = None
    plan_id: str | None = None
    branch: str | None = None
    model_stream_id: str | None = None
    convo_message_id: str | None = None
    build_id: str | None = None


@dataclass
class ModelResponse:
    """The raw result of a model call.

    For forced function calls ``content`` holds the call's JSON arguments.
    """

    content: str = ""
    generation_id: str | None = None
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str | None = None
