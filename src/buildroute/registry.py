"""Model registry: the static catalog of backend models and their limits.

Token limits per model:

- ``max_tokens`` is the provider's absolute input limit.
- ``max_output_tokens`` is the provider's absolute output limit.
- ``reserved_output_tokens`` is the share of the context set aside for the
  model's output (reasoning included). The effective input budget is
  ``max_tokens - reserved_output_tokens``. For models whose hard ceiling equals
  their input limit this is what leaves room for input at all. It is a routing
  budget, not a limit passed to the provider: small prompts may still use the
  full ``max_output_tokens``.

``model_id`` is the local identifier and must be unique per provider, so the
same provider model can be registered twice with different settings (for
example three reasoning-effort levels of one model).

OpenAI models prefer structured tool-call JSON and benefit from strict
schemas. Other providers are more reliable with tagged text.

The registry validates every entry on construction and raises
``ConfigurationError`` on the first problem. A malformed catalog is a startup
bug and should never be caught and ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import cache
import logging
from typing import TYPE_CHECKING

from buildroute._validation import _freeze_mapping, _require, _require_set
from buildroute.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

logger = logging.getLogger(__name__)


class ModelProvider(Enum):
    """Backend providers reachable through an OpenAI-compatible endpoint."""

    OPENAI = "openai"
    OPENROUTER = "openrouter"


class OutputFormat(Enum):
    """How a model is asked to return structured results."""

    TOOL_CALL_JSON = "tool-call-json"
    XML = "xml"


class ReasoningEffort(Enum):
    """Reasoning effort levels for models that accept one."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

API_KEY_ENV_VARS: dict[ModelProvider, str] = {
    ModelProvider.OPENAI: "OPENAI_API_KEY",
    ModelProvider.OPENROUTER: "OPENROUTER_API_KEY",
}

BASE_URLS: dict[ModelProvider, str] = {
    ModelProvider.OPENAI: OPENAI_BASE_URL,
    ModelProvider.OPENROUTER: OPENROUTER_BASE_URL,
}


@dataclass(frozen=True)
class ModelCompatibility:
    """Feature support flags checked before sending special inputs."""

    has_image_support: bool = False


FULL_COMPATIBILITY = ModelCompatibility(has_image_support=True)


@dataclass(frozen=True)
class BaseModelConfig:
    """Immutable description of one backend model."""

    provider: ModelProvider
    model_name: str
    model_id: str
    max_tokens: int
    max_output_tokens: int
    reserved_output_tokens: int
    api_key_env_var: str
    base_url: str
    preferred_output_format: OutputFormat
    compatibility: ModelCompatibility = ModelCompatibility()
    #: Omit temperature/top_p for models that reject them.
    role_params_disabled: bool = False
    #: Send the system prompt as a user message for models that reject system.
    system_prompt_disabled: bool = False
    reasoning_effort_enabled: bool = False
    reasoning_effort: ReasoningEffort | None = None
    predicted_output_enabled: bool = False
    supports_cache_control: bool = False
    include_reasoning: bool = False

    @property
    def composite_key(self) -> str:
        """Registry key: ``provider/model_id``."""
        return composite_key(self.provider, self.model_id)

    @property
    def effective_input_budget(self) -> int:
        """Input tokens available once the output reservation is set aside."""
        return self.max_tokens - self.reserved_output_tokens


@dataclass(frozen=True)
class AvailableModel:
    """A registry entry: description, model config and conversation budget."""

    description: str
    base_model_config: BaseModelConfig
    default_max_convo_tokens: int

    @property
    def provider(self) -> ModelProvider:
        """Provider of the underlying model."""
        return self.base_model_config.provider

    @property
    def model_id(self) -> str:
        """Local model identifier."""
        return self.base_model_config.model_id


def composite_key(provider: ModelProvider | str, model_id: str) -> str:
    """Return the ``provider/model_id`` lookup key."""
    name = provider.value if isinstance(provider, ModelProvider) else provider
    return f"{name}/{model_id}"


_REQUIRED_BASE_FIELDS = (
    "provider",
    "model_name",
    "model_id",
    "max_tokens",
    "max_output_tokens",
    "reserved_output_tokens",
    "api_key_env_var",
    "base_url",
    "preferred_output_format",
)


def validate_available_model(model: AvailableModel) -> None:
    """Raise ConfigurationError if any required field of *model* is unset."""
    base = model.base_model_config
    subject = f"model {base.model_id or model.description or '<unnamed>'!r}"
    _require_set(model.description, field_name="description", subject=subject)
    _require_set(
        model.default_max_convo_tokens,
        field_name="default max convo tokens",
        subject=subject,
    )
    for field_name in _REQUIRED_BASE_FIELDS:
        _require_set(
            getattr(base, field_name),
            field_name=field_name.replace("_", " "),
            subject=subject,
        )
    _require(
        condition=base.reserved_output_tokens < base.max_tokens,
        message=(
            f"reserved output tokens ({base.reserved_output_tokens}) must be below "
            f"max tokens ({base.max_tokens})"
        ),
        subject=subject,
    )
    _require(
        condition=not base.reasoning_effort_enabled or base.reasoning_effort is not None,
        message="reasoning effort is enabled but no level is set",
        subject=subject,
    )


class ModelRegistry:
    """Validated, read-only table of available models.

    Safe for unsynchronized concurrent reads: the table is frozen once built.
    """

    def __init__(self, models: Iterable[AvailableModel]) -> None:
        """Validate *models* and index them by composite key."""
        entries: dict[str, AvailableModel] = {}
        for model in models:
            try:
                validate_available_model(model)
            except ConfigurationError:
                logger.error("Invalid model catalog entry: %r", model)
                raise
            key = model.base_model_config.composite_key
            _require(
                condition=key not in entries,
                message="duplicate registry key",
                subject=f"model {key!r}",
                hint="model_id must be unique per provider.",
            )
            entries[key] = model
        self._models: Mapping[str, AvailableModel] = _freeze_mapping(entries)
        logger.debug("Model registry loaded with %d model(s)", len(entries))

    def get_available_model(
        self, provider: ModelProvider | str, model_id: str
    ) -> AvailableModel | None:
        """Return the model registered under ``provider/model_id``, or None."""
        return self._models.get(composite_key(provider, model_id))

    def require(self, provider: ModelProvider | str, model_id: str) -> AvailableModel:
        """Return the registered model or raise ConfigurationError."""
        model = self.get_available_model(provider, model_id)
        if model is None:
            raise ConfigurationError(
                f"Model {composite_key(provider, model_id)!r} is not registered",
                hint="Packs may only reference models present in the registry.",
            )
        return model

    def __contains__(self, key: object) -> bool:
        return key in self._models

    def __iter__(self) -> Iterator[AvailableModel]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)


def _openai(
    description: str,
    *,
    model_name: str,
    model_id: str,
    max_tokens: int,
    max_output_tokens: int,
    reserved_output_tokens: int,
    default_max_convo_tokens: int,
    **flags: object,
) -> AvailableModel:
    return AvailableModel(
        description=description,
        default_max_convo_tokens=default_max_convo_tokens,
        base_model_config=BaseModelConfig(
            provider=ModelProvider.OPENAI,
            model_name=model_name,
            model_id=model_id,
            max_tokens=max_tokens,
            max_output_tokens=max_output_tokens,
            reserved_output_tokens=reserved_output_tokens,
            api_key_env_var=API_KEY_ENV_VARS[ModelProvider.OPENAI],
            base_url=BASE_URLS[ModelProvider.OPENAI],
            compatibility=FULL_COMPATIBILITY,
            preferred_output_format=OutputFormat.TOOL_CALL_JSON,
            **flags,  # type: ignore[arg-type]
        ),
    )


def _openrouter(
    description: str,
    *,
    model_name: str,
    model_id: str,
    max_tokens: int,
    max_output_tokens: int,
    reserved_output_tokens: int,
    default_max_convo_tokens: int,
    preferred_output_format: OutputFormat = OutputFormat.TOOL_CALL_JSON,
    **flags: object,
) -> AvailableModel:
    return AvailableModel(
        description=description,
        default_max_convo_tokens=default_max_convo_tokens,
        base_model_config=BaseModelConfig(
            provider=ModelProvider.OPENROUTER,
            model_name=model_name,
            model_id=model_id,
            max_tokens=max_tokens,
            max_output_tokens=max_output_tokens,
            reserved_output_tokens=reserved_output_tokens,
            api_key_env_var=API_KEY_ENV_VARS[ModelProvider.OPENROUTER],
            base_url=BASE_URLS[ModelProvider.OPENROUTER],
            compatibility=FULL_COMPATIBILITY,
            preferred_output_format=preferred_output_format,
            **flags,  # type: ignore[arg-type]
        ),
    )


# Pure data: the built-in catalog.
BUILTIN_MODELS: tuple[AvailableModel, ...] = (
    # Direct OpenAI models
    _openai(
        "OpenAI o3-mini-high",
        model_name="o3-mini",
        model_id="openai/o3-mini-high",
        max_tokens=200_000,
        max_output_tokens=100_000,
        reserved_output_tokens=30_000,
        default_max_convo_tokens=10_000,
        role_params_disabled=True,
        reasoning_effort_enabled=True,
        reasoning_effort=ReasoningEffort.HIGH,
    ),
    _openai(
        "OpenAI o3-mini-medium",
        model_name="o3-mini",
        model_id="openai/o3-mini-medium",
        max_tokens=200_000,
        max_output_tokens=100_000,
        reserved_output_tokens=40_000,  # 25k for reasoning, 15k for output
        default_max_convo_tokens=10_000,
        role_params_disabled=True,
        reasoning_effort_enabled=True,
        reasoning_effort=ReasoningEffort.MEDIUM,
    ),
    _openai(
        "OpenAI o3-mini-low",
        model_name="o3-mini",
        model_id="openai/o3-mini-low",
        max_tokens=200_000,
        max_output_tokens=100_000,
        reserved_output_tokens=40_000,
        default_max_convo_tokens=10_000,
        role_params_disabled=True,
        reasoning_effort_enabled=True,
        reasoning_effort=ReasoningEffort.LOW,
    ),
    _openai(
        "OpenAI o1",
        model_name="o1",
        model_id="openai/o1",
        max_tokens=200_000,
        max_output_tokens=100_000,
        reserved_output_tokens=40_000,
        default_max_convo_tokens=15_000,
        system_prompt_disabled=True,
        role_params_disabled=True,
    ),
    _openai(
        "OpenAI gpt-4.1",
        model_name="gpt-4.1",
        model_id="openai/gpt-4.1",
        max_tokens=1_047_576,
        max_output_tokens=32_768,
        reserved_output_tokens=32_768,
        default_max_convo_tokens=15_000,
    ),
    # OpenRouter models
    _openrouter(
        "Anthropic Claude 3.7 Sonnet via OpenRouter",
        model_name="anthropic/claude-3.7-sonnet",
        model_id="anthropic/claude-3.7-sonnet",
        max_tokens=200_000,
        max_output_tokens=128_000,
        reserved_output_tokens=20_000,
        default_max_convo_tokens=15_000,
        supports_cache_control=True,
        preferred_output_format=OutputFormat.XML,
    ),
    _openrouter(
        "Anthropic Claude 3.7 Sonnet (thinking) via OpenRouter",
        model_name="anthropic/claude-3.7-sonnet:thinking",
        model_id="anthropic/claude-3.7-sonnet:thinking",
        max_tokens=200_000,
        max_output_tokens=128_000,
        reserved_output_tokens=40_000,
        default_max_convo_tokens=15_000,
        supports_cache_control=True,
        preferred_output_format=OutputFormat.XML,
        include_reasoning=True,
    ),
    _openrouter(
        "Google Gemini Pro 2.5 via OpenRouter",
        model_name="google/gemini-2.5-pro-preview-03-25",
        model_id="google/gemini-2.5-pro-preview-03-25",
        max_tokens=1_000_000,
        max_output_tokens=65_535,
        reserved_output_tokens=65_535,
        default_max_convo_tokens=75_000,
        preferred_output_format=OutputFormat.XML,
    ),
    _openrouter(
        "Google Gemini Flash 2.5 via OpenRouter",
        model_name="google/gemini-2.5-flash-preview",
        model_id="google/gemini-2.5-flash-preview",
        max_tokens=1_000_000,
        max_output_tokens=8_192,
        reserved_output_tokens=8_192,
        default_max_convo_tokens=75_000,
        preferred_output_format=OutputFormat.XML,
    ),
    # OpenAI models via OpenRouter
    _openrouter(
        "OpenAI o3-mini-high via OpenRouter",
        model_name="openai/o3-mini",
        model_id="openai/o3-mini-high",
        max_tokens=200_000,
        max_output_tokens=100_000,
        reserved_output_tokens=40_000,
        default_max_convo_tokens=10_000,
        system_prompt_disabled=True,
        role_params_disabled=True,
        reasoning_effort_enabled=True,
        reasoning_effort=ReasoningEffort.HIGH,
    ),
    _openrouter(
        "OpenAI o3-mini-medium via OpenRouter",
        model_name="openai/o3-mini",
        model_id="openai/o3-mini-medium",
        max_tokens=200_000,
        max_output_tokens=100_000,
        reserved_output_tokens=40_000,
        default_max_convo_tokens=10_000,
        system_prompt_disabled=True,
        role_params_disabled=True,
        reasoning_effort_enabled=True,
        reasoning_effort=ReasoningEffort.MEDIUM,
    ),
    _openrouter(
        "OpenAI o3-mini-low via OpenRouter",
        model_name="openai/o3-mini",
        model_id="openai/o3-mini-low",
        max_tokens=200_000,
        max_output_tokens=100_000,
        reserved_output_tokens=40_000,
        default_max_convo_tokens=10_000,
        system_prompt_disabled=True,
        role_params_disabled=True,
        reasoning_effort_enabled=True,
        reasoning_effort=ReasoningEffort.LOW,
    ),
    _openrouter(
        "OpenAI o1 via OpenRouter",
        model_name="openai/o1",
        model_id="openai/o1",
        max_tokens=200_000,
        max_output_tokens=100_000,
        reserved_output_tokens=40_000,
        default_max_convo_tokens=15_000,
        system_prompt_disabled=True,
        role_params_disabled=True,
    ),
    _openrouter(
        "OpenAI gpt-4o via OpenRouter",
        model_name="openai/gpt-4o",
        model_id="openai/gpt-4o",
        max_tokens=128_000,
        max_output_tokens=16_384,
        reserved_output_tokens=16_384,
        default_max_convo_tokens=10_000,
        predicted_output_enabled=True,
    ),
    _openrouter(
        "OpenAI gpt-4o-mini via OpenRouter",
        model_name="openai/gpt-4o-mini",
        model_id="openai/gpt-4o-mini",
        max_tokens=128_000,
        max_output_tokens=16_384,
        reserved_output_tokens=16_384,
        default_max_convo_tokens=10_000,
        predicted_output_enabled=True,
    ),
)


@cache
def default_registry() -> ModelRegistry:
    """Return the registry built from ``BUILTIN_MODELS`` (built once)."""
    return ModelRegistry(BUILTIN_MODELS)
