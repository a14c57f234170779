"""Model packs: named assignments of a model configuration to every role.

A role is an abstract purpose in the pipeline (planner, builder, ...). A
``ModelRoleConfig`` binds a registered model to one role with its sampling
parameters and up to three escalation axes:

- ``large_context_fallbacks``: tried in order when the prompt would exceed the
  effective input budget.
- ``large_output_fallbacks``: tried in order when the expected output would
  exceed ``max_output_tokens``.
- ``strong_models``: quality escalation, independent of token pressure.

Each axis is a bounded tuple of complete configurations. Frozen dataclasses
are built bottom-up and cannot contain themselves, so escalation can never
cycle.

Packs are built once at startup from a ``ModelRegistry`` and never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import cache
import logging
from typing import TYPE_CHECKING

from buildroute._validation import _freeze_mapping, _require
from buildroute.errors import ConfigurationError
from buildroute.registry import ModelProvider, default_registry

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

    from buildroute.registry import BaseModelConfig, ModelRegistry, OutputFormat

logger = logging.getLogger(__name__)

#: Upper bound on alternatives per escalation axis.
MAX_FALLBACKS_PER_AXIS = 4


class ModelRole(Enum):
    """Abstract purposes a model fills in the pipeline."""

    PLANNER = "planner"
    ARCHITECT = "architect"
    CODER = "coder"
    PLAN_SUMMARY = "summarizer"
    BUILDER = "builder"
    WHOLE_FILE_BUILDER = "whole-file-builder"
    NAME = "names"
    COMMIT_MSG = "commit-messages"
    EXEC_STATUS = "auto-continue"


@dataclass(frozen=True)
class RoleParams:
    """Default sampling parameters for a role."""

    temperature: float
    top_p: float


DEFAULT_ROLE_PARAMS: dict[ModelRole, RoleParams] = {
    ModelRole.PLANNER: RoleParams(temperature=0.3, top_p=0.3),
    ModelRole.ARCHITECT: RoleParams(temperature=0.3, top_p=0.3),
    ModelRole.CODER: RoleParams(temperature=0.3, top_p=0.3),
    ModelRole.PLAN_SUMMARY: RoleParams(temperature=0.2, top_p=0.2),
    ModelRole.BUILDER: RoleParams(temperature=0.1, top_p=0.1),
    ModelRole.WHOLE_FILE_BUILDER: RoleParams(temperature=0.1, top_p=0.1),
    ModelRole.NAME: RoleParams(temperature=0.8, top_p=0.5),
    ModelRole.COMMIT_MSG: RoleParams(temperature=0.8, top_p=0.5),
    ModelRole.EXEC_STATUS: RoleParams(temperature=0.1, top_p=0.1),
}


@dataclass(frozen=True)
class ModelRoleConfig:
    """A registered model bound to a role, with escalation alternatives."""

    role: ModelRole
    base_model_config: BaseModelConfig
    temperature: float
    top_p: float
    #: Role-level override of the model's output reservation.
    reserved_output_tokens: int | None = None
    large_context_fallbacks: tuple[ModelRoleConfig, ...] = ()
    large_output_fallbacks: tuple[ModelRoleConfig, ...] = ()
    strong_models: tuple[ModelRoleConfig, ...] = ()

    def __post_init__(self) -> None:
        """Validate escalation axes: bounded, same role, no self reference."""
        subject = f"{self.role.value} config for {self.base_model_config.model_id!r}"
        for axis in ("large_context_fallbacks", "large_output_fallbacks", "strong_models"):
            alternatives = tuple(getattr(self, axis))
            object.__setattr__(self, axis, alternatives)
            _require(
                condition=len(alternatives) <= MAX_FALLBACKS_PER_AXIS,
                message=f"{axis} has {len(alternatives)} entries (max {MAX_FALLBACKS_PER_AXIS})",
                subject=subject,
            )
            for alt in alternatives:
                _require(
                    condition=isinstance(alt, ModelRoleConfig),
                    message=f"{axis} entries must be ModelRoleConfig, got {type(alt).__name__}",
                    subject=subject,
                )
                _require(
                    condition=alt.role is self.role,
                    message=f"{axis} entry has role {alt.role.value!r}",
                    subject=subject,
                )
        if self.reserved_output_tokens is not None:
            _require(
                condition=0 < self.reserved_output_tokens < self.base_model_config.max_tokens,
                message="reserved_output_tokens override must be within (0, max_tokens)",
                subject=subject,
            )

    @property
    def model_id(self) -> str:
        """Local identifier of the bound model."""
        return self.base_model_config.model_id

    @property
    def output_format(self) -> OutputFormat:
        """Preferred response format of the bound model."""
        return self.base_model_config.preferred_output_format

    @property
    def effective_reserved_output_tokens(self) -> int:
        """Output reservation, honoring the role-level override."""
        if self.reserved_output_tokens is not None:
            return self.reserved_output_tokens
        return self.base_model_config.reserved_output_tokens

    @property
    def effective_input_budget(self) -> int:
        """``max_tokens`` minus the output reservation."""
        return self.base_model_config.max_tokens - self.effective_reserved_output_tokens

    @property
    def max_output_tokens(self) -> int:
        """Hard output ceiling of the bound model."""
        return self.base_model_config.max_output_tokens


@dataclass(frozen=True)
class PlannerRoleConfig(ModelRoleConfig):
    """Planner configuration with conversation-budget settings."""

    #: Conversation tokens allowed before summarization kicks in.
    max_convo_tokens: int = 0
    stop_sequences: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate planner-specific fields on top of the base checks."""
        super().__post_init__()
        _require(
            condition=self.role is ModelRole.PLANNER,
            message=f"planner config must have role 'planner', got {self.role.value!r}",
        )
        _require(
            condition=self.max_convo_tokens > 0,
            message="max_convo_tokens is not set",
            subject=f"planner config for {self.model_id!r}",
        )


def role_config(
    registry: ModelRegistry,
    role: ModelRole,
    provider: ModelProvider | str,
    model_id: str,
    *,
    large_context: Iterable[ModelRoleConfig] = (),
    large_output: Iterable[ModelRoleConfig] = (),
    strong: Iterable[ModelRoleConfig] = (),
    reserved_output_tokens: int | None = None,
) -> ModelRoleConfig:
    """Build a role config for a registered model.

    Raises:
        ConfigurationError: If the model is not registered.
    """
    model = registry.require(provider, model_id)
    params = DEFAULT_ROLE_PARAMS[role]
    return ModelRoleConfig(
        role=role,
        base_model_config=model.base_model_config,
        temperature=params.temperature,
        top_p=params.top_p,
        reserved_output_tokens=reserved_output_tokens,
        large_context_fallbacks=tuple(large_context),
        large_output_fallbacks=tuple(large_output),
        strong_models=tuple(strong),
    )


def planner_config(
    registry: ModelRegistry,
    provider: ModelProvider | str,
    model_id: str,
    *,
    large_context: Iterable[ModelRoleConfig] = (),
    large_output: Iterable[ModelRoleConfig] = (),
    strong: Iterable[ModelRoleConfig] = (),
) -> PlannerRoleConfig:
    """Build a planner config; the conversation budget comes from the registry."""
    model = registry.require(provider, model_id)
    params = DEFAULT_ROLE_PARAMS[ModelRole.PLANNER]
    return PlannerRoleConfig(
        role=ModelRole.PLANNER,
        base_model_config=model.base_model_config,
        temperature=params.temperature,
        top_p=params.top_p,
        large_context_fallbacks=tuple(large_context),
        large_output_fallbacks=tuple(large_output),
        strong_models=tuple(strong),
        max_convo_tokens=model.default_max_convo_tokens,
    )


@dataclass(frozen=True)
class ModelPack:
    """A named, versioned assignment of one configuration per role.

    ``architect``, ``coder`` and ``whole_file_builder`` are optional and fall
    back to the planner, planner and builder respectively.
    """

    name: str
    description: str
    planner: PlannerRoleConfig
    plan_summary: ModelRoleConfig
    builder: ModelRoleConfig
    namer: ModelRoleConfig
    commit_msg: ModelRoleConfig
    exec_status: ModelRoleConfig
    architect: ModelRoleConfig | None = None
    coder: ModelRoleConfig | None = None
    whole_file_builder: ModelRoleConfig | None = None
    version: int = 1
    _roles: Mapping[ModelRole, ModelRoleConfig] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        """Check that every slot holds a config for its own role."""
        _require(condition=bool(self.name), message="model pack name is not set")
        roles: dict[ModelRole, ModelRoleConfig] = {
            ModelRole.PLANNER: self.planner,
            ModelRole.ARCHITECT: self.architect or self.planner,
            ModelRole.CODER: self.coder or self.planner,
            ModelRole.PLAN_SUMMARY: self.plan_summary,
            ModelRole.BUILDER: self.builder,
            ModelRole.WHOLE_FILE_BUILDER: self.whole_file_builder or self.builder,
            ModelRole.NAME: self.namer,
            ModelRole.COMMIT_MSG: self.commit_msg,
            ModelRole.EXEC_STATUS: self.exec_status,
        }
        explicit = {
            ModelRole.PLANNER: self.planner,
            ModelRole.ARCHITECT: self.architect,
            ModelRole.CODER: self.coder,
            ModelRole.PLAN_SUMMARY: self.plan_summary,
            ModelRole.BUILDER: self.builder,
            ModelRole.WHOLE_FILE_BUILDER: self.whole_file_builder,
            ModelRole.NAME: self.namer,
            ModelRole.COMMIT_MSG: self.commit_msg,
            ModelRole.EXEC_STATUS: self.exec_status,
        }
        for role, config in explicit.items():
            if config is None:
                continue
            _require(
                condition=config.role is role,
                message=f"slot {role.value!r} holds a {config.role.value!r} config",
                subject=f"model pack {self.name!r}",
            )
        object.__setattr__(self, "_roles", _freeze_mapping(roles))

    def role_config(self, role: ModelRole) -> ModelRoleConfig:
        """Return the configuration used for *role*, applying slot fallbacks."""
        return self._roles[role]

    def get_whole_file_builder(self) -> ModelRoleConfig:
        """Return the whole-file builder config (builder when unset)."""
        return self._roles[ModelRole.WHOLE_FILE_BUILDER]

    @property
    def roles(self) -> Mapping[ModelRole, ModelRoleConfig]:
        """Read-only view of the effective role assignments."""
        return self._roles


class ModelPackSet:
    """Immutable collection of built packs with one default."""

    def __init__(self, packs: Iterable[ModelPack], *, default: str) -> None:
        """Index *packs* by name; *default* must name one of them."""
        by_name: dict[str, ModelPack] = {}
        for pack in packs:
            _require(
                condition=pack.name not in by_name,
                message="duplicate model pack name",
                subject=f"model pack {pack.name!r}",
            )
            by_name[pack.name] = pack
        _require(
            condition=default in by_name,
            message=f"default model pack {default!r} is not defined",
            hint=f"Defined packs: {', '.join(sorted(by_name)) or 'none'}",
        )
        self._packs: Mapping[str, ModelPack] = _freeze_mapping(by_name)
        self._default = default

    @property
    def default(self) -> ModelPack:
        """The process default pack."""
        return self._packs[self._default]

    @property
    def names(self) -> tuple[str, ...]:
        """Pack names in definition order."""
        return tuple(self._packs)

    def get(self, name: str) -> ModelPack:
        """Return the pack called *name*.

        Raises:
            ConfigurationError: If no such pack exists.
        """
        pack = self._packs.get(name)
        if pack is None:
            raise ConfigurationError(
                f"Unknown model pack: {name!r}",
                hint=f"Available packs: {', '.join(self._packs)}",
            )
        return pack

    def __iter__(self) -> Iterator[ModelPack]:
        return iter(self._packs.values())

    def __len__(self) -> int:
        return len(self._packs)


_OPENAI = ModelProvider.OPENAI
_OPENROUTER = ModelProvider.OPENROUTER

_GEMINI_PRO = "google/gemini-2.5-pro-preview-03-25"
_CLAUDE_SONNET = "anthropic/claude-3.7-sonnet"
_CLAUDE_SONNET_THINKING = "anthropic/claude-3.7-sonnet:thinking"


def _strong_pack(registry: ModelRegistry) -> ModelPack:
    def o3_mini(role: ModelRole, effort: str) -> ModelRoleConfig:
        return role_config(registry, role, _OPENAI, f"openai/o3-mini-{effort}")

    return ModelPack(
        name="strong",
        description=(
            "For difficult tasks where slower responses and builds are ok. Uses "
            "gemini-2.5-pro for architecture and planning, claude-3.7-sonnet "
            "(thinking) for implementation, and prioritizes reliability over "
            "speed for builds. Supports up to 160k input context."
        ),
        planner=planner_config(registry, _OPENROUTER, _GEMINI_PRO),
        architect=role_config(registry, ModelRole.ARCHITECT, _OPENROUTER, _GEMINI_PRO),
        coder=role_config(
            registry, ModelRole.CODER, _OPENROUTER, _CLAUDE_SONNET_THINKING
        ),
        plan_summary=o3_mini(ModelRole.PLAN_SUMMARY, "low"),
        builder=o3_mini(ModelRole.BUILDER, "high"),
        whole_file_builder=o3_mini(ModelRole.WHOLE_FILE_BUILDER, "high"),
        namer=o3_mini(ModelRole.NAME, "high"),
        commit_msg=o3_mini(ModelRole.COMMIT_MSG, "high"),
        exec_status=o3_mini(ModelRole.EXEC_STATUS, "medium"),
    )


def _daily_driver_pack(registry: ModelRegistry) -> ModelPack:
    def gemini_pro(role: ModelRole) -> ModelRoleConfig:
        return role_config(registry, role, _OPENROUTER, _GEMINI_PRO)

    def gpt41(role: ModelRole, **fallbacks: tuple[ModelRoleConfig, ...]) -> ModelRoleConfig:
        return role_config(registry, role, _OPENAI, "openai/gpt-4.1", **fallbacks)

    wfb = ModelRole.WHOLE_FILE_BUILDER
    return ModelPack(
        name="daily-driver",
        description=(
            "A mix of fast and capable models for everyday tasks. Uses "
            "claude-3.7-sonnet for planning and coding, o3-mini for builds, and "
            "escalates to gpt-4.1 or gemini-2.5-pro when context or output "
            "outgrows the default models."
        ),
        planner=planner_config(
            registry,
            _OPENROUTER,
            _CLAUDE_SONNET,
            large_context=(gemini_pro(ModelRole.PLANNER),),
        ),
        coder=role_config(
            registry,
            ModelRole.CODER,
            _OPENROUTER,
            _CLAUDE_SONNET,
            large_context=(gemini_pro(ModelRole.CODER),),
            strong=(
                role_config(
                    registry, ModelRole.CODER, _OPENROUTER, _CLAUDE_SONNET_THINKING
                ),
            ),
        ),
        plan_summary=role_config(
            registry, ModelRole.PLAN_SUMMARY, _OPENAI, "openai/o3-mini-low"
        ),
        builder=role_config(
            registry,
            ModelRole.BUILDER,
            _OPENAI,
            "openai/o3-mini-medium",
            large_context=(gpt41(ModelRole.BUILDER),),
        ),
        whole_file_builder=role_config(
            registry,
            wfb,
            _OPENROUTER,
            "openai/gpt-4o",
            large_context=(gpt41(wfb, large_output=(gemini_pro(wfb),)),),
            large_output=(
                role_config(registry, wfb, _OPENAI, "openai/o3-mini-medium"),
            ),
        ),
        namer=role_config(registry, ModelRole.NAME, _OPENROUTER, "openai/gpt-4o-mini"),
        commit_msg=role_config(
            registry, ModelRole.COMMIT_MSG, _OPENROUTER, "openai/gpt-4o-mini"
        ),
        exec_status=role_config(
            registry, ModelRole.EXEC_STATUS, _OPENAI, "openai/o3-mini-low"
        ),
    )


DEFAULT_PACK_NAME = "strong"


def build_builtin_packs(registry: ModelRegistry) -> ModelPackSet:
    """Build the shipped packs against *registry*.

    Raises:
        ConfigurationError: If a pack references an unregistered model.
    """
    packs = ModelPackSet(
        (_strong_pack(registry), _daily_driver_pack(registry)),
        default=DEFAULT_PACK_NAME,
    )
    logger.debug("Built %d model pack(s): %s", len(packs), ", ".join(packs.names))
    return packs


@cache
def default_packs() -> ModelPackSet:
    """Return the built-in packs over the default registry (built once)."""
    return build_builtin_packs(default_registry())
