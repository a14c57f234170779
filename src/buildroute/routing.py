"""Role config resolution under token pressure.

Policy:
- Input pass: walk ``[config, *config.large_context_fallbacks]`` and take the
  first whose effective input budget covers the estimated input tokens.
- Output pass: from the input-pass result, walk
  ``[result, *result.large_output_fallbacks]`` against ``max_output_tokens``.
- Exhausting a chain is soft: the last candidate is returned, a warning is
  logged, and the decision payload records the overage.

The functions here are pure apart from logging; no client or SDK is touched.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, TypedDict

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from buildroute.packs import ModelPack, ModelRole, ModelRoleConfig

logger = logging.getLogger(__name__)

# Reason codes (stable for diagnostics)
REASON_INPUT_FITS = "input: fits"
REASON_INPUT_ESCALATED = "input: escalated_large_context"
REASON_INPUT_OVER_BUDGET = "input: over_budget_after_fallbacks"
REASON_OUTPUT_FITS = "output: fits"
REASON_OUTPUT_ESCALATED = "output: escalated_large_output"
REASON_OUTPUT_OVER_BUDGET = "output: over_budget_after_fallbacks"


class ResolutionInputs(TypedDict):
    """Structured view of the inputs included in the decision payload."""

    role: str
    base_model_id: str
    base_model_key: str
    input_tokens: int
    output_tokens: int


class ResolutionDecision(TypedDict):
    """Structured resolution decision suitable for JSON diagnostics."""

    inputs: ResolutionInputs
    input_model_id: str
    selected_model_id: str
    selected_model_key: str
    input_over_budget: bool
    output_over_budget: bool
    reason: list[str]


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving a role config for a request."""

    config: ModelRoleConfig
    decision: ResolutionDecision

    @property
    def escalated(self) -> bool:
        """Whether a config other than the base one was selected."""
        decision = self.decision
        return decision["selected_model_key"] != decision["inputs"]["base_model_key"]


def _walk(
    config: ModelRoleConfig,
    alternatives: Sequence[ModelRoleConfig],
    *,
    fits: Callable[[ModelRoleConfig], bool],
) -> tuple[ModelRoleConfig, bool, int]:
    """Return ``(chosen, fitted, index)`` over ``[config, *alternatives]``.

    Chains are bounded by ``MAX_FALLBACKS_PER_AXIS`` at config construction.
    """
    candidates = (config, *alternatives)
    for i, candidate in enumerate(candidates):
        if fits(candidate):
            return candidate, True, i
    return candidates[-1], False, len(candidates) - 1


def resolve_for_input_tokens(
    config: ModelRoleConfig, input_tokens: int
) -> ModelRoleConfig:
    """Return the first config in the large-context chain that fits *input_tokens*.

    Never fails: when nothing fits, the last candidate is returned and a
    warning is logged.
    """
    n = max(0, int(input_tokens))
    chosen, fitted, _ = _walk(
        config,
        config.large_context_fallbacks,
        fits=lambda c: c.effective_input_budget >= n,
    )
    if not fitted:
        logger.warning(
            "Input estimate %d exceeds every %s config budget; using %s (budget %d)",
            n,
            config.role.value,
            chosen.model_id,
            chosen.effective_input_budget,
        )
    return chosen


def resolve_for_output_tokens(
    config: ModelRoleConfig, output_tokens: int
) -> ModelRoleConfig:
    """Return the first config in the large-output chain that fits *output_tokens*."""
    n = max(0, int(output_tokens))
    chosen, fitted, _ = _walk(
        config,
        config.large_output_fallbacks,
        fits=lambda c: c.max_output_tokens >= n,
    )
    if not fitted:
        logger.warning(
            "Output estimate %d exceeds every %s config limit; using %s (limit %d)",
            n,
            config.role.value,
            chosen.model_id,
            chosen.max_output_tokens,
        )
    return chosen


def resolve(
    config: ModelRoleConfig, *, input_tokens: int, output_tokens: int = 0
) -> Resolution:
    """Run the input pass then the output pass and explain the outcome.

    The returned decision is JSON-serializable and records which configs
    were selected and why.
    """
    n_in = max(0, int(input_tokens))
    n_out = max(0, int(output_tokens))
    reason: list[str] = []

    after_input, input_fitted, input_idx = _walk(
        config,
        config.large_context_fallbacks,
        fits=lambda c: c.effective_input_budget >= n_in,
    )
    if not input_fitted:
        reason.append(REASON_INPUT_OVER_BUDGET)
        logger.warning(
            "Input estimate %d exceeds every %s config budget; using %s (budget %d)",
            n_in,
            config.role.value,
            after_input.model_id,
            after_input.effective_input_budget,
        )
    elif input_idx > 0:
        reason.append(REASON_INPUT_ESCALATED)
    else:
        reason.append(REASON_INPUT_FITS)

    selected, output_fitted, output_idx = _walk(
        after_input,
        after_input.large_output_fallbacks,
        fits=lambda c: c.max_output_tokens >= n_out,
    )
    if not output_fitted:
        reason.append(REASON_OUTPUT_OVER_BUDGET)
        logger.warning(
            "Output estimate %d exceeds every %s config limit; using %s (limit %d)",
            n_out,
            config.role.value,
            selected.model_id,
            selected.max_output_tokens,
        )
    elif output_idx > 0:
        reason.append(REASON_OUTPUT_ESCALATED)
    else:
        reason.append(REASON_OUTPUT_FITS)

    if selected is not config:
        logger.debug(
            "Escalated %s config %s -> %s (input=%d output=%d)",
            config.role.value,
            config.model_id,
            selected.model_id,
            n_in,
            n_out,
        )

    return Resolution(
        config=selected,
        decision={
            "inputs": {
                "role": config.role.value,
                "base_model_id": config.model_id,
                "base_model_key": config.base_model_config.composite_key,
                "input_tokens": n_in,
                "output_tokens": n_out,
            },
            "input_model_id": after_input.model_id,
            "selected_model_id": selected.model_id,
            "selected_model_key": selected.base_model_config.composite_key,
            "input_over_budget": not input_fitted,
            "output_over_budget": not output_fitted,
            "reason": reason,
        },
    )


def resolve_role(
    pack: ModelPack, role: ModelRole, *, input_tokens: int, output_tokens: int = 0
) -> Resolution:
    """Resolve *role* within *pack*; see ``resolve``."""
    return resolve(
        pack.role_config(role), input_tokens=input_tokens, output_tokens=output_tokens
    )


def resolve_strong(config: ModelRoleConfig) -> ModelRoleConfig:
    """Return the first strong-model alternative, or *config* when none is set."""
    if config.strong_models:
        return config.strong_models[0]
    return config
