"""Per-file build state and the active-plan lookup.

A file state is owned by the task building that file and is never shared.
The active-plan registry is owned by the plan lifecycle; the build core only
reads it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import logging
import threading
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from buildroute.packs import ModelPack

logger = logging.getLogger(__name__)


class BuildPhase(Enum):
    """Position of a whole-file attempt in its state machine."""

    DRAFTING = "drafting"
    REQUESTING = "requesting"
    EXTRACTING = "extracting"
    RETRY_PENDING = "retry_pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        """Whether no further transition can happen."""
        return self in (BuildPhase.SUCCEEDED, BuildPhase.FAILED)


@dataclass
class BuilderRun:
    """Observability record of the model calls made for one file."""

    whole_file_started_at: datetime | None = None
    whole_file_finished_at: datetime | None = None
    built_whole_file: bool = False
    generation_ids: list[str] = field(default_factory=list)


@dataclass
class ActiveBuildStreamFileState:
    """Mutable attempt state for one file build."""

    file_path: str
    pre_build_state: str
    plan_id: str
    branch: str
    model_pack: ModelPack
    convo_message_id: str | None = None
    build_id: str | None = None
    model_stream_id: str | None = None
    whole_file_num_retry: int = 0
    builder_run: BuilderRun = field(default_factory=BuilderRun)
    phase: BuildPhase = BuildPhase.DRAFTING


@dataclass(frozen=True)
class ActivePlan:
    """A plan branch that is currently running."""

    plan_id: str
    branch: str
    user_id: str | None = None
    started_at: datetime | None = None


class ActivePlanLookup(Protocol):
    """Read-only view of running plans."""

    def get(self, plan_id: str, branch: str) -> ActivePlan | None:
        """Return the active plan for ``(plan_id, branch)``, if any."""
        ...


class ActivePlanRegistry:
    """In-process registry of active plans keyed by ``(plan_id, branch)``."""

    def __init__(self) -> None:
        """Create an empty registry."""
        self._plans: dict[tuple[str, str], ActivePlan] = {}
        self._lock = threading.Lock()

    def get(self, plan_id: str, branch: str) -> ActivePlan | None:
        """Return the active plan for ``(plan_id, branch)``, if any."""
        with self._lock:
            return self._plans.get((plan_id, branch))

    def register(self, plan: ActivePlan) -> None:
        """Mark *plan* as active, replacing any previous entry."""
        with self._lock:
            self._plans[(plan.plan_id, plan.branch)] = plan
        logger.debug("Registered active plan %s/%s", plan.plan_id, plan.branch)

    def remove(self, plan_id: str, branch: str) -> ActivePlan | None:
        """Drop the plan; builds still running for it stop at their next check."""
        with self._lock:
            plan = self._plans.pop((plan_id, branch), None)
        if plan is not None:
            logger.debug("Removed active plan %s/%s", plan_id, branch)
        return plan

    def __len__(self) -> int:
        with self._lock:
            return len(self._plans)
