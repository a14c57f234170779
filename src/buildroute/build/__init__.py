"""Whole-file build state machine and per-file build state."""

from .state import (
    ActiveBuildStreamFileState,
    ActivePlan,
    ActivePlanLookup,
    ActivePlanRegistry,
    BuilderRun,
    BuildPhase,
)
from .whole_file import BuildJob, BuildOutcome, WholeFileBuilder, build_whole_file

__all__ = [
    "ActiveBuildStreamFileState",
    "ActivePlan",
    "ActivePlanLookup",
    "ActivePlanRegistry",
    "BuildJob",
    "BuildOutcome",
    "BuildPhase",
    "BuilderRun",
    "WholeFileBuilder",
    "build_whole_file",
]
