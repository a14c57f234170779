"""buildroute: whole-file builds and model routing for coding assistants.

Public API:
    - WholeFileBuilder: Build file content from a proposed change
    - create_builder(): Builder wired from a Config
    - resolve(): Select a role config for a token budget
    - default_registry() / default_packs(): Built-in models and packs
    - Config: Configuration dataclass
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from buildroute.build import (
    ActiveBuildStreamFileState,
    ActivePlan,
    ActivePlanRegistry,
    BuildJob,
    BuildOutcome,
    BuildPhase,
    WholeFileBuilder,
    build_whole_file,
)
from buildroute.config import Config, create_client
from buildroute.errors import (
    APIError,
    BuildError,
    BuildRouteError,
    ConfigurationError,
    ExtractionError,
    InternalError,
    PlanNotFoundError,
    RateLimitError,
    RetriesExhaustedError,
    TransportError,
)
from buildroute.packs import ModelPack, ModelPackSet, ModelRole, default_packs
from buildroute.registry import ModelRegistry, OutputFormat, default_registry
from buildroute.retry import BuildRetryPolicy, RetryPolicy
from buildroute.routing import Resolution, resolve

if TYPE_CHECKING:
    from buildroute.build.state import ActivePlanLookup
    from buildroute.providers.base import ModelClient

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("buildroute")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("buildroute").addHandler(logging.NullHandler())


def create_builder(
    config: Config,
    plans: ActivePlanLookup,
    *,
    client: ModelClient | None = None,
) -> WholeFileBuilder:
    """Return a WholeFileBuilder using *config*'s client, retry and concurrency.

    Example:
        plans = ActivePlanRegistry()
        builder = create_builder(Config(use_mock=True), plans)
    """
    return WholeFileBuilder(
        client if client is not None else create_client(config),
        plans,
        retry_policy=config.build_retry,
        concurrency=config.build_concurrency,
    )


__all__ = [
    "APIError",
    "ActiveBuildStreamFileState",
    "ActivePlan",
    "ActivePlanRegistry",
    "BuildError",
    "BuildJob",
    "BuildOutcome",
    "BuildPhase",
    "BuildRetryPolicy",
    "BuildRouteError",
    "Config",
    "ConfigurationError",
    "ExtractionError",
    "InternalError",
    "ModelPack",
    "ModelPackSet",
    "ModelRegistry",
    "ModelRole",
    "OutputFormat",
    "PlanNotFoundError",
    "RateLimitError",
    "Resolution",
    "RetriesExhaustedError",
    "RetryPolicy",
    "TransportError",
    "WholeFileBuilder",
    "build_whole_file",
    "create_builder",
    "create_client",
    "default_packs",
    "default_registry",
    "resolve",
]
