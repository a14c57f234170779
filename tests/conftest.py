"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, marker handling,
automatic API test skipping, and small builders for packs and file states.
Fixtures are autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
import logging
import os

import pytest

from buildroute.build.state import (
    ActiveBuildStreamFileState,
    ActivePlan,
    ActivePlanRegistry,
)
from buildroute.packs import ModelPack, ModelRole, planner_config, role_config
from buildroute.registry import (
    AvailableModel,
    BaseModelConfig,
    ModelProvider,
    ModelRegistry,
    OutputFormat,
    default_registry,
)

PLAN_ID = "plan-1"
BRANCH = "main"

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Clears OPENAI_* and OPENROUTER_* env vars to prevent test pollution.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("OPENAI_", "OPENROUTER_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)


# =============================================================================
# Model Builders
# =============================================================================


def make_model(
    model_id: str,
    *,
    provider: ModelProvider = ModelProvider.OPENAI,
    max_tokens: int = 10_000,
    max_output_tokens: int = 4_000,
    reserved_output_tokens: int = 2_000,
    output_format: OutputFormat = OutputFormat.TOOL_CALL_JSON,
    **flags: object,
) -> AvailableModel:
    """Return a small, valid registry entry for tests."""
    return AvailableModel(
        description=f"test model {model_id}",
        default_max_convo_tokens=1_000,
        base_model_config=BaseModelConfig(
            provider=provider,
            model_name=model_id,
            model_id=model_id,
            max_tokens=max_tokens,
            max_output_tokens=max_output_tokens,
            reserved_output_tokens=reserved_output_tokens,
            api_key_env_var="OPENAI_API_KEY",
            base_url="https://api.openai.com/v1",
            preferred_output_format=output_format,
            **flags,  # type: ignore[arg-type]
        ),
    )


def make_pack(
    registry: ModelRegistry, whole_file_model: str, *, name: str = "test"
) -> ModelPack:
    """Return a pack whose every role uses *whole_file_model*."""
    provider = next(iter(registry)).provider

    def rc(role: ModelRole):
        return role_config(registry, role, provider, whole_file_model)

    return ModelPack(
        name=name,
        description="test pack",
        planner=planner_config(registry, provider, whole_file_model),
        plan_summary=rc(ModelRole.PLAN_SUMMARY),
        builder=rc(ModelRole.BUILDER),
        namer=rc(ModelRole.NAME),
        commit_msg=rc(ModelRole.COMMIT_MSG),
        exec_status=rc(ModelRole.EXEC_STATUS),
    )


# =============================================================================
# Fixtures (explicit)
# =============================================================================


@pytest.fixture
def plans() -> ActivePlanRegistry:
    """Return an active-plan registry with PLAN_ID/BRANCH registered."""
    registry = ActivePlanRegistry()
    registry.register(ActivePlan(plan_id=PLAN_ID, branch=BRANCH))
    return registry


@pytest.fixture
def json_pack() -> ModelPack:
    """Return a pack whose whole-file builder prefers tool-call JSON."""
    registry = ModelRegistry([make_model("json-model")])
    return make_pack(registry, "json-model")


@pytest.fixture
def xml_pack() -> ModelPack:
    """Return a pack whose whole-file builder prefers tagged text."""
    registry = ModelRegistry(
        [make_model("xml-model", output_format=OutputFormat.XML)]
    )
    return make_pack(registry, "xml-model")


@pytest.fixture
def strong_pack() -> ModelPack:
    """Return the built-in default pack."""
    from buildroute.packs import build_builtin_packs

    return build_builtin_packs(default_registry()).default


def make_file_state(
    pack: ModelPack,
    original: str = "a\nb\nc\n",
    *,
    file_path: str = "src/app.py",
) -> ActiveBuildStreamFileState:
    """Return a fresh file state for PLAN_ID/BRANCH."""
    return ActiveBuildStreamFileState(
        file_path=file_path,
        pre_build_state=original,
        plan_id=PLAN_ID,
        branch=BRANCH,
        model_pack=pack,
        build_id="build-1",
        model_stream_id="stream-1",
        convo_message_id="msg-1",
    )
