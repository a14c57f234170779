"""End-to-end builds through the public API.

Mock-backed tests run everywhere; the API test needs ENABLE_API_TESTS=1 and a
real OPENAI_API_KEY.
"""

from __future__ import annotations

import pytest

import buildroute
from buildroute import (
    ActiveBuildStreamFileState,
    ActivePlan,
    ActivePlanRegistry,
    BuildJob,
    Config,
    create_builder,
)
from buildroute.packs import ModelPack

pytestmark = pytest.mark.integration

ORIGINAL = "def greet():\n    return 'hi'\n"
PROPOSED = "def greet(name):\n    return f'hi {name}'\n"


def _state(pack: ModelPack, file_path: str = "greet.py") -> ActiveBuildStreamFileState:
    return ActiveBuildStreamFileState(
        file_path=file_path,
        pre_build_state=ORIGINAL,
        plan_id="plan-1",
        branch="main",
        model_pack=pack,
    )


def _plans() -> ActivePlanRegistry:
    plans = ActivePlanRegistry()
    plans.register(ActivePlan(plan_id="plan-1", branch="main"))
    return plans


@pytest.mark.asyncio
@pytest.mark.parametrize("pack_name", ["strong", "daily-driver"])
async def test_mock_build_with_builtin_pack(pack_name: str) -> None:
    config = Config(pack=pack_name, use_mock=True)
    builder = create_builder(config, _plans())
    state = _state(config.model_pack())

    content = await builder.build(state, PROPOSED, "add a name parameter")

    assert content == PROPOSED
    assert state.builder_run.generation_ids == ["mock-1"]
    assert state.phase is buildroute.BuildPhase.SUCCEEDED


@pytest.mark.asyncio
async def test_mock_build_many() -> None:
    config = Config(use_mock=True, build_concurrency=2)
    builder = create_builder(config, _plans())
    pack = config.model_pack()
    jobs = [BuildJob(_state(pack, f"f{i}.py"), PROPOSED) for i in range(4)]

    outcomes = await builder.build_many(jobs)

    assert [o.content for o in outcomes] == [PROPOSED] * 4


def test_package_exports_and_version() -> None:
    assert set(buildroute.__all__) <= set(dir(buildroute))
    assert isinstance(buildroute.__version__, str)


@pytest.mark.api
@pytest.mark.asyncio
async def test_real_whole_file_build() -> None:
    config = Config()
    builder = create_builder(config, _plans())

    content = await builder.build(
        _state(config.model_pack()), PROPOSED, "add a name parameter"
    )

    assert "name" in content
