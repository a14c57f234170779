"""Concurrent multi-file builds."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import pytest

from buildroute.build import ActivePlanRegistry, BuildJob, WholeFileBuilder
from buildroute.build.state import ActiveBuildStreamFileState
from buildroute.errors import (
    ConfigurationError,
    PlanNotFoundError,
    RetriesExhaustedError,
)
from buildroute.packs import ModelPack
from buildroute.providers.models import ModelRequestParams, ModelResponse
from buildroute.retry import BuildRetryPolicy
from tests.conftest import make_file_state
from tests.helpers import whole_file_json

pytestmark = pytest.mark.unit

FAST = BuildRetryPolicy(base_delay_s=0, max_jitter_s=0)


@dataclass
class _EchoProposalClient:
    """Accept every proposal except for broken.py; track request overlap."""

    delay_s: float = 0.01
    inflight: int = 0
    max_inflight: int = 0

    async def request(self, params: ModelRequestParams) -> ModelResponse:
        self.inflight += 1
        self.max_inflight = max(self.max_inflight, self.inflight)
        try:
            await asyncio.sleep(self.delay_s)
            user = params.messages[-1].content
            if "broken.py" in user:
                return ModelResponse(content="not json")
            return ModelResponse(content=whole_file_json("done\n"))
        finally:
            self.inflight -= 1

    async def aclose(self) -> None:
        return None


def _job(pack: ModelPack, file_path: str) -> BuildJob:
    return BuildJob(
        file_state=make_file_state(pack, file_path=file_path),
        proposed_content="done\n",
    )


@pytest.mark.asyncio
async def test_outcomes_follow_job_order(plans: ActivePlanRegistry, json_pack: ModelPack) -> None:
    client = _EchoProposalClient()
    builder = WholeFileBuilder(client, plans, retry_policy=FAST)
    jobs = [_job(json_pack, f"src/f{i}.py") for i in range(3)]

    outcomes = await builder.build_many(jobs)

    assert [o.file_path for o in outcomes] == ["src/f0.py", "src/f1.py", "src/f2.py"]
    assert all(o.ok and o.content == "done\n" for o in outcomes)


@pytest.mark.asyncio
async def test_one_failure_does_not_sink_the_batch(
    plans: ActivePlanRegistry, json_pack: ModelPack
) -> None:
    client = _EchoProposalClient()
    builder = WholeFileBuilder(client, plans, retry_policy=FAST)
    orphan = ActiveBuildStreamFileState(
        file_path="src/orphan.py",
        pre_build_state="",
        plan_id="gone",
        branch="main",
        model_pack=json_pack,
    )
    jobs = [
        _job(json_pack, "src/ok.py"),
        _job(json_pack, "src/broken.py"),
        BuildJob(file_state=orphan, proposed_content="x\n"),
    ]

    ok, broken, missing = await builder.build_many(jobs)

    assert ok.ok and ok.content == "done\n"
    assert not broken.ok and isinstance(broken.error, RetriesExhaustedError)
    assert broken.content is None
    assert isinstance(missing.error, PlanNotFoundError)


@pytest.mark.asyncio
async def test_concurrency_is_bounded(plans: ActivePlanRegistry, json_pack: ModelPack) -> None:
    client = _EchoProposalClient()
    builder = WholeFileBuilder(client, plans, retry_policy=FAST, concurrency=2)
    jobs = [_job(json_pack, f"src/f{i}.py") for i in range(6)]

    outcomes = await builder.build_many(jobs)

    assert len(outcomes) == 6
    assert client.max_inflight == 2


@pytest.mark.asyncio
async def test_empty_batch(plans: ActivePlanRegistry) -> None:
    builder = WholeFileBuilder(_EchoProposalClient(), plans)
    assert await builder.build_many([]) == []


def test_concurrency_must_be_positive(plans: ActivePlanRegistry) -> None:
    with pytest.raises(ConfigurationError, match="concurrency") as exc:
        WholeFileBuilder(_EchoProposalClient(), plans, concurrency=0)
    assert exc.value.hint is not None
