"""Whole-file builds: original file + proposed change -> final file content.

One build runs the attempt state machine

    DRAFTING -> REQUESTING -> EXTRACTING -> SUCCEEDED
                                         -> RETRY_PENDING -> DRAFTING ...
                                         -> FAILED

with these guarantees:

- The active plan is looked up before the first attempt and again before
  every retry. A missing plan fails the build with ``PlanNotFoundError``.
- The whole-file builder role is resolved per attempt for the estimated
  input and output tokens. The request is drafted in the resolved model's
  preferred output format.
- Only ``ExtractionError`` is retried, sequentially, up to the policy's
  ``max_retries`` with quadratic backoff. Client failures are terminal.
- ``asyncio.CancelledError`` is never caught for retry. It propagates from
  the client call and from the backoff sleep alike.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import random
from typing import TYPE_CHECKING, Any

from buildroute.build.state import BuildPhase
from buildroute.errors import (
    BuildRouteError,
    ConfigurationError,
    ExtractionError,
    PlanNotFoundError,
    RetriesExhaustedError,
    TransportError,
)
from buildroute.extraction import extractor_for
from buildroute.prompts import (
    SYS_WHOLE_FILE_JSON,
    WHOLE_FILE_CALL,
    whole_file_context,
    whole_file_prediction,
    whole_file_prompt,
)
from buildroute.providers.models import Message, ModelRequestParams
from buildroute.registry import ModelProvider, OutputFormat
from buildroute.retry import BuildRetryPolicy
from buildroute.routing import resolve
from buildroute.text import add_line_nums, remove_line_nums
from buildroute.tokens import TOKENS_PER_REQUEST, estimate_messages, estimate_tokens

if TYPE_CHECKING:
    from collections.abc import Sequence

    from buildroute.build.state import ActiveBuildStreamFileState, ActivePlanLookup
    from buildroute.packs import ModelRoleConfig
    from buildroute.providers.base import ModelClient

logger = logging.getLogger(__name__)

BUILD_PURPOSE = "File edit"


@dataclass(frozen=True)
class BuildJob:
    """One file to build with ``WholeFileBuilder.build_many``."""

    file_state: ActiveBuildStreamFileState
    proposed_content: str
    description: str = ""
    comments: str = ""
    session_id: str | None = None


@dataclass(frozen=True)
class BuildOutcome:
    """Terminal result of one job: content or an error, never both."""

    file_path: str
    content: str | None = None
    error: BuildRouteError | None = None

    @property
    def ok(self) -> bool:
        """Whether the build produced content."""
        return self.error is None


@dataclass(frozen=True)
class _Draft:
    output_format: OutputFormat
    messages: tuple[Message, ...]
    head_tokens: int
    input_tokens: int
    tools: tuple[dict[str, Any], ...] | None = None
    tool_choice: dict[str, str] | None = None


def _draft(
    output_format: OutputFormat,
    *,
    file_path: str,
    original_with_line_nums: str,
    proposed_with_line_nums: str,
    description: str,
    comments: str,
) -> _Draft:
    """Build the request messages for *output_format*."""
    if output_format is OutputFormat.TOOL_CALL_JSON:
        context = whole_file_context(
            file_path,
            original_with_line_nums,
            proposed_with_line_nums,
            description,
            comments,
        )
        messages = (
            Message(role="system", content=SYS_WHOLE_FILE_JSON),
            Message(role="user", content=context),
        )
        return _Draft(
            output_format=output_format,
            messages=messages,
            head_tokens=estimate_tokens(SYS_WHOLE_FILE_JSON),
            input_tokens=estimate_messages(messages) + TOKENS_PER_REQUEST,
            tools=(WHOLE_FILE_CALL.tool(),),
            tool_choice=WHOLE_FILE_CALL.tool_choice(),
        )

    prompt, head_tokens = whole_file_prompt(
        file_path,
        original_with_line_nums,
        proposed_with_line_nums,
        description,
        comments,
    )
    messages = (Message(role="system", content=prompt),)
    return _Draft(
        output_format=output_format,
        messages=messages,
        head_tokens=head_tokens,
        input_tokens=estimate_messages(messages) + TOKENS_PER_REQUEST,
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WholeFileBuilder:
    """Drive whole-file builds against a model client.

    Example:
        builder = WholeFileBuilder(client, plans)
        content = await builder.build(file_state, proposed, "replace b with X", "")
    """

    def __init__(
        self,
        client: ModelClient,
        plans: ActivePlanLookup,
        *,
        retry_policy: BuildRetryPolicy | None = None,
        concurrency: int = 4,
        rng: random.Random | None = None,
    ) -> None:
        """Build with *client*, checking *plans* before each attempt."""
        if concurrency < 1:
            raise ConfigurationError(
                f"concurrency must be >= 1, got {concurrency}",
                hint="This controls how many files are built in parallel.",
            )
        self._client = client
        self._plans = plans
        self._retry_policy = retry_policy or BuildRetryPolicy()
        self._concurrency = concurrency
        self._rng = rng

    @property
    def retry_policy(self) -> BuildRetryPolicy:
        """Policy applied to extraction failures."""
        return self._retry_policy

    def _require_active_plan(self, file_state: ActiveBuildStreamFileState) -> None:
        if self._plans.get(file_state.plan_id, file_state.branch) is not None:
            return
        logger.info(
            "Active plan not found for plan ID %s and branch %s",
            file_state.plan_id,
            file_state.branch,
        )
        file_state.phase = BuildPhase.FAILED
        raise PlanNotFoundError(
            f"active plan not found for plan ID {file_state.plan_id} "
            f"and branch {file_state.branch}",
            hint="The plan was stopped or deleted while the file was building.",
            file_path=file_state.file_path,
            plan_id=file_state.plan_id,
            branch=file_state.branch,
        )

    async def build(
        self,
        file_state: ActiveBuildStreamFileState,
        proposed_content: str,
        description: str = "",
        comments: str = "",
        session_id: str | None = None,
    ) -> str:
        """Return the final content of ``file_state.file_path``.

        Raises:
            PlanNotFoundError: The active plan disappeared.
            TransportError: The model client failed.
            RetriesExhaustedError: Every attempt produced unusable output.
            asyncio.CancelledError: The build task was cancelled.
        """
        policy = self._retry_policy
        while True:
            self._require_active_plan(file_state)
            try:
                content = await self._attempt(
                    file_state, proposed_content, description, comments, session_id
                )
            except ExtractionError as e:
                e.file_path = file_state.file_path
                e.plan_id = file_state.plan_id
                e.branch = file_state.branch
                if file_state.whole_file_num_retry >= policy.max_retries:
                    file_state.phase = BuildPhase.FAILED
                    attempts = file_state.whole_file_num_retry + 1
                    logger.warning(
                        "Whole-file build of %s failed after %d attempt(s): %s",
                        file_state.file_path,
                        attempts,
                        e,
                    )
                    raise RetriesExhaustedError(
                        str(e),
                        attempts=attempts,
                        hint=e.hint,
                        file_path=file_state.file_path,
                        plan_id=file_state.plan_id,
                        branch=file_state.branch,
                    ) from e

                file_state.whole_file_num_retry += 1
                file_state.phase = BuildPhase.RETRY_PENDING
                retry_number = file_state.whole_file_num_retry
                logger.warning(
                    "Retrying whole-file build of %s (%d/%d) due to error: %s",
                    file_state.file_path,
                    retry_number,
                    policy.max_retries,
                    e,
                )
                self._require_active_plan(file_state)
                delay = policy.delay_for(retry_number, rng=self._rng)
                try:
                    await asyncio.sleep(delay)
                except asyncio.CancelledError:
                    logger.debug(
                        "Whole-file build of %s cancelled during backoff",
                        file_state.file_path,
                    )
                    raise
                continue

            file_state.phase = BuildPhase.SUCCEEDED
            return content

    async def _attempt(
        self,
        file_state: ActiveBuildStreamFileState,
        proposed_content: str,
        description: str,
        comments: str,
        session_id: str | None,
    ) -> str:
        file_state.phase = BuildPhase.DRAFTING
        original = file_state.pre_build_state
        base_config = file_state.model_pack.get_whole_file_builder()
        draft_args: dict[str, Any] = {
            "file_path": file_state.file_path,
            "original_with_line_nums": add_line_nums(original),
            "proposed_with_line_nums": add_line_nums(proposed_content),
            "description": description,
            "comments": comments,
        }

        draft = _draft(base_config.output_format, **draft_args)
        resolution = resolve(
            base_config,
            input_tokens=draft.input_tokens,
            output_tokens=estimate_tokens(original + proposed_content),
        )
        config: ModelRoleConfig = resolution.config
        if config.output_format is not draft.output_format:
            logger.debug(
                "Redrafting %s for %s (%s -> %s)",
                file_state.file_path,
                config.model_id,
                draft.output_format.value,
                config.output_format.value,
            )
            draft = _draft(config.output_format, **draft_args)

        base = config.base_model_config
        prediction = None
        if base.predicted_output_enabled and comments:
            prediction = whole_file_prediction(original)
        # Cached-input accounting is only reported by OpenAI direct.
        will_cache_num_tokens = (
            draft.head_tokens if base.provider is ModelProvider.OPENAI else 0
        )

        run = file_state.builder_run

        def before_request() -> None:
            run.built_whole_file = True
            run.whole_file_started_at = _now()

        def after_request() -> None:
            run.whole_file_finished_at = _now()

        params = ModelRequestParams(
            model_config=config,
            messages=draft.messages,
            purpose=BUILD_PURPOSE,
            tools=draft.tools,
            tool_choice=draft.tool_choice,
            prediction=prediction,
            will_cache_num_tokens=will_cache_num_tokens,
            before_request=before_request,
            after_request=after_request,
            session_id=session_id,
            plan_id=file_state.plan_id,
            branch=file_state.branch,
            model_stream_id=file_state.model_stream_id,
            convo_message_id=file_state.convo_message_id,
            build_id=file_state.build_id,
        )

        file_state.phase = BuildPhase.REQUESTING
        logger.debug(
            "Calling %s for whole-file build of %s (format=%s reason=%s)",
            config.model_id,
            file_state.file_path,
            draft.output_format.value,
            resolution.decision["reason"],
        )
        try:
            response = await self._client.request(params)
        except asyncio.CancelledError:
            logger.debug(
                "Whole-file build of %s cancelled during model request",
                file_state.file_path,
            )
            raise
        except Exception as e:
            file_state.phase = BuildPhase.FAILED
            raise TransportError(
                f"error calling model: {e}",
                hint=getattr(e, "hint", None),
                file_path=file_state.file_path,
                plan_id=file_state.plan_id,
                branch=file_state.branch,
            ) from e

        if response.generation_id:
            run.generation_ids.append(response.generation_id)
        run.whole_file_finished_at = _now()

        file_state.phase = BuildPhase.EXTRACTING
        content = remove_line_nums(
            extractor_for(draft.output_format).extract(response.content)
        )
        if not content:
            raise ExtractionError(
                "empty whole file after removing line numbers",
                hint="The response echoed line-number prefixes with no file content.",
            )
        return content

    async def build_many(self, jobs: Sequence[BuildJob]) -> list[BuildOutcome]:
        """Build independent files concurrently; outcomes follow *jobs* order.

        Build errors are reported per job. Cancellation and unexpected
        exceptions are re-raised once every task has finished.
        """
        sem = asyncio.Semaphore(self._concurrency)
        logger.debug(
            "Building %d file(s) concurrency=%d", len(jobs), self._concurrency
        )

        async def _one(job: BuildJob) -> str:
            async with sem:
                return await self.build(
                    job.file_state,
                    job.proposed_content,
                    job.description,
                    job.comments,
                    job.session_id,
                )

        # Collect all outcomes before raising so no task is left unobserved.
        tasks = [asyncio.create_task(_one(job)) for job in jobs]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for item in results:
            if isinstance(item, asyncio.CancelledError):
                raise item
        for item in results:
            if isinstance(item, BaseException) and not isinstance(item, BuildRouteError):
                raise item

        outcomes: list[BuildOutcome] = []
        for job, item in zip(jobs, results, strict=True):
            path = job.file_state.file_path
            if isinstance(item, BuildRouteError):
                outcomes.append(BuildOutcome(file_path=path, error=item))
            else:
                outcomes.append(BuildOutcome(file_path=path, content=item))
        return outcomes


async def build_whole_file(
    file_state: ActiveBuildStreamFileState,
    proposed_content: str,
    description: str = "",
    comments: str = "",
    session_id: str | None = None,
    *,
    client: ModelClient,
    plans: ActivePlanLookup,
    retry_policy: BuildRetryPolicy | None = None,
) -> str:
    """Run a single whole-file build; see ``WholeFileBuilder.build``."""
    builder = WholeFileBuilder(client, plans, retry_policy=retry_policy)
    return await builder.build(
        file_state, proposed_content, description, comments, session_id
    )
