"""Exception hierarchy for buildroute.

Cancellation is deliberately absent: a cancelled build surfaces as
``asyncio.CancelledError``, which is a ``BaseException`` and can never be
confused with the kinds below.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class BuildRouteError(Exception):
    """Base exception for all buildroute errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(BuildRouteError):
    """Model catalog, pack, or runtime configuration is invalid.

    Raised while the registry and packs are being built. These are
    configuration bugs, so callers should let them abort startup.
    """


class InternalError(BuildRouteError):
    """A buildroute internal error (bug) or invariant violation."""


class APIError(BuildRouteError):
    """A model client call failed.

    Clients attach retry metadata so transport retries can be bounded
    without brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


class BuildError(BuildRouteError):
    """A file build failed.

    Carries enough context for operators to correlate the failure with the
    generation ids recorded on the builder run.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        file_path: str | None = None,
        plan_id: str | None = None,
        branch: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.file_path = file_path
        self.plan_id = plan_id
        self.branch = branch


class PlanNotFoundError(BuildError):
    """The active plan/branch disappeared (cancelled or deleted). Never retried."""


class TransportError(BuildError):
    """The model client failed for a reason other than cancellation."""


class ExtractionError(BuildError):
    """The model response could not be turned into file content.

    Recoverable: the whole-file builder retries these with backoff.
    """


class RetriesExhaustedError(ExtractionError):
    """The retry budget ran out; the message is the last extraction error's."""

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        hint: str | None = None,
        file_path: str | None = None,
        plan_id: str | None = None,
        branch: str | None = None,
    ) -> None:
        super().__init__(
            message, hint=hint, file_path=file_path, plan_id=plan_id, branch=branch
        )
        self.attempts = attempts


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
