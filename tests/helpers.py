"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off client classes as coverage expands.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import itertools
import json
from typing import Any

from buildroute.providers.models import ModelRequestParams, ModelResponse


def whole_file_json(content: str) -> str:
    """Return ``wholeFile`` call arguments carrying *content*."""
    return json.dumps({"wholeFile": content})


@dataclass
class ScriptedClient:
    """ModelClient returning a scripted sequence of results/exceptions.

    String items become ``ModelResponse(content=item)`` with generated ids.
    Hooks on the request params are honored like a real client.
    """

    script: list[str | ModelResponse | BaseException] = field(default_factory=list)
    requests: list[ModelRequestParams] = field(default_factory=list)
    _ids: Any = field(default_factory=lambda: itertools.count(1))

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def request(self, params: ModelRequestParams) -> ModelResponse:
        self.requests.append(params)
        if params.before_request is not None:
            params.before_request()
        try:
            if not self.script:
                raise AssertionError("ScriptedClient script exhausted")
            item = self.script.pop(0)
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, ModelResponse):
                return item
            return ModelResponse(content=item, generation_id=f"gen-{next(self._ids)}")
        finally:
            if params.after_request is not None:
                params.after_request()

    async def aclose(self) -> None:
        return None


@dataclass
class GateClient:
    """ModelClient that blocks until released, for cancellation tests."""

    content: str = ""
    started: asyncio.Event = field(default_factory=asyncio.Event)
    release: asyncio.Event = field(default_factory=asyncio.Event)
    calls: int = 0

    async def request(self, params: ModelRequestParams) -> ModelResponse:
        _ = params
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return ModelResponse(content=self.content, generation_id=f"gate-{self.calls}")

    async def aclose(self) -> None:
        return None
