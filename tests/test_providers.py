"""Provider characterization tests.

These tests verify the request/response transformations of the model
clients. They use fake SDK clients to characterize the exact shapes sent to
the chat completions API without making real network calls.
"""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any

import pytest

from buildroute.errors import APIError, ConfigurationError, RateLimitError
from buildroute.packs import ModelRole, role_config
from buildroute.prompts import WHOLE_FILE_CALL
from buildroute.providers._errors import extract_retry_after_s, wrap_provider_error
from buildroute.providers._utils import to_strict_schema, tool_definitions
from buildroute.providers.mock import MockClient
from buildroute.providers.models import Message, ModelRequestParams
from buildroute.providers.openai import OpenAIClient
from buildroute.registry import ModelProvider, ModelRegistry, ReasoningEffort
from buildroute.retry import RetryPolicy
from tests.conftest import make_model

pytestmark = pytest.mark.contract

BASE_URL = "https://api.openai.com/v1"


# =============================================================================
# Provider Error Mapping (Contract)
# =============================================================================


class _Resp:
    def __init__(self, status_code: int, headers: dict[str, str] | None = None) -> None:
        self.status_code = status_code
        self.headers = headers or {}


class _SdkError(Exception):
    def __init__(self, message: str, response: _Resp) -> None:
        super().__init__(message)
        self.response = response


def test_wrap_provider_error_extracts_status_and_retry_after_from_response_headers() -> (
    None
):
    """SDK errors map into APIError with structured retry metadata."""
    err = wrap_provider_error(
        _SdkError("rate limited", _Resp(429, {"Retry-After": "2"})),
        provider="openai",
        phase="request",
        allow_network_errors=True,
        message="gpt-4o request failed",
    )

    assert isinstance(err, RateLimitError)
    assert err.status_code == 429
    assert err.retry_after_s == 2.0
    assert err.retryable is True
    assert err.provider == "openai"
    assert err.phase == "request"
    assert "429" in str(err)


def test_wrap_provider_error_enriches_existing_api_error_without_clobbering() -> None:
    base = APIError("bad request", retryable=False, status_code=400)
    wrapped = wrap_provider_error(
        base, provider="openrouter", phase="request", allow_network_errors=True
    )

    assert wrapped is base
    assert wrapped.status_code == 400
    assert wrapped.retryable is False
    assert wrapped.provider == "openrouter"


def test_wrap_provider_error_names_env_var_on_auth_failure() -> None:
    err = wrap_provider_error(
        _SdkError("unauthorized", _Resp(401)),
        provider="openrouter",
        phase="request",
        allow_network_errors=True,
    )

    assert err.retryable is False
    assert err.hint is not None
    assert "OPENROUTER_API_KEY" in err.hint


def test_wrap_provider_error_reraises_cancelled_error() -> None:
    with pytest.raises(asyncio.CancelledError):
        wrap_provider_error(
            asyncio.CancelledError(),
            provider="openai",
            phase="request",
            allow_network_errors=True,
        )


@pytest.mark.parametrize(
    ("headers", "expected"),
    [({"Retry-After": "1.5"}, 1.5), ({"Retry-After": "soon"}, None), ({}, None)],
)
def test_extract_retry_after_variants(headers: dict[str, str], expected: float | None) -> None:
    assert extract_retry_after_s(_SdkError("x", _Resp(503, headers))) == expected


# =============================================================================
# Strict Tool Schemas (Characterization)
# =============================================================================


def test_strict_schema_adds_required_and_additional_properties() -> None:
    schema = {
        "type": "object",
        "properties": {
            "items": {
                "type": "array",
                "items": {"type": "object", "properties": {"a": {"type": "string"}}},
            },
            "b": {"type": "integer"},
        },
    }

    strict = to_strict_schema(schema)

    assert strict["additionalProperties"] is False
    assert strict["required"] == ["items", "b"]
    item = strict["properties"]["items"]["items"]
    assert item["additionalProperties"] is False
    assert item["required"] == ["a"]
    assert "required" not in schema


def test_whole_file_tool_definition_shape() -> None:
    (definition,) = tool_definitions((WHOLE_FILE_CALL.tool(),))

    assert definition["type"] == "function"
    function = definition["function"]
    assert function["name"] == "wholeFile"
    assert function["strict"] is True
    assert function["parameters"]["required"] == ["wholeFile"]
    assert function["parameters"]["additionalProperties"] is False


# =============================================================================
# Chat Completions Request Building (Characterization)
# =============================================================================


def _response(
    content: str | None = "ok",
    *,
    tool_calls: list[Any] | None = None,
    usage: Any = None,
) -> Any:
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        id="chatcmpl-1",
        choices=[SimpleNamespace(message=message, finish_reason="stop")],
        usage=usage,
    )


class _FakeCompletions:
    """Captures kwargs passed to chat.completions.create()."""

    def __init__(self, *results: Any) -> None:
        self.results = list(results) or [_response()]
        self.calls: list[dict[str, Any]] = []

    @property
    def last_kwargs(self) -> dict[str, Any]:
        return self.calls[-1]

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


def _client_with(
    completions: _FakeCompletions, *, retry_policy: RetryPolicy | None = None
) -> OpenAIClient:
    client = OpenAIClient(
        {"OPENAI_API_KEY": "test-key"},
        retry_policy=retry_policy or RetryPolicy(max_attempts=1),
    )
    fake = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    client._clients[(BASE_URL, "test-key")] = fake
    return client


def _params(**model_kwargs: Any) -> ModelRequestParams:
    params_kwargs = model_kwargs.pop("params", {})
    registry = ModelRegistry([make_model("m", **model_kwargs)])
    provider = next(iter(registry)).provider
    config = role_config(registry, ModelRole.WHOLE_FILE_BUILDER, provider, "m")
    return ModelRequestParams(
        model_config=config,
        messages=(
            Message(role="system", content="Be exact."),
            Message(role="user", content="Build it."),
        ),
        **params_kwargs,
    )


@pytest.mark.asyncio
async def test_request_characterizes_basic_shape() -> None:
    completions = _FakeCompletions()
    client = _client_with(completions)

    response = await client.request(_params())

    assert completions.last_kwargs == {
        "model": "m",
        "messages": [
            {"role": "system", "content": "Be exact."},
            {"role": "user", "content": "Build it."},
        ],
        "temperature": 0.1,
        "top_p": 0.1,
    }
    assert response.content == "ok"
    assert response.generation_id == "chatcmpl-1"
    assert response.finish_reason == "stop"


@pytest.mark.asyncio
async def test_request_honors_model_quirks() -> None:
    completions = _FakeCompletions()
    client = _client_with(completions)

    await client.request(
        _params(
            system_prompt_disabled=True,
            role_params_disabled=True,
            reasoning_effort_enabled=True,
            reasoning_effort=ReasoningEffort.HIGH,
        )
    )

    kwargs = completions.last_kwargs
    assert [m["role"] for m in kwargs["messages"]] == ["user", "user"]
    assert "temperature" not in kwargs
    assert "top_p" not in kwargs
    assert kwargs["reasoning_effort"] == "high"


@pytest.mark.asyncio
async def test_forced_call_returns_arguments_and_usage() -> None:
    arguments = json.dumps({"wholeFile": "a\nX\n"})
    call = SimpleNamespace(function=SimpleNamespace(name="wholeFile", arguments=arguments))
    usage = SimpleNamespace(
        prompt_tokens=100,
        completion_tokens=20,
        total_tokens=120,
        prompt_tokens_details=SimpleNamespace(cached_tokens=64),
    )
    completions = _FakeCompletions(_response(None, tool_calls=[call], usage=usage))
    client = _client_with(completions)

    response = await client.request(
        _params(
            params={
                "tools": (WHOLE_FILE_CALL.tool(),),
                "tool_choice": WHOLE_FILE_CALL.tool_choice(),
                "prediction": "a\nb\n",
                "will_cache_num_tokens": 64,
            }
        )
    )

    kwargs = completions.last_kwargs
    assert kwargs["tool_choice"] == {"type": "function", "function": {"name": "wholeFile"}}
    assert kwargs["tools"][0]["function"]["name"] == "wholeFile"
    assert kwargs["prediction"] == {"type": "content", "content": "a\nb\n"}
    assert response.content == arguments
    assert response.usage == {
        "input_tokens": 100,
        "output_tokens": 20,
        "total_tokens": 120,
        "cached_input_tokens": 64,
        "will_cache_tokens": 64,
    }


@pytest.mark.asyncio
async def test_openrouter_request_carries_extra_body() -> None:
    completions = _FakeCompletions()
    client = _client_with(completions)

    await client.request(
        _params(
            provider=ModelProvider.OPENROUTER,
            include_reasoning=True,
            params={"session_id": "session-1"},
        )
    )

    assert completions.last_kwargs["extra_body"] == {
        "include_reasoning": True,
        "user": "session-1",
    }


@pytest.mark.asyncio
async def test_hooks_run_around_request() -> None:
    events: list[str] = []
    completions = _FakeCompletions()
    client = _client_with(completions)

    await client.request(
        _params(
            params={
                "before_request": lambda: events.append("before"),
                "after_request": lambda: events.append("after"),
            }
        )
    )

    assert events == ["before", "after"]


@pytest.mark.asyncio
async def test_transient_failures_are_retried() -> None:
    completions = _FakeCompletions(_SdkError("overloaded", _Resp(503)), _response("ok"))
    client = _client_with(
        completions, retry_policy=RetryPolicy(max_attempts=2, initial_delay_s=0, jitter=False)
    )

    response = await client.request(_params())

    assert response.content == "ok"
    assert len(completions.calls) == 2


@pytest.mark.asyncio
async def test_non_retryable_failure_is_wrapped() -> None:
    completions = _FakeCompletions(_SdkError("bad request", _Resp(400)), _response("ok"))
    client = _client_with(
        completions, retry_policy=RetryPolicy(max_attempts=3, initial_delay_s=0, jitter=False)
    )

    with pytest.raises(APIError, match="m request failed") as exc:
        await client.request(_params())

    assert exc.value.status_code == 400
    assert exc.value.provider == "openai"
    assert len(completions.calls) == 1


@pytest.mark.asyncio
async def test_missing_key_raises_configuration_error() -> None:
    client = OpenAIClient({})

    with pytest.raises(ConfigurationError, match="No API key") as exc:
        await client.request(_params())
    assert exc.value.hint is not None
    assert "OPENAI_API_KEY" in exc.value.hint


@pytest.mark.asyncio
async def test_empty_choices_raise_api_error() -> None:
    completions = _FakeCompletions(SimpleNamespace(id="x", choices=[], usage=None))
    client = _client_with(completions)

    with pytest.raises(APIError, match="no choices"):
        await client.request(_params())


# =============================================================================
# Mock Client
# =============================================================================


def _whole_file_params(*, structured: bool) -> ModelRequestParams:
    base = _params()
    context = "Path: a.py\n\n<ProposedUpdates>\nln-1: a\nln-2: X\n</ProposedUpdates>"
    return ModelRequestParams(
        model_config=base.model_config,
        messages=(Message(role="user", content=context),),
        tools=(WHOLE_FILE_CALL.tool(),) if structured else None,
        tool_choice=WHOLE_FILE_CALL.tool_choice() if structured else None,
    )


@pytest.mark.asyncio
async def test_mock_client_answers_in_requested_format() -> None:
    client = MockClient()

    structured = await client.request(_whole_file_params(structured=True))
    tagged = await client.request(_whole_file_params(structured=False))

    assert json.loads(structured.content) == {"wholeFile": "a\nX\n"}
    assert tagged.content == "<WholeFile>\na\nX\n</WholeFile>"
    assert (structured.generation_id, tagged.generation_id) == ("mock-1", "mock-2")
    assert structured.usage["total_tokens"] > 0


@pytest.mark.asyncio
async def test_mock_client_echoes_other_requests() -> None:
    response = await MockClient().request(_params())
    assert response.content == "echo: Build it."
