"""OpenAI-compatible chat completions client.

Serves both OpenAI direct and OpenRouter models: the resolved config carries
the base URL and the credential env var, and one ``AsyncOpenAI`` client is
kept per ``(base_url, api key)``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from buildroute.errors import APIError, ConfigurationError
from buildroute.providers._errors import wrap_provider_error
from buildroute.providers._utils import tool_definitions
from buildroute.providers.models import ModelResponse
from buildroute.registry import ModelProvider
from buildroute.retry import RetryPolicy, retry_async, should_retry_generate

if TYPE_CHECKING:
    from collections.abc import Mapping

    from buildroute.packs import ModelRoleConfig
    from buildroute.providers.models import ModelRequestParams

logger = logging.getLogger(__name__)


class OpenAIClient:
    """Chat completions client for OpenAI and OpenRouter models."""

    def __init__(
        self,
        api_keys: Mapping[str, str],
        *,
        retry_policy: RetryPolicy | None = None,
        timeout_s: float | None = None,
    ) -> None:
        """Initialize with API keys indexed by env var name."""
        self._api_keys = dict(api_keys)
        self._retry_policy = retry_policy or RetryPolicy()
        self._timeout_s = timeout_s
        self._clients: dict[tuple[str, str], Any] = {}

    def _api_key_for(self, config: ModelRoleConfig) -> str:
        env_var = config.base_model_config.api_key_env_var
        key = self._api_keys.get(env_var)
        if not key:
            raise ConfigurationError(
                f"No API key for {config.model_id!r}",
                hint=f"Set {env_var} in the environment or pass it via Config.api_keys.",
            )
        return key

    def _get_client(self, config: ModelRoleConfig) -> Any:
        """Lazily initialize and return the SDK client for *config*'s endpoint."""
        base_url = config.base_model_config.base_url
        api_key = self._api_key_for(config)
        client = self._clients.get((base_url, api_key))
        if client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise APIError(
                    "openai package not installed",
                    hint="pip install openai",
                ) from e
            # Transport retries are ours; the SDK must not retry underneath them.
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=self._timeout_s,
                max_retries=0,
            )
            self._clients[(base_url, api_key)] = client
        return client

    async def request(self, params: ModelRequestParams) -> ModelResponse:
        """Send one chat completion and return its content or call arguments."""
        config = params.model_config
        base = config.base_model_config
        client = self._get_client(config)
        create_kwargs = _create_kwargs(params)
        provider = base.provider.value

        logger.debug(
            "Requesting %s via %s purpose=%r tools=%d prediction=%s",
            base.model_name,
            provider,
            params.purpose,
            len(params.tools or ()),
            params.prediction is not None,
        )

        async def _create() -> Any:
            try:
                return await client.chat.completions.create(**create_kwargs)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise wrap_provider_error(
                    e,
                    provider=provider,
                    phase="request",
                    allow_network_errors=True,
                    message=f"{base.model_id} request failed",
                ) from e

        if params.before_request is not None:
            params.before_request()
        try:
            if self._retry_policy.max_attempts <= 1:
                response = await _create()
            else:
                response = await retry_async(
                    _create,
                    policy=self._retry_policy,
                    should_retry=should_retry_generate,
                )
        finally:
            if params.after_request is not None:
                params.after_request()

        return _to_model_response(response, params)

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.close()


def _create_kwargs(params: ModelRequestParams) -> dict[str, Any]:
    config = params.model_config
    base = config.base_model_config

    messages: list[dict[str, str]] = []
    for m in params.messages:
        role = m.role
        if role == "system" and base.system_prompt_disabled:
            role = "user"
        messages.append({"role": role, "content": m.content})

    create_kwargs: dict[str, Any] = {
        "model": base.model_name,
        "messages": messages,
    }
    if not base.role_params_disabled:
        create_kwargs["temperature"] = config.temperature
        create_kwargs["top_p"] = config.top_p
    if base.reasoning_effort_enabled and base.reasoning_effort is not None:
        create_kwargs["reasoning_effort"] = base.reasoning_effort.value
    if params.tools:
        create_kwargs["tools"] = tool_definitions(params.tools)
        if params.tool_choice is not None:
            create_kwargs["tool_choice"] = {
                "type": "function",
                "function": {"name": params.tool_choice["name"]},
            }
    if params.prediction:
        create_kwargs["prediction"] = {"type": "content", "content": params.prediction}

    if base.provider is ModelProvider.OPENROUTER:
        extra_body: dict[str, Any] = {}
        if base.include_reasoning:
            extra_body["include_reasoning"] = True
        if params.session_id:
            extra_body["user"] = params.session_id
        if extra_body:
            create_kwargs["extra_body"] = extra_body
    return create_kwargs


def _to_model_response(response: Any, params: ModelRequestParams) -> ModelResponse:
    choices = getattr(response, "choices", None) or []
    if not choices:
        raise APIError(
            "Model returned no choices",
            provider=params.model_config.base_model_config.provider.value,
            phase="request",
        )
    choice = choices[0]
    message = choice.message

    content = message.content or ""
    tool_calls = getattr(message, "tool_calls", None) or []
    if params.tool_choice is not None:
        wanted = params.tool_choice["name"]
        for call in tool_calls:
            function = getattr(call, "function", None)
            if function is not None and function.name == wanted:
                content = function.arguments or ""
                break

    usage: dict[str, int] = {}
    usage_raw = getattr(response, "usage", None)
    if usage_raw is not None:
        usage = {
            "input_tokens": int(getattr(usage_raw, "prompt_tokens", 0) or 0),
            "output_tokens": int(getattr(usage_raw, "completion_tokens", 0) or 0),
            "total_tokens": int(getattr(usage_raw, "total_tokens", 0) or 0),
        }
        details = getattr(usage_raw, "prompt_tokens_details", None)
        cached = getattr(details, "cached_tokens", None) if details else None
        if isinstance(cached, int):
            usage["cached_input_tokens"] = cached
    if params.will_cache_num_tokens > 0:
        usage["will_cache_tokens"] = params.will_cache_num_tokens

    generation_id = getattr(response, "id", None)
    finish_reason = getattr(choice, "finish_reason", None)
    return ModelResponse(
        content=content,
        generation_id=generation_id if isinstance(generation_id, str) else None,
        usage=usage,
        finish_reason=finish_reason if isinstance(finish_reason, str) else None,
    )
