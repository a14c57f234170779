"""Configuration: frozen Config selecting the model pack and client behavior."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from buildroute.errors import ConfigurationError
from buildroute.packs import DEFAULT_PACK_NAME, default_packs
from buildroute.registry import API_KEY_ENV_VARS
from buildroute.retry import BuildRetryPolicy, RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Mapping

    from buildroute.packs import ModelPack, ModelPackSet
    from buildroute.providers.base import ModelClient

load_dotenv()


@dataclass(frozen=True)
class Config:
    """Immutable configuration for builds.

    API keys are auto-resolved from the provider environment variables
    (``OPENAI_API_KEY``, ``OPENROUTER_API_KEY``) when not passed explicitly.

    Example:
        config = Config(pack="daily-driver")
        client = create_client(config)
    """

    pack: str = DEFAULT_PACK_NAME
    use_mock: bool = False
    #: Files built in parallel by ``WholeFileBuilder.build_many``.
    build_concurrency: int = 4
    build_retry: BuildRetryPolicy = field(default_factory=BuildRetryPolicy)
    transport_retry: RetryPolicy = field(default_factory=RetryPolicy)
    request_timeout_s: float | None = 600.0
    #: Keyed by env var name. Missing entries are filled from the environment.
    api_keys: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Auto-resolve API keys and validate configuration."""
        if self.build_concurrency < 1:
            raise ConfigurationError(
                f"build_concurrency must be >= 1, got {self.build_concurrency}",
                hint="This controls how many files are built in parallel.",
            )
        if self.request_timeout_s is not None and self.request_timeout_s <= 0:
            raise ConfigurationError(
                f"request_timeout_s must be > 0 or None, got {self.request_timeout_s}",
                hint="This bounds each model request; None waits indefinitely.",
            )

        keys = dict(self.api_keys)
        if not self.use_mock:
            for env_var in API_KEY_ENV_VARS.values():
                if not keys.get(env_var):
                    value = os.environ.get(env_var)
                    if value:
                        keys[env_var] = value
        object.__setattr__(self, "api_keys", keys)

        if not self.use_mock and not keys:
            raise ConfigurationError(
                "No model API key configured",
                hint=(
                    "Set "
                    + " or ".join(API_KEY_ENV_VARS.values())
                    + ", pass api_keys=..., or use use_mock=True."
                ),
            )

    def model_pack(self, packs: ModelPackSet | None = None) -> ModelPack:
        """Return the configured pack from *packs* (built-in packs by default)."""
        return (packs or default_packs()).get(self.pack)

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        redacted = {k: "[REDACTED]" for k in sorted(self.api_keys)}
        return (
            f"Config(pack={self.pack!r}, use_mock={self.use_mock}, "
            f"build_concurrency={self.build_concurrency}, api_keys={redacted})"
        )

    __repr__ = __str__


def create_client(config: Config) -> ModelClient:
    """Return the model client described by *config*."""
    if config.use_mock:
        from buildroute.providers.mock import MockClient

        return MockClient()

    from buildroute.providers.openai import OpenAIClient

    return OpenAIClient(
        config.api_keys,
        retry_policy=config.transport_retry,
        timeout_s=config.request_timeout_s,
    )
