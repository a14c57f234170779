"""Internal validation helpers shared by the registry and packs.

Catalog and pack problems are configuration bugs, so these helpers raise
``ConfigurationError`` with the offending entry named in the message.
"""

from __future__ import annotations

from types import MappingProxyType
import typing

from buildroute.errors import ConfigurationError

T = typing.TypeVar("T")
K = typing.TypeVar("K")


def _freeze_mapping(m: typing.Mapping[K, T]) -> typing.Mapping[K, T]:
    """Return an immutable mapping view, wrapping dicts in MappingProxyType."""
    if isinstance(m, MappingProxyType):
        return m
    return MappingProxyType(dict(m))


def _require(
    *,
    condition: bool,
    message: str,
    subject: str | None = None,
    hint: str | None = None,
) -> None:
    """Raise ConfigurationError with optional subject context unless *condition* holds."""
    if condition:
        return
    if subject:
        raise ConfigurationError(f"{subject}: {message}", hint=hint)
    raise ConfigurationError(message, hint=hint)


def _require_set(value: object, *, field_name: str, subject: str) -> None:
    """Require a non-empty string or a positive number."""
    if isinstance(value, bool):
        ok = True
    elif isinstance(value, (int, float)):
        ok = value > 0
    else:
        ok = bool(value)
    _require(
        condition=ok,
        message=f"{field_name} is not set",
        subject=subject,
        hint="Every catalog entry must set all required fields before startup.",
    )
