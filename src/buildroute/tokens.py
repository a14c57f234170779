"""Token estimation used for budget decisions.

Estimates are a deterministic character-based approximation. Exact tokenizer
fidelity is not required, only that longer text never estimates lower.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterable

    from buildroute.providers.models import Message

CHARS_PER_TOKEN = 4
TOKENS_PER_MESSAGE = 4
TOKENS_PER_REQUEST = 3


class TokenEstimator(Protocol):
    """Callable returning an approximate token count for *text*."""

    def __call__(self, text: str) -> int: ...  # noqa: D102


def estimate_tokens(text: str) -> int:
    """Return the estimated token count of *text* (ceil of chars / 4)."""
    if not text:
        return 0
    return -(-len(text) // CHARS_PER_TOKEN)


def estimate_messages(
    messages: Iterable[Message], *, estimator: TokenEstimator = estimate_tokens
) -> int:
    """Estimate tokens for a message list, including per-message framing."""
    total = 0
    for message in messages:
        total += TOKENS_PER_MESSAGE + estimator(message.role) + estimator(message.content)
    return total
