"""Model client implementations."""

from .base import ModelClient
from .mock import MockClient
from .models import Message, ModelRequestParams, ModelResponse
from .openai import OpenAIClient

__all__ = [
    "Message",
    "MockClient",
    "ModelClient",
    "ModelRequestParams",
    "ModelResponse",
    "OpenAIClient",
]
