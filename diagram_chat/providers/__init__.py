"""Model stream providers."""

from typing import Optional

from ..config import ModelProvider
from .agent import AgentModelStream
from .base import ModelStream
from .groq import GroqModelStream


def get_model_stream(provider: Optional[ModelProvider] = None) -> ModelStream:
    """Build the model stream for a provider (default: from environment)."""
    if provider is None:
        provider = ModelProvider.from_env()
    if provider == ModelProvider.GROQ:
        return GroqModelStream()
    return AgentModelStream(provider=provider)


__all__ = ["ModelStream", "AgentModelStream", "GroqModelStream", "get_model_stream"]
