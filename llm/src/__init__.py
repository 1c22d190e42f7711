"""LLM library - unified completion client."""

from .client import LLMClient
from .models import LLMResponse, Provider

__all__ = ["LLMClient", "LLMResponse", "Provider"]
