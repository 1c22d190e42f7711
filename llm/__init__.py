from .src import LLMClient, LLMResponse, Provider

__all__ = ["LLMClient", "LLMResponse", "Provider"]
