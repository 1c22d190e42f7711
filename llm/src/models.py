"""Data models for the LLM library."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Provider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OPENROUTER = "openrouter"


# Default model per provider when a participant does not name one
DEFAULT_MODELS = {
    Provider.OPENAI: "gpt-4o-mini",
    Provider.ANTHROPIC: "claude-sonnet-4-20250514",
    Provider.OPENROUTER: "deepseek/deepseek-r1",
}


@dataclass
class LLMResponse:
    """Response from an LLM completion request."""
    success: bool
    text: Optional[str] = None
    error: Optional[str] = None  # "timeout" | "api_error" | "rate_limited" | ...
    message: Optional[str] = None

    # Metadata
    provider: Optional[str] = None
    model: Optional[str] = None
    response_time_seconds: float = 0.0

    # Rate limiting
    retry_after_seconds: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "text": self.text,
            "error": self.error,
            "message": self.message,
            "provider": self.provider,
            "model": self.model,
            "response_time_seconds": self.response_time_seconds,
            "retry_after_seconds": self.retry_after_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LLMResponse":
        return cls(
            success=data.get("success", False),
            text=data.get("text"),
            error=data.get("error"),
            message=data.get("message"),
            provider=data.get("provider"),
            model=data.get("model"),
            response_time_seconds=data.get("response_time_seconds", 0.0),
            retry_after_seconds=data.get("retry_after_seconds"),
        )
