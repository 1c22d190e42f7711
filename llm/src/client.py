"""
LLM Client - Unified completion interface over several providers.

Routes requests appropriately:
- Anthropic (Claude) → anthropic SDK
- OpenAI, OpenRouter → OpenAI-compatible chat completions over HTTP
"""

import asyncio
import os
import time
from typing import Optional

import aiohttp
import anthropic

from shared.logging import get_logger

from .models import LLMResponse, Provider, DEFAULT_MODELS

log = get_logger("llm", "client")

# Chat completion endpoints for OpenAI-compatible providers
CHAT_COMPLETION_URLS = {
    Provider.OPENAI: "https://api.openai.com/v1/chat/completions",
    Provider.OPENROUTER: "https://openrouter.ai/api/v1/chat/completions",
}


class LLMClient:
    """
    Unified client for LLM completions.

    Every call returns an LLMResponse; provider and network failures are
    reported through ``success=False`` and an ``error`` kind instead of
    raising.

    Usage:
        client = LLMClient()
        response = await client.complete("anthropic", "Hello!", timeout_seconds=30)
        if response.success:
            print(response.text)
    """

    def __init__(
        self,
        openai_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
        openrouter_api_key: Optional[str] = None,
    ):
        """
        Initialize the client.

        Args:
            openai_api_key: API key for OpenAI (or uses OPENAI_API_KEY env var)
            anthropic_api_key: API key for Claude (or uses ANTHROPIC_API_KEY env var)
            openrouter_api_key: API key for OpenRouter (or uses OPENROUTER_API_KEY env var)
        """
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._http_session_loop: Optional[asyncio.AbstractEventLoop] = None

        # API keys (from args or environment)
        self._openai_key = openai_api_key or os.environ.get("OPENAI_API_KEY")
        self._anthropic_key = anthropic_api_key or os.environ.get("ANTHROPIC_API_KEY")
        self._openrouter_key = openrouter_api_key or os.environ.get("OPENROUTER_API_KEY")

        # Lazy-loaded API clients
        self._anthropic_client = None

    async def _get_http_session(self) -> aiohttp.ClientSession:
        """
        Get or create HTTP session for API calls.

        A session is bound to the event loop it was created on; a call from
        another loop (e.g. a later asyncio.run) gets a fresh session.
        """
        loop = asyncio.get_running_loop()
        if (
            self._http_session is None
            or self._http_session.closed
            or self._http_session_loop is not loop
        ):
            self._http_session = aiohttp.ClientSession()
            self._http_session_loop = loop
        return self._http_session

    def _get_anthropic_client(self):
        """Get or create Anthropic client."""
        if self._anthropic_client is None and self._anthropic_key:
            self._anthropic_client = anthropic.Anthropic(api_key=self._anthropic_key)
        return self._anthropic_client

    def _api_key_for(self, provider: Provider) -> Optional[str]:
        return {
            Provider.OPENAI: self._openai_key,
            Provider.ANTHROPIC: self._anthropic_key,
            Provider.OPENROUTER: self._openrouter_key,
        }[provider]

    async def close(self):
        """Close HTTP session (a session left on a finished loop is dropped)."""
        if (
            self._http_session
            and not self._http_session.closed
            and self._http_session_loop is asyncio.get_running_loop()
        ):
            await self._http_session.close()
        self._http_session = None
        self._http_session_loop = None

    # --- Provider Methods ---

    async def _send_to_anthropic(
        self,
        prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
    ) -> LLMResponse:
        """Send request to the Claude API."""
        client = self._get_anthropic_client()
        if not client:
            return LLMResponse(
                success=False,
                error="auth_required",
                message="ANTHROPIC_API_KEY not configured",
                provider=Provider.ANTHROPIC.value,
            )

        start_time = time.time()

        try:
            # Run sync API call in thread pool
            response = await asyncio.to_thread(
                client.messages.create,
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[{"role": "user", "content": prompt}],
                timeout=timeout_seconds,
            )

            return LLMResponse(
                success=True,
                text=response.content[0].text,
                provider=Provider.ANTHROPIC.value,
                model=model,
                response_time_seconds=time.time() - start_time,
            )

        except anthropic.APITimeoutError:
            return LLMResponse(
                success=False,
                error="timeout",
                message=f"Request timed out after {timeout_seconds} seconds",
                provider=Provider.ANTHROPIC.value,
            )
        except Exception as e:
            error_str = str(e)
            if "rate" in error_str.lower() or "429" in error_str:
                return LLMResponse(
                    success=False,
                    error="rate_limited",
                    message=error_str,
                    provider=Provider.ANTHROPIC.value,
                    retry_after_seconds=60,
                )
            return LLMResponse(
                success=False,
                error="api_error",
                message=error_str,
                provider=Provider.ANTHROPIC.value,
            )

    async def _send_chat_completion(
        self,
        provider: Provider,
        prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
    ) -> LLMResponse:
        """Send request to an OpenAI-compatible chat completions API."""
        api_key = self._api_key_for(provider)
        if not api_key:
            return LLMResponse(
                success=False,
                error="auth_required",
                message=f"{provider.value.upper()}_API_KEY not configured",
                provider=provider.value,
            )

        start_time = time.time()

        try:
            session = await self._get_http_session()
            async with session.post(
                CHAT_COMPLETION_URLS[provider],
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": model,
                    "temperature": temperature,
                    "max_tokens": max_tokens,
                    "messages": [{"role": "user", "content": prompt}],
                },
                timeout=aiohttp.ClientTimeout(total=timeout_seconds),
            ) as resp:
                data = await resp.json()

                if resp.status == 429:
                    return LLMResponse(
                        success=False,
                        error="rate_limited",
                        message=str(data),
                        provider=provider.value,
                        retry_after_seconds=60,
                    )

                if resp.status != 200:
                    return LLMResponse(
                        success=False,
                        error="api_error",
                        message=data.get("error", {}).get("message", str(data)),
                        provider=provider.value,
                    )

                return LLMResponse(
                    success=True,
                    text=data["choices"][0]["message"]["content"],
                    provider=provider.value,
                    model=model,
                    response_time_seconds=time.time() - start_time,
                )

        except asyncio.TimeoutError:
            return LLMResponse(
                success=False,
                error="timeout",
                message=f"Request timed out after {timeout_seconds} seconds",
                provider=provider.value,
            )
        except Exception as e:
            log.warning("llm.request_failed", provider=provider.value, error=str(e))
            return LLMResponse(
                success=False,
                error="api_error",
                message=str(e),
                provider=provider.value,
            )

    # --- Unified Completion Method ---

    async def complete(
        self,
        provider: str,
        prompt: str,
        *,
        model: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
        timeout_seconds: float = 30,
    ) -> LLMResponse:
        """
        Send a prompt to an LLM provider.

        Args:
            provider: Which provider ("openai", "anthropic", "openrouter")
            prompt: The prompt text
            model: Specific model (defaults per provider)
            temperature: Sampling temperature
            max_tokens: Completion length limit
            timeout_seconds: Request timeout

        Returns:
            LLMResponse with the result
        """
        try:
            resolved = Provider(provider.lower())
        except ValueError:
            return LLMResponse(
                success=False,
                error="unknown_provider",
                message=f"Unknown provider: {provider}",
            )

        model = model or DEFAULT_MODELS[resolved]

        if resolved == Provider.ANTHROPIC:
            return await self._send_to_anthropic(
                prompt, model, temperature, max_tokens, timeout_seconds
            )

        return await self._send_chat_completion(
            resolved, prompt, model, temperature, max_tokens, timeout_seconds
        )

    def get_available_providers(self) -> list[str]:
        """Get list of providers with an API key configured."""
        return [
            provider.value
            for provider in Provider
            if self._api_key_for(provider)
        ]
