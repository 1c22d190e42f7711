"""Shared fixtures for voting tests."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from llm.src.client import LLMClient
from llm.src.models import LLMResponse
from voting.src.config import ParticipantConfig, VotingConfiguration
from voting.src.models import Vote


def vote_reply(intent: str, confidence: float, **extra) -> LLMResponse:
    """A successful LLM response carrying a JSON vote."""
    payload = {"intent": intent, "confidence": confidence, **extra}
    return LLMResponse(success=True, text=json.dumps(payload), provider="openai")


@pytest.fixture
def make_vote():
    """Factory for Vote objects with sensible defaults."""
    def _make(
        intent: str,
        confidence: float,
        weight: float = 1.0,
        llm_id: str = "llm",
        index: int = 0,
        **kwargs,
    ) -> Vote:
        return Vote(
            vote_id=f"vote_{llm_id}",
            llm_id=llm_id,
            llm_name=kwargs.pop("llm_name", llm_id.upper()),
            intent=intent,
            confidence=confidence,
            llm_weight=weight,
            participant_index=index,
            **kwargs,
        )
    return _make


@pytest.fixture
def participants():
    """Three participants; the model name doubles as a lookup key for scripted clients."""
    return (
        ParticipantConfig(id="gpt", name="GPT", provider="openai", model="gpt"),
        ParticipantConfig(id="claude", name="Claude", provider="anthropic", model="claude"),
        ParticipantConfig(id="deepseek", name="DeepSeek", provider="openrouter", model="deepseek"),
    )


@pytest.fixture
def make_config(participants):
    """Build a VotingConfiguration with the three participants and overrides."""
    def _make(**overrides) -> VotingConfiguration:
        values = {
            "participants": participants,
            "max_debate_rounds": 1,
            "timeout_per_vote_ms": 1000,
            "available_actions": ("consultar_tiempo", "ayuda"),
        }
        values.update(overrides)
        return VotingConfiguration(**values)
    return _make


@pytest.fixture
def mock_client():
    """LLMClient mock whose ``complete`` is an AsyncMock."""
    client = MagicMock(spec=LLMClient)
    client.complete = AsyncMock(return_value=vote_reply("ayuda", 0.5))
    client.close = AsyncMock()
    return client


@pytest.fixture
def scripted_client(mock_client):
    """
    LLMClient mock answering per model.

    ``script`` maps a model name to a reply, or to a list of replies consumed
    one per call. A reply is an LLMResponse or an exception to raise.
    """
    def _make(script: dict):
        queues = {
            model: list(replies) if isinstance(replies, list) else replies
            for model, replies in script.items()
        }

        async def complete(provider, prompt, *, model=None, **kwargs):
            reply = queues[model]
            if isinstance(reply, list):
                reply = reply.pop(0) if len(reply) > 1 else reply[0]
            if isinstance(reply, BaseException):
                raise reply
            return reply

        mock_client.complete = AsyncMock(side_effect=complete)
        return mock_client
    return _make


@pytest.fixture
def reply():
    """The ``vote_reply`` helper, for building scripted answers."""
    return vote_reply
