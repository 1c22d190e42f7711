"""Tests for Voter.cast_vote."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from structlog.testing import capture_logs

from llm.src.models import LLMResponse
from voting.src.config import ParticipantConfig
from voting.src.models import FailureKind, Vote, VoteFailure
from voting.src.voter import Voter


@pytest.fixture
def participant():
    return ParticipantConfig(
        id="claude",
        name="Claude",
        provider="anthropic",
        model="claude-test",
        role="Entity specialist",
        weight=1.5,
        temperature=0.1,
        max_tokens=256,
    )


class TestCastVote:
    """Tests for successful and failed votes."""

    @pytest.mark.asyncio
    async def test_successful_vote(self, participant, mock_client, reply):
        mock_client.complete = AsyncMock(return_value=reply(
            "consultar_tiempo", 0.9, entities={"city": "Madrid"}, reasoning="weather"
        ))
        voter = Voter(participant, mock_client, index=2)

        outcome = await voter.cast_vote("prompt", round_id="req_r1", round_number=1, timeout_seconds=5)

        assert isinstance(outcome, Vote)
        assert outcome.vote_id == "vote_req_r1_claude"
        assert outcome.intent == "consultar_tiempo"
        assert outcome.confidence == 0.9
        assert outcome.llm_weight == 1.5
        assert outcome.llm_role == "Entity specialist"
        assert outcome.participant_index == 2
        assert outcome.entities == {"city": "Madrid"}
        assert voter.calls == 1

        mock_client.complete.assert_awaited_once_with(
            "anthropic",
            "prompt",
            model="claude-test",
            temperature=0.1,
            max_tokens=256,
            timeout_seconds=5,
        )

    @pytest.mark.asyncio
    async def test_timeout_cancels_only_this_call(self, participant, mock_client):
        async def slow(*args, **kwargs):
            await asyncio.sleep(10)

        mock_client.complete = AsyncMock(side_effect=slow)
        voter = Voter(participant, mock_client)

        outcome = await voter.cast_vote("prompt", round_id="r1", timeout_seconds=0.05)

        assert isinstance(outcome, VoteFailure)
        assert outcome.kind == FailureKind.TIMEOUT
        assert outcome.llm_id == "claude"

    @pytest.mark.asyncio
    async def test_client_timeout_response(self, participant, mock_client):
        mock_client.complete = AsyncMock(return_value=LLMResponse(
            success=False, error="timeout", message="too slow"
        ))

        outcome = await Voter(participant, mock_client).cast_vote("prompt", round_id="r1")

        assert outcome.kind == FailureKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_backend_error_response(self, participant, mock_client):
        mock_client.complete = AsyncMock(return_value=LLMResponse(
            success=False, error="rate_limited", message="Too many requests"
        ))

        outcome = await Voter(participant, mock_client).cast_vote("prompt", round_id="r1", round_number=2)

        assert outcome.kind == FailureKind.BACKEND_ERROR
        assert "rate_limited" in outcome.message
        assert outcome.round_number == 2

    @pytest.mark.asyncio
    async def test_client_exception(self, participant, mock_client):
        mock_client.complete = AsyncMock(side_effect=RuntimeError("connection reset"))

        outcome = await Voter(participant, mock_client).cast_vote("prompt", round_id="r1")

        assert outcome.kind == FailureKind.BACKEND_ERROR
        assert outcome.message == "connection reset"

    @pytest.mark.asyncio
    async def test_malformed_response(self, participant, mock_client):
        mock_client.complete = AsyncMock(return_value=LLMResponse(
            success=True, text="I would say it is about the weather"
        ))

        outcome = await Voter(participant, mock_client).cast_vote("prompt", round_id="r1")

        assert outcome.kind == FailureKind.MALFORMED


class TestVoterLogging:
    """Tests for structured log events."""

    @pytest.mark.asyncio
    async def test_failure_is_logged(self, participant, mock_client):
        mock_client.complete = AsyncMock(side_effect=RuntimeError("connection reset"))

        with capture_logs() as logs:
            await Voter(participant, mock_client).cast_vote("prompt", round_id="r1", round_number=3)

        failed = [entry for entry in logs if entry["event"] == "voting.vote.failed"]
        assert len(failed) == 1
        assert failed[0]["log_level"] == "warning"
        assert failed[0]["llm_id"] == "claude"
        assert failed[0]["kind"] == "backend_error"
        assert failed[0]["round"] == 3
