"""
Voter - One LLM participant casting intent votes.

A voter never raises out of ``cast_vote``: timeouts, backend errors and
unparseable output all come back as a VoteFailure so that one participant
cannot abort a round.
"""

import asyncio
import time
from typing import TYPE_CHECKING

from shared.logging import get_logger

from .config import ParticipantConfig
from .models import FailureKind, Vote, VoteFailure, VoteOutcome
from .response_parser import MalformedResponseError, parse_vote_response

if TYPE_CHECKING:
    from llm.src.client import LLMClient

log = get_logger("voting", "voter")


class Voter:
    """
    Wraps one configured participant and the LLM client.

    Usage:
        voter = Voter(participant, client, index=0)
        outcome = await voter.cast_vote(prompt, round_id="r1", timeout_seconds=30)
        if isinstance(outcome, Vote):
            print(outcome.intent)
    """

    def __init__(self, participant: ParticipantConfig, client: "LLMClient", index: int = 0):
        """
        Initialize voter.

        Args:
            participant: Participant configuration
            client: LLMClient for completions
            index: Registration order of the participant
        """
        self.participant = participant
        self.client = client
        self.index = index
        self.calls = 0

    @property
    def llm_id(self) -> str:
        return self.participant.id

    def _failure(self, kind: FailureKind, message: str, round_number: int, start: float) -> VoteFailure:
        elapsed_ms = round((time.monotonic() - start) * 1000, 2)
        log.warning(
            "voting.vote.failed",
            llm_id=self.participant.id,
            kind=kind.value,
            round=round_number,
            message=message,
            duration_ms=elapsed_ms,
        )
        return VoteFailure(
            llm_id=self.participant.id,
            llm_name=self.participant.name,
            kind=kind,
            message=message,
            round_number=round_number,
            processing_time_ms=elapsed_ms,
        )

    async def cast_vote(
        self,
        prompt: str,
        *,
        round_id: str,
        round_number: int = 1,
        timeout_seconds: float = 30,
    ) -> VoteOutcome:
        """
        Ask the participant's LLM for a vote.

        Args:
            prompt: Fully rendered prompt
            round_id: Id of the round the vote belongs to
            round_number: 1-based round number
            timeout_seconds: Per-call timeout; only this call is cancelled

        Returns:
            Vote on success, VoteFailure otherwise
        """
        self.calls += 1
        start = time.monotonic()
        participant = self.participant

        try:
            response = await asyncio.wait_for(
                self.client.complete(
                    participant.provider,
                    prompt,
                    model=participant.model,
                    temperature=participant.temperature,
                    max_tokens=participant.max_tokens,
                    timeout_seconds=timeout_seconds,
                ),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError:
            return self._failure(
                FailureKind.TIMEOUT,
                f"No response after {timeout_seconds} seconds",
                round_number,
                start,
            )
        except Exception as e:
            return self._failure(FailureKind.BACKEND_ERROR, str(e), round_number, start)

        if not response.success:
            kind = FailureKind.TIMEOUT if response.error == "timeout" else FailureKind.BACKEND_ERROR
            return self._failure(kind, f"{response.error}: {response.message}", round_number, start)

        try:
            fields = parse_vote_response(response.text or "")
        except MalformedResponseError as e:
            return self._failure(FailureKind.MALFORMED, str(e), round_number, start)

        elapsed_ms = round((time.monotonic() - start) * 1000, 2)
        vote = Vote(
            vote_id=f"vote_{round_id}_{participant.id}",
            llm_id=participant.id,
            llm_name=participant.name,
            llm_weight=participant.weight,
            llm_role=participant.role,
            round_number=round_number,
            participant_index=self.index,
            processing_time_ms=elapsed_ms,
            **fields,
        )

        log.info(
            "voting.vote.cast",
            llm_id=participant.id,
            round=round_number,
            intent=vote.intent,
            confidence=vote.confidence,
            duration_ms=elapsed_ms,
        )
        return vote
