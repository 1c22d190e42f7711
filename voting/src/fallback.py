"""
Fallback Coordinator - Decides between multi-LLM voting and single-LLM mode.

States:
    CHECK_CONFIG -> SINGLE_LLM_MODE | INVOKE_VOTING
    INVOKE_VOTING -> COMPLETED | FALLBACK
    SINGLE_LLM_MODE -> COMPLETED | FAILED
    FALLBACK -> COMPLETED | FAILED

The single-LLM retry happens at most once per request; if it fails the
request fails with VotingFailedError.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, TYPE_CHECKING

from shared.logging import get_logger

from .config import VotingConfiguration
from .consensus import ConsensusEngine, merge_subtasks
from .debate import DebateController, DebateOutcome
from .models import AgreementLevel, ConsensusMethod, ConsensusResult, Vote
from .prompts import build_single_llm_prompt
from .voter import Voter

if TYPE_CHECKING:
    from llm.src.client import LLMClient

log = get_logger("voting", "fallback")


class FallbackState(str, Enum):
    CHECK_CONFIG = "check_config"
    INVOKE_VOTING = "invoke_voting"
    SINGLE_LLM_MODE = "single_llm_mode"
    FALLBACK = "fallback"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = {FallbackState.COMPLETED, FallbackState.FAILED}


class VotingFailedError(Exception):
    """Raised when voting and the single-LLM fallback both fail."""

    def __init__(self, message: str, *, reasons: Optional[list[str]] = None):
        super().__init__(message)
        self.reasons = reasons or []


@dataclass
class VotingRequest:
    """One classification request from the conversation manager."""
    user_message: str
    context: dict = field(default_factory=dict)
    history: list[str] = field(default_factory=list)
    request_id: str = "request"


class FallbackCoordinator:
    """
    Runs one request through the fallback state machine.

    A coordinator is built per request from a configuration snapshot; the
    transitions it took are kept in ``transitions`` and the reasons voting
    was abandoned in ``reasons``.
    """

    def __init__(
        self,
        config: VotingConfiguration,
        client: "LLMClient",
        *,
        engine: Optional[ConsensusEngine] = None,
    ):
        self.config = config
        self.client = client
        self.engine = engine or ConsensusEngine.from_config(config)
        self.transitions: list[tuple[FallbackState, FallbackState]] = []
        self.reasons: list[str] = []
        self.debate_outcome: Optional[DebateOutcome] = None
        self.llm_calls = 0

    def _build_voters(self) -> list[Voter]:
        return [
            Voter(participant, self.client, index=index)
            for index, participant in enumerate(self.config.participants)
            if participant.enabled
        ]

    async def run(self, request: VotingRequest) -> ConsensusResult:
        """
        Drive the state machine to a terminal state.

        Returns:
            ConsensusResult from voting, single-LLM mode or the fallback

        Raises:
            VotingFailedError: If the state machine ends in FAILED
        """
        state = FallbackState.CHECK_CONFIG
        result: Optional[ConsensusResult] = None

        while state not in TERMINAL_STATES:
            if state == FallbackState.CHECK_CONFIG:
                next_state = self._check_config()

            elif state == FallbackState.INVOKE_VOTING:
                result = await self._invoke_voting(request)
                next_state = FallbackState.COMPLETED if result else FallbackState.FALLBACK

            elif state == FallbackState.SINGLE_LLM_MODE:
                result = await self._single_llm(request, ConsensusMethod.SINGLE_LLM_MODE)
                next_state = FallbackState.COMPLETED if result else FallbackState.FAILED

            else:  # FALLBACK
                result = await self._single_llm(request, ConsensusMethod.FALLBACK)
                next_state = FallbackState.COMPLETED if result else FallbackState.FAILED

            self._transition(request, state, next_state)
            state = next_state

        if state == FallbackState.FAILED:
            log.error(
                "voting.fallback.failed",
                request_id=request.request_id,
                reasons=self.reasons,
            )
            raise VotingFailedError(
                f"Could not classify request {request.request_id}: {', '.join(self.reasons)}",
                reasons=list(self.reasons),
            )

        return result

    def _transition(self, request: VotingRequest, source: FallbackState, target: FallbackState) -> None:
        self.transitions.append((source, target))
        log.debug(
            "voting.fallback.transition",
            request_id=request.request_id,
            source=source.value,
            target=target.value,
        )

    def _check_config(self) -> FallbackState:
        if not self.config.moe_enabled:
            log.info("voting.fallback.moe_disabled")
            return FallbackState.SINGLE_LLM_MODE
        if not self.config.enabled_participants:
            log.warning("voting.fallback.no_participants")
            return FallbackState.SINGLE_LLM_MODE
        return FallbackState.INVOKE_VOTING

    async def _invoke_voting(self, request: VotingRequest) -> Optional[ConsensusResult]:
        """Run the debate and resolve it. None means voting must fall back."""
        voters = self._build_voters()
        controller = DebateController(voters, self.config)

        try:
            outcome = await controller.run(
                request.user_message,
                request.context,
                request.history,
                request_id=request.request_id,
            )
        except Exception as e:
            log.error("voting.debate.error", request_id=request.request_id, error=str(e))
            self.reasons.append("voting_error")
            return None
        finally:
            self.llm_calls += sum(v.calls for v in voters)

        self.debate_outcome = outcome

        if outcome.insufficient:
            log.warning(
                "voting.fallback.insufficient_votes",
                request_id=request.request_id,
                valid_votes=len(outcome.votes),
                required=self.config.minimum_votes,
            )
            self.reasons.append("insufficient_votes")
            return None

        result = self.engine.resolve(outcome.votes, rounds_executed=len(outcome.rounds))
        if result.agreement_level == AgreementLevel.FAILED:
            self.reasons.append("consensus_failed")
            return None

        return result

    async def _single_llm(
        self,
        request: VotingRequest,
        method: ConsensusMethod,
    ) -> Optional[ConsensusResult]:
        """Make exactly one LLM call and wrap the vote as a ConsensusResult."""
        participant = self.config.single_llm_participant()
        if participant is None:
            log.error("voting.fallback.no_single_llm", request_id=request.request_id)
            self.reasons.append("no_single_llm")
            return None

        voter = Voter(participant, self.client, index=0)
        prompt = build_single_llm_prompt(
            request.user_message,
            request.context,
            request.history,
            participant=participant,
            available_actions=self.config.available_actions,
            template=self.config.default_prompt_template,
        )

        log.info(
            "voting.single_llm.start",
            request_id=request.request_id,
            llm_id=participant.id,
            method=method.value,
        )

        outcome = await voter.cast_vote(
            prompt,
            round_id=f"{request.request_id}_single",
            timeout_seconds=self.config.single_llm_timeout_seconds,
        )
        self.llm_calls += voter.calls

        if not isinstance(outcome, Vote) or not outcome.is_valid():
            self.reasons.append(f"{method.value}_failed")
            return None

        rounds_executed = len(self.debate_outcome.rounds) if self.debate_outcome else 0
        return ConsensusResult(
            final_intent=outcome.intent,
            consensus_confidence=outcome.confidence,
            consensus_method=method,
            agreement_level=AgreementLevel.HIGH,
            participating_votes=1,
            final_entities=dict(outcome.entities),
            final_subtasks=merge_subtasks([outcome]),
            total_votes=1,
            rounds_executed=rounds_executed,
            reasoning=f"Single LLM decision by {participant.id} ({method.value}): {outcome.reasoning}",
            votes=[outcome],
        )
