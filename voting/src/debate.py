"""
Debate Controller - Runs voting rounds until agreement or exhaustion.

Round 1 is an independent vote. Each later round shows every voter the
previous round's positions so it can hold or revise its intent. Rounds are
sequential; calls inside a round are concurrent when parallel voting is on.
"""

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

from shared.logging import get_logger

from .config import VotingConfiguration
from .models import FailureKind, Vote, VoteFailure, VoteOutcome, VotingRound
from .prompts import build_voting_prompt
from .voter import Voter

log = get_logger("voting", "debate")


class TerminationReason(str, Enum):
    """Why the debate stopped."""
    CONSENSUS_REACHED = "consensus_reached"
    MAX_ROUNDS = "max_rounds"
    INSUFFICIENT_VOTES = "insufficient_votes"
    STALLED = "stalled"


@dataclass
class DebateOutcome:
    """Result of a full debate: every round plus why it stopped."""
    rounds: list[VotingRound]
    termination: TerminationReason
    agreement: float
    mind_changes: list[dict] = field(default_factory=list)

    @property
    def final_round(self) -> VotingRound:
        return self.rounds[-1]

    @property
    def votes(self) -> list[Vote]:
        return self.final_round.valid_votes

    @property
    def insufficient(self) -> bool:
        return self.termination == TerminationReason.INSUFFICIENT_VOTES

    def to_dict(self) -> dict:
        return {
            "rounds": [r.to_dict() for r in self.rounds],
            "termination": self.termination.value,
            "agreement": self.agreement,
            "mind_changes": self.mind_changes,
        }


def plurality_agreement(votes: Sequence[Vote]) -> float:
    """
    Fraction of votes sharing the most common intent.

    Returns:
        0.0 for no votes, otherwise a value in (0, 1].
    """
    if not votes:
        return 0.0
    counts = Counter(v.intent for v in votes)
    return max(counts.values()) / len(votes)


def find_mind_changes(previous: VotingRound, current: VotingRound) -> list[dict]:
    """List voters whose intent differs between two rounds."""
    before = previous.intents_by_llm()
    changes = []
    for llm_id, intent in current.intents_by_llm().items():
        if llm_id in before and before[llm_id] != intent:
            changes.append({
                "llm_id": llm_id,
                "round": current.round_number,
                "from": before[llm_id],
                "to": intent,
            })
    return changes


class DebateController:
    """
    Orchestrates up to ``max_debate_rounds`` rounds of voting.

    Termination policy, checked after every round in this order:
    1. fewer than ``minimum_votes`` valid votes -> INSUFFICIENT_VOTES
    2. agreement >= ``consensus_threshold`` -> CONSENSUS_REACHED
    3. round number == ``max_debate_rounds`` -> MAX_ROUNDS
    4. (opt-in ``stop_when_stalled``) nobody changed intent -> STALLED
    """

    def __init__(self, voters: Sequence[Voter], config: VotingConfiguration):
        """
        Initialize debate controller.

        Args:
            voters: Voters in registration order
            config: Configuration snapshot for this request
        """
        self.voters = list(voters)
        self.config = config

    async def run(
        self,
        user_message: str,
        context: Optional[dict] = None,
        history: Optional[Sequence[str]] = None,
        *,
        request_id: str = "request",
    ) -> DebateOutcome:
        """
        Run the debate.

        Args:
            user_message: The user's utterance
            context: Conversation context
            history: Conversation history
            request_id: Prefix for round ids

        Returns:
            DebateOutcome with all rounds and the termination reason
        """
        context = dict(context or {})
        history = list(history or [])
        rounds: list[VotingRound] = []
        mind_changes: list[dict] = []
        prior_votes: Optional[list[Vote]] = None

        log.info(
            "voting.debate.start",
            request_id=request_id,
            voters=[v.llm_id for v in self.voters],
            max_rounds=self.config.max_debate_rounds,
            parallel=self.config.parallel_voting,
        )

        for round_number in range(1, self.config.max_debate_rounds + 1):
            voting_round = VotingRound(
                round_id=f"{request_id}_r{round_number}",
                user_message=user_message,
                round_number=round_number,
                conversation_context=context,
                conversation_history=history,
            )
            await self._run_round(voting_round, prior_votes)
            rounds.append(voting_round)

            changes = []
            if len(rounds) > 1:
                changes = find_mind_changes(rounds[-2], voting_round)
                mind_changes.extend(changes)
                for change in changes:
                    log.info("voting.debate.mind_change", **change)

            valid_votes = voting_round.valid_votes
            agreement = plurality_agreement(valid_votes)

            log.info(
                "voting.round.complete",
                round_id=voting_round.round_id,
                round=round_number,
                valid_votes=len(valid_votes),
                failed_votes=len(voting_round.failures),
                intents=voting_round.intents_by_llm(),
                agreement=round(agreement, 3),
            )

            termination = self._check_termination(round_number, valid_votes, agreement, changes)
            if termination is not None:
                log.info(
                    "voting.debate.complete",
                    request_id=request_id,
                    rounds=round_number,
                    termination=termination.value,
                    agreement=round(agreement, 3),
                )
                outcome = DebateOutcome(
                    rounds=rounds,
                    termination=termination,
                    agreement=agreement,
                    mind_changes=mind_changes,
                )
                log.debug("voting.debate.transcript", request_id=request_id, **outcome.to_dict())
                return outcome

            prior_votes = valid_votes

        # max_debate_rounds >= 1 and the last round always terminates
        raise AssertionError("debate loop exited without terminating")

    def _check_termination(
        self,
        round_number: int,
        valid_votes: list[Vote],
        agreement: float,
        changes: list[dict],
    ) -> Optional[TerminationReason]:
        if len(valid_votes) < self.config.minimum_votes:
            return TerminationReason.INSUFFICIENT_VOTES
        if agreement >= self.config.consensus_threshold:
            return TerminationReason.CONSENSUS_REACHED
        if round_number >= self.config.max_debate_rounds:
            return TerminationReason.MAX_ROUNDS
        if self.config.stop_when_stalled and round_number > 1 and not changes:
            return TerminationReason.STALLED
        return None

    async def _run_round(
        self,
        voting_round: VotingRound,
        prior_votes: Optional[list[Vote]],
    ) -> None:
        """Dispatch one vote per voter and collect the outcomes into the round."""
        prompts = [
            build_voting_prompt(
                voting_round.user_message,
                voting_round.conversation_context,
                voting_round.conversation_history,
                participant=voter.participant,
                available_actions=self.config.available_actions,
                template=self.config.default_prompt_template,
                prior_votes=prior_votes,
            )
            for voter in self.voters
        ]

        timeout = self.config.timeout_per_vote_seconds
        if self.config.parallel_voting:
            outcomes = await self._dispatch_parallel(voting_round, prompts, timeout)
        else:
            outcomes = await self._dispatch_sequential(voting_round, prompts, timeout)

        for outcome in outcomes:
            voting_round.add(outcome)

    async def _dispatch_parallel(
        self,
        voting_round: VotingRound,
        prompts: list[str],
        timeout: float,
    ) -> list[VoteOutcome]:
        tasks = [
            voter.cast_vote(
                prompt,
                round_id=voting_round.round_id,
                round_number=voting_round.round_number,
                timeout_seconds=timeout,
            )
            for voter, prompt in zip(self.voters, prompts)
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes: list[VoteOutcome] = []
        for voter, result in zip(self.voters, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                log.warning("voting.vote.exception", llm_id=voter.llm_id, error=str(result))
                outcomes.append(VoteFailure(
                    llm_id=voter.llm_id,
                    llm_name=voter.participant.name,
                    kind=FailureKind.BACKEND_ERROR,
                    message=str(result),
                    round_number=voting_round.round_number,
                ))
            else:
                outcomes.append(result)
        return outcomes

    async def _dispatch_sequential(
        self,
        voting_round: VotingRound,
        prompts: list[str],
        timeout: float,
    ) -> list[VoteOutcome]:
        outcomes: list[VoteOutcome] = []
        for voter, prompt in zip(self.voters, prompts):
            outcomes.append(await voter.cast_vote(
                prompt,
                round_id=voting_round.round_id,
                round_number=voting_round.round_number,
                timeout_seconds=timeout,
            ))
        return outcomes
