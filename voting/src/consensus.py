"""
Consensus Engine - Reconciles a set of votes into one intent decision.

Algorithm:
1. Group valid votes by intent, keeping registration order.
2. Score each group with the configured algorithm:
   - weighted-majority: sum of confidence x weight (default)
   - plurality: one point per vote
   - confidence-weighted: sum of confidence
   - borda-count: sum of weight
   With weighted scoring off, every weight counts as 1.0.
3. Pick the highest score; ties go to the group with more votes, then to
   the group whose first vote was registered earliest.
4. Confidence is the winner's share of the total score. With a single
   intent group that share is always 1.0, so the weight-normalised mean
   confidence of the group is reported instead.
5. Agreement is HIGH when the winner holds at least two thirds of the votes,
   MEDIUM for a plain majority, LOW otherwise.
6. Entities and subtasks are merged from the winning group only, each
   behind its own switch.
"""

from dataclasses import dataclass
from typing import Sequence

from shared.logging import get_logger

from .models import (
    AgreementLevel,
    ConsensusAlgorithm,
    ConsensusMethod,
    ConsensusResult,
    Subtask,
    Vote,
)

log = get_logger("voting", "consensus")


@dataclass
class IntentGroup:
    """Votes sharing one intent."""
    intent: str
    votes: list[Vote]
    score: float = 0.0

    @property
    def first_registered(self) -> int:
        return min(v.participant_index for v in self.votes)


def vote_score(
    vote: Vote,
    algorithm: ConsensusAlgorithm = ConsensusAlgorithm.WEIGHTED_MAJORITY,
    *,
    weighted: bool = True,
) -> float:
    """Contribution of one vote to its intent group's score."""
    if algorithm == ConsensusAlgorithm.PLURALITY:
        return 1.0
    if algorithm == ConsensusAlgorithm.CONFIDENCE_WEIGHTED:
        return vote.confidence
    if algorithm == ConsensusAlgorithm.BORDA_COUNT:
        return vote.llm_weight if weighted else 1.0
    return vote.weighted_score if weighted else vote.confidence


def group_votes(
    votes: Sequence[Vote],
    *,
    algorithm: ConsensusAlgorithm = ConsensusAlgorithm.WEIGHTED_MAJORITY,
    weighted: bool = True,
) -> list[IntentGroup]:
    """
    Group votes by intent in order of first appearance.

    Args:
        votes: Valid votes
        algorithm: Scoring algorithm
        weighted: Use the LLM weight (otherwise 1.0)

    Returns:
        Groups with their scores.
    """
    groups: dict[str, IntentGroup] = {}
    for vote in votes:
        group = groups.setdefault(vote.intent, IntentGroup(intent=vote.intent, votes=[]))
        group.votes.append(vote)
        group.score += vote_score(vote, algorithm, weighted=weighted)
    return list(groups.values())


def select_winner(groups: Sequence[IntentGroup]) -> IntentGroup:
    """Highest score, then most votes, then earliest registered first vote."""
    return min(
        groups,
        key=lambda g: (-g.score, -len(g.votes), g.first_registered),
    )


def classify_agreement(winning_votes: int, total_votes: int) -> AgreementLevel:
    if total_votes == 0:
        return AgreementLevel.FAILED
    # Integer comparisons avoid float rounding at exactly 2/3 and 1/2
    if 3 * winning_votes >= 2 * total_votes:
        return AgreementLevel.HIGH
    if 2 * winning_votes > total_votes:
        return AgreementLevel.MEDIUM
    return AgreementLevel.LOW


def merge_entities(votes: Sequence[Vote]) -> dict[str, str]:
    """
    Union of entity keys; on collision the most confident vote wins.

    Equal confidence keeps the earlier vote.
    """
    merged: dict[str, str] = {}
    for vote in sorted(votes, key=lambda v: -v.confidence):
        for key, value in vote.entities.items():
            merged.setdefault(key, value)
    return merged


def merge_subtasks(votes: Sequence[Vote]) -> list[Subtask]:
    """
    Concatenate subtasks, deduplicated by action.

    Each action keeps its highest-priority occurrence, placed where the
    action first appeared.
    """
    merged: dict[str, Subtask] = {}
    for vote in votes:
        for subtask in vote.subtasks:
            current = merged.get(subtask.action)
            if current is None:
                merged[subtask.action] = subtask
            elif subtask.priority > current.priority:
                merged[subtask.action] = subtask
    return list(merged.values())


class ConsensusEngine:
    """
    Resolves votes into a ConsensusResult.

    ``resolve`` never raises; an empty or fully invalid vote set yields a
    result with ``agreement_level=FAILED``.
    """

    def __init__(
        self,
        *,
        algorithm: ConsensusAlgorithm = ConsensusAlgorithm.WEIGHTED_MAJORITY,
        weighted_scoring: bool = True,
        confidence_boost: bool = False,
        confidence_boost_factor: float = 0.1,
        boost_threshold: float = 0.6,
        entity_merging: bool = True,
        subtask_consolidation: bool = True,
    ):
        """
        Initialize consensus engine.

        Args:
            algorithm: How intent groups are scored
            weighted_scoring: Use each vote's LLM weight (otherwise 1.0)
            confidence_boost: Raise confident decisions by ``confidence_boost_factor``
            confidence_boost_factor: Amount added when boosting
            boost_threshold: Minimum confidence before boosting applies
            entity_merging: Merge entities from the winning votes
            subtask_consolidation: Merge subtasks from the winning votes
        """
        self.algorithm = ConsensusAlgorithm(algorithm)
        self.weighted_scoring = weighted_scoring
        self.confidence_boost = confidence_boost
        self.confidence_boost_factor = confidence_boost_factor
        self.boost_threshold = boost_threshold
        self.entity_merging = entity_merging
        self.subtask_consolidation = subtask_consolidation

    @classmethod
    def from_config(cls, config) -> "ConsensusEngine":
        return cls(
            algorithm=config.consensus_algorithm,
            weighted_scoring=config.weighted_scoring,
            confidence_boost=config.confidence_boost,
            confidence_boost_factor=config.confidence_boost_factor,
            boost_threshold=config.consensus_threshold,
            entity_merging=config.entity_merging,
            subtask_consolidation=config.subtask_consolidation,
        )

    def resolve(self, votes: Sequence[Vote], *, rounds_executed: int = 1) -> ConsensusResult:
        """
        Compute the final intent for a vote set.

        Args:
            votes: Votes in registration order
            rounds_executed: Number of debate rounds that produced them

        Returns:
            ConsensusResult
        """
        total = len(votes)
        valid = [v for v in votes if v.is_valid()]

        if not valid:
            log.warning("voting.consensus.failed", total_votes=total, reason="no_valid_votes")
            result = ConsensusResult.failed_result(total_votes=total)
            result.rounds_executed = rounds_executed
            return result

        # Registration order drives tie-breaks and merge order
        valid = sorted(valid, key=lambda v: v.participant_index)

        groups = group_votes(valid, algorithm=self.algorithm, weighted=self.weighted_scoring)
        winner = select_winner(groups)

        confidence = self._confidence(groups, winner)
        agreement = classify_agreement(len(winner.votes), len(valid))
        method = self._method(groups, valid)

        result = ConsensusResult(
            final_intent=winner.intent,
            consensus_confidence=confidence,
            consensus_method=method,
            agreement_level=agreement,
            participating_votes=len(valid),
            final_entities=merge_entities(winner.votes) if self.entity_merging else {},
            final_subtasks=merge_subtasks(winner.votes) if self.subtask_consolidation else [],
            total_votes=total,
            rounds_executed=rounds_executed,
            votes=list(valid),
        )
        result.reasoning = self._reasoning(result, groups)

        log.info(
            "voting.consensus.resolved",
            final_intent=result.final_intent,
            confidence=round(confidence, 3),
            agreement=agreement.value,
            method=method.value,
            algorithm=self.algorithm.value,
            scores={g.intent: round(g.score, 3) for g in groups},
        )
        return result

    def _confidence(self, groups: list[IntentGroup], winner: IntentGroup) -> float:
        if len(groups) == 1:
            weights = [v.llm_weight if self.weighted_scoring else 1.0 for v in winner.votes]
            total_weight = sum(weights)
            if total_weight > 0:
                confidence = sum(
                    v.confidence * w for v, w in zip(winner.votes, weights)
                ) / total_weight
            else:
                confidence = sum(v.confidence for v in winner.votes) / len(winner.votes)
        else:
            total_score = sum(g.score for g in groups)
            confidence = winner.score / total_score if total_score > 0 else 0.0

        if self.confidence_boost and confidence >= self.boost_threshold:
            confidence += self.confidence_boost_factor

        return min(1.0, max(0.0, confidence))

    def _method(self, groups: list[IntentGroup], votes: list[Vote]) -> ConsensusMethod:
        if len(groups) == 1:
            return ConsensusMethod.UNANIMITY
        uses_weight = self.algorithm in (
            ConsensusAlgorithm.WEIGHTED_MAJORITY,
            ConsensusAlgorithm.BORDA_COUNT,
        )
        if uses_weight and self.weighted_scoring and len({v.llm_weight for v in votes}) > 1:
            return ConsensusMethod.WEIGHTED
        return ConsensusMethod.MAJORITY

    def _reasoning(self, result: ConsensusResult, groups: list[IntentGroup]) -> str:
        lines = [
            f"Consensus by {result.consensus_method.value}: '{result.final_intent}' "
            f"with confidence {result.consensus_confidence:.2f} "
            f"({result.agreement_level.value} agreement, {result.participating_votes} votes).",
            "Scores: " + ", ".join(f"{g.intent}={g.score:.2f}" for g in groups),
            "Votes:",
        ]
        for vote in result.votes:
            lines.append(
                f"- {vote.llm_id}: {vote.intent} "
                f"(confidence {vote.confidence:.2f}, weight {vote.llm_weight:.2f})"
            )
        return "\n".join(lines)
