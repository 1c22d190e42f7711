"""Data models for MoE intent voting."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class AgreementLevel(str, Enum):
    """Categorical strength of a consensus."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    FAILED = "FAILED"


class ConsensusMethod(str, Enum):
    """How the final decision was reached."""
    MAJORITY = "majority"
    WEIGHTED = "weighted"
    UNANIMITY = "unanimity"
    SINGLE_LLM_MODE = "single_llm_mode"
    FALLBACK = "fallback"


class ConsensusAlgorithm(str, Enum):
    """How intent groups are scored."""
    WEIGHTED_MAJORITY = "weighted-majority"
    PLURALITY = "plurality"
    CONFIDENCE_WEIGHTED = "confidence-weighted"
    BORDA_COUNT = "borda-count"


class FailureKind(str, Enum):
    """Why a voter produced no vote."""
    TIMEOUT = "timeout"
    MALFORMED = "malformed"
    BACKEND_ERROR = "backend_error"


# Textual priorities accepted from LLM output
PRIORITY_LEVELS = {"high": 3, "medium": 2, "low": 1}


@dataclass(frozen=True)
class Subtask:
    """A unit of work proposed by a voter. Higher priority is more urgent."""
    action: str
    priority: int = 1
    params: dict = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "priority": self.priority,
            "params": dict(self.params),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Subtask":
        return cls(
            action=str(data["action"]),
            priority=parse_priority(data.get("priority")),
            params=dict(data.get("params") or {}),
        )


def parse_priority(value) -> int:
    """Normalize an int or high/medium/low priority. Unknown values become 1."""
    if isinstance(value, bool):
        return 1
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in PRIORITY_LEVELS:
            return PRIORITY_LEVELS[text]
        try:
            return int(text)
        except ValueError:
            return 1
    return 1


@dataclass(frozen=True)
class Vote:
    """One voter's classification in one round."""
    vote_id: str
    llm_id: str
    llm_name: str
    intent: str
    confidence: float
    llm_weight: float = 1.0
    entities: dict = field(default_factory=dict)
    subtasks: tuple = ()
    reasoning: str = ""

    # Metadata
    llm_role: str = ""
    round_number: int = 1
    participant_index: int = 0  # Registration order, used for tie-breaks
    processing_time_ms: float = 0.0

    @property
    def weighted_score(self) -> float:
        return self.confidence * self.llm_weight

    def is_valid(self) -> bool:
        return bool(self.intent and self.intent.strip()) and 0.0 <= self.confidence <= 1.0

    def to_dict(self) -> dict:
        return {
            "vote_id": self.vote_id,
            "llm_id": self.llm_id,
            "llm_name": self.llm_name,
            "intent": self.intent,
            "confidence": self.confidence,
            "llm_weight": self.llm_weight,
            "entities": dict(self.entities),
            "subtasks": [s.to_dict() for s in self.subtasks],
            "reasoning": self.reasoning,
            "llm_role": self.llm_role,
            "round_number": self.round_number,
            "participant_index": self.participant_index,
            "processing_time_ms": self.processing_time_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Vote":
        return cls(
            vote_id=data["vote_id"],
            llm_id=data["llm_id"],
            llm_name=data.get("llm_name", data["llm_id"]),
            intent=data["intent"],
            confidence=float(data["confidence"]),
            llm_weight=float(data.get("llm_weight", 1.0)),
            entities=dict(data.get("entities") or {}),
            subtasks=tuple(Subtask.from_dict(s) for s in data.get("subtasks") or []),
            reasoning=data.get("reasoning", ""),
            llm_role=data.get("llm_role", ""),
            round_number=data.get("round_number", 1),
            participant_index=data.get("participant_index", 0),
            processing_time_ms=data.get("processing_time_ms", 0.0),
        )


@dataclass(frozen=True)
class VoteFailure:
    """Typed failure returned by a voter instead of raising."""
    llm_id: str
    llm_name: str
    kind: FailureKind
    message: str = ""
    round_number: int = 1
    processing_time_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "llm_id": self.llm_id,
            "llm_name": self.llm_name,
            "kind": self.kind.value,
            "message": self.message,
            "round_number": self.round_number,
            "processing_time_ms": self.processing_time_ms,
        }


VoteOutcome = Union[Vote, VoteFailure]


@dataclass
class VotingRound:
    """
    One round of voting.

    Accumulates votes from the participants' calls; the final round's votes
    are handed to the consensus engine, earlier rounds seed debate prompts.
    """
    round_id: str
    user_message: str
    round_number: int = 1
    conversation_context: dict = field(default_factory=dict)
    conversation_history: list[str] = field(default_factory=list)
    votes: list[Vote] = field(default_factory=list)
    failures: list[VoteFailure] = field(default_factory=list)

    def add(self, outcome: VoteOutcome) -> None:
        if isinstance(outcome, Vote):
            self.votes.append(outcome)
        else:
            self.failures.append(outcome)

    @property
    def valid_votes(self) -> list[Vote]:
        return [v for v in self.votes if v.is_valid()]

    def intents_by_llm(self) -> dict[str, str]:
        return {v.llm_id: v.intent for v in self.valid_votes}

    def to_dict(self) -> dict:
        return {
            "round_id": self.round_id,
            "round_number": self.round_number,
            "votes": [v.to_dict() for v in self.votes],
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass
class ConsensusResult:
    """Final decision handed back to the conversation manager."""
    final_intent: str
    consensus_confidence: float
    consensus_method: ConsensusMethod
    agreement_level: AgreementLevel
    participating_votes: int
    final_entities: dict = field(default_factory=dict)
    final_subtasks: list[Subtask] = field(default_factory=list)

    total_votes: int = 0
    rounds_executed: int = 0
    reasoning: str = ""
    votes: list[Vote] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.agreement_level == AgreementLevel.FAILED

    def to_dict(self) -> dict:
        return {
            "final_intent": self.final_intent,
            "consensus_confidence": self.consensus_confidence,
            "consensus_method": self.consensus_method.value,
            "agreement_level": self.agreement_level.value,
            "participating_votes": self.participating_votes,
            "final_entities": dict(self.final_entities),
            "final_subtasks": [s.to_dict() for s in self.final_subtasks],
            "total_votes": self.total_votes,
            "rounds_executed": self.rounds_executed,
            "reasoning": self.reasoning,
            "votes": [v.to_dict() for v in self.votes],
        }

    @classmethod
    def failed_result(cls, total_votes: int = 0, reasoning: str = "") -> "ConsensusResult":
        return cls(
            final_intent="",
            consensus_confidence=0.0,
            consensus_method=ConsensusMethod.FALLBACK,
            agreement_level=AgreementLevel.FAILED,
            participating_votes=0,
            total_votes=total_votes,
            reasoning=reasoning or "No valid votes to reach consensus",
        )
