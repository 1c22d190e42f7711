"""Voting library - MoE intent classification by multi-LLM consensus."""

from .config import (
    ConfigStore,
    ConfigurationError,
    ParticipantConfig,
    VotingConfiguration,
    load_voting_config,
)
from .consensus import ConsensusEngine
from .debate import DebateController, DebateOutcome, TerminationReason
from .fallback import FallbackCoordinator, FallbackState, VotingFailedError
from .models import (
    AgreementLevel,
    ConsensusAlgorithm,
    ConsensusMethod,
    ConsensusResult,
    FailureKind,
    Subtask,
    Vote,
    VoteFailure,
    VotingRound,
)
from .orchestrator import VotingOrchestrator
from .service import IntentDecision, IntentVotingService
from .voter import Voter

__all__ = [
    "AgreementLevel",
    "ConfigStore",
    "ConfigurationError",
    "ConsensusAlgorithm",
    "ConsensusEngine",
    "ConsensusMethod",
    "ConsensusResult",
    "DebateController",
    "DebateOutcome",
    "FailureKind",
    "FallbackCoordinator",
    "FallbackState",
    "IntentDecision",
    "IntentVotingService",
    "ParticipantConfig",
    "Subtask",
    "TerminationReason",
    "Vote",
    "VoteFailure",
    "Voter",
    "VotingConfiguration",
    "VotingFailedError",
    "VotingOrchestrator",
    "VotingRound",
    "load_voting_config",
]
