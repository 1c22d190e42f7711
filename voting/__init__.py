from .src import (
    ConfigStore,
    ConsensusResult,
    IntentDecision,
    IntentVotingService,
    VotingConfiguration,
    VotingFailedError,
    VotingOrchestrator,
)

__all__ = [
    "ConfigStore",
    "ConsensusResult",
    "IntentDecision",
    "IntentVotingService",
    "VotingConfiguration",
    "VotingFailedError",
    "VotingOrchestrator",
]
