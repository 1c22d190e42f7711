"""
Voting Orchestrator - Entry point for MoE intent classification.

Usage:
    from llm import LLMClient
    from voting import VotingOrchestrator, ConfigStore

    orchestrator = VotingOrchestrator(LLMClient(), ConfigStore())
    result = await orchestrator.execute("what's the weather in Madrid?")
    print(result.final_intent, result.agreement_level)
"""

import time
import uuid
from threading import Lock
from typing import Optional, Sequence, TYPE_CHECKING

from shared.logging import get_logger

from .config import ConfigStore, VotingConfiguration
from .fallback import FallbackCoordinator, VotingFailedError, VotingRequest
from .models import ConsensusResult

if TYPE_CHECKING:
    from llm.src.client import LLMClient

log = get_logger("voting", "orchestrator")


class VotingOrchestrator:
    """
    Runs voting requests against the active configuration.

    Each ``execute`` call takes one configuration snapshot at the start; a
    concurrent ``reload_configuration`` only affects later requests.
    """

    def __init__(self, client: "LLMClient", config_store: Optional[ConfigStore] = None):
        """
        Initialize orchestrator.

        Args:
            client: LLMClient shared by all voters
            config_store: Store holding the active configuration (loads
                config.yaml when omitted)
        """
        self.client = client
        self.config_store = config_store or ConfigStore()
        self._lock = Lock()
        self._active_rounds = 0
        self._requests_total = 0
        self._requests_failed = 0

    @property
    def config(self) -> VotingConfiguration:
        return self.config_store.get()

    async def execute(
        self,
        user_message: str,
        context: Optional[dict] = None,
        history: Optional[Sequence[str]] = None,
        *,
        request_id: Optional[str] = None,
    ) -> ConsensusResult:
        """
        Classify one user message.

        Args:
            user_message: The user's utterance
            context: Conversation context
            history: Previous conversation turns
            request_id: Id used in logs and vote ids (generated when omitted)

        Returns:
            ConsensusResult

        Raises:
            VotingFailedError: If voting and the single-LLM fallback both fail
        """
        config = self.config_store.get()
        request = VotingRequest(
            user_message=user_message,
            context=dict(context or {}),
            history=list(history or []),
            request_id=request_id or uuid.uuid4().hex[:8],
        )
        coordinator = FallbackCoordinator(config, self.client)

        log.info(
            "voting.request.start",
            request_id=request.request_id,
            moe_enabled=config.moe_enabled,
            participants=len(config.enabled_participants),
        )

        with self._lock:
            self._active_rounds += 1
            self._requests_total += 1
        start = time.monotonic()

        try:
            result = await coordinator.run(request)
        except VotingFailedError:
            with self._lock:
                self._requests_failed += 1
            raise
        finally:
            with self._lock:
                self._active_rounds -= 1

        log.info(
            "voting.request.complete",
            request_id=request.request_id,
            final_intent=result.final_intent,
            method=result.consensus_method.value,
            agreement=result.agreement_level.value,
            confidence=round(result.consensus_confidence, 3),
            llm_calls=coordinator.llm_calls,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
        )
        return result

    def reload_configuration(self, config: Optional[VotingConfiguration] = None) -> VotingConfiguration:
        """
        Swap in a new configuration.

        Args:
            config: New configuration; re-reads the YAML file when omitted

        Returns:
            The now-active configuration

        Raises:
            ConfigurationError: If re-reading fails (the old config stays active)
        """
        if config is None:
            return self.config_store.reload()
        self.config_store.swap(config)
        return config

    def get_statistics(self) -> dict:
        """Snapshot of configuration and request counters."""
        config = self.config_store.get()
        with self._lock:
            active = self._active_rounds
            total = self._requests_total
            failed = self._requests_failed
        return {
            "participants_count": len(config.enabled_participants),
            "moe_enabled": config.moe_enabled,
            "active_rounds": active,
            "max_debate_rounds": config.max_debate_rounds,
            "consensus_threshold": config.consensus_threshold,
            "parallel_voting": config.parallel_voting,
            "timeout_per_vote_ms": config.timeout_per_vote_ms,
            "consensus_algorithm": config.consensus_algorithm.value,
            "requests_total": total,
            "requests_failed": failed,
            "config_reloads": self.config_store.reload_count,
        }

    def is_healthy(self) -> bool:
        """Healthy when a configuration is loaded with at least one enabled participant."""
        config = self.config_store.get()
        return config is not None and bool(config.enabled_participants)
