"""
Intent Voting Service - Conversation-manager facing wrapper.

Turns a voting failure into a polite message instead of an exception.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence

from shared.logging import get_logger

from .fallback import VotingFailedError
from .models import ConsensusResult
from .orchestrator import VotingOrchestrator

log = get_logger("voting", "service")

NOT_UNDERSTOOD_MESSAGE = "Sorry, I could not understand your request. Could you rephrase it?"


@dataclass
class IntentDecision:
    """Outcome of one classification request."""
    success: bool
    result: Optional[ConsensusResult] = None
    message: str = ""

    @property
    def intent(self) -> Optional[str]:
        return self.result.final_intent if self.result else None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "result": self.result.to_dict() if self.result else None,
            "message": self.message,
        }


class IntentVotingService:
    """
    Usage:
        service = IntentVotingService(orchestrator)
        decision = await service.classify("turn off the lights")
        if decision.success:
            handle(decision.intent, decision.result.final_entities)
        else:
            reply(decision.message)
    """

    def __init__(self, orchestrator: VotingOrchestrator):
        self.orchestrator = orchestrator

    async def classify(
        self,
        user_message: str,
        context: Optional[dict] = None,
        history: Optional[Sequence[str]] = None,
    ) -> IntentDecision:
        try:
            result = await self.orchestrator.execute(user_message, context, history)
        except VotingFailedError as e:
            log.warning("voting.service.not_understood", error=str(e), reasons=e.reasons)
            return IntentDecision(success=False, message=NOT_UNDERSTOOD_MESSAGE)

        return IntentDecision(success=True, result=result, message=result.reasoning)

    def classify_sync(
        self,
        user_message: str,
        context: Optional[dict] = None,
        history: Optional[Sequence[str]] = None,
    ) -> IntentDecision:
        """
        Blocking variant for callers without an event loop.

        Each call runs on a fresh loop, so the client's HTTP session is
        closed before that loop ends.
        """
        async def run() -> IntentDecision:
            try:
                return await self.classify(user_message, context, history)
            finally:
                await self.orchestrator.client.close()

        return asyncio.run(run())
