"""
Voting configuration - loading, validation and atomic reload.

The configuration lives in the ``voting:`` section of the project
``config.yaml``. ``MOE_ENABLED=true|false`` in the environment overrides the
``moe_enabled`` flag from the file.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from threading import Lock
from typing import Optional, Union

import yaml

from shared.logging import get_logger

from llm.src.models import Provider

from .models import ConsensusAlgorithm

log = get_logger("voting", "config")

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"

MOE_ENABLED_ENV = "MOE_ENABLED"

DEFAULT_PROMPT_TEMPLATE = """You are an expert intent classifier for a voice assistant.
Your role: {llm_role}

Analyse the user's request and determine the most precise intent.

USER REQUEST:
{user_message}

CONVERSATION CONTEXT:
{conversation_context}

CONVERSATION HISTORY:
{conversation_history}

AVAILABLE ACTIONS:
{available_actions}

Respond ONLY with a JSON object:
{{"intent": "intent_name", "confidence": 0.0-1.0, "entities": {{"entity": "value"}}, "subtasks": [{{"action": "action_name", "priority": "high|medium|low"}}], "reasoning": "short explanation"}}
"""


class ConfigurationError(ValueError):
    """Raised when a voting configuration is invalid."""
    pass


# Accepted for compatibility; each maps onto an implemented algorithm
CONSENSUS_ALGORITHM_ALIASES = {
    "condorcet": ConsensusAlgorithm.WEIGHTED_MAJORITY,
    "approval-voting": ConsensusAlgorithm.PLURALITY,
}


def parse_consensus_algorithm(value) -> ConsensusAlgorithm:
    """Resolve an algorithm name. Unknown names fall back to weighted-majority."""
    if isinstance(value, ConsensusAlgorithm):
        return value
    name = str(value).strip().lower().replace("_", "-")
    if name in CONSENSUS_ALGORITHM_ALIASES:
        return CONSENSUS_ALGORITHM_ALIASES[name]
    try:
        return ConsensusAlgorithm(name)
    except ValueError:
        log.warning(
            "voting.config.unknown_algorithm",
            algorithm=value,
            using=ConsensusAlgorithm.WEIGHTED_MAJORITY.value,
        )
        return ConsensusAlgorithm.WEIGHTED_MAJORITY


@dataclass(frozen=True)
class ParticipantConfig:
    """One LLM taking part in the vote."""
    id: str
    name: str
    provider: str = Provider.OPENAI.value
    model: Optional[str] = None
    role: str = "Intent classifier"
    weight: float = 1.0
    temperature: float = 0.2
    max_tokens: int = 1024
    prompt_template: Optional[str] = None
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "ParticipantConfig":
        if not data.get("id"):
            raise ConfigurationError("Participant is missing an 'id'")
        provider = str(data.get("provider", Provider.OPENAI.value)).lower()
        if provider not in {p.value for p in Provider}:
            raise ConfigurationError(f"Participant {data['id']}: unknown provider '{provider}'")
        weight = float(data.get("weight", 1.0))
        if weight < 0:
            raise ConfigurationError(f"Participant {data['id']}: weight must be >= 0")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            provider=provider,
            model=data.get("model"),
            role=data.get("role", "Intent classifier"),
            weight=weight,
            temperature=float(data.get("temperature", 0.2)),
            max_tokens=int(data.get("max_tokens", 1024)),
            prompt_template=data.get("prompt_template"),
            enabled=bool(data.get("enabled", True)),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "model": self.model,
            "role": self.role,
            "weight": self.weight,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "prompt_template": self.prompt_template,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class VotingConfiguration:
    """Process-wide MoE voting configuration. Immutable; reload swaps it."""
    moe_enabled: bool = True
    participants: tuple = ()
    max_debate_rounds: int = 1
    parallel_voting: bool = True
    consensus_threshold: float = 0.6
    timeout_per_vote_ms: int = 30000

    minimum_votes: int = 2
    consensus_algorithm: ConsensusAlgorithm = ConsensusAlgorithm.WEIGHTED_MAJORITY
    weighted_scoring: bool = True
    confidence_boost: bool = False
    confidence_boost_factor: float = 0.1
    entity_merging: bool = True
    subtask_consolidation: bool = True
    stop_when_stalled: bool = False

    # Single-LLM mode: participant id, or an inline participant definition
    single_llm: Union[str, ParticipantConfig, None] = None
    single_llm_timeout_ms: Optional[int] = None

    available_actions: tuple = ()
    default_prompt_template: str = field(default=DEFAULT_PROMPT_TEMPLATE, repr=False)

    def __post_init__(self):
        if self.max_debate_rounds < 1:
            raise ConfigurationError("max_debate_rounds must be >= 1")
        if not 0.0 <= self.consensus_threshold <= 1.0:
            raise ConfigurationError("consensus_threshold must be between 0 and 1")
        if self.timeout_per_vote_ms <= 0:
            raise ConfigurationError("timeout_per_vote_ms must be > 0")
        if self.single_llm_timeout_ms is not None and self.single_llm_timeout_ms <= 0:
            raise ConfigurationError("single_llm_timeout_ms must be > 0")
        if self.minimum_votes < 1:
            raise ConfigurationError("minimum_votes must be >= 1")
        ids = [p.id for p in self.participants]
        if len(ids) != len(set(ids)):
            raise ConfigurationError("participant ids must be unique")
        if isinstance(self.single_llm, str) and self.single_llm not in ids:
            raise ConfigurationError(f"single_llm '{self.single_llm}' is not a participant id")
        object.__setattr__(
            self, "consensus_algorithm", parse_consensus_algorithm(self.consensus_algorithm)
        )

    @property
    def enabled_participants(self) -> list[ParticipantConfig]:
        return [p for p in self.participants if p.enabled]

    @property
    def timeout_per_vote_seconds(self) -> float:
        return self.timeout_per_vote_ms / 1000

    @property
    def single_llm_timeout_seconds(self) -> float:
        return (self.single_llm_timeout_ms or self.timeout_per_vote_ms) / 1000

    def single_llm_participant(self) -> Optional[ParticipantConfig]:
        """
        Resolve the participant used for single-LLM mode.

        An inline definition wins; an id refers to a configured participant
        (checked at construction); otherwise the first enabled, then first
        configured, participant.
        """
        if isinstance(self.single_llm, ParticipantConfig):
            return self.single_llm
        if isinstance(self.single_llm, str):
            return next(p for p in self.participants if p.id == self.single_llm)
        enabled = self.enabled_participants
        if enabled:
            return enabled[0]
        return self.participants[0] if self.participants else None

    @classmethod
    def from_dict(cls, data: dict) -> "VotingConfiguration":
        """Build from the ``voting:`` section of config.yaml."""
        data = data or {}
        participants = tuple(
            ParticipantConfig.from_dict(p) for p in data.get("participants") or []
        )

        single_llm = data.get("single_llm")
        if isinstance(single_llm, dict):
            single_llm = ParticipantConfig.from_dict(single_llm)

        kwargs = dict(
            moe_enabled=bool(data.get("moe_enabled", True)),
            participants=participants,
            max_debate_rounds=int(data.get("max_debate_rounds", 1)),
            parallel_voting=bool(data.get("parallel_voting", True)),
            consensus_threshold=float(data.get("consensus_threshold", 0.6)),
            timeout_per_vote_ms=int(data.get("timeout_per_vote_ms", 30000)),
            minimum_votes=int(data.get("minimum_votes", 2)),
            consensus_algorithm=data.get("consensus_algorithm", ConsensusAlgorithm.WEIGHTED_MAJORITY),
            weighted_scoring=bool(data.get("weighted_scoring", True)),
            confidence_boost=bool(data.get("confidence_boost", False)),
            confidence_boost_factor=float(data.get("confidence_boost_factor", 0.1)),
            entity_merging=bool(data.get("entity_merging", True)),
            subtask_consolidation=bool(data.get("subtask_consolidation", True)),
            stop_when_stalled=bool(data.get("stop_when_stalled", False)),
            single_llm=single_llm,
            single_llm_timeout_ms=data.get("single_llm_timeout_ms"),
            available_actions=tuple(data.get("available_actions") or ()),
        )
        if data.get("default_prompt_template"):
            kwargs["default_prompt_template"] = data["default_prompt_template"]
        return cls(**kwargs)

    def to_dict(self) -> dict:
        single_llm = self.single_llm
        if isinstance(single_llm, ParticipantConfig):
            single_llm = single_llm.to_dict()
        return {
            "moe_enabled": self.moe_enabled,
            "participants": [p.to_dict() for p in self.participants],
            "max_debate_rounds": self.max_debate_rounds,
            "parallel_voting": self.parallel_voting,
            "consensus_threshold": self.consensus_threshold,
            "timeout_per_vote_ms": self.timeout_per_vote_ms,
            "minimum_votes": self.minimum_votes,
            "consensus_algorithm": self.consensus_algorithm.value,
            "weighted_scoring": self.weighted_scoring,
            "confidence_boost": self.confidence_boost,
            "confidence_boost_factor": self.confidence_boost_factor,
            "entity_merging": self.entity_merging,
            "subtask_consolidation": self.subtask_consolidation,
            "stop_when_stalled": self.stop_when_stalled,
            "single_llm": single_llm,
            "single_llm_timeout_ms": self.single_llm_timeout_ms,
            "available_actions": list(self.available_actions),
            "default_prompt_template": self.default_prompt_template,
        }


def _env_flag(value: str) -> Optional[bool]:
    text = value.strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return None


def apply_env_overrides(config: VotingConfiguration) -> VotingConfiguration:
    """Apply MOE_ENABLED from the environment, if set to a recognisable flag."""
    raw = os.environ.get(MOE_ENABLED_ENV)
    if raw is None:
        return config
    flag = _env_flag(raw)
    if flag is None:
        log.warning("voting.config.invalid_env", variable=MOE_ENABLED_ENV, value=raw)
        return config
    return replace(config, moe_enabled=flag)


def load_voting_config(config_path: Optional[Union[str, Path]] = None) -> VotingConfiguration:
    """
    Load voting config from YAML file.

    Args:
        config_path: Path to config file. If None, uses the project config.yaml

    Returns:
        VotingConfiguration (defaults when the file or section is missing)

    Raises:
        ConfigurationError: If the file exists but cannot be parsed or is invalid
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

    if not path.exists():
        log.warning("voting.config.file_missing", config_path=str(path), using_defaults=True)
        return apply_env_overrides(VotingConfiguration())

    try:
        full_config = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse {path}: {e}") from e

    config = VotingConfiguration.from_dict(full_config.get("voting", {}))
    return apply_env_overrides(config)


class ConfigStore:
    """
    Holds the active VotingConfiguration.

    Readers take a snapshot with ``get()``; ``swap()`` and ``reload()``
    replace the whole object under a lock, so a round never sees a
    half-updated configuration.
    """

    def __init__(
        self,
        config: Optional[VotingConfiguration] = None,
        config_path: Optional[Union[str, Path]] = None,
    ):
        self.config_path = Path(config_path) if config_path is not None else None
        self._lock = Lock()
        self._config = config if config is not None else load_voting_config(self.config_path)
        self._reload_count = 0

    def get(self) -> VotingConfiguration:
        with self._lock:
            return self._config

    def swap(self, config: VotingConfiguration) -> VotingConfiguration:
        """Replace the active configuration. Returns the previous one."""
        with self._lock:
            previous = self._config
            self._config = config
            self._reload_count += 1
        log.info(
            "voting.config.swapped",
            moe_enabled=config.moe_enabled,
            participants=len(config.participants),
            max_debate_rounds=config.max_debate_rounds,
        )
        return previous

    def reload(self) -> VotingConfiguration:
        """
        Re-read the configuration file and swap it in.

        A load error leaves the current configuration active and re-raises.
        """
        try:
            config = load_voting_config(self.config_path)
        except ConfigurationError as e:
            log.error("voting.config.reload_failed", error=str(e))
            raise
        self.swap(config)
        return config

    @property
    def reload_count(self) -> int:
        return self._reload_count
