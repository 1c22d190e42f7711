"""
Prompt Builder - Centralizes prompt construction for intent voting.

All rendering is deterministic: identical inputs always produce the same
prompt, so prompts can be asserted on in tests.
"""

import re
from typing import Optional, Sequence

from .config import DEFAULT_PROMPT_TEMPLATE, ParticipantConfig
from .models import Vote

NO_CONTEXT = "No context"
NO_HISTORY = "No history"
NO_ACTIONS = "Any"

# {{ and }} are literal braces; {name} is a placeholder
PLACEHOLDER_PATTERN = re.compile(
    r"\{\{|\}\}|\{(user_message|conversation_context|conversation_history|available_actions|llm_role)\}"
)


def format_conversation_context(context: Optional[dict]) -> str:
    """Render context as sorted ``key: value`` lines."""
    if not context:
        return NO_CONTEXT
    return "\n".join(f"- {key}: {context[key]}" for key in sorted(context, key=str))


def format_conversation_history(history: Optional[Sequence[str]]) -> str:
    if not history:
        return NO_HISTORY
    return " | ".join(history)


def format_vote_summary(vote: Vote) -> str:
    """One-line summary of a vote for debate prompts."""
    line = f"{vote.llm_name} voted '{vote.intent}' (confidence {vote.confidence:.2f})"
    if vote.reasoning:
        line += f": {vote.reasoning}"
    return line


def build_debate_section(
    participant: ParticipantConfig,
    prior_votes: Sequence[Vote],
) -> str:
    """
    Build the section showing the previous round's positions.

    Args:
        participant: The voter the prompt is for
        prior_votes: Votes from the previous round

    Returns:
        Formatted section, listing the other voters before the voter's own vote.
    """
    others = [v for v in prior_votes if v.llm_id != participant.id]
    own = next((v for v in prior_votes if v.llm_id == participant.id), None)

    lines = ["PREVIOUS ROUND - OTHER VOTERS:"]
    if others:
        lines.extend(f"- {format_vote_summary(v)}" for v in others)
    else:
        lines.append("- No other valid votes")

    if own is not None:
        lines.append("")
        lines.append(f"YOUR PREVIOUS VOTE: '{own.intent}' (confidence {own.confidence:.2f})")

    lines.append("")
    lines.append(
        "Consider the other voters' reasoning. Did they notice something you missed? "
        "Keep your intent if you still believe it is correct, or change it if you were convinced. "
        "Respond in the same JSON format."
    )
    return "\n".join(lines)


def build_voting_prompt(
    user_message: str,
    context: Optional[dict],
    history: Optional[Sequence[str]],
    *,
    participant: ParticipantConfig,
    available_actions: Sequence[str] = (),
    template: Optional[str] = None,
    prior_votes: Optional[Sequence[Vote]] = None,
) -> str:
    """
    Build the classification prompt for one voter.

    Args:
        user_message: The user's utterance
        context: Conversation context mapping
        history: Previous conversation turns
        participant: The voter the prompt is for
        available_actions: Action names the assistant can execute
        template: Default template when the participant has none
        prior_votes: Previous round's votes (round 2 onwards)

    Returns:
        Formatted prompt string.
    """
    template = participant.prompt_template or template or DEFAULT_PROMPT_TEMPLATE
    values = {
        "user_message": user_message,
        "conversation_context": format_conversation_context(context),
        "conversation_history": format_conversation_history(history),
        "available_actions": ", ".join(available_actions) or NO_ACTIONS,
        "llm_role": participant.role,
    }

    def substitute(match: re.Match) -> str:
        if match.group(1) is not None:
            return values[match.group(1)]
        return match.group(0)[0]

    # Single pass: substituted text is never rescanned for placeholders
    prompt = PLACEHOLDER_PATTERN.sub(substitute, template)

    if prior_votes:
        prompt = f"{prompt.rstrip()}\n\n{build_debate_section(participant, prior_votes)}\n"

    return prompt


def build_single_llm_prompt(
    user_message: str,
    context: Optional[dict],
    history: Optional[Sequence[str]],
    *,
    participant: ParticipantConfig,
    available_actions: Sequence[str] = (),
    template: Optional[str] = None,
) -> str:
    """Build the prompt for single-LLM mode (no debate section)."""
    return build_voting_prompt(
        user_message,
        context,
        history,
        participant=participant,
        available_actions=available_actions,
        template=template,
    )
