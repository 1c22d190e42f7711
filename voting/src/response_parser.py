"""
Response Parser - Extracts structured votes from LLM responses.

Voters are asked for a JSON object; models often wrap it in a code fence or
surround it with prose, so the first JSON object found in the text is used.
"""

import json
import re
from typing import Optional

from .models import Subtask, parse_priority


class MalformedResponseError(ValueError):
    """Raised when a response does not contain a usable vote."""
    pass


# Compiled regex patterns
FENCED_JSON_PATTERN = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.IGNORECASE | re.DOTALL)
INTENT_PATTERN = re.compile(r'INTENT:\s*([\w\-]+)', re.IGNORECASE)
CONFIDENCE_PATTERN = re.compile(r'CONFIDENCE:\s*([0-9]*\.?[0-9]+)', re.IGNORECASE)
REASONING_PATTERN = re.compile(r'REASONING:\s*(.+?)(?=\n[A-Z_]+:|$)', re.IGNORECASE | re.DOTALL)

MAX_REASONING_LENGTH = 500


def extract_json_object(text: str) -> Optional[dict]:
    """
    Find the first JSON object in a response.

    Args:
        text: Raw response text

    Returns:
        Decoded object, or None if no object could be decoded.
    """
    fenced = FENCED_JSON_PATTERN.search(text)
    if fenced:
        try:
            data = json.loads(fenced.group(1))
            if isinstance(data, dict):
                return data
        except json.JSONDecodeError:
            pass

    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            data, _ = decoder.raw_decode(text, start)
            if isinstance(data, dict):
                return data
        except json.JSONDecodeError:
            pass
        start = text.find("{", start + 1)
    return None


def parse_confidence(value) -> float:
    """
    Normalize a confidence value to [0, 1].

    Accepts floats, numeric strings and percentages (85 or "85%").

    Raises:
        MalformedResponseError: If the value is not numeric
    """
    if isinstance(value, bool) or value is None:
        raise MalformedResponseError(f"Invalid confidence: {value!r}")
    if isinstance(value, str):
        text = value.strip().rstrip("%")
        try:
            value = float(text)
        except ValueError:
            raise MalformedResponseError(f"Invalid confidence: {value!r}")
    confidence = float(value)
    if confidence > 1.0 and confidence <= 100.0:
        confidence = confidence / 100.0
    return min(1.0, max(0.0, confidence))


def parse_entities(value) -> dict[str, str]:
    """Coerce an entities object into a str -> str mapping, dropping nulls."""
    if not isinstance(value, dict):
        return {}
    return {
        str(key): item if isinstance(item, str) else json.dumps(item, ensure_ascii=False)
        for key, item in value.items()
        if item is not None
    }


def parse_subtasks(value) -> tuple:
    """Parse a list of subtasks; entries without an action are skipped."""
    if not isinstance(value, list):
        return ()
    subtasks = []
    for item in value:
        if isinstance(item, str) and item.strip():
            subtasks.append(Subtask(action=item.strip()))
        elif isinstance(item, dict) and item.get("action"):
            params = {
                k: v for k, v in item.items() if k not in ("action", "priority")
            }
            subtasks.append(
                Subtask(
                    action=str(item["action"]).strip(),
                    priority=parse_priority(item.get("priority")),
                    params=params,
                )
            )
    return tuple(subtasks)


def parse_vote_response(text: str) -> dict:
    """
    Parse a voter's response into vote fields.

    Tries the JSON object first, then a plain ``INTENT:/CONFIDENCE:`` layout.

    Args:
        text: Raw LLM response text

    Returns:
        Dict with intent, confidence, entities, subtasks, reasoning.

    Raises:
        MalformedResponseError: If no intent or confidence can be extracted
    """
    if not text or not text.strip():
        raise MalformedResponseError("Empty response")

    data = extract_json_object(text)
    if data is not None:
        intent = str(data.get("intent") or "").strip()
        if not intent:
            raise MalformedResponseError("Response has no intent")
        if "confidence" not in data:
            raise MalformedResponseError("Response has no confidence")
        return {
            "intent": intent,
            "confidence": parse_confidence(data["confidence"]),
            "entities": parse_entities(data.get("entities")),
            "subtasks": parse_subtasks(data.get("subtasks")),
            "reasoning": str(data.get("reasoning") or "")[:MAX_REASONING_LENGTH],
        }

    intent_match = INTENT_PATTERN.search(text)
    confidence_match = CONFIDENCE_PATTERN.search(text)
    if not intent_match or not confidence_match:
        raise MalformedResponseError("No JSON object or INTENT/CONFIDENCE fields found")

    reasoning_match = REASONING_PATTERN.search(text)
    return {
        "intent": intent_match.group(1),
        "confidence": parse_confidence(confidence_match.group(1)),
        "entities": {},
        "subtasks": (),
        "reasoning": reasoning_match.group(1).strip()[:MAX_REASONING_LENGTH] if reasoning_match else "",
    }
