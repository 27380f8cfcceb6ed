import json
from typing import Any, Dict, List, Union

from trustdesk.utils.logging import get_logger

LOGGER = get_logger(__name__)


def parse_json_safely(text: str) -> Union[Dict[str, Any], List[Any], None]:
    """Parse JSON from text, handling common LLM formatting issues.

    Handles:
    - Markdown code blocks (```json ... ```)
    - Leading/trailing whitespace
    - Prose before or after the JSON payload

    Args:
        text: The text containing JSON

    Returns:
        Parsed JSON object or None if parsing fails
    """
    if not text:
        return None

    cleaned_text = strip_code_fence(text)

    try:
        return json.loads(cleaned_text)
    except json.JSONDecodeError as e:
        LOGGER.warning(f"Initial JSON parse failed: {e}, scanning for an embedded payload")

    result = _first_json_value(cleaned_text)
    if result is None:
        LOGGER.error("Failed to parse JSON from response")
    return result


def strip_code_fence(text: str) -> str:
    cleaned_text = text.strip()
    if cleaned_text.startswith("```json"):
        cleaned_text = cleaned_text[7:]
    elif cleaned_text.startswith("```"):
        cleaned_text = cleaned_text[3:]

    if cleaned_text.endswith("```"):
        cleaned_text = cleaned_text[:-3]

    return cleaned_text.strip()


def _first_json_value(text: str) -> Union[Dict[str, Any], List[Any], None]:
    """Decode the first complete object or array found in ``text``."""
    decoder = json.JSONDecoder()
    idx = 0

    while idx < len(text):
        next_brace = text.find("{", idx)
        next_bracket = text.find("[", idx)
        candidates = [pos for pos in (next_brace, next_bracket) if pos != -1]
        if not candidates:
            return None

        start = min(candidates)
        try:
            value, _ = decoder.raw_decode(text, start)
            return value
        except json.JSONDecodeError:
            idx = start + 1

    return None
