"""
JSON utilities for memory content and LLM responses.
"""

import json
from typing import Any, Dict, Optional


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    # Remove ```json and ``` markers
    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def extract_json_object(response: str) -> Optional[Dict[str, Any]]:
    """Extract the outermost JSON object from an LLM response.

    Models sometimes wrap the object in prose even when asked for JSON only, so
    everything outside the first '{' and the last '}' is discarded.

    Args:
        response: Raw LLM response

    Returns:
        Parsed dictionary, or None when no object can be parsed
    """
    cleaned = clean_json_response(response or '')
    start = cleaned.find('{')
    end = cleaned.rfind('}')
    if start == -1 or end <= start:
        return None
    try:
        parsed = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def content_to_text(content: Any) -> str:
    """Flatten arbitrary memory content to text.

    Strings pass through, None becomes empty, anything else is JSON-serialised
    (falling back to str() for values json cannot encode).
    """
    if content is None:
        return ''
    if isinstance(content, str):
        return content
    try:
        return json.dumps(content, default=str)
    except (TypeError, ValueError):
        return str(content)


def normalize_json_value(value: Any) -> Any:
    """Normalize a value for a JSON column.

    Strings holding JSON are stored parsed; any other string is wrapped as
    {'text': value}.
    """
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return {'text': value}
    return value
