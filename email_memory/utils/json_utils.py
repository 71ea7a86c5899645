"""
JSON utilities for cleaning LLM responses.
"""

import re

_FENCE = re.compile(r'```(?:json)?\s*(.*?)```', re.DOTALL | re.IGNORECASE)


def clean_json_response(response: str) -> str:
    """Pull the JSON payload out of an LLM reply.

    Handles a fenced ```json block anywhere in the reply, an unterminated
    opening fence, and prose before or after a bare array/object.

    Args:
        response: Raw LLM response

    Returns:
        Best-effort JSON string (may still fail to parse)
    """
    response = (response or '').strip()

    fenced = _FENCE.search(response)
    if fenced:
        return fenced.group(1).strip()

    if response.lower().startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    starts = [i for i in (response.find('['), response.find('{')) if i != -1]
    if starts:
        start = min(starts)
        end = max(response.rfind(']'), response.rfind('}'))
        if end > start:
            response = response[start:end + 1]

    return response.strip()
