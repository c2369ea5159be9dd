"""Plan parsing for model responses.

Models do not always answer with bare JSON, so extraction tries, in order:
the whole response, the last fenced ```json (or plain ```) block, and the
first balanced {...} object. The result is validated against the Plan schema.
"""

import json
import re

from pydantic import ValidationError

from lucicodex.core.models import LuciCodexError, Plan


class PlanParseError(LuciCodexError):
    """Model response does not contain a valid plan."""

    pass


_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def _first_object(text: str) -> str | None:
    """Return the first balanced {...} span, honouring JSON string escapes."""
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def extract_json(raw_output: str) -> str | None:
    """Find the JSON object in a model response, or None."""
    text = raw_output.strip()
    if not text:
        return None

    try:
        json.loads(text)
        return text
    except json.JSONDecodeError:
        pass

    # Prefer the last fenced block; earlier ones are usually examples.
    blocks = _FENCED_BLOCK.findall(text)
    if blocks:
        candidate = blocks[-1].strip()
        if candidate.startswith("{"):
            return candidate

    return _first_object(text)


def parse_plan(raw_output: str, max_commands: int = 0) -> Plan:
    """Extract and validate a Plan from a model response.

    Args:
        raw_output: Raw text returned by the model
        max_commands: Keep at most this many commands (0 keeps all)

    Raises:
        PlanParseError: If no JSON object is found or it is not a valid Plan
    """
    json_str = extract_json(raw_output)
    if json_str is None:
        raise PlanParseError("No JSON object found in model response")

    try:
        plan = Plan.model_validate_json(json_str)
    except ValidationError as e:
        raise PlanParseError(f"Response does not match the plan schema: {e}") from e
    return plan.truncated(max_commands)
