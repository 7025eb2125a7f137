"""
Plan extraction from agent output.

Agent output is semi-structured text: the plan is a JSON object that may
arrive inside a fenced ```json block, inline among prose, or split across
several streamed chunks. parse_plan() tries a fixed chain of strategies on
the accumulated text:

1. The first fenced ```json block
2. The outermost raw object containing a "type": "plan" marker
3. The outermost raw object containing a "summary" key

Each candidate is decoded and validated as a Plan; the first one that
validates wins.
"""

import json
import logging
import re
from typing import Any, Optional

from pydantic import ValidationError

from .errors import PlanParseError
from .models import AgentEvent, AgentEventType, Plan

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")
_TYPED_PLAN_OBJECT = re.compile(r"\{[\s\S]*\"type\"\s*:\s*\"plan\"[\s\S]*\}")
_SUMMARY_OBJECT = re.compile(r"\{[\s\S]*\"summary\"\s*:[\s\S]*\}")
_PLAN_MARKER = re.compile(r"\"type\"\s*:\s*\"plan\"")


def _candidates(text: str) -> list[tuple[str, str]]:
    found: list[tuple[str, str]] = []
    fenced = _FENCED_JSON.search(text)
    if fenced:
        found.append(("fenced block", fenced.group(1)))
    for name, pattern in (("plan object", _TYPED_PLAN_OBJECT), ("summary object", _SUMMARY_OBJECT)):
        match = pattern.search(text)
        if match:
            found.append((name, match.group(0)))
    return found


def _decode(raw: str) -> Optional[dict[str, Any]]:
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    # Some agents wrap the plan: {"type": "plan", "plan": {...}}
    inner = data.get("plan")
    if "summary" not in data and isinstance(inner, dict):
        return inner
    return data


def parse_plan(text: str) -> Plan:
    """
    Extract a plan from accumulated agent output.

    Args:
        text: Concatenated plan text from the agent stream

    Returns:
        The validated plan

    Raises:
        PlanParseError: If no strategy yields a valid plan
    """
    if not text or not text.strip():
        raise PlanParseError("Agent returned no plan")

    for strategy, raw in _candidates(text):
        data = _decode(raw)
        if data is None:
            logger.debug("Plan %s is not a JSON object", strategy)
            continue
        try:
            return Plan.model_validate(data)
        except ValidationError as exc:
            logger.debug("Plan %s failed validation: %s", strategy, exc)

    raise PlanParseError("Failed to generate a valid plan")


def is_plan_chunk(event: AgentEvent, accumulated: str = "") -> bool:
    """
    Decide whether a streamed agent event belongs to the plan.

    An explicit plan type wins. Otherwise the chunk counts when the plan
    marker appears in the chunk itself or, once the marker has been seen,
    in the accumulated plan text (a plan object split across chunks).
    """
    if event.type == AgentEventType.PLAN:
        return True
    if event.type not in (AgentEventType.MESSAGE, AgentEventType.RESULT):
        return False
    if _PLAN_MARKER.search(event.content):
        return True
    return bool(accumulated) and _PLAN_MARKER.search(accumulated) is not None and not _is_closed(accumulated)


def _is_closed(text: str) -> bool:
    """Check whether every opened brace in the plan text has been closed."""
    start = text.find("{")
    if start < 0:
        return True
    depth = 0
    in_string = False
    escaped = False
    for char in text[start:]:
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            in_string = not in_string
        elif not in_string:
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
    return depth <= 0
