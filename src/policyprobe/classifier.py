"""
Exec response classification.

The agent can report a denial at three layers, and one response may carry
more than one of them:

1. ``result.error.code == "E_POLICY_DENIED"`` — hard policy error, the
   command never ran. Most authoritative, checked first.
2. ``events.blocked_operations`` — audit trail of operations stopped
   mid-execution (network connects, file writes).
3. ``guidance`` with ``blocked: true`` or ``status: "blocked"`` — soft
   advisory.

Only when none of these fire does the exit code decide between ALLOWED and
ERROR. Probes of network reachability pass ``network=True``: there a plain
non-zero exit (curl could not connect) counts as an implicit block.

Example responses::

    {"result": {"exit_code": 0, "stdout": "Hello\\n", "stderr": ""}}
    {"result": {"error": {"code": "E_POLICY_DENIED",
                          "policy_rule": "block-privilege-escalation"}}}
    {"result": {"exit_code": 7},
     "events": {"blocked_operations": [{"policy": {"rule": "block-cloud-metadata"}}]}}
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from .models import ExecOutcome, OutcomeCategory

logger = logging.getLogger(__name__)

POLICY_DENIED_CODE = "E_POLICY_DENIED"
UNKNOWN_RULE = "unknown"
NO_RESPONSE = "no response"
_RAW_PREVIEW = 200


def _obj(parent: Any, key: str) -> Dict[str, Any]:
    """Return ``parent[key]`` if it is a JSON object, else an empty dict."""
    if isinstance(parent, dict):
        value = parent.get(key)
        if isinstance(value, dict):
            return value
    return {}


def _text(parent: Dict[str, Any], key: str) -> str:
    value = parent.get(key)
    return value if isinstance(value, str) else ""


def _blocked_operations(payload: Dict[str, Any]) -> List[Any]:
    ops = _obj(payload, "events").get("blocked_operations")
    return ops if isinstance(ops, list) else []


def _exit_code(result: Dict[str, Any]) -> Optional[int]:
    code = result.get("exit_code")
    # bool is an int subclass; ``true`` is not an exit status
    if isinstance(code, int) and not isinstance(code, bool):
        return code
    return None


def denial_signals(payload: Dict[str, Any]) -> List[str]:
    """Name every denial shape present in *payload*, in priority order."""
    signals = []
    if _text(_obj(_obj(payload, "result"), "error"), "code") == POLICY_DENIED_CODE:
        signals.append("policy_error")
    if _blocked_operations(payload):
        signals.append("blocked_operations")
    guidance = _obj(payload, "guidance")
    if guidance.get("blocked") is True or guidance.get("status") == "blocked":
        signals.append("guidance")
    return signals


def _blocked(result: Dict[str, Any], rule: str, reason: str) -> ExecOutcome:
    # partial execution may still have produced output
    return ExecOutcome(
        category=OutcomeCategory.BLOCKED,
        rule_id=rule or UNKNOWN_RULE,
        reason=reason,
        exit_code=_exit_code(result),
        stdout=_text(result, "stdout").strip(),
        stderr=_text(result, "stderr").strip(),
    )


def classify(raw: Optional[str], *, network: bool = False) -> ExecOutcome:
    """Classify a raw exec response.

    Args:
        raw: Response body text; empty or None when nothing came back.
        network: Treat a failed command without an explicit denial as a
            network-level block.

    Returns:
        ExecOutcome for this response.
    """
    text = (raw or "").strip()
    if not text:
        return ExecOutcome(category=OutcomeCategory.ERROR, reason=NO_RESPONSE)

    try:
        payload = json.loads(text)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        return ExecOutcome(
            category=OutcomeCategory.ERROR,
            reason=f"parse error: {text[:_RAW_PREVIEW]}",
        )

    signals = denial_signals(payload)
    if len(signals) > 1:
        logger.debug("Multiple denial signals %s; using %s", signals, signals[0])

    result = _obj(payload, "result")

    error = _obj(result, "error")
    if _text(error, "code") == POLICY_DENIED_CODE:
        return _blocked(result, _text(error, "policy_rule"), _text(error, "message"))

    ops = _blocked_operations(payload)
    if ops:
        policy = _obj(ops[0], "policy")
        return _blocked(result, _text(policy, "rule"), _text(policy, "message"))

    guidance = _obj(payload, "guidance")
    if guidance.get("blocked") is True or guidance.get("status") == "blocked":
        return _blocked(result, _text(guidance, "policy_rule"), _text(guidance, "reason"))

    exit_code = _exit_code(result)
    stdout = _text(result, "stdout").strip()
    stderr = _text(result, "stderr").strip()

    if exit_code == 0:
        return ExecOutcome(
            category=OutcomeCategory.ALLOWED,
            exit_code=0,
            stdout=stdout,
            stderr=stderr,
        )

    if network:
        return ExecOutcome(
            category=OutcomeCategory.BLOCKED,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            reason=stderr or "connection failed",
        )

    return ExecOutcome(
        category=OutcomeCategory.ERROR,
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        reason=stderr or "command failed",
    )
