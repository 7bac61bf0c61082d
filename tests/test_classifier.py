"""Tests for exec response classification."""

from __future__ import annotations

import json

import pytest

from policyprobe.classifier import classify, denial_signals
from policyprobe.models import OutcomeCategory


def _raw(payload) -> str:
    return json.dumps(payload)


class TestUnreadableResponses:
    """Empty and malformed bodies."""

    @pytest.mark.parametrize("raw", ["", None, "   \n"])
    def test_empty_is_no_response(self, raw):
        outcome = classify(raw)
        assert outcome.category == OutcomeCategory.ERROR
        assert outcome.reason == "no response"

    def test_invalid_json(self):
        outcome = classify("<html>502 Bad Gateway</html>")
        assert outcome.category == OutcomeCategory.ERROR
        assert outcome.reason.startswith("parse error: <html>")

    def test_parse_error_preview_is_truncated(self):
        outcome = classify("x" * 1000)
        assert outcome.reason == "parse error: " + "x" * 200

    def test_json_array_is_parse_error(self):
        outcome = classify("[1, 2, 3]")
        assert outcome.category == OutcomeCategory.ERROR
        assert outcome.reason.startswith("parse error")

    def test_empty_object_is_error(self):
        outcome = classify("{}")
        assert outcome.category == OutcomeCategory.ERROR
        assert outcome.exit_code is None


class TestExplicitDenial:
    """result.error with E_POLICY_DENIED."""

    def test_policy_error(self):
        outcome = classify(_raw({
            "result": {"error": {
                "code": "E_POLICY_DENIED",
                "message": "sudo is not allowed",
                "policy_rule": "block-privilege-escalation",
            }},
        }))
        assert outcome.category == OutcomeCategory.BLOCKED
        assert outcome.rule_id == "block-privilege-escalation"
        assert outcome.reason == "sudo is not allowed"
        assert outcome.blocked

    def test_missing_rule_is_unknown(self):
        outcome = classify(_raw({"result": {"error": {"code": "E_POLICY_DENIED"}}}))
        assert outcome.category == OutcomeCategory.BLOCKED
        assert outcome.rule_id == "unknown"

    def test_other_error_code_falls_through(self):
        outcome = classify(_raw({
            "result": {"exit_code": 127, "stderr": "not found", "error": {"code": "E_EXEC"}},
        }))
        assert outcome.category == OutcomeCategory.ERROR
        assert outcome.exit_code == 127


class TestBlockedOperations:
    """events.blocked_operations audit entries."""

    def test_first_operation_wins(self):
        outcome = classify(_raw({
            "result": {"exit_code": 7},
            "events": {"blocked_operations": [
                {"policy": {"rule": "block-cloud-metadata", "message": "metadata"}},
                {"policy": {"rule": "block-private-networks"}},
            ]},
        }))
        assert outcome.category == OutcomeCategory.BLOCKED
        assert outcome.rule_id == "block-cloud-metadata"
        assert outcome.reason == "metadata"

    def test_blocked_even_with_zero_exit(self):
        outcome = classify(_raw({
            "result": {"exit_code": 0, "stdout": "partial"},
            "events": {"blocked_operations": [{"policy": {"rule": "deny-write"}}]},
        }))
        assert outcome.category == OutcomeCategory.BLOCKED
        assert outcome.rule_id == "deny-write"

    def test_partial_output_is_kept(self):
        outcome = classify(_raw({
            "result": {"exit_code": 0, "stdout": "partial\n", "stderr": " warn "},
            "events": {"blocked_operations": [{"policy": {"rule": "deny-write"}}]},
        }))
        assert outcome.exit_code == 0
        assert outcome.stdout == "partial"
        assert outcome.stderr == "warn"

    def test_operation_without_policy_is_unknown(self):
        outcome = classify(_raw({
            "result": {"exit_code": 1},
            "events": {"blocked_operations": ["connect 10.0.0.1:80"]},
        }))
        assert outcome.category == OutcomeCategory.BLOCKED
        assert outcome.rule_id == "unknown"

    def test_empty_list_is_ignored(self):
        outcome = classify(_raw({
            "result": {"exit_code": 0, "stdout": "ok"},
            "events": {"blocked_operations": []},
        }))
        assert outcome.category == OutcomeCategory.ALLOWED


class TestGuidance:
    """Soft guidance denials."""

    def test_blocked_flag(self):
        outcome = classify(_raw({
            "result": {"exit_code": 1},
            "guidance": {"blocked": True, "policy_rule": "env-deny", "reason": "secret"},
        }))
        assert outcome.category == OutcomeCategory.BLOCKED
        assert outcome.rule_id == "env-deny"
        assert outcome.reason == "secret"

    def test_blocked_status(self):
        outcome = classify(_raw({"result": {"exit_code": 0}, "guidance": {"status": "blocked"}}))
        assert outcome.category == OutcomeCategory.BLOCKED
        assert outcome.rule_id == "unknown"

    def test_truthy_non_bool_is_not_blocked(self):
        outcome = classify(_raw({"result": {"exit_code": 0}, "guidance": {"blocked": "yes"}}))
        assert outcome.category == OutcomeCategory.ALLOWED


class TestPriority:
    """When several denial shapes are present the strongest one wins."""

    def test_error_beats_operations_and_guidance(self):
        payload = {
            "result": {"error": {"code": "E_POLICY_DENIED", "policy_rule": "from-error"}},
            "events": {"blocked_operations": [{"policy": {"rule": "from-events"}}]},
            "guidance": {"blocked": True, "policy_rule": "from-guidance"},
        }
        assert denial_signals(payload) == ["policy_error", "blocked_operations", "guidance"]
        assert classify(_raw(payload)).rule_id == "from-error"

    def test_operations_beat_guidance(self):
        outcome = classify(_raw({
            "events": {"blocked_operations": [{"policy": {"rule": "from-events"}}]},
            "guidance": {"blocked": True, "policy_rule": "from-guidance"},
        }))
        assert outcome.rule_id == "from-events"


class TestExitCode:
    """Classification from the exit code alone."""

    def test_success_trims_output(self):
        outcome = classify(_raw({"result": {"exit_code": 0, "stdout": "Hello\n", "stderr": " "}}))
        assert outcome.category == OutcomeCategory.ALLOWED
        assert outcome.exit_code == 0
        assert outcome.stdout == "Hello"
        assert outcome.stderr == ""
        assert outcome.rule_id is None

    def test_failure_is_error(self):
        outcome = classify(_raw({"result": {"exit_code": 2, "stderr": "No such file\n"}}))
        assert outcome.category == OutcomeCategory.ERROR
        assert outcome.exit_code == 2
        assert outcome.reason == "No such file"

    def test_failure_without_stderr(self):
        outcome = classify(_raw({"result": {"exit_code": 1}}))
        assert outcome.reason == "command failed"

    def test_bool_exit_code_is_not_zero(self):
        outcome = classify(_raw({"result": {"exit_code": False}}))
        assert outcome.category == OutcomeCategory.ERROR
        assert outcome.exit_code is None

    def test_malformed_nested_values(self):
        outcome = classify(_raw({
            "result": "oops",
            "events": {"blocked_operations": "nope"},
            "guidance": [],
        }))
        assert outcome.category == OutcomeCategory.ERROR

    def test_non_string_output_is_ignored(self):
        outcome = classify(_raw({"result": {"exit_code": 0, "stdout": 42}}))
        assert outcome.category == OutcomeCategory.ALLOWED
        assert outcome.stdout == ""


class TestNetworkContext:
    """Implicit blocks for network probes."""

    def test_failed_connection_is_blocked(self):
        outcome = classify(
            _raw({"result": {"exit_code": 7, "stderr": "Failed to connect"}}),
            network=True,
        )
        assert outcome.category == OutcomeCategory.BLOCKED
        assert outcome.rule_id is None
        assert outcome.reason == "Failed to connect"

    def test_timeout_without_stderr(self):
        outcome = classify(_raw({"result": {"exit_code": 28}}), network=True)
        assert outcome.category == OutcomeCategory.BLOCKED
        assert outcome.reason == "connection failed"

    def test_success_still_allowed(self):
        outcome = classify(_raw({"result": {"exit_code": 0, "stdout": "ok"}}), network=True)
        assert outcome.category == OutcomeCategory.ALLOWED

    def test_no_response_stays_error(self):
        assert classify("", network=True).category == OutcomeCategory.ERROR

    def test_same_failure_outside_network_context_is_error(self):
        raw = _raw({"result": {"exit_code": 7}})
        assert classify(raw).category == OutcomeCategory.ERROR
