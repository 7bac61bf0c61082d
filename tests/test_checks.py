"""Tests for environment smoke checks and agentsh detect."""

from __future__ import annotations

import pytest

from helpers import FakeFilesystem, FakeProvider, bootstrap_runner

from policyprobe.checks import detect, run_environment_checks
from policyprobe.config import HarnessConfig
from policyprobe.environment import Environment, EnvironmentHandle
from policyprobe.runner import ExecutionError


def _env(runner) -> Environment:
    handle = EnvironmentHandle("fake-1", FakeProvider(runner))
    return Environment(handle=handle, runner=runner, filesystem=FakeFilesystem())


@pytest.fixture
def healthy_runner():
    runner = bootstrap_runner()
    runner.stdout("agentsh --version", "agentsh version 0.9.2\n")
    runner.stdout("head -5 /etc/agentsh/policies/default.yaml", "# policy\nversion: 1\n")
    runner.stdout("head -5 /etc/agentsh/config.yaml", "server:\n  http:\n")
    runner.stdout("echo hello_from_shim", "hello_from_shim\n")
    runner.stdout("session create", '{"id": "sess-1"}')
    return runner


class TestRunEnvironmentChecks:
    """Tests for run_environment_checks()."""

    def test_all_pass(self, healthy_runner):
        report = run_environment_checks(_env(healthy_runner), HarnessConfig())

        assert [c.name for c in report.checks] == [
            "agent:version",
            "agent:health",
            "file:policy",
            "file:config",
            "shim:installed",
            "shim:routes",
            "agent:session",
        ]
        assert report.all_passed, [c for c in report.checks if not c.passed]
        assert report.total_count == 7
        assert report.environment_id == "fake-1"
        assert report.checks[0].detail == "agentsh version 0.9.2"
        assert report.checks[-1].detail == "sess-1"

    def test_unhealthy_server(self, healthy_runner):
        healthy_runner.stdout("/health", "starting")
        report = run_environment_checks(_env(healthy_runner))
        health = report.checks[1]
        assert not health.passed
        assert health.fix
        assert report.failed_count == 1

    def test_missing_shim(self, healthy_runner):
        healthy_runner.fail("test -x /usr/bin/agentsh-shell-shim")
        report = run_environment_checks(_env(healthy_runner))
        assert [c.name for c in report.checks if not c.passed] == ["shim:installed"]

    def test_policy_without_version(self, healthy_runner):
        healthy_runner.stdout("head -5 /etc/agentsh/policies/default.yaml", "rules: []\n")
        report = run_environment_checks(_env(healthy_runner))
        assert [c.name for c in report.checks if not c.passed] == ["file:policy"]

    def test_session_failure(self, healthy_runner):
        healthy_runner.stdout("session create", "not json")
        report = run_environment_checks(_env(healthy_runner))
        session = report.checks[-1]
        assert not session.passed
        assert "failed to parse" in session.detail

    def test_to_dict(self, healthy_runner):
        data = run_environment_checks(_env(healthy_runner)).to_dict()
        assert data["all_passed"] is True
        assert data["total"] == 7
        assert data["checks"][0]["name"] == "agent:version"


class TestDetect:
    """Tests for detect()."""

    def test_text(self):
        runner = bootstrap_runner().stdout("agentsh detect", "seccomp: available\n")
        assert detect(runner) == "seccomp: available"
        assert runner.commands[-1] == "agentsh detect"

    def test_json(self):
        runner = bootstrap_runner().stdout("agentsh detect", '{"seccomp": true, "landlock": false}')
        assert detect(runner, json_out=True) == {"seccomp": True, "landlock": False}
        assert runner.commands[-1] == "agentsh detect -o json"

    def test_json_garbage(self):
        runner = bootstrap_runner().stdout("agentsh detect", "unsupported flag -o")
        with pytest.raises(ValueError, match="non-JSON"):
            detect(runner, json_out=True)

    def test_failure(self):
        runner = bootstrap_runner().fail("agentsh detect")
        with pytest.raises(ExecutionError):
            detect(runner)
