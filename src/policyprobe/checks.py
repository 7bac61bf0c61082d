"""
Environment smoke checks.

Confirms a provisioned environment is wired up before any probe is sent:
the binary answers, the server is healthy, both config documents are in
place, the shell shim is installed and routes commands, and a session can
be created. Also wraps ``agentsh detect`` for a capability report of the
sandbox the agent landed in.

Usage:
    policyprobe check
    policyprobe check --json-out
    policyprobe detect
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .config import HarnessConfig
from .environment import Environment
from .gateway import SessionError, create_session
from .provisioner import CONFIG_TARGET, POLICY_TARGET
from .runner import CommandRunner

logger = logging.getLogger(__name__)

SHIM_MARKER = "hello_from_shim"


@dataclass
class Check:
    """A single smoke check result.

    Attributes:
        name: Short check identifier.
        description: Human-readable description.
        passed: Whether the check passed.
        detail: Extra info (version, session id, error text).
        fix: Suggested fix if the check failed.
    """

    name: str
    description: str
    passed: bool
    detail: str = ""
    fix: str = ""


@dataclass
class CheckReport:
    """All smoke check results for one environment.

    Attributes:
        checks: Check results in execution order.
        environment_id: Environment the checks ran against.
    """

    checks: list[Check] = field(default_factory=list)
    environment_id: str = ""

    @property
    def passed_count(self) -> int:
        """Number of checks that passed."""
        return sum(1 for c in self.checks if c.passed)

    @property
    def failed_count(self) -> int:
        """Number of checks that failed."""
        return sum(1 for c in self.checks if not c.passed)

    @property
    def total_count(self) -> int:
        """Total number of checks."""
        return len(self.checks)

    @property
    def all_passed(self) -> bool:
        """Whether every check passed."""
        return self.failed_count == 0

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict.

        Returns:
            dict: Full report data.
        """
        return {
            "environment_id": self.environment_id,
            "passed": self.passed_count,
            "failed": self.failed_count,
            "total": self.total_count,
            "all_passed": self.all_passed,
            "checks": [
                {
                    "name": c.name,
                    "description": c.description,
                    "passed": c.passed,
                    "detail": c.detail,
                    "fix": c.fix,
                }
                for c in self.checks
            ],
        }


def run_environment_checks(
    env: Environment, config: Optional[HarnessConfig] = None,
) -> CheckReport:
    """Run every smoke check against a provisioned environment.

    Args:
        env: Environment returned by the provisioner.
        config: Harness configuration (API address, shim path).

    Returns:
        CheckReport with one entry per check.
    """
    config = config or HarnessConfig()
    report = CheckReport(environment_id=env.handle.id)

    report.checks.append(_check_version(env.runner))
    report.checks.append(_check_health(env.runner, config.api_base))
    report.checks.append(_check_document(
        env.runner, "policy", POLICY_TARGET, "version", "Policy file present",
    ))
    report.checks.append(_check_document(
        env.runner, "config", CONFIG_TARGET, "server", "Server config present",
    ))
    report.checks.extend(_check_shim(env.runner, config.shim_path))
    report.checks.append(_check_session(env.runner, env.workspace))

    return report


def _check_version(runner: CommandRunner) -> Check:
    result = runner.run(["agentsh", "--version"], check=False)
    version = result.stdout.strip()
    return Check(
        name="agent:version",
        description="agentsh binary answers --version",
        passed=result.ok and bool(version),
        detail=version or result.stderr.strip()[:100] or "no output",
        fix="" if result.ok else "re-run provisioning; the .deb install failed",
    )


def _check_health(runner: CommandRunner, api_base: str) -> Check:
    result = runner.run(["curl", "-s", f"{api_base}/health"], check=False)
    body = result.stdout.strip()
    passed = result.ok and body == "ok"
    return Check(
        name="agent:health",
        description="Server health endpoint returns ok",
        passed=passed,
        detail=body[:100] or f"exit {result.exit_code}",
        fix="" if passed else "check /var/log/agentsh/server.log",
    )


def _check_document(
    runner: CommandRunner, name: str, path: str, needle: str, description: str,
) -> Check:
    """Check that *path* exists and its first lines mention *needle*."""
    result = runner.run(f"head -5 {path}", check=False)
    passed = result.ok and needle in result.stdout
    return Check(
        name=f"file:{name}",
        description=description,
        passed=passed,
        detail=path,
        fix="" if passed else f"expected '{needle}' near the top of {path}",
    )


def _check_shim(runner: CommandRunner, shim_path: str) -> list[Check]:
    checks = []

    installed = runner.run(["test", "-x", shim_path], check=False).ok
    checks.append(Check(
        name="shim:installed",
        description="Shell shim installed",
        passed=installed,
        detail=shim_path,
        fix="" if installed else "agentsh shim install-shell --bash",
    ))

    result = runner.run(["/bin/bash", "-c", f"echo {SHIM_MARKER}"], check=False)
    routed = result.ok and SHIM_MARKER in result.stdout
    checks.append(Check(
        name="shim:routes",
        description="Command runs through the shim",
        passed=routed,
        detail=result.stdout.strip()[:100] or result.stderr.strip()[:100],
    ))
    return checks


def _check_session(runner: CommandRunner, workspace: str) -> Check:
    try:
        session_id = create_session(runner, workspace)
    except SessionError as exc:
        return Check(
            name="agent:session",
            description="Session creation",
            passed=False,
            detail=str(exc)[:200],
        )
    return Check(
        name="agent:session",
        description="Session creation",
        passed=True,
        detail=session_id,
    )


def detect(runner: CommandRunner, json_out: bool = False) -> Any:
    """Run ``agentsh detect`` and return its report.

    Args:
        runner: Runner bound to the environment.
        json_out: Ask for JSON output and parse it.

    Returns:
        Parsed JSON when *json_out* is set, otherwise the report text.

    Raises:
        ExecutionError: If detection exits non-zero.
        ValueError: If JSON output was requested but not returned.
    """
    command = ["agentsh", "detect"]
    if json_out:
        command += ["-o", "json"]
    output = runner.text(command)
    if not json_out:
        return output
    try:
        return json.loads(output)
    except ValueError as exc:
        raise ValueError(f"agentsh detect returned non-JSON output: {output[:200]}") from exc
