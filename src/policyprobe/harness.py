"""
Scenario runner and the provision-and-verify entry point.

Runs a catalogue of probes against one agentsh session and collects a
verdict per probe. A probe that blows up (prepare step fails, transport
dies, classifier chokes) is recorded as a failed ERROR verdict and the run
moves on; the report always has one entry per scenario.

Usage:
    report = provision_and_verify(ProvisionOptions(), provider=DockerProvider())
    sys.exit(0 if report.all_passed else 1)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Sequence

from .classifier import classify
from .config import HarnessConfig, Transport
from .environment import Environment, EnvironmentProvider
from .gateway import (
    ExecGateway,
    FileExecGateway,
    HttpExecGateway,
    TransportError,
    create_session,
)
from .models import DiagnosticScenario, ExecOutcome, OutcomeCategory, ProvisionOptions
from .provisioner import provisioned
from .runner import CommandRunner
from .scenarios import required_env, select

logger = logging.getLogger(__name__)


@dataclass
class ScenarioResult:
    """Verdict for one scenario.

    Attributes:
        scenario: The probe definition.
        outcome: Classified response.
        passed: Whether the outcome met the scenario's expectation.
        note: Why a verdict failed (empty on pass).
        duration_s: Wall time spent on this probe.
    """

    scenario: DiagnosticScenario
    outcome: ExecOutcome
    passed: bool
    note: str = ""
    duration_s: float = 0.0

    def to_dict(self) -> dict:
        return {
            "description": self.scenario.description,
            "suite": self.scenario.suite,
            "command": self.scenario.request.display(),
            "expected": self.scenario.expected.value,
            "category": self.outcome.category.value,
            "passed": self.passed,
            "exit_code": self.outcome.exit_code,
            "rule_id": self.outcome.rule_id,
            "reason": self.outcome.reason,
            "note": self.note,
            "duration_s": round(self.duration_s, 3),
        }


@dataclass
class ScenarioReport:
    """Ordered verdicts for a catalogue run.

    Attributes:
        results: One entry per scenario, in declaration order.
        environment_id: Environment the run executed against.
        session_id: agentsh session used for the probes.
        duration_s: Total runtime.
    """

    results: list[ScenarioResult] = field(default_factory=list)
    environment_id: str = ""
    session_id: str = ""
    duration_s: float = 0.0

    @property
    def passed_count(self) -> int:
        """Number of scenarios that passed."""
        return sum(1 for r in self.results if r.passed)

    @property
    def failed_count(self) -> int:
        """Number of scenarios that failed."""
        return sum(1 for r in self.results if not r.passed)

    @property
    def total_count(self) -> int:
        return len(self.results)

    @property
    def all_passed(self) -> bool:
        """Whether every scenario passed."""
        return self.failed_count == 0

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict.

        Returns:
            dict: Full report data.
        """
        return {
            "environment_id": self.environment_id,
            "session_id": self.session_id,
            "passed": self.passed_count,
            "failed": self.failed_count,
            "total": self.total_count,
            "all_passed": self.all_passed,
            "duration_s": round(self.duration_s, 2),
            "results": [r.to_dict() for r in self.results],
        }


def judge(scenario: DiagnosticScenario, outcome: ExecOutcome) -> tuple[bool, str]:
    """Compare an outcome with what the scenario expects.

    Returns:
        ``(passed, note)``; the note explains a failure.
    """
    if not scenario.accepts(outcome.category):
        wanted = "/".join(c.value for c in (scenario.expected, *scenario.also_accept))
        return False, f"expected {wanted}, got {outcome.category.value}"
    for needle in scenario.forbid_output:
        if needle and needle in outcome.stdout:
            return False, f"forbidden output present: {needle[:30]}"
    return True, ""


def run_scenario(
    gateway: ExecGateway,
    session_id: str,
    scenario: DiagnosticScenario,
    runner: Optional[CommandRunner] = None,
    classifier: Callable[..., ExecOutcome] = classify,
) -> ScenarioResult:
    """Run one probe and judge it. Never raises."""
    start = time.monotonic()
    try:
        if scenario.prepare:
            if runner is None:
                raise RuntimeError("scenario needs a runner for its prepare step")
            runner.run(scenario.prepare)

        try:
            raw = gateway.exec(session_id, scenario.request)
        except TransportError as exc:
            logger.warning("%s: transport failed: %s", scenario.description, exc)
            raw = ""

        outcome = classifier(raw, network=scenario.network)
        passed, note = judge(scenario, outcome)
    except Exception as exc:
        logger.error("%s: unexpected error: %s", scenario.description, exc)
        outcome = ExecOutcome(
            category=OutcomeCategory.ERROR,
            reason=f"unexpected error: {exc}",
        )
        passed, note = False, f"unexpected error: {type(exc).__name__}"

    logger.info(
        "%s %s -> %s%s",
        "PASS" if passed else "FAIL",
        scenario.description,
        outcome.category.value,
        f" ({outcome.rule_id})" if outcome.rule_id else "",
    )
    return ScenarioResult(
        scenario=scenario,
        outcome=outcome,
        passed=passed,
        note=note,
        duration_s=time.monotonic() - start,
    )


def run_catalogue(
    gateway: ExecGateway,
    session_id: str,
    scenarios: Iterable[DiagnosticScenario],
    *,
    runner: Optional[CommandRunner] = None,
    classifier: Callable[..., ExecOutcome] = classify,
) -> ScenarioReport:
    """Run every scenario in order and collect the verdicts.

    Args:
        gateway: Transport to the agent's exec API.
        session_id: Session to execute in.
        scenarios: Probes, run in the order given.
        runner: Runner for ``prepare`` steps.
        classifier: Response classifier.

    Returns:
        ScenarioReport with one result per scenario.
    """
    report = ScenarioReport(session_id=session_id)
    start = time.monotonic()
    for scenario in scenarios:
        report.results.append(
            run_scenario(gateway, session_id, scenario, runner=runner, classifier=classifier)
        )
    report.duration_s = time.monotonic() - start
    return report


def build_gateway(env: Environment, config: HarnessConfig, api_base: Optional[str] = None) -> ExecGateway:
    """Pick the transport configured for this run."""
    if config.transport == Transport.HTTP:
        return HttpExecGateway(api_base or config.api_base)
    return FileExecGateway(env.runner, env.filesystem, config.api_base)


def provision_and_verify(
    options: ProvisionOptions,
    *,
    provider: EnvironmentProvider,
    scenarios: Optional[Sequence[DiagnosticScenario]] = None,
    config: Optional[HarnessConfig] = None,
    api_base: Optional[str] = None,
) -> ScenarioReport:
    """Provision an environment, run the catalogue, tear everything down.

    Variables required by the selected scenarios (the env suite's secrets)
    are merged under the caller's own ``options.env``.

    Args:
        options: Provisioning options.
        provider: Compute provider.
        scenarios: Probes to run; the full catalogue when None.
        config: Harness configuration.
        api_base: Agent URL reachable from this process (HTTP transport).

    Returns:
        ScenarioReport for the run.

    Raises:
        ProvisionError: If bootstrap failed; no probes ran.
        SessionError: If no session could be created.
        TransportError: If the HTTP transport was requested but the
            provider keeps the agent API out of reach of this process.
    """
    config = config or HarnessConfig()
    if config.transport == Transport.HTTP and not provider.api_reachable:
        raise TransportError(
            f"the {provider.name} provider does not expose the agent API to this host; "
            "use the file transport"
        )
    selected = tuple(scenarios) if scenarios is not None else select()

    seeded = {**required_env(selected), **options.env}
    if seeded != options.env:
        options = options.model_copy(update={"env": seeded})

    with provisioned(options, provider, config) as env:
        session_id = create_session(env.runner, env.workspace, settle=config.session_settle)
        gateway = build_gateway(env, config, api_base)
        report = run_catalogue(gateway, session_id, selected, runner=env.runner)
        report.environment_id = env.handle.id

    logger.info(
        "Results: %d passed, %d failed", report.passed_count, report.failed_count,
    )
    return report
