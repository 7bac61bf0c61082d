"""Verification commands: verify, scenarios."""

from __future__ import annotations

import json

import click
from rich.markup import escape
from rich.table import Table

from ..config import Transport
from ..gateway import SessionError, TransportError
from ..harness import ScenarioReport, provision_and_verify
from ..provisioner import ProvisionError
from ..scenarios import CATALOGUE, SUITES, select
from ._common import (
    build_config,
    build_options,
    build_provider,
    console,
    outcome_label,
    provision_options,
)


def _print_report(report: ScenarioReport) -> None:
    console.print()
    suite = None
    for result in report.results:
        if result.scenario.suite != suite:
            suite = result.scenario.suite
            console.print(f"  [bold]{suite.capitalize()}[/]")

        icon = "[green]✓[/]" if result.passed else "[red]✗[/]"
        outcome = result.outcome
        rule = f" [dim]({outcome.rule_id})[/]" if outcome.rule_id else ""
        console.print(
            f"    {icon} {result.scenario.description}: "
            f"{outcome_label(outcome.category)}{rule}"
        )
        if not result.passed:
            console.print(f"      [yellow]{escape(result.note)}[/]")
            if outcome.reason:
                console.print(f"      [dim]{escape(outcome.reason[:200])}[/]")
    console.print()

    if report.all_passed:
        console.print(
            f"  [bold green]✓ All {report.total_count} scenarios passed.[/] "
            "Policy enforcement is live."
        )
    else:
        console.print(
            f"  [bold green]{report.passed_count}[/] passed, "
            f"[bold red]{report.failed_count}[/] failed "
            f"out of {report.total_count} scenarios."
        )
    console.print()


def register_verify_commands(main: click.Group) -> None:
    """Register the verification commands on the main group."""

    @main.command()
    @provision_options
    @click.option(
        "--suite", "suites", multiple=True,
        type=click.Choice(list(SUITES)),
        help="Scenario suite to run (repeatable; all suites when omitted).",
    )
    @click.option(
        "--transport", default=None,
        type=click.Choice([t.value for t in Transport]),
        help="How exec requests reach the agent (http needs a provider exposing the API).",
    )
    @click.option("--api-base", default=None, help="Agent URL reachable from this host (http transport).")
    @click.option("--json-out", is_flag=True, help="Output as machine-readable JSON.")
    def verify(
        home, image, agent_version, arch, workspace, allow_net, env_pairs,
        config_file, policy_file, file_mode, suites, transport, api_base, json_out,
    ):
        """Provision a sandbox and verify agentsh policy enforcement."""
        config = build_config(home, image=image, file_mode=file_mode, transport=transport)
        options = build_options(
            config, agent_version, arch, workspace, allow_net, env_pairs,
            config_file, policy_file,
        )
        scenarios = select(suites or SUITES)

        if not json_out:
            console.print(
                f"\n  [bold]Provisioning[/] {config.image} "
                f"[dim](agentsh {options.agent_version or 'latest'}, "
                f"{len(scenarios)} scenarios)[/]"
            )

        try:
            report = provision_and_verify(
                options,
                provider=build_provider(config),
                scenarios=scenarios,
                config=config,
                api_base=api_base,
            )
        except ProvisionError as exc:
            console.print(f"[bold red]Provisioning failed:[/] {escape(str(exc))}")
            raise SystemExit(1)
        except SessionError as exc:
            console.print(f"[bold red]Session failed:[/] {escape(str(exc))}")
            raise SystemExit(1)
        except TransportError as exc:
            console.print(f"[bold red]Transport unavailable:[/] {escape(str(exc))}")
            raise SystemExit(1)

        if json_out:
            click.echo(json.dumps(report.to_dict(), indent=2))
        else:
            _print_report(report)

        if not report.all_passed:
            raise SystemExit(1)

    @main.command()
    @click.option(
        "--suite", "suites", multiple=True,
        type=click.Choice(list(SUITES)),
        help="Only list this suite (repeatable).",
    )
    def scenarios(suites):
        """List the diagnostic scenarios without running them."""
        console.print()
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Suite", style="dim", no_wrap=True)
        table.add_column("Scenario", style="bold cyan")
        table.add_column("Command")
        table.add_column("Expected")

        for scenario in select(suites or SUITES):
            expected = outcome_label(scenario.expected)
            if scenario.also_accept:
                expected += " / " + " / ".join(outcome_label(c) for c in scenario.also_accept)
            table.add_row(
                scenario.suite,
                scenario.description,
                scenario.request.display(),
                expected,
            )

        console.print(table)
        total = sum(len(CATALOGUE[s]) for s in (suites or SUITES))
        console.print(f"\n  [dim]{total} scenarios[/]\n")
