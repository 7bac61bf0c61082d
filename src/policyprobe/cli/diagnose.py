"""Environment diagnostics: check, detect."""

from __future__ import annotations

import json

import click
from rich.markup import escape

from ..checks import detect as run_detect
from ..checks import run_environment_checks
from ..provisioner import ProvisionError, provisioned
from ._common import (
    build_config,
    build_options,
    build_provider,
    console,
    provision_options,
)


def register_diagnose_commands(main: click.Group) -> None:
    """Register the diagnostic commands on the main group."""

    @main.command()
    @provision_options
    @click.option("--json-out", is_flag=True, help="Output as machine-readable JSON.")
    def check(
        home, image, agent_version, arch, workspace, allow_net, env_pairs,
        config_file, policy_file, file_mode, json_out,
    ):
        """Provision a sandbox and smoke-test the agentsh install."""
        config = build_config(home, image=image, file_mode=file_mode)
        options = build_options(
            config, agent_version, arch, workspace, allow_net, env_pairs,
            config_file, policy_file,
        )

        try:
            with provisioned(options, build_provider(config), config) as env:
                report = run_environment_checks(env, config)
        except ProvisionError as exc:
            console.print(f"[bold red]Provisioning failed:[/] {escape(str(exc))}")
            raise SystemExit(1)

        if json_out:
            click.echo(json.dumps(report.to_dict(), indent=2))
        else:
            console.print()
            for c in report.checks:
                icon = "[green]✓[/]" if c.passed else "[red]✗[/]"
                detail = f" [dim]({escape(c.detail)})[/]" if c.detail else ""
                console.print(f"    {icon} {c.description}{detail}")
                if not c.passed and c.fix:
                    console.print(f"      [yellow]Fix: {escape(c.fix)}[/]")
            console.print()
            console.print(
                f"  [bold green]{report.passed_count}[/] passed, "
                f"[bold red]{report.failed_count}[/] failed "
                f"out of {report.total_count} checks."
            )
            console.print()

        if not report.all_passed:
            raise SystemExit(1)

    @main.command()
    @provision_options
    @click.option("--json-out", is_flag=True, help="Ask agentsh for JSON output.")
    def detect(
        home, image, agent_version, arch, workspace, allow_net, env_pairs,
        config_file, policy_file, file_mode, json_out,
    ):
        """Provision a sandbox and report what isolation agentsh can use."""
        config = build_config(home, image=image, file_mode=file_mode)
        options = build_options(
            config, agent_version, arch, workspace, allow_net, env_pairs,
            config_file, policy_file,
        )

        try:
            with provisioned(options, build_provider(config), config) as env:
                result = run_detect(env.runner, json_out=json_out)
        except ProvisionError as exc:
            console.print(f"[bold red]Provisioning failed:[/] {escape(str(exc))}")
            raise SystemExit(1)
        except Exception as exc:
            console.print(f"[bold red]Detection failed:[/] {escape(str(exc))}")
            raise SystemExit(1)

        if json_out:
            click.echo(json.dumps(result, indent=2))
        else:
            click.echo(result)
