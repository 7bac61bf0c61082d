"""Shared utilities for the CLI command modules.

Provides the Rich console, the options shared by every command that
provisions an environment, and the helpers that turn those options into
a config, provider, and ProvisionOptions.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

import click
from rich.console import Console

from .. import PROBE_HOME
from ..config import FileMode, HarnessConfig, Transport, load_config
from ..models import OutcomeCategory, ProvisionOptions
from ..providers import DockerProvider

console = Console()


def outcome_label(category: OutcomeCategory) -> str:
    """Map an outcome category to Rich markup.

    Args:
        category: Classifier verdict.

    Returns:
        str: Rich markup string for the category.
    """
    return {
        OutcomeCategory.ALLOWED: "[green]ALLOWED[/]",
        OutcomeCategory.BLOCKED: "[yellow]BLOCKED[/]",
        OutcomeCategory.ERROR: "[red]ERROR[/]",
    }.get(category, "[dim]UNKNOWN[/]")


def parse_env(pairs: Iterable[str]) -> Dict[str, str]:
    """Parse repeated ``KEY=VALUE`` options into a dict.

    Raises:
        click.BadParameter: For a pair without ``=`` or with an empty key.
    """
    env: Dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--env")
        env[name] = value
    return env


def provision_options(func: Callable) -> Callable:
    """Attach the options shared by every provisioning command."""
    decorators = [
        click.option("--home", default=PROBE_HOME, type=click.Path(), help="policyprobe home directory."),
        click.option("--image", default=None, help="Base image (overrides config)."),
        click.option("--agent-version", default=None, help="agentsh release tag; latest when omitted."),
        click.option("--arch", default=None, help="Release asset architecture (amd64, arm64)."),
        click.option("--workspace", default=None, help="Workspace path inside the environment."),
        click.option("--allow-net", multiple=True, help="Extra host the environment may reach (repeatable)."),
        click.option("--env", "env_pairs", multiple=True, help="KEY=VALUE seeded before the agent starts (repeatable)."),
        click.option("--config-file", default=None, type=click.Path(exists=True), help="Server config YAML override."),
        click.option("--policy-file", default=None, type=click.Path(exists=True), help="Policy YAML override."),
        click.option(
            "--file-mode", default=None,
            type=click.Choice([m.value for m in FileMode]),
            help="How files are written into the environment.",
        ),
    ]

    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def build_config(
    home: str,
    image: Optional[str] = None,
    file_mode: Optional[str] = None,
    transport: Optional[str] = None,
) -> HarnessConfig:
    """Load the config file and apply command-line overrides."""
    config = load_config(Path(home))
    updates = {}
    if image:
        updates["image"] = image
    if file_mode:
        updates["file_mode"] = FileMode(file_mode)
    if transport:
        updates["transport"] = Transport(transport)
    return config.model_copy(update=updates) if updates else config


def build_options(
    config: HarnessConfig,
    agent_version: Optional[str] = None,
    arch: Optional[str] = None,
    workspace: Optional[str] = None,
    allow_net: Iterable[str] = (),
    env_pairs: Iterable[str] = (),
    config_file: Optional[str] = None,
    policy_file: Optional[str] = None,
) -> ProvisionOptions:
    """Combine config defaults and command-line values into ProvisionOptions."""
    return ProvisionOptions(
        agent_repo=config.agent_repo,
        agent_version=agent_version,
        arch=arch or config.arch,
        workspace=workspace or config.workspace,
        allow_net=tuple(allow_net),
        env=parse_env(env_pairs),
        config_path=config_file,
        policy_path=policy_file,
    )


def build_provider(config: HarnessConfig) -> DockerProvider:
    """Provider for new environments."""
    return DockerProvider(image=config.image)
