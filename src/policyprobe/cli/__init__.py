"""
policyprobe CLI — provision, probe, report.

The main Click group is defined here and the subcommands are registered
from their own modules.

Entry point: policyprobe.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="policyprobe")
@click.option("--verbose", "-v", is_flag=True, help="Log provisioning and probe details.")
def main(verbose: bool):
    """policyprobe — verify agentsh policy enforcement in a sandbox."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .verify import register_verify_commands
from .diagnose import register_diagnose_commands

register_verify_commands(main)
register_diagnose_commands(main)
