"""
Pydantic models shared across the harness.

Requests, outcomes, options and scenarios are all immutable once built:
a probe is constructed, sent, classified, and reported without anything
downstream being able to rewrite what was asked or what came back.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class OutcomeCategory(str, Enum):
    """Classifier verdict on a single exec attempt."""

    ALLOWED = "allowed"
    BLOCKED = "blocked"
    ERROR = "error"


class ProvisionOptions(BaseModel):
    """Everything the provisioner needs, fixed at provisioning time."""

    model_config = ConfigDict(frozen=True)

    agent_repo: str = Field(default="erans/agentsh", description="GitHub repo publishing agentsh releases")
    agent_version: Optional[str] = Field(
        default=None,
        description="Release tag to install (e.g. 'v0.9.2'); latest when unset",
    )
    arch: str = Field(default="amd64", description="Architecture suffix of the .deb asset")
    workspace: str = Field(default="/app", description="Workspace path inside the environment")
    allow_net: Tuple[str, ...] = Field(
        default=(),
        description="Extra hosts the environment may reach during bootstrap",
    )
    env: Dict[str, str] = Field(
        default_factory=dict,
        description="Variables seeded before the agent starts so it inherits them",
    )
    config_path: Optional[str] = Field(default=None, description="Override for the server config YAML")
    policy_path: Optional[str] = Field(default=None, description="Override for the policy YAML")


class ExecRequest(BaseModel):
    """A command for the agent's exec API."""

    model_config = ConfigDict(frozen=True)

    command: str
    args: Tuple[str, ...] = ()

    def payload(self) -> Dict[str, object]:
        """JSON body for ``POST /api/v1/sessions/{id}/exec``."""
        return {"command": self.command, "args": list(self.args)}

    def display(self) -> str:
        """Command line as a human would type it."""
        return " ".join([self.command, *self.args])


class ExecOutcome(BaseModel):
    """Classified result of one exec attempt."""

    model_config = ConfigDict(frozen=True)

    category: OutcomeCategory
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    reason: str = ""
    rule_id: Optional[str] = None

    @property
    def blocked(self) -> bool:
        return self.category == OutcomeCategory.BLOCKED


class DiagnosticScenario(BaseModel):
    """One probe in the diagnostic catalogue.

    ``also_accept`` widens the passing set beyond ``expected``; ``prepare``
    is a shell snippet run directly in the environment before the probe;
    ``network`` selects the network-probe classification context; any
    ``forbid_output`` substring found in stdout fails the verdict.
    """

    model_config = ConfigDict(frozen=True)

    description: str
    request: ExecRequest
    expected: OutcomeCategory
    suite: str = "commands"
    also_accept: Tuple[OutcomeCategory, ...] = ()
    prepare: Optional[str] = None
    network: bool = False
    forbid_output: Tuple[str, ...] = ()

    def accepts(self, category: OutcomeCategory) -> bool:
        """Whether *category* satisfies this scenario."""
        return category == self.expected or category in self.also_accept
