"""
policyprobe — provision a sandbox, install agentsh, prove the policy holds.

Spins up an isolated container, bootstraps the agentsh policy-enforcement
agent inside it, and runs a catalogue of probes against the agent's exec
API to confirm that command, network, and environment controls are live.
"""

import os

__version__ = "0.1.0"

PROBE_HOME = os.environ.get("POLICYPROBE_HOME", "~/.policyprobe")
