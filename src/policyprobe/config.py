"""
Harness configuration.

Defaults live on the ``HarnessConfig`` model. A ``config.yaml`` in the
probe home overrides them, and a couple of environment variables override
the file. A broken config file is logged and ignored rather than
preventing a run.
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from . import PROBE_HOME

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"


class Transport(str, Enum):
    """How exec requests reach the agent API."""

    FILE = "file"
    HTTP = "http"


class FileMode(str, Enum):
    """How files are written into the environment."""

    ARCHIVE = "archive"
    SHELL = "shell"


class HarnessConfig(BaseModel):
    """Tunable settings for provisioning and probing."""

    image: str = Field(default="debian:bookworm-slim", description="Base image for the environment")
    api_base: str = Field(default="http://127.0.0.1:18080", description="agentsh API as seen from inside")
    transport: Transport = Field(default=Transport.FILE)
    file_mode: FileMode = Field(default=FileMode.ARCHIVE)
    readiness_timeout: float = Field(default=15.0, gt=0)
    readiness_interval: float = Field(default=0.5, gt=0)
    session_settle: float = Field(
        default=1.5, ge=0,
        description="Pause after session creation before the first probe",
    )
    agent_repo: str = "erans/agentsh"
    arch: str = "amd64"
    workspace: str = "/app"
    shim_path: str = "/usr/bin/agentsh-shell-shim"


def load_config(home: Optional[Path] = None) -> HarnessConfig:
    """Load configuration from ``<home>/config.yaml`` plus env overrides.

    Args:
        home: Probe home directory. Defaults to ``POLICYPROBE_HOME``.

    Returns:
        HarnessConfig with file values and env overrides applied.
    """
    home = (home or Path(PROBE_HOME)).expanduser()
    data: dict = {}

    config_file = home / CONFIG_FILENAME
    if config_file.exists():
        try:
            loaded = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            if not isinstance(loaded, dict):
                raise ValueError("top-level YAML must be a mapping")
            data = loaded
            HarnessConfig(**data)
        except (yaml.YAMLError, ValueError) as exc:
            logger.warning("Failed to load %s: %s — using defaults", config_file, exc)
            data = {}

    image = os.environ.get("POLICYPROBE_IMAGE")
    if image:
        data["image"] = image
    transport = os.environ.get("POLICYPROBE_TRANSPORT")
    if transport:
        data["transport"] = transport

    return HarnessConfig(**data)
