"""
Environment ownership — provider interface, handles, and bundles.

A provider acquires isolated compute and hands back an
``EnvironmentHandle``. The handle is released exactly once no matter how
many times ``close()`` is called; release failures are logged, never
raised, so cleanup on an error path cannot mask the original error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from .config import FileMode
from .filesystem import Filesystem
from .runner import CommandRunner

logger = logging.getLogger(__name__)


class EnvironmentProvider:
    """Abstract base for compute providers.

    Each provider (docker today) creates an instance, binds a runner and a
    filesystem to it, and destroys it again.
    """

    name: str = "abstract"
    # Whether this process can reach an agent API listening inside the instance.
    api_reachable: bool = True

    def create(self, allow_net: Sequence[str] = ()) -> "EnvironmentHandle":
        """Acquire a fresh instance with outbound network access.

        Args:
            allow_net: Extra hosts the instance should be able to reach.

        Returns:
            EnvironmentHandle owning the instance.
        """
        raise NotImplementedError

    def runner(self, handle: "EnvironmentHandle") -> CommandRunner:
        """Return a command runner bound to *handle*."""
        raise NotImplementedError

    def filesystem(
        self, handle: "EnvironmentHandle", mode: FileMode = FileMode.ARCHIVE,
    ) -> Filesystem:
        """Return the filesystem implementation selected by *mode*."""
        raise NotImplementedError

    def destroy(self, handle: "EnvironmentHandle") -> None:
        """Release the instance behind *handle*. May raise."""
        raise NotImplementedError


class EnvironmentHandle:
    """Opaque reference to one provisioned instance.

    Args:
        env_id: Provider-assigned identifier.
        provider: Provider that owns the instance.
        details: Provider-specific data (container name, image, ...).
    """

    def __init__(
        self,
        env_id: str,
        provider: EnvironmentProvider,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.id = env_id
        self.provider = provider
        self.details: Dict[str, Any] = dict(details or {})
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release the instance. Idempotent; never raises."""
        if self._closed:
            return
        self._closed = True
        try:
            self.provider.destroy(self)
            logger.info("Environment %s released", self.id)
        except Exception as exc:
            logger.warning("Failed to release environment %s: %s", self.id, exc)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"EnvironmentHandle({self.id!r}, {self.provider.name}, {state})"


@dataclass
class Environment:
    """A provisioned environment with its runner and filesystem.

    Attributes:
        handle: Ownership handle for the instance.
        runner: Command runner bound to the instance.
        filesystem: File access for the instance.
        user: Runtime (unelevated) user detected during bootstrap.
        group: Primary group of the runtime user.
        workspace: Workspace path created during bootstrap.
        agent_binary: Absolute path of the installed agentsh binary.
        shim_installed: Whether the shell shim is in place.
    """

    handle: EnvironmentHandle
    runner: CommandRunner
    filesystem: Filesystem
    user: str = ""
    group: str = ""
    workspace: str = "/app"
    agent_binary: str = "/usr/bin/agentsh"
    shim_installed: bool = False

    def close(self) -> None:
        self.handle.close()


def teardown(target: "Environment | EnvironmentHandle") -> None:
    """Release an environment or bare handle. Safe to call repeatedly."""
    target.close()
