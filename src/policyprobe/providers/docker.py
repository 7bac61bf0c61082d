"""
Docker Provider — ephemeral containers as probe environments.

Each environment is one throwaway container kept alive with
``sleep infinity``. Commands run through ``docker exec``; files move
either through the archive API or through the shell. The container sits
on the default bridge network, so it has outbound access for the
bootstrap downloads.

Prerequisites:
- Docker daemon running and accessible (DOCKER_HOST or default socket)
- docker Python SDK: pip install docker
- Optional: POLICYPROBE_IMAGE env var to override the default image
"""

from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict, Optional, Sequence

from ..config import FileMode
from ..environment import EnvironmentHandle, EnvironmentProvider
from ..filesystem import ArchiveFilesystem, Filesystem, ShellFilesystem
from ..runner import CommandRunner, DockerCommandRunner

logger = logging.getLogger(__name__)

_DEFAULT_IMAGE = "debian:bookworm-slim"
_GRACEFUL_STOP_TIMEOUT = 5  # seconds before SIGKILL
_KEEPALIVE_CMD = ["sleep", "infinity"]


class DockerProvider(EnvironmentProvider):
    """Provision probe environments as Docker containers.

    Args:
        image: Image for new containers.
        name_prefix: Prefix for generated container names.
        user: Account for unelevated commands (image default when empty).
        docker_host: Docker daemon socket/URL (default: DOCKER_HOST or
            ``unix:///var/run/docker.sock``).
    """

    name = "docker"
    # agentsh binds 127.0.0.1 inside the container and no port is published
    api_reachable = False

    def __init__(
        self,
        image: Optional[str] = None,
        name_prefix: str = "policyprobe",
        user: str = "",
        docker_host: Optional[str] = None,
    ) -> None:
        self._image = image or os.environ.get("POLICYPROBE_IMAGE", _DEFAULT_IMAGE)
        self._name_prefix = name_prefix
        self._user = user
        self._docker_host = docker_host or os.environ.get("DOCKER_HOST", "")
        self._client_cache = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self):
        """Return a connected Docker client.

        Returns:
            docker.DockerClient instance.

        Raises:
            RuntimeError: If the docker SDK is not installed or the daemon
                is unreachable.
        """
        if self._client_cache is not None:
            return self._client_cache

        try:
            import docker
        except ImportError:
            raise RuntimeError(
                "Docker provider requires 'docker' SDK: pip install docker"
            )

        kwargs: Dict[str, Any] = {}
        if self._docker_host:
            kwargs["base_url"] = self._docker_host

        try:
            client = docker.from_env(**kwargs)
            client.ping()
        except Exception as exc:
            raise RuntimeError(
                f"Cannot connect to Docker daemon: {exc}"
            ) from exc

        self._client_cache = client
        return client

    def _container_name(self) -> str:
        """Derive a unique container name for a new environment."""
        return f"{self._name_prefix}-{uuid.uuid4().hex[:12]}"

    def _container(self, handle: EnvironmentHandle):
        """Look up the container behind *handle*."""
        return self._client().containers.get(handle.details["container_name"])

    # ------------------------------------------------------------------
    # EnvironmentProvider interface
    # ------------------------------------------------------------------

    def create(self, allow_net: Sequence[str] = ()) -> EnvironmentHandle:
        """Start a fresh container and return its handle.

        Docker cannot allow-list egress per host, so ``allow_net`` is
        recorded on the container labels for the audit trail; the bridge
        network gives full outbound access.

        Raises:
            RuntimeError: If Docker is unreachable or the container fails
                to start.
        """
        client = self._client()
        container_name = self._container_name()

        if allow_net:
            logger.info(
                "Bridge network allows all egress; recording allow-list %s",
                ", ".join(allow_net),
            )

        logger.info("Creating container %s from %s", container_name, self._image)
        container = client.containers.run(
            image=self._image,
            command=_KEEPALIVE_CMD,
            name=container_name,
            detach=True,
            stdin_open=False,
            tty=False,
            network_mode="bridge",
            labels={
                "managed_by": "policyprobe",
                "allow_net": ",".join(allow_net),
            },
        )

        return EnvironmentHandle(
            env_id=container.id[:12],
            provider=self,
            details={
                "container_id": container.id,
                "container_name": container_name,
                "image": self._image,
            },
        )

    def runner(self, handle: EnvironmentHandle) -> CommandRunner:
        return DockerCommandRunner(self._container(handle), user=self._user)

    def filesystem(
        self, handle: EnvironmentHandle, mode: FileMode = FileMode.ARCHIVE,
    ) -> Filesystem:
        if mode == FileMode.SHELL:
            return ShellFilesystem(self.runner(handle))
        return ArchiveFilesystem(self._container(handle))

    def destroy(self, handle: EnvironmentHandle) -> None:
        """Stop and remove the container behind *handle*."""
        container = self._container(handle)
        try:
            container.stop(timeout=_GRACEFUL_STOP_TIMEOUT)
        except Exception as exc:
            logger.debug("Stop failed for %s: %s", handle.id, exc)
        container.remove(v=True, force=True)
        logger.info("Removed container %s", handle.details.get("container_name"))
