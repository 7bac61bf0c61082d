"""
Command execution inside a provisioned environment.

``CommandRunner`` is the seam every other module talks through: the
provisioner installs packages with it, the file-mediated gateway runs its
curl script with it, scenarios prepare state with it. One concrete runner
is chosen when the environment is acquired (see the provider modules); no
caller ever probes which kind it holds.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from typing import Any, Dict, Sequence, Union

logger = logging.getLogger(__name__)

Command = Union[str, Sequence[str]]


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of one command.

    Attributes:
        exit_code: Process exit status.
        stdout: Captured standard output.
        stderr: Captured standard error.
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ExecutionError(RuntimeError):
    """A command exited non-zero when the caller asked for a checked run."""

    def __init__(self, command: str, result: CommandResult) -> None:
        self.command = command
        self.result = result
        detail = (result.stderr or result.stdout).strip()[:300]
        super().__init__(
            f"command failed (exit {result.exit_code}): {command}"
            + (f" — {detail}" if detail else "")
        )


def render_command(command: Command) -> str:
    """Render a shell string or argv as a single display string."""
    if isinstance(command, str):
        return command
    return shlex.join(list(command))


class CommandRunner:
    """Abstract command runner bound to one environment.

    Subclasses implement ``_execute`` and ``spawn``. Environment variables
    set through ``set_env`` apply to every later command, so a process
    spawned afterwards inherits them.
    """

    def __init__(self) -> None:
        self._env: Dict[str, str] = {}

    @property
    def env(self) -> Dict[str, str]:
        """Copy of the variables seeded so far."""
        return dict(self._env)

    def set_env(self, name: str, value: str) -> None:
        """Seed a variable into the environment's process environment."""
        self._env[name] = value

    def run(
        self,
        command: Command,
        *,
        elevated: bool = False,
        check: bool = True,
        background: bool = False,
    ) -> CommandResult:
        """Run a command and wait for it.

        Args:
            command: Shell string (run via ``sh -c``) or argv.
            elevated: Run with root privileges.
            check: Raise ExecutionError on a non-zero exit.
            background: Hand off to ``spawn`` and return immediately.

        Returns:
            CommandResult for the finished command (empty for background).

        Raises:
            ExecutionError: If *check* is set and the command failed.
        """
        if background:
            self.spawn(command, elevated=elevated)
            return CommandResult(exit_code=0)

        rendered = render_command(command)
        logger.debug("run%s: %s", " (elevated)" if elevated else "", rendered)
        result = self._execute(command, elevated=elevated)
        if check and not result.ok:
            raise ExecutionError(rendered, result)
        return result

    def text(self, command: Command, *, elevated: bool = False) -> str:
        """Run a checked command and return its stripped stdout."""
        return self.run(command, elevated=elevated).stdout.strip()

    def spawn(self, command: Command, *, elevated: bool = False) -> None:
        """Start a detached process and return without waiting."""
        raise NotImplementedError

    def _execute(self, command: Command, *, elevated: bool) -> CommandResult:
        raise NotImplementedError


def _argv(command: Command) -> list:
    if isinstance(command, str):
        return ["sh", "-c", command]
    return list(command)


def _decode(chunk: Any) -> str:
    if not chunk:
        return ""
    if isinstance(chunk, bytes):
        return chunk.decode("utf-8", errors="replace")
    return str(chunk)


class DockerCommandRunner(CommandRunner):
    """Run commands in a Docker container through ``exec_run``.

    Args:
        container: docker ``Container`` object.
        user: Account for unelevated commands (image default when empty).
        workdir: Working directory for commands, if any.
    """

    def __init__(self, container: Any, user: str = "", workdir: str = "") -> None:
        super().__init__()
        self._container = container
        self._user = user
        self._workdir = workdir

    def _exec_kwargs(self, elevated: bool) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"environment": dict(self._env)}
        user = "root" if elevated else self._user
        if user:
            kwargs["user"] = user
        if self._workdir:
            kwargs["workdir"] = self._workdir
        return kwargs

    def _execute(self, command: Command, *, elevated: bool) -> CommandResult:
        exit_code, output = self._container.exec_run(
            cmd=_argv(command),
            demux=True,
            **self._exec_kwargs(elevated),
        )
        stdout, stderr = output if output else (None, None)
        return CommandResult(
            exit_code=exit_code if exit_code is not None else -1,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
        )

    def spawn(self, command: Command, *, elevated: bool = False) -> None:
        logger.debug("spawn%s: %s", " (elevated)" if elevated else "", render_command(command))
        self._container.exec_run(
            cmd=_argv(command),
            detach=True,
            **self._exec_kwargs(elevated),
        )
