"""Test doubles for policyprobe.

Fakes stand in for a real container: ``FakeRunner`` answers commands from
scripted rules, ``FakeFilesystem`` keeps files in a dict, and
``FakeProvider`` hands both out and counts releases.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple, Union

from policyprobe.config import FileMode
from policyprobe.environment import EnvironmentHandle, EnvironmentProvider
from policyprobe.filesystem import Filesystem
from policyprobe.runner import CommandResult, CommandRunner, render_command

Response = Union[CommandResult, BaseException, Callable[[str], CommandResult]]


class FakeRunner(CommandRunner):
    """Runner answering from ``(substring, response)`` rules.

    The most recently added matching rule wins; unmatched commands exit 0
    with no output.
    """

    def __init__(self) -> None:
        super().__init__()
        self.rules: List[Tuple[str, Response]] = []
        self.calls: List[Tuple[str, bool]] = []
        self.spawned: List[Tuple[str, Dict[str, str]]] = []

    def respond(self, needle: str, response: Response) -> "FakeRunner":
        self.rules.append((needle, response))
        return self

    def stdout(self, needle: str, text: str) -> "FakeRunner":
        return self.respond(needle, CommandResult(0, text))

    def fail(self, needle: str, exit_code: int = 1, stderr: str = "boom") -> "FakeRunner":
        return self.respond(needle, CommandResult(exit_code, "", stderr))

    @property
    def commands(self) -> List[str]:
        return [c for c, _ in self.calls]

    def ran(self, needle: str) -> bool:
        return any(needle in c for c in self.commands)

    def index_of(self, needle: str) -> int:
        return next(i for i, c in enumerate(self.commands) if needle in c)

    def _execute(self, command, *, elevated):
        rendered = render_command(command)
        self.calls.append((rendered, elevated))
        for needle, response in reversed(self.rules):
            if needle in rendered:
                if isinstance(response, BaseException):
                    raise response
                if callable(response):
                    return response(rendered)
                return response
        return CommandResult(0)

    def spawn(self, command, *, elevated=False):
        self.spawned.append((render_command(command), self.env))


class FakeFilesystem(Filesystem):
    """Files held in a dict."""

    def __init__(self) -> None:
        self.files: Dict[str, str] = {}

    def write_text(self, path: str, content: str) -> None:
        self.files[path] = content

    def read_text(self, path: str) -> str:
        try:
            return self.files[path]
        except KeyError:
            raise FileNotFoundError(path)


class FakeProvider(EnvironmentProvider):
    """Provider handing out one shared runner and filesystem."""

    name = "fake"

    def __init__(
        self,
        runner: Optional[FakeRunner] = None,
        filesystem: Optional[FakeFilesystem] = None,
        create_error: Optional[Exception] = None,
        destroy_error: Optional[Exception] = None,
    ) -> None:
        self.fake_runner = runner or FakeRunner()
        self.fake_fs = filesystem or FakeFilesystem()
        self.create_error = create_error
        self.destroy_error = destroy_error
        self.created: List[str] = []
        self.destroyed: List[str] = []
        self.modes: List[FileMode] = []

    def create(self, allow_net=()):
        if self.create_error:
            raise self.create_error
        env_id = f"fake-{len(self.created) + 1}"
        self.created.append(env_id)
        return EnvironmentHandle(env_id, self, {"allow_net": list(allow_net)})

    def runner(self, handle):
        return self.fake_runner

    def filesystem(self, handle, mode=FileMode.ARCHIVE):
        self.modes.append(mode)
        return self.fake_fs

    def destroy(self, handle):
        self.destroyed.append(handle.id)
        if self.destroy_error:
            raise self.destroy_error


def bootstrap_runner(user: str = "tester") -> FakeRunner:
    """Runner that lets every provisioning step succeed."""
    runner = FakeRunner()
    runner.stdout("whoami", f"{user}\n")
    runner.stdout("id -gn", f"{user}\n")
    runner.stdout("command -v agentsh", "/usr/bin/agentsh\n")
    runner.stdout("install-agentsh.sh", "agentsh version 0.9.2\n")
    runner.stdout("/health", "ok")
    return runner
