"""
Environment Provisioner — from empty container to policy-enforced agent.

Bootstrap sequence (each step needs the previous one):

  acquire       create the instance, detect the runtime user
  dependencies  apt update (best effort) + install runtime packages
  agent         resolve the agentsh release and install the .deb
  directories   state/log/config directories, ownership, workspace
  config        server config + policy YAML into /etc/agentsh
  privileges    sudoers drop-in for the agentsh binary only
  environment   seed AGENTSH_SERVER, TERM and caller variables
  start         launch ``agentsh server`` detached
  readiness     poll /health until it answers ``ok``
  shim          route every bash invocation through agentsh

Any failure after ``acquire`` releases the instance before the
``ProvisionError`` reaches the caller. Nothing is retried.
"""

from __future__ import annotations

import logging
import shlex
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from .config import HarnessConfig
from .environment import Environment, EnvironmentProvider, teardown
from .models import ProvisionOptions
from .readiness import wait_until

logger = logging.getLogger(__name__)

_DATA_DIR = Path(__file__).parent / "data"

STEPS: Tuple[str, ...] = (
    "acquire",
    "dependencies",
    "agent",
    "directories",
    "config",
    "privileges",
    "environment",
    "start",
    "readiness",
    "shim",
)

BASE_PACKAGES: Tuple[str, ...] = ("ca-certificates", "curl", "jq", "libseccomp2", "sudo")
# Tools the command suite expects to run; slim images ship neither.
TOOL_PACKAGES: Tuple[str, ...] = ("git", "python3")

# docker exec without a TTY sets no TERM
DEFAULT_TERM = "xterm"

CONFIG_TARGET = "/etc/agentsh/config.yaml"
POLICY_TARGET = "/etc/agentsh/policies/default.yaml"
SUDOERS_TARGET = "/etc/sudoers.d/agentsh"
INSTALL_SCRIPT_PATH = "/tmp/install-agentsh.sh"
SERVER_LOG = "/var/log/agentsh/server.log"

STATE_DIRS: Tuple[str, ...] = (
    "/etc/agentsh",
    "/etc/agentsh/policies",
    "/var/lib/agentsh",
    "/var/lib/agentsh/quarantine",
    "/var/lib/agentsh/sessions",
    "/var/log/agentsh",
)
OWNED_DIRS: Tuple[str, ...] = ("/var/lib/agentsh", "/var/log/agentsh", "/etc/agentsh")


class ProvisionError(RuntimeError):
    """Bootstrap failed at a specific step.

    Attributes:
        step: Step tag from ``STEPS``.
        kind: ``StepFailed`` or ``ReadinessTimeout``.
    """

    kind = "StepFailed"

    def __init__(self, step: str, message: str) -> None:
        self.step = step
        super().__init__(f"[{step}] {message}")


class ReadinessTimeoutError(ProvisionError):
    """The agent never answered its health check."""

    kind = "ReadinessTimeout"

    def __init__(self, message: str) -> None:
        super().__init__("readiness", message)


_INSTALL_SCRIPT = """#!/bin/sh
set -eux
REPO={repo}
ARCH={arch}
TAG={tag}
if [ -z "$TAG" ]; then
  TAG=$(curl -fsSL "https://api.github.com/repos/$REPO/releases/latest" | jq -r '.tag_name')
fi
version="${{TAG#v}}"
deb="agentsh_${{version}}_linux_${{ARCH}}.deb"
url="https://github.com/$REPO/releases/download/${{TAG}}/${{deb}}"
echo "Downloading agentsh ${{TAG}}: ${{url}}"
curl -fsSL -L "$url" -o /tmp/agentsh.deb
dpkg -i /tmp/agentsh.deb
rm -f /tmp/agentsh.deb
agentsh --version
"""


def render_install_script(repo: str, arch: str, version: Optional[str] = None) -> str:
    """Shell script that installs an agentsh release.

    Args:
        repo: GitHub ``owner/name`` publishing the releases.
        arch: Debian architecture of the asset (``amd64``, ``arm64``).
        version: Release tag to install; the latest release when None.

    Returns:
        POSIX sh script text.
    """
    return _INSTALL_SCRIPT.format(
        repo=shlex.quote(repo),
        arch=shlex.quote(arch),
        tag=shlex.quote(version or ""),
    )


def render_sudoers(user: str, binary: str) -> str:
    """Sudoers drop-in letting *user* run only *binary* without a password."""
    return f"{user} ALL=(root) NOPASSWD: {binary}\n"


def _read_document(override: Optional[str], bundled: str) -> str:
    path = Path(override).expanduser() if override else _DATA_DIR / bundled
    return path.read_text(encoding="utf-8")


class Provisioner:
    """Bootstraps agentsh into environments from one provider.

    Args:
        provider: Compute provider that creates and destroys instances.
        config: Harness configuration (timeouts, file mode, API address).
        poll: Readiness poller, ``wait_until`` compatible.
    """

    def __init__(
        self,
        provider: EnvironmentProvider,
        config: Optional[HarnessConfig] = None,
        poll: Callable[..., None] = wait_until,
    ) -> None:
        self._provider = provider
        self._config = config or HarnessConfig()
        self._poll = poll

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def provision(self, options: ProvisionOptions) -> Environment:
        """Bring up a new environment with agentsh running.

        Args:
            options: What to install and how.

        Returns:
            Environment ready for sessions; the caller owns its teardown.

        Raises:
            ProvisionError: Tagged with the failing step. The instance has
                already been released when this propagates.
        """
        try:
            handle = self._provider.create(options.allow_net)
        except Exception as exc:
            raise ProvisionError("acquire", str(exc)) from exc
        logger.info("Environment created: %s", handle.id)

        try:
            env = self._run_step("acquire", lambda: self._bind(handle, options))
            for step, action in self._plan(env, options):
                self._run_step(step, action)
        except ProvisionError as exc:
            logger.error("Bootstrap failed at %s, releasing %s", exc.step, handle.id)
            teardown(handle)
            raise
        except BaseException as exc:
            # KeyboardInterrupt / SystemExit must not strand the instance
            logger.error("Bootstrap interrupted (%s), releasing %s", type(exc).__name__, handle.id)
            teardown(handle)
            raise

        logger.info("Environment %s ready", handle.id)
        return env

    def install_shim(self, env: Environment) -> None:
        """Install the bash shim. A no-op once installed."""
        if env.shim_installed:
            logger.debug("Shim already installed in %s", env.handle.id)
            return
        env.runner.run(
            [
                "agentsh", "shim", "install-shell",
                "--root", "/",
                "--shim", self._config.shim_path,
                "--bash",
                "--i-understand-this-modifies-the-host",
            ],
            elevated=True,
        )
        env.shim_installed = True

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _plan(
        self, env: Environment, options: ProvisionOptions,
    ) -> List[Tuple[str, Callable[[], None]]]:
        return [
            ("dependencies", lambda: self._install_dependencies(env)),
            ("agent", lambda: self._install_agent(env, options)),
            ("directories", lambda: self._create_directories(env)),
            ("config", lambda: self._write_config(env, options)),
            ("privileges", lambda: self._grant_privileges(env)),
            ("environment", lambda: self._seed_environment(env, options)),
            ("start", lambda: self._start_agent(env)),
            ("readiness", lambda: self._wait_ready(env)),
            ("shim", lambda: self.install_shim(env)),
        ]

    @staticmethod
    def _run_step(step: str, action: Callable):
        logger.info("Provisioning step: %s", step)
        try:
            return action()
        except ProvisionError:
            raise
        except Exception as exc:
            raise ProvisionError(step, str(exc)) from exc

    def _bind(self, handle, options: ProvisionOptions) -> Environment:
        runner = self._provider.runner(handle)
        env = Environment(
            handle=handle,
            runner=runner,
            filesystem=self._provider.filesystem(handle, self._config.file_mode),
            workspace=options.workspace,
        )
        env.user = runner.text("whoami")
        env.group = runner.text("id -gn")
        logger.info("Runtime user: %s:%s", env.user, env.group)
        return env

    def _install_dependencies(self, env: Environment) -> None:
        runner = env.runner
        runner.run(["mkdir", "-p", "/var/lib/apt/lists/partial"], elevated=True)
        update = runner.run(
            ["apt-get", "-o", "Acquire::Check-Valid-Until=false", "update"],
            elevated=True, check=False,
        )
        if not update.ok:
            logger.warning("apt-get update failed (exit %d), continuing", update.exit_code)
        runner.run(
            "DEBIAN_FRONTEND=noninteractive apt-get install -y --no-install-recommends "
            + " ".join(BASE_PACKAGES + TOOL_PACKAGES),
            elevated=True,
        )
        runner.run("rm -rf /var/lib/apt/lists/*", elevated=True)

    def _install_agent(self, env: Environment, options: ProvisionOptions) -> None:
        script = render_install_script(options.agent_repo, options.arch, options.agent_version)
        env.filesystem.write_text(INSTALL_SCRIPT_PATH, script)
        env.runner.run(["chmod", "+x", INSTALL_SCRIPT_PATH], elevated=True)
        result = env.runner.run([INSTALL_SCRIPT_PATH], elevated=True)
        version_line = result.stdout.strip().splitlines()[-1:] or ["?"]
        logger.info("Installed %s", version_line[0])
        env.agent_binary = env.runner.text("command -v agentsh")

    def _create_directories(self, env: Environment) -> None:
        runner = env.runner
        runner.run(["mkdir", "-p", *STATE_DIRS, env.workspace], elevated=True)
        runner.run(["chmod", "755", *STATE_DIRS], elevated=True)
        owner = f"{env.user}:{env.group}"
        runner.run(["chown", "-R", owner, *OWNED_DIRS, env.workspace], elevated=True)

    def _write_config(self, env: Environment, options: ProvisionOptions) -> None:
        env.filesystem.write_text(CONFIG_TARGET, _read_document(options.config_path, "config.yaml"))
        env.filesystem.write_text(POLICY_TARGET, _read_document(options.policy_path, "policy.yaml"))

    def _grant_privileges(self, env: Environment) -> None:
        if env.user == "root":
            logger.debug("Runtime user is root; no sudoers entry needed")
            return
        env.filesystem.write_text(SUDOERS_TARGET, render_sudoers(env.user, env.agent_binary))
        env.runner.run(["chmod", "0440", SUDOERS_TARGET], elevated=True)
        env.runner.run(["visudo", "-cf", SUDOERS_TARGET], elevated=True)

    def _seed_environment(self, env: Environment, options: ProvisionOptions) -> None:
        env.runner.set_env("AGENTSH_SERVER", self._config.api_base)
        env.runner.set_env("TERM", DEFAULT_TERM)
        for name, value in options.env.items():
            env.runner.set_env(name, value)
        if options.env:
            logger.info("Seeded %d caller variable(s)", len(options.env))

    def _start_agent(self, env: Environment) -> None:
        env.runner.spawn(f"agentsh server >> {SERVER_LOG} 2>&1", elevated=True)

    def _wait_ready(self, env: Environment) -> None:
        url = f"{self._config.api_base}/health"

        def healthy() -> bool:
            result = env.runner.run(["curl", "-sf", url], check=False)
            return result.ok and result.stdout.strip() == "ok"

        try:
            self._poll(
                healthy,
                self._config.readiness_interval,
                self._config.readiness_timeout,
                description="agentsh server",
            )
        except TimeoutError as exc:
            raise ReadinessTimeoutError(
                f"agentsh server failed to start within {self._config.readiness_timeout:g}s"
            ) from exc


@contextmanager
def provisioned(
    options: ProvisionOptions,
    provider: EnvironmentProvider,
    config: Optional[HarnessConfig] = None,
) -> Iterator[Environment]:
    """Provision an environment and release it on every exit path."""
    env = Provisioner(provider, config).provision(options)
    try:
        yield env
    finally:
        teardown(env)
