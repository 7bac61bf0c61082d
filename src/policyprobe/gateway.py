"""
Exec Gateway — deliver exec requests to the agent API.

Two transports, selected once per run:

- ``HttpExecGateway`` posts directly with ``requests``. Needs network
  line-of-sight from this process to the agent's listener.
- ``FileExecGateway`` writes a small curl script into the environment,
  runs it there, and reads the response file back. The default, since the
  agent listens on the environment's loopback.

Both return the raw body text and raise ``TransportError`` when no body
came back at all, which the harness reports as "no response" rather than
a parse error.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Tuple

from .filesystem import Filesystem
from .models import ExecRequest
from .runner import CommandRunner

logger = logging.getLogger(__name__)

EXEC_SCRIPT_PATH = "/tmp/exec-cmd.sh"
EXEC_RESULT_PATH = "/tmp/exec-result.json"
CONNECT_TIMEOUT = 10
MAX_TIME = 30


class TransportError(RuntimeError):
    """No response body could be obtained from the agent."""


class SessionError(RuntimeError):
    """The agent did not hand back a usable session id."""


def exec_path(session_id: str) -> str:
    """API path of the per-session exec endpoint."""
    return f"/api/v1/sessions/{session_id}/exec"


def create_session(
    runner: CommandRunner,
    workspace: str,
    settle: float = 0.0,
) -> str:
    """Create an agentsh session through the CLI.

    Args:
        runner: Runner bound to the environment.
        workspace: Session workspace path.
        settle: Seconds to wait afterwards so the server finishes setting
            the session up.

    Returns:
        Session id string.

    Raises:
        SessionError: If the CLI output is not JSON with a non-empty id.
    """
    result = runner.run(
        ["agentsh", "session", "create", "--workspace", workspace, "--json"],
        check=False,
    )
    output = result.stdout.strip()
    if not result.ok:
        raise SessionError(
            f"session create exited {result.exit_code}: {(result.stderr or output)[:200]}"
        )

    try:
        data = json.loads(output)
    except ValueError:
        raise SessionError(f"failed to parse session JSON: {output[:200]}")

    session_id = data.get("id") if isinstance(data, dict) else None
    if not isinstance(session_id, str) or not session_id:
        raise SessionError(f"session JSON missing 'id': {output[:200]}")

    logger.info("Session created: %s", session_id)
    if settle > 0:
        time.sleep(settle)
    return session_id


class ExecGateway:
    """Abstract transport for exec requests."""

    def exec(self, session_id: str, request: ExecRequest) -> str:
        """Send *request* to the session's exec endpoint.

        Returns:
            Raw response body text.

        Raises:
            TransportError: If no response body was obtained.
        """
        raise NotImplementedError


class HttpExecGateway(ExecGateway):
    """Direct HTTP transport.

    Args:
        api_base: Agent API base URL reachable from this process.
        timeout: ``(connect, read)`` timeouts in seconds.
    """

    def __init__(
        self,
        api_base: str,
        timeout: Tuple[float, float] = (CONNECT_TIMEOUT, MAX_TIME),
    ) -> None:
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout

    def exec(self, session_id: str, request: ExecRequest) -> str:
        import requests

        url = f"{self._api_base}{exec_path(session_id)}"
        try:
            resp = requests.post(url, json=request.payload(), timeout=self._timeout)
        except requests.RequestException as exc:
            raise TransportError(f"POST {url} failed: {exc}") from exc

        if resp.status_code >= 400:
            # Denials may arrive as 4xx with a JSON body; the classifier reads it
            logger.debug("POST %s returned %d", url, resp.status_code)
        return resp.text


class FileExecGateway(ExecGateway):
    """File-mediated transport running curl inside the environment.

    Args:
        runner: Runner bound to the environment.
        filesystem: File access for the environment.
        api_base: Agent API base URL as seen from inside the environment.
        script_path: Where the curl script is written.
        result_path: Where curl writes the response body.
    """

    def __init__(
        self,
        runner: CommandRunner,
        filesystem: Filesystem,
        api_base: str,
        script_path: str = EXEC_SCRIPT_PATH,
        result_path: str = EXEC_RESULT_PATH,
    ) -> None:
        self._runner = runner
        self._filesystem = filesystem
        self._api_base = api_base.rstrip("/")
        self._script_path = script_path
        self._result_path = result_path

    def render_script(self, session_id: str, request: ExecRequest) -> str:
        """Shell script posting *request* and saving the response body."""
        payload = json.dumps(request.payload())
        escaped = payload.replace("'", "'\\''")
        url = f"{self._api_base}{exec_path(session_id)}"
        return (
            "#!/bin/sh\n"
            f"rm -f {self._result_path}\n"
            f'curl -s -X POST "{url}" \\\n'
            '  -H "Content-Type: application/json" \\\n'
            f"  --connect-timeout {CONNECT_TIMEOUT} \\\n"
            f"  --max-time {MAX_TIME} \\\n"
            f"  -d '{escaped}' \\\n"
            f"  -o {self._result_path} 2>/dev/null\n"
        )

    def exec(self, session_id: str, request: ExecRequest) -> str:
        self._filesystem.write_text(self._script_path, self.render_script(session_id, request))
        result = self._runner.run(["/bin/sh", self._script_path], check=False)
        if not result.ok:
            logger.debug("exec script exited %d", result.exit_code)

        try:
            return self._filesystem.read_text(self._result_path)
        except FileNotFoundError:
            raise TransportError("no response")
