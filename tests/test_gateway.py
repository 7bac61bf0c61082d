"""Tests for session creation and the exec gateways."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from helpers import FakeFilesystem, FakeRunner

from policyprobe.gateway import (
    EXEC_RESULT_PATH,
    EXEC_SCRIPT_PATH,
    FileExecGateway,
    HttpExecGateway,
    SessionError,
    TransportError,
    create_session,
)
from policyprobe.models import ExecRequest
from policyprobe.runner import CommandResult

API = "http://127.0.0.1:18080"
ALLOWED_BODY = json.dumps({"result": {"exit_code": 0, "stdout": "Hello\n"}})


class TestCreateSession:
    """Tests for create_session()."""

    def test_returns_id(self):
        runner = FakeRunner().stdout("session create", '{"id": "sess-42", "state": "ready"}')
        assert create_session(runner, "/app") == "sess-42"
        assert "agentsh session create --workspace /app --json" in runner.commands

    def test_settle_delay(self):
        runner = FakeRunner().stdout("session create", '{"id": "sess-42"}')
        with patch("policyprobe.gateway.time.sleep") as sleep:
            create_session(runner, "/app", settle=1.5)
        sleep.assert_called_once_with(1.5)

    def test_non_json_output(self):
        runner = FakeRunner().stdout("session create", "Error: server unavailable")
        with pytest.raises(SessionError, match="failed to parse"):
            create_session(runner, "/app")

    def test_missing_id(self):
        runner = FakeRunner().stdout("session create", '{"state": "ready"}')
        with pytest.raises(SessionError, match="missing 'id'"):
            create_session(runner, "/app")

    def test_empty_id(self):
        runner = FakeRunner().stdout("session create", '{"id": ""}')
        with pytest.raises(SessionError):
            create_session(runner, "/app")

    def test_non_zero_exit(self):
        runner = FakeRunner().fail("session create", stderr="connection refused")
        with pytest.raises(SessionError, match="connection refused"):
            create_session(runner, "/app")


class TestFileExecGateway:
    """Tests for the file-mediated transport."""

    def _gateway(self, runner=None, fs=None):
        return FileExecGateway(runner or FakeRunner(), fs or FakeFilesystem(), API)

    def test_render_script(self):
        script = self._gateway().render_script("sess-1", ExecRequest(command="/bin/echo", args=("Hello",)))
        assert script.startswith("#!/bin/sh\n")
        assert f"rm -f {EXEC_RESULT_PATH}\n" in script
        assert f'"{API}/api/v1/sessions/sess-1/exec"' in script
        assert "--connect-timeout 10" in script
        assert "--max-time 30" in script
        assert """-d '{"command": "/bin/echo", "args": ["Hello"]}'""" in script
        assert f"-o {EXEC_RESULT_PATH}" in script

    def test_single_quotes_escaped(self):
        script = self._gateway().render_script("s", ExecRequest(command="/bin/echo", args=("it's",)))
        assert "it'\\''s" in script

    def test_exec_returns_response_body(self):
        fs = FakeFilesystem()
        runner = FakeRunner()

        def run_script(command):
            fs.files[EXEC_RESULT_PATH] = ALLOWED_BODY
            return CommandResult(0)

        runner.respond(EXEC_SCRIPT_PATH, run_script)
        gateway = self._gateway(runner, fs)

        body = gateway.exec("sess-1", ExecRequest(command="/bin/echo", args=("Hello",)))

        assert body == ALLOWED_BODY
        assert "sess-1" in fs.files[EXEC_SCRIPT_PATH]
        assert runner.commands == [f"/bin/sh {EXEC_SCRIPT_PATH}"]

    def test_missing_result_is_transport_error(self):
        runner = FakeRunner().fail(EXEC_SCRIPT_PATH, exit_code=7)
        with pytest.raises(TransportError, match="no response"):
            self._gateway(runner).exec("sess-1", ExecRequest(command="/bin/date"))


class TestHttpExecGateway:
    """Tests for the direct HTTP transport."""

    def test_posts_payload(self):
        response = MagicMock(status_code=200, text=ALLOWED_BODY)
        with patch("requests.post", return_value=response) as post:
            body = HttpExecGateway(API + "/").exec("sess-1", ExecRequest(command="/bin/ls", args=("/home",)))

        assert body == ALLOWED_BODY
        post.assert_called_once_with(
            f"{API}/api/v1/sessions/sess-1/exec",
            json={"command": "/bin/ls", "args": ["/home"]},
            timeout=(10, 30),
        )

    def test_error_status_body_is_returned(self):
        denied = json.dumps({"result": {"error": {"code": "E_POLICY_DENIED"}}})
        response = MagicMock(status_code=403, text=denied)
        with patch("requests.post", return_value=response):
            assert HttpExecGateway(API).exec("s", ExecRequest(command="/usr/bin/sudo")) == denied

    def test_connection_failure(self):
        with patch("requests.post", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(TransportError, match="refused"):
                HttpExecGateway(API).exec("s", ExecRequest(command="/bin/date"))
