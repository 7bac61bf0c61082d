"""
File transfer into and out of the environment.

Two interchangeable implementations, picked once when the environment is
set up:

- ``ArchiveFilesystem`` uploads and downloads tar archives through the
  Docker API (no shell involved).
- ``ShellFilesystem`` pushes content through the command runner as a
  base64 heredoc and reads it back with ``cat``. Works on any runner.

Both raise ``FileNotFoundError`` when a file to read does not exist.
"""

from __future__ import annotations

import base64
import io
import logging
import posixpath
import shlex
import tarfile
import time
from typing import Any

from .runner import CommandRunner

logger = logging.getLogger(__name__)

_HEREDOC_MARKER = "POLICYPROBE_EOF"


class Filesystem:
    """Abstract text-file access inside one environment."""

    def write_text(self, path: str, content: str) -> None:
        """Create or replace *path* with *content* (UTF-8)."""
        raise NotImplementedError

    def read_text(self, path: str) -> str:
        """Return the content of *path*.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        raise NotImplementedError


class ShellFilesystem(Filesystem):
    """Shell-mediated file access via a base64 heredoc.

    Args:
        runner: Command runner bound to the environment.
        elevated: Write and read as root (needed for /etc paths).
    """

    def __init__(self, runner: CommandRunner, elevated: bool = True) -> None:
        self._runner = runner
        self._elevated = elevated

    def write_text(self, path: str, content: str) -> None:
        encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
        # Reason: base64 text never contains the marker or shell metacharacters,
        # so the quoted heredoc passes it through untouched.
        script = (
            f"mkdir -p {shlex.quote(posixpath.dirname(path) or '/')} && "
            f"base64 -d > {shlex.quote(path)} <<'{_HEREDOC_MARKER}'\n"
            f"{encoded}\n"
            f"{_HEREDOC_MARKER}\n"
        )
        self._runner.run(script, elevated=self._elevated)
        logger.debug("Wrote %d bytes to %s (shell)", len(content), path)

    def read_text(self, path: str) -> str:
        result = self._runner.run(
            ["cat", path], elevated=self._elevated, check=False,
        )
        if not result.ok:
            raise FileNotFoundError(path)
        return result.stdout


class ArchiveFilesystem(Filesystem):
    """Direct file access through Docker's archive endpoints.

    Args:
        container: docker ``Container`` object.
    """

    def __init__(self, container: Any) -> None:
        self._container = container

    def write_text(self, path: str, content: str) -> None:
        data = content.encode("utf-8")
        directory, name = posixpath.split(path)

        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tar:
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            info.mode = 0o644
            info.mtime = int(time.time())
            tar.addfile(info, io.BytesIO(data))

        self._container.exec_run(cmd=["mkdir", "-p", directory or "/"], user="root")
        if not self._container.put_archive(directory or "/", buf.getvalue()):
            raise OSError(f"put_archive rejected {path}")
        logger.debug("Wrote %d bytes to %s (archive)", len(data), path)

    def read_text(self, path: str) -> str:
        from docker.errors import NotFound

        try:
            stream, _stat = self._container.get_archive(path)
        except NotFound:
            raise FileNotFoundError(path)

        buf = io.BytesIO(b"".join(stream))
        with tarfile.open(fileobj=buf, mode="r") as tar:
            member = tar.next()
            if member is None or not member.isfile():
                raise FileNotFoundError(path)
            extracted = tar.extractfile(member)
            if extracted is None:
                raise FileNotFoundError(path)
            return extracted.read().decode("utf-8", errors="replace")
