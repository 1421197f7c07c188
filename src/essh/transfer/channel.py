"""
Duplex byte channels the SCP client runs over.

``Channel`` buffers a readable stream (anything with ``read1``) and a
writable stream. ``SubprocessChannel`` binds one to the stdin/stdout of the
system ssh client running the remote ``scp`` sink or source.

Security Note:
    The SSH password is handed to sshpass through the SSHPASS environment
    variable, never on the command line.
"""
import logging
import os
import shutil
import subprocess

from typing import BinaryIO, Dict, List, Optional, Tuple

from essh.utils.errors import ChannelError, ProtocolError

logger = logging.getLogger("essh.transfer")

CHUNK_SIZE = 32 * 1024
MAX_LINE = 64 * 1024


class Channel:
    def __init__(self, reader: BinaryIO, writer: BinaryIO):
        self._reader = reader
        self._writer = writer
        self._buf = bytearray()

    def _fill(self) -> None:
        try:
            chunk = self._reader.read1(CHUNK_SIZE)
        except OSError as e:
            raise ChannelError(f"reading from channel: {e}") from e
        if not chunk:
            raise ChannelError("channel closed unexpectedly")
        self._buf += chunk

    def read_exact(self, n: int) -> bytes:
        while len(self._buf) < n:
            self._fill()
        data = bytes(self._buf[:n])
        del self._buf[:n]
        return data

    def read_line(self) -> str:
        """Read up to the next newline; the newline is consumed, not returned."""
        start = 0
        while True:
            idx = self._buf.find(b"\n", start)
            if idx >= 0:
                break
            if len(self._buf) > MAX_LINE:
                raise ProtocolError(f"line exceeds {MAX_LINE} bytes")
            start = len(self._buf)
            self._fill()
        line = bytes(self._buf[:idx])
        del self._buf[:idx + 1]
        return line.decode("utf-8", errors="replace")

    def copy_to(self, dst: BinaryIO, n: int) -> None:
        """Move exactly n bytes from the channel into dst."""
        remaining = n
        while remaining:
            if not self._buf:
                self._fill()
            chunk = self._buf[:remaining]
            dst.write(chunk)
            del self._buf[:len(chunk)]
            remaining -= len(chunk)

    def write(self, data: bytes) -> None:
        try:
            self._writer.write(data)
            self._writer.flush()
        except (OSError, ValueError) as e:
            raise ChannelError(f"writing to channel: {e}") from e

    def close(self) -> None:
        try:
            self._writer.close()
        except OSError as e:
            raise ChannelError(f"closing channel: {e}") from e

    def __enter__(self) -> "Channel":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def abort(self) -> None:
        """Tear the channel down after a failure without raising."""
        try:
            self._writer.close()
        except OSError:
            logger.debug("Ignoring error while aborting channel", exc_info=True)


def ssh_command(
    user: str, host: str, port: int, remote_command: str, secret: Optional[str] = None
) -> Tuple[List[str], Optional[Dict[str, str]]]:
    """Build argv/env for running remote_command through the system ssh client."""
    argv = ["ssh", "-T", "-p", str(port), f"{user}@{host}", remote_command]
    if secret is None:
        return argv, None
    if shutil.which("sshpass") is None:
        logger.warning("sshpass not found; ssh will prompt or fall back to agent/key auth")
        return argv, None
    env = dict(os.environ)
    env["SSHPASS"] = secret
    return ["sshpass", "-e"] + argv, env


class SubprocessChannel(Channel):
    def __init__(self, argv: List[str], env: Optional[Dict[str, str]] = None):
        try:
            self._proc = subprocess.Popen(argv, stdin=subprocess.PIPE, stdout=subprocess.PIPE, env=env)
        except OSError as e:
            raise ChannelError(f"starting {argv[0]}: {e.strerror}") from e
        logger.debug("Started %s (pid %d)", argv[0], self._proc.pid)
        super().__init__(self._proc.stdout, self._proc.stdin)

    def close(self) -> None:
        super().close()
        rc = self._proc.wait()
        self._proc.stdout.close()
        if rc != 0:
            raise ChannelError(f"remote session exited with status {rc}")

    def abort(self) -> None:
        super().abort()
        self._proc.kill()
        self._proc.wait()
        self._proc.stdout.close()
