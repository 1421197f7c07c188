"""
SCP client - single-file upload (sink, ``scp -t``) and download (source, ``scp -f``).

Wire format:
    header : b"C" + 4-digit octal mode + b" " + size + b" " + filename + b"\\n"
    ack    : one byte, 0 = ok; anything else is followed by an error line

Each direction is an explicit state machine: a transition table maps every
state to the action run in it and the state that follows. ``step()`` runs
one transition; any failure parks the transfer in FAILED and re-raises.
"""
from __future__ import annotations

import enum
import logging
import os
import re
import shlex
import stat

from pathlib import Path
from typing import Dict, NamedTuple, Tuple

from essh.transfer.channel import CHUNK_SIZE, Channel
from essh.utils.errors import ChannelError, ProtocolError, UsageError

logger = logging.getLogger("essh.transfer")

OK = b"\x00"

_MODE_RE = re.compile(r"[0-7]{4}")
_SIZE_RE = re.compile(r"[0-9]+")


class TransferState(enum.Enum):
    START = "start"
    AWAIT_READY = "await-ready"
    SEND_HEADER = "send-header"
    AWAIT_HEADER_ACK = "await-header-ack"
    SEND_BODY = "send-body"
    SEND_COMPLETE = "send-complete"
    AWAIT_FINAL_ACK = "await-final-ack"
    READ_HEADER = "read-header"
    SEND_HEADER_ACK = "send-header-ack"
    RECEIVE_BODY = "receive-body"
    READ_TRAILER = "read-trailer"
    SEND_FINAL_ACK = "send-final-ack"
    DONE = "done"
    FAILED = "failed"


class ScpHeader(NamedTuple):
    mode: int
    size: int
    filename: str

    def encode(self) -> bytes:
        return f"C{self.mode:04o} {self.size} {self.filename}\n".encode("utf-8")


def parse_header(line: str) -> ScpHeader:
    """Parse "C<mode> <size> <filename>" (without the trailing newline)."""
    parts = line.split(" ", 2)
    if len(parts) != 3 or not parts[0].startswith("C") or not parts[2]:
        raise ProtocolError(f"invalid scp header: {line!r}")
    mode_str, size_str, filename = parts[0][1:], parts[1], parts[2]
    if not _MODE_RE.fullmatch(mode_str):
        raise ProtocolError(f"invalid mode in scp header: {line!r}")
    if not _SIZE_RE.fullmatch(size_str):
        raise ProtocolError(f"invalid size in scp header: {line!r}")
    return ScpHeader(int(mode_str, 8), int(size_str), filename)


def read_ack(channel: Channel) -> None:
    code = channel.read_exact(1)[0]
    if code == 0:
        return
    try:
        msg = channel.read_line()
    except ChannelError:
        # remote may exit before terminating the message line
        msg = ""
    raise ProtocolError(f"scp error (code {code}): {msg}", code=code)


def sink_command(remote_path: str) -> str:
    return f"scp -t {shlex.quote(remote_path or '.')}"


def source_command(remote_path: str) -> str:
    return f"scp -f {shlex.quote(remote_path or '.')}"


_Table = Dict[TransferState, Tuple[str, TransferState]]
_S = TransferState


class _Transfer:
    transitions: _Table = {}

    def __init__(self, channel: Channel):
        self.channel = channel
        self.state = TransferState.START

    def step(self) -> TransferState:
        if self.state not in self.transitions:
            raise ProtocolError(f"transfer is {self.state.value}, no transition possible")
        action, next_state = self.transitions[self.state]
        try:
            getattr(self, action)()
        except BaseException:
            logger.debug("Transfer failed in state %s", self.state.value)
            self.state = TransferState.FAILED
            raise
        self.state = next_state
        return next_state

    def run(self) -> None:
        while self.state is not TransferState.DONE:
            self.step()

    def _send_ok(self) -> None:
        self.channel.write(OK)

    def _await_ack(self) -> None:
        read_ack(self.channel)


class Upload(_Transfer):
    transitions: _Table = {
        _S.START: ("_noop", _S.AWAIT_READY),
        _S.AWAIT_READY: ("_await_ack", _S.SEND_HEADER),
        _S.SEND_HEADER: ("_send_header", _S.AWAIT_HEADER_ACK),
        _S.AWAIT_HEADER_ACK: ("_await_ack", _S.SEND_BODY),
        _S.SEND_BODY: ("_send_body", _S.SEND_COMPLETE),
        _S.SEND_COMPLETE: ("_send_ok", _S.AWAIT_FINAL_ACK),
        _S.AWAIT_FINAL_ACK: ("_await_ack", _S.DONE),
    }

    def __init__(self, channel: Channel, local_path: str | Path):
        super().__init__(channel)
        self.local_path = Path(local_path)
        try:
            st = self.local_path.stat()
        except OSError as e:
            raise UsageError(f"stat local file {self.local_path}: {e.strerror}") from e
        if stat.S_ISDIR(st.st_mode):
            raise UsageError(f"{self.local_path} is a directory")
        if "\n" in self.local_path.name:
            raise UsageError(f"file name {self.local_path.name!r} contains a newline")
        self.header = ScpHeader(stat.S_IMODE(st.st_mode), st.st_size, self.local_path.name)

    def _noop(self) -> None:
        pass

    def _send_header(self) -> None:
        self.channel.write(self.header.encode())

    def _send_body(self) -> None:
        remaining = self.header.size
        with self.local_path.open("rb") as f:
            while remaining:
                chunk = f.read(min(CHUNK_SIZE, remaining))
                if not chunk:
                    raise ProtocolError(f"{self.local_path} shrank during upload")
                self.channel.write(chunk)
                remaining -= len(chunk)
        logger.debug("Sent %d bytes of %s", self.header.size, self.local_path)


class Download(_Transfer):
    transitions: _Table = {
        _S.START: ("_send_ok", _S.READ_HEADER),
        _S.READ_HEADER: ("_read_header", _S.SEND_HEADER_ACK),
        _S.SEND_HEADER_ACK: ("_send_ok", _S.RECEIVE_BODY),
        _S.RECEIVE_BODY: ("_receive_body", _S.READ_TRAILER),
        _S.READ_TRAILER: ("_read_trailer", _S.SEND_FINAL_ACK),
        _S.SEND_FINAL_ACK: ("_send_ok", _S.DONE),
    }

    def __init__(self, channel: Channel, local_path: str | Path):
        super().__init__(channel)
        self.local_path = Path(local_path)
        self.header: ScpHeader | None = None
        self.destination: Path | None = None

    def _read_header(self) -> None:
        line = self.channel.read_line()
        if line[:1] in ("\x01", "\x02"):
            # remote reported an error (e.g. missing file) instead of a header
            raise ProtocolError(f"scp error (code {ord(line[0])}): {line[1:]}", code=ord(line[0]))
        self.header = parse_header(line)
        self.destination = self.resolve_destination(self.header.filename)

    def resolve_destination(self, filename: str) -> Path:
        if not self.local_path.is_dir():
            return self.local_path
        if "/" in filename or os.sep in filename or filename in (".", ".."):
            raise ProtocolError(f"refusing unsafe file name in scp header: {filename!r}")
        return self.local_path / filename

    def _receive_body(self) -> None:
        with self.destination.open("wb") as f:
            self.channel.copy_to(f, self.header.size)
        logger.debug("Received %d bytes into %s", self.header.size, self.destination)

    def _read_trailer(self) -> None:
        self.channel.read_exact(1)


def upload(channel: Channel, local_path: str | Path) -> ScpHeader:
    transfer = Upload(channel, local_path)
    transfer.run()
    logger.info("Uploaded %s (%d bytes)", transfer.local_path, transfer.header.size)
    return transfer.header


def download(channel: Channel, local_path: str | Path) -> Path:
    transfer = Download(channel, local_path)
    transfer.run()
    logger.info("Downloaded %s (%d bytes) to %s", transfer.header.filename, transfer.header.size, transfer.destination)
    return transfer.destination
