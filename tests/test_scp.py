"""
Tests for the SCP client state machines, driven over in-memory channels.
"""
import io
import os

import pytest

from essh.transfer import channel as channel_mod
from essh.transfer.channel import CHUNK_SIZE, Channel, ssh_command
from essh.transfer.scp import (
    Download,
    ScpHeader,
    TransferState,
    Upload,
    download,
    parse_header,
    read_ack,
    sink_command,
    source_command,
    upload,
)
from essh.utils.errors import ChannelError, ProtocolError, UsageError


class TrickleReader:
    """Returns one byte per read1() call, like a slow pipe."""

    def __init__(self, data: bytes):
        self._data = io.BytesIO(data)

    def read1(self, n=-1):
        return self._data.read(1)


def make_channel(incoming: bytes, trickle: bool = False):
    out = io.BytesIO()
    reader = TrickleReader(incoming) if trickle else io.BytesIO(incoming)
    return Channel(reader, out), out


@pytest.fixture
def local_file(tmp_path):
    path = tmp_path / "file.txt"
    path.write_bytes(b"hello")
    os.chmod(path, 0o644)
    return path


# --- Header parsing and acks ---

class TestHeader:

    def test_parse(self):
        assert parse_header("C0644 12345 file.txt") == ScpHeader(0o644, 12345, "file.txt")

    def test_filename_may_contain_spaces(self):
        assert parse_header("C0600 1 my file.txt").filename == "my file.txt"

    @pytest.mark.parametrize("line", [
        "C0644 12345",
        "",
        "D0755 0 dir",
        "C0644 -1 file.txt",
        "C0644 12a file.txt",
        "C0944 1 file.txt",
        "C 1 file.txt",
        "C0644 1 ",
        "C0644 \u00b2 file.txt",
        "C0644 \u0661\u0662 file.txt",
        "C644 1 f",
        "C00644 1 f",
    ])
    def test_malformed(self, line):
        with pytest.raises(ProtocolError):
            parse_header(line)

    def test_encode(self):
        assert ScpHeader(0o644, 5, "a.txt").encode() == b"C0644 5 a.txt\n"
        assert ScpHeader(0o7, 0, "x").encode() == b"C0007 0 x\n"


class TestAck:

    def test_ok(self):
        ch, _ = make_channel(b"\x00")
        read_ack(ch)

    def test_error_carries_code_and_message(self):
        ch, _ = make_channel(b"\x01permission denied\n")
        with pytest.raises(ProtocolError) as e:
            read_ack(ch)
        assert e.value.code == 1
        assert "1" in str(e.value) and "permission denied" in str(e.value)
        assert not isinstance(e.value, ChannelError)

    def test_error_without_newline(self):
        ch, _ = make_channel(b"\x02")
        with pytest.raises(ProtocolError) as e:
            read_ack(ch)
        assert e.value.code == 2

    def test_closed_channel_is_channel_error(self):
        ch, _ = make_channel(b"")
        with pytest.raises(ChannelError):
            read_ack(ch)


class TestChannel:

    def test_read_line_across_fragments(self):
        ch, _ = make_channel(b"first\nsecond\nrest", trickle=True)
        assert ch.read_line() == "first"
        assert ch.read_line() == "second"
        assert ch.read_exact(4) == b"rest"

    def test_read_exact_short(self):
        ch, _ = make_channel(b"abc")
        with pytest.raises(ChannelError):
            ch.read_exact(4)

    def test_copy_to(self):
        ch, _ = make_channel(b"0123456789")
        dst = io.BytesIO()
        ch.copy_to(dst, 4)
        assert dst.getvalue() == b"0123"
        assert ch.read_exact(6) == b"456789"

    def test_write_after_close(self):
        ch, _ = make_channel(b"")
        ch.close()
        with pytest.raises(ChannelError):
            ch.write(b"\x00")


# --- Upload ---

class TestUpload:

    def test_happy_path(self, local_file):
        ch, out = make_channel(b"\x00\x00\x00")
        header = upload(ch, local_file)
        assert header == ScpHeader(0o644, 5, "file.txt")
        assert out.getvalue() == b"C0644 5 file.txt\nhello\x00"

    def test_mode_follows_local_file(self, local_file):
        os.chmod(local_file, 0o600)
        ch, out = make_channel(b"\x00\x00\x00")
        upload(ch, local_file)
        assert out.getvalue().startswith(b"C0600 5 ")

    def test_state_sequence(self, local_file):
        ch, _ = make_channel(b"\x00\x00\x00")
        t = Upload(ch, local_file)
        states = [t.state]
        while t.state is not TransferState.DONE:
            states.append(t.step())
        assert states == [
            TransferState.START,
            TransferState.AWAIT_READY,
            TransferState.SEND_HEADER,
            TransferState.AWAIT_HEADER_ACK,
            TransferState.SEND_BODY,
            TransferState.SEND_COMPLETE,
            TransferState.AWAIT_FINAL_ACK,
            TransferState.DONE,
        ]
        with pytest.raises(ProtocolError):
            t.step()

    def test_initial_ack_error(self, local_file):
        ch, out = make_channel(b"\x01scp: /root/x: Permission denied\n")
        t = Upload(ch, local_file)
        with pytest.raises(ProtocolError) as e:
            t.run()
        assert e.value.code == 1
        assert "Permission denied" in str(e.value)
        assert t.state is TransferState.FAILED
        assert out.getvalue() == b""

    def test_header_ack_error(self, local_file):
        ch, out = make_channel(b"\x00\x02disk full\n")
        t = Upload(ch, local_file)
        with pytest.raises(ProtocolError):
            t.run()
        assert t.state is TransferState.FAILED
        assert out.getvalue() == b"C0644 5 file.txt\n"

    def test_channel_closed_before_final_ack(self, local_file):
        ch, _ = make_channel(b"\x00\x00")
        with pytest.raises(ChannelError):
            upload(ch, local_file)

    def test_large_file_streams_in_chunks(self, tmp_path):
        data = os.urandom(CHUNK_SIZE * 3 + 17)
        path = tmp_path / "big.bin"
        path.write_bytes(data)
        ch, out = make_channel(b"\x00\x00\x00")
        header = upload(ch, path)
        head = f"C{header.mode:04o} {len(data)} big.bin\n".encode()
        assert out.getvalue() == head + data + b"\x00"

    def test_directory_rejected(self, tmp_path):
        ch, _ = make_channel(b"")
        with pytest.raises(UsageError):
            Upload(ch, tmp_path)

    def test_missing_file(self, tmp_path):
        ch, _ = make_channel(b"")
        with pytest.raises(UsageError):
            Upload(ch, tmp_path / "missing")


# --- Download ---

class TestDownload:

    def test_happy_path(self, tmp_path):
        ch, out = make_channel(b"C0644 5 remote.txt\nhello\x00")
        dest = download(ch, tmp_path / "local.txt")
        assert dest == tmp_path / "local.txt"
        assert dest.read_bytes() == b"hello"
        assert out.getvalue() == b"\x00\x00\x00"

    def test_into_directory_uses_header_name(self, tmp_path):
        ch, _ = make_channel(b"C0644 5 remote.txt\nhello\x00")
        dest = download(ch, tmp_path)
        assert dest == tmp_path / "remote.txt"
        assert dest.read_bytes() == b"hello"

    def test_overwrites_existing_file(self, tmp_path):
        target = tmp_path / "existing.txt"
        target.write_bytes(b"old content that is longer")
        ch, _ = make_channel(b"C0644 3 x\nnew\x00")
        download(ch, target)
        assert target.read_bytes() == b"new"

    def test_empty_file(self, tmp_path):
        ch, out = make_channel(b"C0644 0 empty\n\x00")
        dest = download(ch, tmp_path)
        assert dest.read_bytes() == b""
        assert out.getvalue() == b"\x00\x00\x00"

    def test_trickled_input(self, tmp_path):
        ch, _ = make_channel(b"C0644 11 r.txt\nhello world\x00", trickle=True)
        assert download(ch, tmp_path / "o").read_bytes() == b"hello world"

    def test_state_sequence(self, tmp_path):
        ch, _ = make_channel(b"C0644 5 remote.txt\nhello\x00")
        t = Download(ch, tmp_path)
        states = [t.state]
        while t.state is not TransferState.DONE:
            states.append(t.step())
        assert states == [
            TransferState.START,
            TransferState.READ_HEADER,
            TransferState.SEND_HEADER_ACK,
            TransferState.RECEIVE_BODY,
            TransferState.READ_TRAILER,
            TransferState.SEND_FINAL_ACK,
            TransferState.DONE,
        ]

    def test_header_known_before_body(self, tmp_path):
        ch, out = make_channel(b"C0644 5 remote.txt\nhello\x00")
        t = Download(ch, tmp_path)
        t.step()
        t.step()
        assert t.state is TransferState.SEND_HEADER_ACK
        assert t.header.size == 5
        assert t.destination == tmp_path / "remote.txt"
        assert out.getvalue() == b"\x00"

    def test_malformed_header(self, tmp_path):
        ch, out = make_channel(b"C0644 12345\n")
        t = Download(ch, tmp_path)
        with pytest.raises(ProtocolError):
            t.run()
        assert t.state is TransferState.FAILED
        assert out.getvalue() == b"\x00"

    def test_remote_error_instead_of_header(self, tmp_path):
        ch, _ = make_channel(b"\x01scp: /etc/nope: No such file or directory\n")
        with pytest.raises(ProtocolError) as e:
            download(ch, tmp_path)
        assert e.value.code == 1
        assert "No such file" in str(e.value)

    def test_short_body(self, tmp_path):
        ch, _ = make_channel(b"C0644 10 f\nhello")
        with pytest.raises(ChannelError):
            download(ch, tmp_path / "f")

    @pytest.mark.parametrize("name", ["../escape", "a/b", "..", "."])
    def test_unsafe_name_into_directory(self, tmp_path, name):
        ch, _ = make_channel(f"C0644 1 {name}\nx\x00".encode())
        with pytest.raises(ProtocolError):
            download(ch, tmp_path)


# --- Remote command construction ---

class TestCommands:

    def test_sink_and_source(self):
        assert sink_command("/tmp/file.txt") == "scp -t /tmp/file.txt"
        assert source_command("/tmp/my file") == "scp -f '/tmp/my file'"
        assert sink_command("") == "scp -t ."

    def test_ssh_command_without_secret(self):
        argv, env = ssh_command("deploy", "web.example", 2222, "scp -t /tmp")
        assert argv == ["ssh", "-T", "-p", "2222", "deploy@web.example", "scp -t /tmp"]
        assert env is None

    def test_secret_goes_through_environment(self, monkeypatch):
        monkeypatch.setattr(channel_mod.shutil, "which", lambda name: "/usr/bin/sshpass")
        argv, env = ssh_command("deploy", "web", 22, "scp -f /x", secret="s3cret")
        assert argv[:3] == ["sshpass", "-e", "ssh"]
        assert "s3cret" not in " ".join(argv)
        assert env["SSHPASS"] == "s3cret"

    def test_no_sshpass(self, monkeypatch):
        monkeypatch.setattr(channel_mod.shutil, "which", lambda name: None)
        argv, env = ssh_command("deploy", "web", 22, "scp -f /x", secret="s3cret")
        assert argv[0] == "ssh"
        assert env is None
