from typing import NamedTuple, Tuple

from essh.utils.dataModels import DEFAULT_PORT
from essh.utils.errors import UsageError

_LOCAL_PREFIXES = ("/", "./", "../")


class TransferPlan(NamedTuple):
    server: str
    remote_path: str
    local_path: str
    upload: bool


def format_size(n: int) -> str:
    if n >= 1 << 30:
        return f"{n / (1 << 30):.1f} GB"
    if n >= 1 << 20:
        return f"{n / (1 << 20):.1f} MB"
    if n >= 1 << 10:
        return f"{n / (1 << 10):.1f} KB"
    return f"{n} B"


def split_remote_arg(arg: str) -> Tuple[str, str]:
    """Split "name:/path" into ("name", "/path"); ("", arg) for local paths."""
    if arg.startswith(_LOCAL_PREFIXES):
        return "", arg
    idx = arg.find(":")
    if idx < 1:
        return "", arg
    return arg[:idx], arg[idx + 1:]


def resolve_transfer(src: str, dst: str) -> TransferPlan:
    src_name, src_path = split_remote_arg(src)
    dst_name, dst_path = split_remote_arg(dst)
    if src_name and dst_name:
        raise UsageError("both arguments cannot be remote - copy between two remote servers is not supported")
    if src_name:
        return TransferPlan(src_name, src_path, dst, upload=False)
    if dst_name:
        return TransferPlan(dst_name, dst_path, src, upload=True)
    raise UsageError("one argument must be remote (e.g. prod-web:/path)")


def validate_port(port: int) -> int:
    if not 1 <= port <= 65535:
        raise UsageError(f"invalid port {port}")
    return port


def parse_target(target: str) -> Tuple[str, str, int]:
    """Parse "user@host[:port]"."""
    user, sep, host_port = target.partition("@")
    if not sep:
        raise UsageError(f"invalid target {target!r} - expected user@host[:port]")
    host, port = host_port, DEFAULT_PORT
    if ":" in host_port:
        host, _, raw_port = host_port.rpartition(":")
        try:
            port = int(raw_port)
        except ValueError:
            raise UsageError(f"invalid port in {target!r}") from None
    if not user or not host:
        raise UsageError(f"invalid target {target!r} - user and host cannot be empty")
    return user, host, validate_port(port)
