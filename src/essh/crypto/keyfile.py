import logging
import os

from pathlib import Path

from essh.utils.errors import UsageError

logger = logging.getLogger("essh.crypto")

KEYFILE_LEN = 32


def generate_keyfile(path: Path) -> bytes:
    """Write KEYFILE_LEN random bytes to path (mode 0600) and return them."""
    data = os.urandom(KEYFILE_LEN)
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError:
        raise UsageError(f"keyfile {path} already exists") from None
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    logger.info("Generated keyfile at %s", path)
    return data


def load_keyfile(path: Path) -> bytes:
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise UsageError(f"reading keyfile {path}: {e.strerror}") from e
    if not data:
        raise UsageError(f"keyfile {path} is empty")
    return data
