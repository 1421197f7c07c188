import logging
import os

from pathlib import Path

from essh.utils.dataModels import Store
from essh.utils.errors import NotInitialized

logger = logging.getLogger("essh.store")


def save_store(path: Path, store: Store) -> None:
    """Bump the version and atomically replace the store file.

    The previous file stays intact if anything fails, and the in-memory
    version is rolled back so a retried save does not skip a number.
    """
    store.version += 1
    tmp = path.with_suffix(".tmp")
    try:
        data = store.to_bytes()
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        store.version -= 1
        tmp.unlink(missing_ok=True)
        raise
    logger.debug("Saved store %s (version %d, %d servers)", path, store.version, len(store.records))


def load_store(path: Path) -> Store:
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        raise NotInitialized(f"storage file {path} does not exist - run 'essh init' first") from None
    store = Store.from_bytes(data)
    logger.debug("Loaded store %s (version %d, %d servers)", path, store.version, len(store.records))
    return store
