"""
essh configuration - where the store lives and which keyfile (if any) it needs.

Stored as JSON in ``$ESSH_CONFIG_DIR/config.json`` (default ``~/.essh``).
An ``EsshConfig`` instance is the context object handed to every command;
nothing in essh reads the config implicitly.
"""
import json
import logging
import os

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError, field_validator

from essh.utils.dataModels import STORE_FILENAME
from essh.utils.errors import NotInitialized, ParseError

logger = logging.getLogger("essh.config")

CONFIG_FILENAME = "config.json"


def config_dir() -> Path:
    env = os.environ.get("ESSH_CONFIG_DIR")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".essh"


def expand_path(p: str | Path) -> Path:
    return Path(p).expanduser()


def collapse_path(p: Path) -> str:
    """Replace a leading home directory with ``~`` for portable config files."""
    home = Path.home()
    try:
        return "~/" + Path(p).relative_to(home).as_posix()
    except ValueError:
        return str(p)


class EsshConfig(BaseModel):
    """Validated essh configuration."""

    storage_path: Path
    keyfile_path: Optional[Path] = None

    @field_validator("storage_path", "keyfile_path", mode="before")
    @classmethod
    def expand_home(cls, v):
        if v is None or v == "":
            return None
        return expand_path(v)

    @classmethod
    def default(cls, directory: Path | None = None) -> "EsshConfig":
        return cls(storage_path=(directory or config_dir()) / STORE_FILENAME)

    @classmethod
    def load(cls, path: Path | None = None) -> "EsshConfig":
        path = path or config_dir() / CONFIG_FILENAME
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise NotInitialized("not initialized - run 'essh init' first") from None
        try:
            cfg = cls.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ParseError(f"parsing config {path}: {e}") from e
        logger.debug("Loaded config from %s", path)
        return cfg

    def save(self, path: Path | None = None) -> Path:
        path = path or config_dir() / CONFIG_FILENAME
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        obj = {"storage_path": collapse_path(self.storage_path)}
        if self.keyfile_path is not None:
            obj["keyfile_path"] = collapse_path(self.keyfile_path)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(obj, f, indent=2)
            f.write("\n")
        logger.debug("Saved config to %s", path)
        return path
