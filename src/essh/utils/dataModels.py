import json

from dataclasses import dataclass, field
from typing import Any, Dict, NamedTuple

from essh.crypto.hash import SALT_LEN
from essh.utils.errors import ParseError

DEFAULT_PORT = 22
STORE_FILENAME = "essh-storage.json"


class KeyMaterial(NamedTuple):
    """Factors the store key is derived from: a password plus optional keyfile bytes."""
    password: str
    keyfile: bytes | None = None


@dataclass
class CredentialRecord:
    name: str
    user: str
    host: str
    port: int = DEFAULT_PORT
    encrypted_secret: str = ""

    def address(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "user": self.user,
            "host": self.host,
            "port": self.port,
            "encrypted_password": self.encrypted_secret,
        }

    @staticmethod
    def from_dict(obj: Any) -> "CredentialRecord":
        if not isinstance(obj, dict):
            raise ParseError("server entry must be an object")
        for k in ("name", "user", "host", "encrypted_password"):
            if not isinstance(obj.get(k), str):
                raise ParseError(f"server entry field {k!r} must be a string")
        port = obj.get("port", DEFAULT_PORT)
        if not isinstance(port, int) or isinstance(port, bool):
            raise ParseError(f"server {obj['name']!r}: port must be an integer")
        return CredentialRecord(
            name=obj["name"],
            user=obj["user"],
            host=obj["host"],
            port=port,
            encrypted_secret=obj["encrypted_password"],
        )


@dataclass
class Store:
    version: int
    salt: bytes
    verification: str
    records: Dict[str, CredentialRecord] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "salt": self.salt.hex(),
            "verification": self.verification,
            "servers": [r.to_dict() for r in self.records.values()],
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False).encode("utf-8") + b"\n"

    @staticmethod
    def from_bytes(b: bytes) -> "Store":
        try:
            obj = json.loads(b.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ParseError(f"parsing storage: {e}") from e
        if not isinstance(obj, dict):
            raise ParseError("storage must be a JSON object")

        version = obj.get("version", 0)
        if not isinstance(version, int) or isinstance(version, bool) or version < 0:
            raise ParseError("storage version must be a non-negative integer")
        if not isinstance(obj.get("salt"), str):
            raise ParseError("storage salt must be a hex string")
        try:
            salt = bytes.fromhex(obj["salt"])
        except ValueError as e:
            raise ParseError("storage salt is not valid hex") from e
        if len(salt) != SALT_LEN:
            raise ParseError(f"storage salt must be {SALT_LEN} bytes, got {len(salt)}")
        if not isinstance(obj.get("verification"), str):
            raise ParseError("storage verification must be a string")
        servers = obj.get("servers") or []
        if not isinstance(servers, list):
            raise ParseError("storage servers must be an array")

        records: Dict[str, CredentialRecord] = {}
        for entry in servers:
            rec = CredentialRecord.from_dict(entry)
            if rec.name in records:
                raise ParseError(f"duplicate server name {rec.name!r}")
            records[rec.name] = rec
        return Store(version=version, salt=salt, verification=obj["verification"], records=records)
