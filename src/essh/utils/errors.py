"""Error taxonomy shared by the store, rotation and transfer layers."""
from __future__ import annotations


class EsshError(Exception):
    """Base class for every failure reported by essh."""


class ParseError(EsshError):
    """The persisted store (or config) is not structurally valid."""


class NotInitialized(EsshError):
    pass


class UsageError(EsshError):
    pass


class DuplicateName(EsshError):
    def __init__(self, name: str):
        super().__init__(f"server {name!r} already exists")
        self.name = name


class NotFound(EsshError):
    def __init__(self, name: str):
        super().__init__(f"server {name!r} not found")
        self.name = name


class _OpaqueError(EsshError):
    """Error whose message never reveals its cause.

    ``detail`` is only for debug logging; callers must not branch on it.
    """

    message = "operation failed"

    def __init__(self, detail: str | None = None):
        super().__init__(self.message)
        self.detail = detail


class DecryptionFailed(_OpaqueError):
    message = "decryption failed"


class WrongPassword(_OpaqueError):
    message = "wrong encryption password"


class ProtocolError(EsshError):
    """Fatal failure of the current file transfer."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class ChannelError(ProtocolError):
    """The underlying byte channel failed (EOF, closed pipe, non-zero exit)."""
