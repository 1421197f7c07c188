import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from essh.utils.errors import DecryptionFailed

logger = logging.getLogger("essh.crypto")

NONCE_LEN = 12
TAG_LEN = 16
SENTINEL = "essh-verify"


def aead_encrypt(key: bytes, plaintext: bytes, aad: bytes | None = None) -> bytes:
    """Return nonce || AES-256-GCM(ciphertext || tag) under a fresh nonce."""
    nonce = os.urandom(NONCE_LEN)
    aesgcm = AESGCM(key)
    return nonce + aesgcm.encrypt(nonce, plaintext, aad)


def aead_decrypt(key: bytes, blob: bytes, aad: bytes | None = None) -> bytes:
    if len(blob) < NONCE_LEN + TAG_LEN:
        logger.debug("Rejecting %d-byte blob (minimum %d)", len(blob), NONCE_LEN + TAG_LEN)
        raise DecryptionFailed(f"blob too short ({len(blob)} bytes)")
    aesgcm = AESGCM(key)
    try:
        return aesgcm.decrypt(blob[:NONCE_LEN], blob[NONCE_LEN:], aad)
    except InvalidTag:
        logger.debug("AES-GCM authentication failed")
        raise DecryptionFailed("authentication tag mismatch") from None


def encrypt(key: bytes, plaintext: str) -> str:
    return aead_encrypt(key, plaintext.encode("utf-8")).hex()


def decrypt(key: bytes, encoded: str) -> str:
    """Decrypt a hex blob produced by :func:`encrypt`.

    Malformed input and authentication failures both raise the same
    DecryptionFailed; only its ``detail`` tells them apart.
    """
    try:
        blob = bytes.fromhex(encoded)
    except (ValueError, TypeError, binascii.Error):
        raise DecryptionFailed("blob is not valid hex") from None
    plaintext = aead_decrypt(key, blob)
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise DecryptionFailed("plaintext is not UTF-8") from None
