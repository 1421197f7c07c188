import logging
import os

from argon2.low_level import hash_secret_raw, Type as Argon2Type

logger = logging.getLogger("essh.crypto")

SALT_LEN = 16
KEY_LEN = 32

# Argon2id cost parameters; changing them invalidates every existing store.
ARGON2_T_COST = 1
ARGON2_M_COST_KiB = 64 * 1024  # 64 MiB
ARGON2_PARALLELISM = 4


def generate_salt() -> bytes:
    return os.urandom(SALT_LEN)


def derive_key(password: str, salt: bytes, keyfile: bytes | None = None) -> bytes:
    """Key = Argon2id(password || keyfile, salt) -> 32 bytes

    The keyfile bytes (when given) are appended to the UTF-8 password, so
    both factors are needed to reproduce the key.
    """
    secret = password.encode("utf-8")
    if keyfile:
        secret += keyfile
    key = hash_secret_raw(
        secret=secret,
        salt=salt,
        time_cost=ARGON2_T_COST,
        memory_cost=ARGON2_M_COST_KiB,
        parallelism=ARGON2_PARALLELISM,
        hash_len=KEY_LEN,
        type=Argon2Type.ID,
    )
    logger.debug("Derived key (keyfile=%s)", "yes" if keyfile else "no")
    return key
