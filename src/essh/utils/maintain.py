import argparse
import logging

from pathlib import Path

from essh.crypto.aead import SENTINEL, encrypt, decrypt
from essh.crypto.hash import derive_key, generate_salt
from essh.crypto.keyfile import generate_keyfile, load_keyfile
from essh.storage.vault import save_store, load_store
from essh.ui.prompt import confirm, read_password, read_password_confirm
from essh.utils.config import EsshConfig
from essh.utils.core import config_keyfile, get, remove, rename, unlock, verify_password
from essh.utils.dataModels import KeyMaterial, Store
from essh.utils.errors import DecryptionFailed, UsageError

logger = logging.getLogger("essh.rotation")


def rotate(store: Store, old: KeyMaterial, new: KeyMaterial) -> Store:
    """Re-encrypt every secret under a key derived from the new factors.
    Steps:
      1) Verify the old factors against the verification token.
      2) Generate a new salt and derive the new key.
      3) Decrypt every secret under the old key; any failure aborts with
         the store untouched.
      4) Re-encrypt everything, then swap ciphertexts, salt and token in
         one go. The caller persists with save_store.
    """
    old_key = verify_password(store, old.password, old.keyfile)
    new_salt = generate_salt()
    new_key = derive_key(new.password, new_salt, new.keyfile)
    logger.info("Rotating key for %d server(s)", len(store.records))

    plaintexts = {}
    for name, rec in store.records.items():
        try:
            plaintexts[name] = decrypt(old_key, rec.encrypted_secret)
        except DecryptionFailed as e:
            logger.error("Rotation aborted: cannot decrypt secret of %r (%s)", name, e.detail)
            raise DecryptionFailed(f"server {name!r}: {e.detail}") from None

    reencrypted = {name: encrypt(new_key, pt) for name, pt in plaintexts.items()}
    new_verification = encrypt(new_key, SENTINEL)
    plaintexts.clear()

    for name, blob in reencrypted.items():
        store.records[name].encrypted_secret = blob
    store.salt = new_salt
    store.verification = new_verification
    logger.info("Key rotation complete")
    return store


def cmd_rm(cfg: EsshConfig, args: argparse.Namespace) -> None:
    store, _ = unlock(cfg, args.passphrase)
    get(store, args.name)
    if not args.yes and not confirm(f"Remove server {args.name!r}? [y/N] "):
        print("Cancelled.")
        return
    remove(store, args.name)
    save_store(cfg.storage_path, store)
    print(f"[+] Removed server {args.name!r}")


def cmd_rename(cfg: EsshConfig, args: argparse.Namespace) -> None:
    store = load_store(cfg.storage_path)
    rename(store, args.old, args.new)
    save_store(cfg.storage_path, store)
    print(f"[+] Renamed {args.old!r} -> {args.new!r}")


def cmd_passwd(cfg: EsshConfig, args: argparse.Namespace) -> None:
    """Change the encryption password and/or keyfile, re-encrypting every secret."""
    if args.new_keyfile and args.drop_keyfile:
        raise UsageError("--new-keyfile and --drop-keyfile are mutually exclusive")
    store = load_store(cfg.storage_path)
    old = KeyMaterial(read_password("Current encryption password: ", args.passphrase), config_keyfile(cfg))
    verify_password(store, old.password, old.keyfile)

    new_password = read_password_confirm(
        "New encryption password: ", "Confirm new password: ", args.new_passphrase, env=None
    )
    if not new_password:
        raise UsageError("password cannot be empty")

    keyfile_path, new_keyfile = cfg.keyfile_path, old.keyfile
    if args.drop_keyfile:
        keyfile_path, new_keyfile = None, None
    elif args.new_keyfile:
        keyfile_path = Path(args.new_keyfile).expanduser().resolve()
        if keyfile_path.exists():
            new_keyfile = load_keyfile(keyfile_path)
        else:
            new_keyfile = generate_keyfile(keyfile_path)
    rotate(store, old, KeyMaterial(new_password, new_keyfile))
    save_store(cfg.storage_path, store)
    if keyfile_path != cfg.keyfile_path:
        cfg.keyfile_path = keyfile_path
        cfg.save()
    print("[+] Encryption password changed successfully.")
