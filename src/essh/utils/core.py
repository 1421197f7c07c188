import argparse
import logging

from pathlib import Path

from essh.crypto.aead import SENTINEL, encrypt, decrypt
from essh.crypto.hash import derive_key, generate_salt
from essh.crypto.keyfile import generate_keyfile, load_keyfile
from essh.storage.vault import save_store, load_store
from essh.transfer.channel import SubprocessChannel, ssh_command
from essh.transfer.scp import Download, TransferState, Upload, sink_command, source_command
from essh.ui.prompt import read_password, read_password_confirm
from essh.utils.config import EsshConfig
from essh.utils.dataModels import CredentialRecord, Store
from essh.utils.errors import (
    DecryptionFailed,
    DuplicateName,
    NotFound,
    UsageError,
    WrongPassword,
)
from essh.utils.helper import format_size, parse_target, resolve_transfer, validate_port

logger = logging.getLogger("essh.store")


# ---------------------------------------------------------------------------
# Store operations
# ---------------------------------------------------------------------------

def initialize(password: str, keyfile: bytes | None = None) -> Store:
    """Create an empty store whose verification token is sealed under the derived key."""
    salt = generate_salt()
    key = derive_key(password, salt, keyfile)
    return Store(version=0, salt=salt, verification=encrypt(key, SENTINEL), records={})


def verify_password(store: Store, password: str, keyfile: bytes | None = None) -> bytes:
    """Return the store key, or raise WrongPassword.

    A tag failure, a malformed token and a wrong sentinel are all reported
    the same way.
    """
    key = derive_key(password, store.salt, keyfile)
    try:
        ok = decrypt(key, store.verification) == SENTINEL
        detail = "sentinel mismatch"
    except DecryptionFailed as e:
        ok, detail = False, e.detail
    if not ok:
        logger.debug("Password verification failed: %s", detail)
        raise WrongPassword(detail)
    return key


def find(store: Store, name: str) -> CredentialRecord | None:
    return store.records.get(name)


def get(store: Store, name: str) -> CredentialRecord:
    rec = find(store, name)
    if rec is None:
        raise NotFound(name)
    return rec


def add(store: Store, record: CredentialRecord) -> None:
    if record.name in store.records:
        raise DuplicateName(record.name)
    store.records[record.name] = record


def remove(store: Store, name: str) -> CredentialRecord:
    if name not in store.records:
        raise NotFound(name)
    return store.records.pop(name)


def rename(store: Store, old: str, new: str) -> None:
    """Rename in place, keeping the record's listing position."""
    if old not in store.records:
        raise NotFound(old)
    if new in store.records:
        raise DuplicateName(new)
    store.records = {
        (new if name == old else name): rec for name, rec in store.records.items()
    }
    store.records[new].name = new


def update_record(
    store: Store,
    name: str,
    user: str | None = None,
    host: str | None = None,
    port: int | None = None,
    encrypted_secret: str | None = None,
) -> CredentialRecord:
    rec = get(store, name)
    if user:
        rec.user = user
    if host:
        rec.host = host
    if port is not None:
        rec.port = validate_port(port)
    if encrypted_secret is not None:
        rec.encrypted_secret = encrypted_secret
    return rec


def decrypt_secret(store: Store, key: bytes, name: str) -> str:
    return decrypt(key, get(store, name).encrypted_secret)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def config_keyfile(cfg: EsshConfig) -> bytes | None:
    if cfg.keyfile_path is None:
        return None
    return load_keyfile(cfg.keyfile_path)


def unlock(cfg: EsshConfig, passphrase: str | None = None) -> tuple[Store, bytes]:
    store = load_store(cfg.storage_path)
    password = read_password("Encryption password: ", passphrase)
    key = verify_password(store, password, config_keyfile(cfg))
    return store, key


def cmd_init(cfg: EsshConfig, args: argparse.Namespace) -> None:
    directory = Path(args.dir).expanduser() if args.dir else cfg.storage_path.parent
    storage_path = directory / cfg.storage_path.name
    if storage_path.exists() and not args.force:
        raise UsageError(f"{storage_path} exists. Use --force to overwrite.")

    password = read_password_confirm("Encryption password: ", "Confirm password: ", args.passphrase)
    if not password:
        raise UsageError("password cannot be empty")

    directory.mkdir(mode=0o700, parents=True, exist_ok=True)
    keyfile_path = Path(args.keyfile).expanduser().resolve() if args.keyfile else None
    keyfile = generate_keyfile(keyfile_path) if keyfile_path else None

    store = initialize(password, keyfile)
    save_store(storage_path, store)

    cfg.storage_path = storage_path
    cfg.keyfile_path = keyfile_path
    cfg.save()
    print(f"[+] Initialized essh storage at {storage_path}")
    if keyfile_path:
        print(f"[+] Keyfile written to {keyfile_path} - without it the store cannot be decrypted")


def cmd_add(cfg: EsshConfig, args: argparse.Namespace) -> None:
    user, host, port = parse_target(args.target)
    store, key = unlock(cfg, args.passphrase)
    if find(store, args.name) is not None:
        raise DuplicateName(args.name)

    secret = read_password(f"SSH password for {user}@{host}: ", env=None)
    rec = CredentialRecord(name=args.name, user=user, host=host, port=port, encrypted_secret=encrypt(key, secret))
    add(store, rec)
    save_store(cfg.storage_path, store)
    print(f"[+] Added server {args.name!r} ({rec.address()})")


def cmd_ls(cfg: EsshConfig, args: argparse.Namespace) -> None:
    store = load_store(cfg.storage_path)
    if not store.records:
        print("No servers saved. Use 'essh add' to add one.")
        return
    width = max([4] + [len(name) for name in store.records])
    print(f"{'NAME':<{width}}  ADDRESS")
    for rec in store.records.values():
        print(f"{rec.name:<{width}}  {rec.address()}")


def cmd_edit(cfg: EsshConfig, args: argparse.Namespace) -> None:
    store, key = unlock(cfg, args.passphrase)
    get(store, args.name)

    encrypted_secret = None
    if args.change_secret:
        secret = read_password("New SSH password: ", env=None)
        if secret:
            encrypted_secret = encrypt(key, secret)
    if not (args.user or args.host or args.port is not None or encrypted_secret):
        print("[!] Nothing to change")
        return

    rec = update_record(store, args.name, args.user, args.host, args.port, encrypted_secret)
    save_store(cfg.storage_path, store)
    print(f"[+] Updated server {args.name!r} ({rec.address()})")


def cmd_scp(cfg: EsshConfig, args: argparse.Namespace) -> None:
    plan = resolve_transfer(args.src, args.dst)
    store = load_store(cfg.storage_path)
    rec = find(store, plan.server)
    if rec is None:
        raise UsageError(f"server {plan.server!r} not found - use 'essh list' to see saved servers")

    password = read_password("Encryption password: ", args.passphrase)
    key = verify_password(store, password, config_keyfile(cfg))
    secret = decrypt_secret(store, key, plan.server)

    remote_command = sink_command(plan.remote_path) if plan.upload else source_command(plan.remote_path)
    argv, env = ssh_command(rec.user, rec.host, rec.port, remote_command, secret)
    del secret

    with SubprocessChannel(argv, env) as channel:
        if plan.upload:
            transfer = Upload(channel, plan.local_path)
            print(f"Uploading {transfer.header.filename} ({format_size(transfer.header.size)})...", end="", flush=True)
            transfer.run()
        else:
            transfer = Download(channel, plan.local_path)
            while transfer.state is not TransferState.SEND_HEADER_ACK:
                transfer.step()
            print(f"Downloading {transfer.header.filename} ({format_size(transfer.header.size)})...", end="", flush=True)
            transfer.run()
    print("done")
