#!/usr/bin/env python3
"""
essh - encrypted SSH credential store with an SCP client.

Storage file (``essh-storage.json``, JSON, mode 0600):
    version      : int, +1 on every save
    salt         : hex, 16 bytes, regenerated only by ``passwd``
    verification : hex, nonce || AES-256-GCM("essh-verify")
    servers      : [{name, user, host, port, encrypted_password}, ...]

Key derivation:
    key = Argon2id(password || keyfile, salt, t=1, m=64 MiB, p=4) -> 32 bytes

Every secret is stored as hex(nonce || ciphertext || tag) under that key.
Losing the keyfile (if one was configured) makes the store unrecoverable.

Commands:
  init                 Initialize storage (optionally generating a keyfile)
  add <name> <target>  Add a server (user@host[:port]) and its SSH password
  list                 List saved servers
  remove <name>        Remove a saved server
  rename <old> <new>   Rename a saved server
  edit <name>          Change user/host/port/password of a server
  passwd               Change encryption password / keyfile (re-encrypts all)
  scp <src> <dst>      Copy a file, <name>:/path marks the remote side

Environment:
  ESSH_PASSWORD        Skip the encryption password prompt
  ESSH_CONFIG_DIR      Config directory (default ~/.essh)
"""
from __future__ import annotations

import logging
import sys

from essh.ui.cli import build_parser
from essh.utils.config import EsshConfig
from essh.utils.errors import EsshError


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        cfg = EsshConfig.load() if getattr(args, "needs_config", True) else EsshConfig.default()
        args.func(cfg, args)
    except (EsshError, OSError) as e:
        print(f"[!] {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print(file=sys.stderr)
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
