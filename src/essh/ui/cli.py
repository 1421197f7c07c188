import argparse

from essh import __version__
from essh.utils.core import cmd_add, cmd_edit, cmd_init, cmd_ls, cmd_scp
from essh.utils.maintain import cmd_passwd, cmd_rename, cmd_rm


def _passphrase(p: argparse.ArgumentParser) -> None:
    p.add_argument("--passphrase", help="Encryption password (default: $ESSH_PASSWORD or prompt)")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="essh", description="Encrypted SSH credential store and SCP client")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_init = sub.add_parser("init", help="Initialize storage with an encryption password")
    p_init.add_argument("--dir", help="Storage directory (default: ~/.essh)")
    p_init.add_argument("--keyfile", help="Generate a keyfile at this path and require it for decryption")
    p_init.add_argument("--force", action="store_true", help="Overwrite an existing storage file")
    _passphrase(p_init)
    p_init.set_defaults(func=cmd_init, needs_config=False)

    p_add = sub.add_parser("add", help="Add a server")
    p_add.add_argument("name", help="Server name")
    p_add.add_argument("target", help="user@host[:port]")
    _passphrase(p_add)
    p_add.set_defaults(func=cmd_add)

    p_ls = sub.add_parser("list", help="List saved servers")
    p_ls.set_defaults(func=cmd_ls)

    p_rm = sub.add_parser("remove", help="Remove a saved server")
    p_rm.add_argument("name", help="Server name")
    p_rm.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    _passphrase(p_rm)
    p_rm.set_defaults(func=cmd_rm)

    p_ren = sub.add_parser("rename", help="Rename a saved server")
    p_ren.add_argument("old", help="Current name")
    p_ren.add_argument("new", help="New name")
    p_ren.set_defaults(func=cmd_rename)

    p_edit = sub.add_parser("edit", help="Edit a saved server")
    p_edit.add_argument("name", help="Server name")
    p_edit.add_argument("--user", help="New user")
    p_edit.add_argument("--host", help="New host")
    p_edit.add_argument("--port", type=int, help="New port")
    p_edit.add_argument("--change-secret", action="store_true", help="Prompt for a new SSH password")
    _passphrase(p_edit)
    p_edit.set_defaults(func=cmd_edit)

    p_pw = sub.add_parser("passwd", help="Change encryption password and/or keyfile")
    _passphrase(p_pw)
    p_pw.add_argument("--new-passphrase", help="New encryption password (default: prompt)")
    p_pw.add_argument("--new-keyfile", help="Use (or generate) this keyfile from now on")
    p_pw.add_argument("--drop-keyfile", action="store_true", help="Stop requiring a keyfile")
    p_pw.set_defaults(func=cmd_passwd)

    p_scp = sub.add_parser("scp", help="Copy a file to/from a server (use <name>:/path for remote)")
    p_scp.add_argument("src", help="Source, e.g. prod-web:/etc/hostname or ./file.txt")
    p_scp.add_argument("dst", help="Destination")
    _passphrase(p_scp)
    p_scp.set_defaults(func=cmd_scp)

    return p
