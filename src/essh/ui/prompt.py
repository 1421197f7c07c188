import getpass
import os

from essh.utils.errors import UsageError

PASSWORD_ENV = "ESSH_PASSWORD"


def read_line(prompt: str) -> str:
    try:
        return input(prompt).strip()
    except EOFError:
        raise UsageError("no input") from None


def read_password(prompt: str, preset: str | None = None, env: str | None = PASSWORD_ENV) -> str:
    """Read a password without echo.

    A preset value (e.g. from --passphrase) or the ``env`` variable skips
    the prompt entirely.
    """
    if preset:
        return preset
    if env and os.environ.get(env):
        return os.environ[env]
    try:
        return getpass.getpass(prompt)
    except EOFError:
        raise UsageError("no input") from None


def read_password_confirm(
    prompt: str, confirm_prompt: str, preset: str | None = None, env: str | None = PASSWORD_ENV
) -> str:
    if preset or (env and os.environ.get(env)):
        return read_password(prompt, preset, env)
    pw = read_password(prompt, env=None)
    if pw != read_password(confirm_prompt, env=None):
        raise UsageError("passwords do not match")
    return pw


def confirm(msg: str) -> bool:
    return read_line(msg).lower() in ("y", "yes")
