import pytest

from essh.crypto.aead import encrypt
from essh.utils.core import add, initialize, verify_password
from essh.utils.dataModels import CredentialRecord

PASSWORD = "correct horse battery staple"


@pytest.fixture
def store():
    """A fresh store protected by PASSWORD (no keyfile)."""
    return initialize(PASSWORD)


@pytest.fixture
def key(store):
    return verify_password(store, PASSWORD)


@pytest.fixture
def populated(store, key):
    """Store holding three servers, secrets "pw-<name>"."""
    for name, host in (("web", "10.0.0.1"), ("db", "10.0.0.2"), ("cache", "10.0.0.3")):
        add(store, CredentialRecord(name=name, user="deploy", host=host, encrypted_secret=encrypt(key, f"pw-{name}")))
    return store


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    d = tmp_path / "essh-home"
    monkeypatch.setenv("ESSH_CONFIG_DIR", str(d))
    monkeypatch.delenv("ESSH_PASSWORD", raising=False)
    return d
