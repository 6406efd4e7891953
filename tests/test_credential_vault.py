"""Tests for the vault implementations."""

import base64
import json
import os
import sys

import pytest

from provider_bridge.auth.credential_vault import EncryptedFileVault, InMemoryVault


def test_in_memory_vault():
    vault = InMemoryVault()
    vault.set_secret("a", "1")
    assert vault.get_secret("a") == "1"
    assert vault.keys() == ["a"]
    vault.delete_secret("a")
    assert vault.get_secret("a") is None
    vault.delete_secret("missing")


def test_encrypted_vault_persists_across_instances(tmp_path):
    path = tmp_path / "vault.json"
    vault = EncryptedFileVault(path)
    vault.set_secret("oauth_access_antigravity", "ya29.secret")

    reopened = EncryptedFileVault(path)
    assert reopened.get_secret("oauth_access_antigravity") == "ya29.secret"
    assert (tmp_path / "vault.key").exists()


def test_encrypted_vault_does_not_store_plaintext(tmp_path):
    path = tmp_path / "vault.json"
    EncryptedFileVault(path).set_secret("api_key_openai", "sk-very-secret")
    assert "sk-very-secret" not in path.read_text()


def test_encrypted_vault_explicit_key(tmp_path):
    key = base64.b64encode(os.urandom(32)).decode()
    path = tmp_path / "vault.json"
    EncryptedFileVault(path, master_key=key).set_secret("k", "v")
    assert EncryptedFileVault(path, master_key=key).get_secret("k") == "v"
    assert not (tmp_path / "vault.key").exists()


def test_wrong_key_reads_none(tmp_path):
    path = tmp_path / "vault.json"
    EncryptedFileVault(path, master_key=os.urandom(32)).set_secret("k", "v")
    assert EncryptedFileVault(path, master_key=os.urandom(32)).get_secret("k") is None


def test_entry_moved_under_other_name_fails(tmp_path):
    path = tmp_path / "vault.json"
    key = os.urandom(32)
    EncryptedFileVault(path, master_key=key).set_secret("oauth_access_a", "token-a")

    data = json.loads(path.read_text())
    data["oauth_access_b"] = data["oauth_access_a"]
    path.write_text(json.dumps(data))

    vault = EncryptedFileVault(path, master_key=key)
    assert vault.get_secret("oauth_access_a") == "token-a"
    assert vault.get_secret("oauth_access_b") is None


def test_tampered_entry_reads_none(tmp_path):
    path = tmp_path / "vault.json"
    key = os.urandom(32)
    EncryptedFileVault(path, master_key=key).set_secret("k", "value")
    path.write_text(json.dumps({"k": "not base64!!"}))
    assert EncryptedFileVault(path, master_key=key).get_secret("k") is None


def test_corrupted_file_starts_empty(tmp_path):
    path = tmp_path / "vault.json"
    path.write_text("{broken")
    vault = EncryptedFileVault(path, master_key=os.urandom(32))
    assert vault.keys() == []
    vault.set_secret("k", "v")
    assert vault.get_secret("k") == "v"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_vault_file_is_private(tmp_path):
    path = tmp_path / "vault.json"
    EncryptedFileVault(path, master_key=os.urandom(32)).set_secret("k", "v")
    assert path.stat().st_mode & 0o777 == 0o600
