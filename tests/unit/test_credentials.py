"""Tests for wagateway/credentials.py: CredentialStore."""

import os
import stat

import pytest

from wagateway.credentials import CredentialStore


class TestCredentialStore:
    """Test persistence of session credentials."""

    def test_missing_returns_none(self, tmp_path):
        store = CredentialStore(str(tmp_path / "auth"))
        assert store.exists() is False
        assert store.load() is None

    def test_save_and_load(self, tmp_path):
        store = CredentialStore(str(tmp_path / "auth"))
        store.save({"me": {"id": "5511@s.whatsapp.net"}, "registered": True})

        assert store.exists()
        assert store.load()["me"]["id"] == "5511@s.whatsapp.net"

    def test_save_replaces_previous(self, tmp_path):
        store = CredentialStore(str(tmp_path / "auth"))
        store.save({"version": 1})
        store.save({"version": 2})

        assert store.load() == {"version": 2}
        assert os.listdir(store.auth_dir) == ["creds.json"]

    def test_file_is_private(self, tmp_path):
        store = CredentialStore(str(tmp_path / "auth"))
        store.save({"k": "v"})
        assert stat.S_IMODE(os.stat(store.path).st_mode) == 0o600

    def test_malformed_file_ignored(self, tmp_path):
        store = CredentialStore(str(tmp_path))
        with open(store.path, "w") as f:
            f.write("{not json")
        assert store.load() is None

    def test_non_object_ignored(self, tmp_path):
        store = CredentialStore(str(tmp_path))
        with open(store.path, "w") as f:
            f.write("[1, 2, 3]")
        assert store.load() is None

    def test_save_rejects_non_dict(self, tmp_path):
        store = CredentialStore(str(tmp_path))
        with pytest.raises(TypeError):
            store.save(["not", "a", "dict"])

    def test_clear(self, tmp_path):
        store = CredentialStore(str(tmp_path))
        store.save({"k": "v"})
        store.clear()
        assert store.exists() is False
        # Clearing twice is harmless
        store.clear()

    @pytest.mark.parametrize("auth_dir", ["", "bad\x00dir", None])
    def test_invalid_directory(self, auth_dir):
        with pytest.raises(ValueError):
            CredentialStore(auth_dir)
