"""Tests for the single-file vault backend."""

import json
import os

import pytest

from offgrid_vault.core.db import StoreHandle
from offgrid_vault.vault import file_backend as file_backend_mod
from offgrid_vault.vault.crypto import VaultCrypto
from offgrid_vault.vault.errors import (
    Cancelled,
    CorruptFile,
    PermissionDenied,
    UnsupportedVersion,
    VaultStateError,
    WrongPassword,
)
from offgrid_vault.vault.file_backend import (
    FILE_FORMAT,
    FILE_VERSION,
    FileBackend,
    VaultFileHandle,
    parse_document,
)
from offgrid_vault.vault.models import (
    FolderRecord,
    ServerRecord,
    StorageKind,
    VaultMetadata,
    VaultPayload,
)
from offgrid_vault.vault.record_store import EmbeddedStore

PASSWORD = "correct-horse"


@pytest.fixture(scope="module")
def master():
    salt = VaultCrypto.generate_salt()
    key = VaultCrypto.derive_key(PASSWORD, salt)
    return salt, key


def _new_metadata(master) -> VaultMetadata:
    salt, key = master
    return VaultMetadata(salt=salt, verification_token=VaultCrypto.generate_verification_token(key))


def _payload(master, servers=1) -> VaultPayload:
    _, key = master
    return VaultPayload(
        servers=[
            ServerRecord(id=f"s{i}", encrypted_data=VaultCrypto.encrypt({"name": f"srv-{i}"}, key))
            for i in range(servers)
        ],
        folders=[FolderRecord(id="f1", encrypted_name=VaultCrypto.encrypt("Prod", key))],
    )


@pytest.fixture
def backend(vault_file, master):
    backend = FileBackend(VaultFileHandle(vault_file))
    backend.create(_new_metadata(master))
    return backend


class TestCreateAndLoad:
    def test_create_writes_empty_document(self, backend, vault_file):
        doc = json.loads(vault_file.read_text(encoding="utf-8"))
        assert doc["format"] == FILE_FORMAT
        assert doc["version"] == FILE_VERSION
        assert doc["servers"] == [] and doc["folders"] == []
        assert doc["metadata"]["storageKind"] == StorageKind.FILE.value
        assert isinstance(doc["modifiedAt"], int)

    def test_save_then_load(self, backend, vault_file, master):
        backend.save(_payload(master, servers=2))

        fresh = FileBackend(VaultFileHandle(vault_file))
        result = fresh.load(PASSWORD)
        assert result.key == master[1]
        assert sorted(s.id for s in result.payload.servers) == ["s0", "s1"]
        assert VaultCrypto.decrypt(result.payload.folders[0].encrypted_name, result.key) == "Prod"
        assert fresh.metadata is result.metadata

    def test_wrong_password(self, backend, vault_file):
        with pytest.raises(WrongPassword):
            FileBackend(VaultFileHandle(vault_file)).load("wrong-password")

    def test_save_without_metadata_refused(self, vault_file, master):
        with pytest.raises(VaultStateError):
            FileBackend(VaultFileHandle(vault_file)).save(_payload(master))

    def test_no_handle_configured(self):
        backend = FileBackend()
        assert backend.exists() is False
        assert backend.request_permission() is False
        with pytest.raises(VaultStateError):
            backend.read()

    def test_missing_file_is_corrupt(self, vault_file):
        with pytest.raises(CorruptFile):
            FileBackend(VaultFileHandle(vault_file)).read()

    def test_directory_is_corrupt(self, vault_file):
        vault_file.mkdir()
        with pytest.raises(CorruptFile):
            FileBackend(VaultFileHandle(vault_file)).read()

    def test_io_error_is_denied(self, vault_file, monkeypatch):
        vault_file.write_text("{}", encoding="utf-8")

        def failing_read(self, *args, **kwargs):
            raise OSError(5, "Input/output error")

        monkeypatch.setattr(file_backend_mod.Path, "read_text", failing_read)
        with pytest.raises(PermissionDenied):
            FileBackend(VaultFileHandle(vault_file)).read()


class TestDocumentValidation:
    def test_not_json(self):
        with pytest.raises(CorruptFile):
            parse_document("{not json")

    def test_wrong_format_tag(self):
        with pytest.raises(CorruptFile):
            parse_document(json.dumps({"format": "something-else", "version": 2}))

    def test_unsupported_version(self):
        with pytest.raises(UnsupportedVersion):
            parse_document(json.dumps({"format": FILE_FORMAT, "version": 1}))

    def test_malformed_records(self, master):
        doc = {
            "format": FILE_FORMAT,
            "version": FILE_VERSION,
            "metadata": _new_metadata(master).to_dict(),
            "servers": [{"id": "s1"}],
        }
        with pytest.raises(CorruptFile):
            parse_document(json.dumps(doc))

    def test_non_utf8_file(self, vault_file):
        vault_file.write_bytes(b"\xff\xfe\x00garbage")
        with pytest.raises(CorruptFile):
            FileBackend(VaultFileHandle(vault_file)).read()


class TestAtomicWrite:
    def test_failed_replace_keeps_previous_file(self, backend, vault_file, master, monkeypatch):
        before = vault_file.read_text(encoding="utf-8")

        def boom(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(file_backend_mod.os, "replace", boom)
        with pytest.raises(OSError):
            backend.save(_payload(master, servers=3))

        assert vault_file.read_text(encoding="utf-8") == before
        assert os.listdir(vault_file.parent) == [vault_file.name]

    def test_no_temp_files_after_success(self, backend, vault_file, master):
        backend.save(_payload(master))
        assert os.listdir(vault_file.parent) == [vault_file.name]


class TestPermissions:
    def test_granted_when_directory_writable(self, vault_file):
        assert VaultFileHandle(vault_file).request_permission() is True

    def test_no_prompt_means_denied(self, tmp_path):
        handle = VaultFileHandle(tmp_path / "gone" / "v.vault")
        assert handle.request_permission() is False

    def test_prompt_denied(self, tmp_path):
        asked = []

        def prompt(path):
            asked.append(path)
            return False

        handle = VaultFileHandle(tmp_path / "gone" / "v.vault", prompt=prompt)
        assert handle.request_permission() is False
        assert asked == [handle.path]

    def test_prompt_cancelled(self, tmp_path):
        def prompt(path):
            raise Cancelled()

        handle = VaultFileHandle(tmp_path / "gone" / "v.vault", prompt=prompt)
        assert handle.request_permission() is False

    def test_write_without_access_raises(self, tmp_path, master):
        backend = FileBackend(VaultFileHandle(tmp_path / "gone" / "v.vault"))
        with pytest.raises(PermissionDenied):
            backend.create(_new_metadata(master))


class TestMigration:
    def test_migrate_to_leaves_old_file(self, backend, vault_file, master, tmp_path):
        backend.save(_payload(master))
        before = vault_file.read_text(encoding="utf-8")
        target = tmp_path / "moved.vault"

        backend.migrate_to(VaultFileHandle(target), backend.metadata, _payload(master, servers=2))

        assert backend.handle.path == target
        assert vault_file.read_text(encoding="utf-8") == before
        _, payload = parse_document(target.read_text(encoding="utf-8"))
        assert len(payload.servers) == 2

    def test_failed_migration_keeps_current_handle(self, backend, vault_file, master, tmp_path):
        with pytest.raises(PermissionDenied):
            backend.migrate_to(
                VaultFileHandle(tmp_path / "gone" / "x.vault"), backend.metadata, _payload(master)
            )
        assert backend.handle.path == vault_file

    def test_embedded_roundtrip(self, tmp_path, vault_file, master):
        handle = StoreHandle(tmp_path / "store.db")
        try:
            store = EmbeddedStore(handle)
            payload = _payload(master, servers=2)
            store.replace_all(_new_metadata(master), payload.servers, payload.folders)

            backend = FileBackend()
            moved = backend.migrate_from_embedded(store, VaultFileHandle(vault_file))
            assert {s.id for s in moved.servers} == {"s0", "s1"}
            assert backend.load(PASSWORD).metadata.storage_kind is StorageKind.FILE

            store.clear_all()
            backend.migrate_to_embedded(store, backend.read()[1])
            assert {s.id for s in store.servers.get_all()} == {"s0", "s1"}
            assert store.get_metadata().storage_kind is StorageKind.EMBEDDED
            assert vault_file.exists()
        finally:
            handle.close()
