"""Tests for key derivation, AES-256-GCM records and password verification."""

import pytest

from offgrid_vault.vault.crypto import (
    IV_LENGTH,
    KEY_LENGTH,
    SALT_LENGTH,
    VaultCrypto,
    VaultKey,
    check_crypto_support,
)
from offgrid_vault.vault.errors import DecryptionFailed, VaultStateError
from offgrid_vault.vault.models import EncryptedBlob


@pytest.fixture(scope="module")
def salt():
    return VaultCrypto.generate_salt()


@pytest.fixture(scope="module")
def key(salt):
    return VaultCrypto.derive_key("correct-horse", salt)


class TestKeyDerivation:
    def test_salt_length_and_randomness(self):
        a = VaultCrypto.generate_salt()
        b = VaultCrypto.generate_salt()
        assert len(a) == SALT_LENGTH
        assert a != b

    def test_deterministic_for_same_inputs(self, salt, key):
        again = VaultCrypto.derive_key("correct-horse", salt)
        assert again == key
        assert len(again.material) == KEY_LENGTH

    def test_different_password_gives_different_key(self, salt, key):
        assert VaultCrypto.derive_key("wrong-password", salt) != key

    def test_different_salt_gives_different_key(self, key):
        assert VaultCrypto.derive_key("correct-horse", VaultCrypto.generate_salt()) != key


class TestEncryption:
    def test_roundtrip_values(self, key):
        for value in ({"name": "db-1", "port": 5432}, [1, 2, 3], "plain", 42, None, {"ü": "✓"}):
            assert VaultCrypto.decrypt(VaultCrypto.encrypt(value, key), key) == value

    def test_fresh_iv_per_encryption(self, key):
        blobs = [VaultCrypto.encrypt({"same": True}, key) for _ in range(50)]
        ivs = {b.iv for b in blobs}
        assert len(ivs) == 50
        assert all(len(iv) == IV_LENGTH for iv in ivs)
        assert all(VaultCrypto.decrypt(b, key) == {"same": True} for b in blobs)

    def test_wrong_key_fails(self, salt, key):
        blob = VaultCrypto.encrypt({"secret": 1}, key)
        other = VaultCrypto.derive_key("other-password", salt)
        with pytest.raises(DecryptionFailed):
            VaultCrypto.decrypt(blob, other)

    def test_tampered_ciphertext_fails(self, key):
        blob = VaultCrypto.encrypt({"secret": 1}, key)
        flipped = bytes([blob.ciphertext[0] ^ 0x01]) + blob.ciphertext[1:]
        with pytest.raises(DecryptionFailed):
            VaultCrypto.decrypt(EncryptedBlob(flipped, blob.iv), key)

    def test_mismatched_iv_fails(self, key):
        blob = VaultCrypto.encrypt({"secret": 1}, key)
        with pytest.raises(DecryptionFailed):
            VaultCrypto.decrypt(EncryptedBlob(blob.ciphertext, bytes(IV_LENGTH)), key)

    def test_blob_serializes_as_base64_pair(self, key):
        blob = VaultCrypto.encrypt("x", key)
        data = blob.to_dict()
        assert set(data) == {"ciphertext", "iv"}
        assert EncryptedBlob.from_dict(data) == blob


class TestVerification:
    def test_correct_password_returns_key(self, salt, key):
        token = VaultCrypto.generate_verification_token(key)
        result = VaultCrypto.verify_password("correct-horse", salt, token)
        assert result == key

    def test_wrong_password_returns_none(self, salt, key):
        token = VaultCrypto.generate_verification_token(key)
        assert VaultCrypto.verify_password("wrong-password", salt, token) is None

    def test_wrong_salt_returns_none(self, key):
        token = VaultCrypto.generate_verification_token(key)
        assert VaultCrypto.verify_password("correct-horse", VaultCrypto.generate_salt(), token) is None

    def test_tampered_token_returns_none(self, salt, key):
        token = VaultCrypto.generate_verification_token(key)
        bad = EncryptedBlob(token.ciphertext[:-1] + bytes([token.ciphertext[-1] ^ 0xFF]), token.iv)
        assert VaultCrypto.verify_password("correct-horse", salt, bad) is None

    def test_other_plaintext_is_not_a_token(self, salt, key):
        not_a_token = VaultCrypto.encrypt({"verify": "SOMETHING_ELSE"}, key)
        assert VaultCrypto.verify_password("correct-horse", salt, not_a_token) is None

    def test_never_raises_on_garbage(self, salt):
        garbage = EncryptedBlob(b"", b"")
        assert VaultCrypto.verify_password("anything", salt, garbage) is None


class TestVaultKey:
    def test_wipe_zeroes_and_blocks_use(self, salt):
        key = VaultCrypto.derive_key("wipe-me", salt)
        buffer = key._material
        key.wipe()
        assert key.is_wiped
        assert bytes(buffer) == bytes(KEY_LENGTH)
        with pytest.raises(VaultStateError):
            VaultCrypto.encrypt("x", key)

    def test_repr_never_shows_material(self, key):
        assert "VaultKey" in repr(key)
        assert key.material.hex() not in repr(key)

    def test_rejects_wrong_length(self):
        with pytest.raises(ValueError):
            VaultKey(b"short")

    def test_support_check_passes(self):
        check_crypto_support()
