# Vault - Encryption Service
#
# Master password → vault key (PBKDF2-HMAC-SHA256)
# JSON value → EncryptedBlob (AES-256-GCM, fresh 12-byte iv per call)
# Password check via an encrypted verification marker
#
# Parameters are fixed for interoperability with existing vault files and
# share links: 100,000 iterations, 16-byte salt, 256-bit key, 12-byte iv.

import hmac
import json
import logging
import os
from typing import Any, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecryptionFailed, StorageUnavailable, VaultStateError
from .models import EncryptedBlob

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 100_000
KEY_LENGTH = 32     # 256 bits for AES-256
SALT_LENGTH = 16
IV_LENGTH = 12      # 96-bit nonce for GCM

VERIFICATION_MARKER = "OFFGRID_VAULT_V1"


class VaultKey:
    """Derived AES-256 key held in a mutable buffer so it can be wiped.

    Lives only in memory for one unlocked session. ``wipe()`` overwrites
    the buffer with zeros; a wiped key refuses further use.
    """

    __slots__ = ("_material", "_wiped")

    def __init__(self, material: Union[bytes, bytearray]):
        if len(material) != KEY_LENGTH:
            raise ValueError(f"Vault key must be {KEY_LENGTH} bytes, got {len(material)}")
        self._material = bytearray(material)
        self._wiped = False

    @property
    def material(self) -> bytearray:
        if self._wiped:
            raise VaultStateError("Vault key has been wiped")
        return self._material

    @property
    def is_wiped(self) -> bool:
        return self._wiped

    def wipe(self) -> None:
        for i in range(len(self._material)):
            self._material[i] = 0
        self._wiped = True

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VaultKey):
            return NotImplemented
        return hmac.compare_digest(bytes(self.material), bytes(other.material))

    __hash__ = None  # mutable, compares by content

    def __repr__(self) -> str:
        return "<VaultKey wiped>" if self._wiped else "<VaultKey 256-bit>"


class VaultCrypto:
    """
    Key derivation and authenticated encryption for vault records.

    Flow:
    1. User enters master password
    2. PBKDF2 derives a 256-bit key from password + salt
    3. AES-256-GCM encrypts/decrypts JSON values
    4. Every encryption draws a fresh random iv
    """

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(SALT_LENGTH)

    @staticmethod
    def derive_key(password: str, salt: bytes) -> VaultKey:
        """
        Derive the vault key from a password.

        Deterministic for identical (password, salt).

        Args:
            password: Master or share password
            salt: Random salt stored alongside the vault or share

        Returns:
            VaultKey holding 256 bits of key material
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=bytes(salt),
            iterations=PBKDF2_ITERATIONS,
            backend=default_backend()
        )
        return VaultKey(kdf.derive(password.encode("utf-8")))

    @staticmethod
    def encrypt(plaintext: Any, key: VaultKey) -> EncryptedBlob:
        """
        Serialize a JSON value and encrypt it with AES-256-GCM.

        Args:
            plaintext: Any JSON-serializable value
            key: Vault key

        Returns:
            EncryptedBlob with a fresh iv
        """
        data = json.dumps(plaintext, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        iv = os.urandom(IV_LENGTH)
        ciphertext = AESGCM(key.material).encrypt(iv, data, None)
        return EncryptedBlob(ciphertext=ciphertext, iv=iv)

    @staticmethod
    def decrypt(blob: EncryptedBlob, key: VaultKey) -> Any:
        """
        Decrypt an EncryptedBlob back to its JSON value.

        Raises:
            DecryptionFailed: Wrong key, tampered ciphertext or corrupted
                payload. The causes are deliberately not distinguished.
        """
        try:
            data = AESGCM(key.material).decrypt(blob.iv, blob.ciphertext, None)
            return json.loads(data.decode("utf-8"))
        except (InvalidTag, ValueError) as exc:
            # ValueError covers bad iv length and undecodable plaintext
            raise DecryptionFailed("Decryption failed - invalid password or corrupted data") from exc

    @staticmethod
    def generate_verification_token(key: VaultKey) -> EncryptedBlob:
        """Encrypt the fixed marker that proves a password without revealing data."""
        return VaultCrypto.encrypt({"verify": VERIFICATION_MARKER}, key)

    @staticmethod
    def verify_password(password: str, salt: bytes, token: EncryptedBlob) -> Optional[VaultKey]:
        """
        Check a password against a verification token.

        This is the only password check in the vault. It never raises:
        any failure, including a genuine decryption failure, yields None.

        Returns:
            The derived key on success, None otherwise
        """
        try:
            key = VaultCrypto.derive_key(password, salt)
        except Exception:
            logger.debug("Key derivation failed during password check", exc_info=True)
            return None
        try:
            decoded = VaultCrypto.decrypt(token, key)
            if isinstance(decoded, dict) and decoded.get("verify") == VERIFICATION_MARKER:
                return key
        except Exception:
            pass
        key.wipe()
        return None


def check_crypto_support() -> None:
    """Raise StorageUnavailable if AES-GCM is not usable on this host."""
    try:
        AESGCM(bytes(KEY_LENGTH)).encrypt(bytes(IV_LENGTH), b"probe", None)
    except Exception as exc:
        raise StorageUnavailable(f"AES-256-GCM unavailable: {exc}") from exc
