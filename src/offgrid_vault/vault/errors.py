"""
Vault Exception Classes
"""


class VaultError(Exception):
    """Base exception for vault operations"""
    pass


class WrongPassword(VaultError):
    """Raised when the verification token does not match the supplied password"""
    pass


class CorruptData(VaultError):
    """Raised when stored data is malformed or cannot be decrypted"""
    pass


class DecryptionFailed(CorruptData):
    """Raised when authenticated decryption fails.

    Wrong key and tampered ciphertext are indistinguishable here; callers
    must not assume which one occurred.
    """
    pass


class CorruptFile(CorruptData):
    """Raised when a vault file cannot be parsed"""
    pass


class UnsupportedVersion(VaultError):
    """Raised when a vault file declares a format version this build cannot read"""
    pass


class PermissionDenied(VaultError):
    """Raised when the host declines read/write access to the vault file"""
    pass


class Cancelled(VaultError):
    """Raised by host pickers and prompts when the user dismisses them.

    A normal outcome, not a failure: state is left unchanged.
    """
    pass


class StorageUnavailable(VaultError):
    """Raised when the host lacks a capability the vault needs"""
    pass


class VaultStateError(VaultError):
    """Raised when an operation is not valid in the current lifecycle state"""
    pass


class RecordNotFound(VaultError):
    """Raised when a server, folder or credential id does not exist"""
    pass


class ShareError(VaultError):
    """Base exception for share links"""
    pass


class InvalidShare(ShareError):
    """Raised when a share payload is malformed or not a vault share"""
    pass


class ShareExpired(ShareError):
    """Raised when a share payload is past its expiry time"""
    pass


class ViewLimitReached(ShareError):
    """Raised when a share payload has used up its allowed views"""
    pass
