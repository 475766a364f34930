# Vault - Share Links
#
# Self-contained, password-protected bundles of already-decrypted records:
#
#   transport = base64(JSON{"s": salt_b64, "e": {"ciphertext", "iv"}, "p": bool})
#
# The encrypted envelope carries its own expiry and view limit. Nothing is
# persisted and no server is involved, so the limits are advisory: a link
# string can be replayed as many times as it is reused.

import base64
import binascii
import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import parse_qs, quote, urlsplit

from .credentials import Credential
from .crypto import VaultCrypto
from .errors import CorruptData, InvalidShare, ShareExpired, ViewLimitReached
from .models import EncryptedBlob, decode_from_storage, encode_for_storage, now_ms

logger = logging.getLogger(__name__)

SHARE_TYPE = "offgrid-share"
SHARE_VERSION = 1

SHARE_QUERY_PARAM = "share"

# Server fields that may travel in a share; the server password never does
_SERVER_SHARE_FIELDS = ("name", "hostname", "port", "protocol", "environment")
_CREDENTIAL_SHARE_FIELDS = ("host", "port", "database", "username", "password", "apiKey", "token", "url")


@dataclass
class ShareEnvelope:
    """The decrypted content of a share link."""

    data: Any
    created_at: int
    expires_at: Optional[int] = None
    max_views: int = 0      # 0 = unlimited
    view_count: int = 0
    type: str = SHARE_TYPE
    version: int = SHARE_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "version": self.version,
            "created": self.created_at,
            "expiresAt": self.expires_at,
            "maxViews": self.max_views,
            "viewCount": self.view_count,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ShareEnvelope":
        if not isinstance(data, dict) or data.get("type") != SHARE_TYPE:
            raise InvalidShare("Invalid share data")
        try:
            expires_at = data.get("expiresAt")
            return cls(
                data=data.get("data"),
                created_at=int(data.get("created") or 0),
                expires_at=int(expires_at) if expires_at else None,
                max_views=int(data.get("maxViews") or 0),
                view_count=int(data.get("viewCount") or 0),
                version=int(data.get("version", SHARE_VERSION)),
            )
        except (TypeError, ValueError) as exc:
            raise InvalidShare(f"Invalid share data: {exc}") from exc

    def is_expired(self, now: Optional[int] = None) -> bool:
        now = now_ms() if now is None else now
        return bool(self.expires_at) and now > self.expires_at

    def views_exhausted(self) -> bool:
        return self.max_views > 0 and self.view_count >= self.max_views


def generate_share_password() -> str:
    """Random password for links created without one."""
    return secrets.token_urlsafe(12)


def seal_envelope(envelope: ShareEnvelope, password: str) -> str:
    """Encrypt an envelope under a fresh salt and encode the transport string."""
    salt = VaultCrypto.generate_salt()
    key = VaultCrypto.derive_key(password, salt)
    try:
        blob = VaultCrypto.encrypt(envelope.to_dict(), key)
    finally:
        key.wipe()
    wire = {"s": encode_for_storage(salt), "e": blob.to_dict(), "p": bool(password)}
    return base64.b64encode(json.dumps(wire, separators=(",", ":")).encode("utf-8")).decode("ascii")


def open_envelope(transport: str, password: str) -> ShareEnvelope:
    """
    Decode and decrypt a transport string without checking its limits.

    Raises:
        InvalidShare: The string is not a share payload.
        DecryptionFailed: Wrong password or tampered payload.
    """
    try:
        wire = json.loads(base64.b64decode(transport.strip(), validate=True).decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError, AttributeError) as exc:
        raise InvalidShare(f"Malformed share payload: {exc}") from exc
    if not isinstance(wire, dict) or "s" not in wire or "e" not in wire:
        raise InvalidShare("Malformed share payload")
    try:
        salt = decode_from_storage(wire["s"])
        blob = EncryptedBlob.from_dict(wire["e"])
    except CorruptData as exc:
        raise InvalidShare(f"Malformed share payload: {exc}") from exc

    key = VaultCrypto.derive_key(password, salt)
    try:
        decrypted = VaultCrypto.decrypt(blob, key)
    finally:
        key.wipe()
    return ShareEnvelope.from_dict(decrypted)


def build_payload(
    data: Any,
    password: str,
    ttl_seconds: int = 0,
    max_views: int = 0,
    now: Optional[int] = None,
) -> str:
    """
    Build a share transport string.

    Args:
        data: JSON-serializable records to share (already decrypted)
        password: Share password
        ttl_seconds: Lifetime in seconds; 0 means the link never expires
        max_views: Allowed views; 0 means unlimited
        now: Creation time in epoch ms (defaults to the current time)
    """
    created = now_ms() if now is None else now
    envelope = ShareEnvelope(
        data=data,
        created_at=created,
        expires_at=created + ttl_seconds * 1000 if ttl_seconds > 0 else None,
        max_views=max(max_views, 0),
        view_count=0,
    )
    return seal_envelope(envelope, password)


def read_envelope(transport: str, password: str, now: Optional[int] = None) -> ShareEnvelope:
    """
    Open a share transport string and enforce its limits.

    Raises:
        InvalidShare: Malformed payload or wrong type tag.
        DecryptionFailed: Wrong password or tampered payload.
        ShareExpired: The link is past its expiry time.
        ViewLimitReached: The link has used up its views.
    """
    envelope = open_envelope(transport, password)
    if envelope.is_expired(now):
        raise ShareExpired("Share link has expired")
    if envelope.views_exhausted():
        raise ViewLimitReached("Maximum view count reached")
    return envelope


def parse_payload(transport: str, password: str, now: Optional[int] = None) -> Any:
    """Shared records of a valid link. Raises as read_envelope does."""
    return read_envelope(transport, password, now).data


# ── Helpers for building share data and links ────────────────────────


def build_share_data(
    server: Optional[Dict[str, Any]],
    credentials: Iterable[Credential],
    selected_ids: Iterable[str],
    include_server: bool = True,
) -> Dict[str, Any]:
    """Select what goes into a share: basic server info and chosen credentials."""
    selected = set(selected_ids)
    server_info = None
    if include_server and server is not None:
        server_info = {k: server.get(k) for k in _SERVER_SHARE_FIELDS}
    shared = []
    for credential in credentials:
        if credential.id not in selected:
            continue
        entry = {"name": credential.name, "type": credential.kind.value}
        entry.update({k: credential.get(k) for k in _CREDENTIAL_SHARE_FIELDS})
        entry["notes"] = credential.notes
        shared.append(entry)
    return {"server": server_info, "credentials": shared}


_SHARED_ENTRY_KEYS = ("id", "name", "type", "notes", "data")


def credentials_from_share(entries: Any) -> List[Credential]:
    """
    Rebuild Credentials from shared entries, each under a fresh id.

    Raises:
        InvalidShare: Entries are not objects of a known credential type.
    """
    if not isinstance(entries, list):
        raise InvalidShare("Shared credentials must be a list")
    credentials = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise InvalidShare("Shared credential must be an object")
        values = dict(entry.get("data") or {})
        values.update({k: v for k, v in entry.items() if k not in _SHARED_ENTRY_KEYS and v is not None})
        try:
            credentials.append(Credential.from_dict({
                "type": entry.get("type"),
                "name": entry.get("name") or "",
                "notes": entry.get("notes") or "",
                "data": values,
            }))
        except CorruptData as exc:
            raise InvalidShare(f"Invalid shared credential: {exc}") from exc
    return credentials


def build_share_url(base_url: str, transport: str) -> str:
    """Link a recipient opens: ``<base>#/vault?share=<urlencoded payload>``."""
    base = base_url.split("#", 1)[0]
    return f"{base}#/vault?{SHARE_QUERY_PARAM}={quote(transport, safe='')}"


def extract_share_payload(url: str) -> str:
    """Pull the transport string out of a share link (fragment or query)."""
    parts = urlsplit(url)
    for candidate in (parts.fragment.partition("?")[2], parts.query):
        values = parse_qs(candidate).get(SHARE_QUERY_PARAM)
        if values:
            return values[0]
    raise InvalidShare("Link carries no share payload")
