# Vault API - Local collaborator endpoints
#
# Thin HTTP layer over VaultLifecycle:
# - Create / unlock / lock / migrate / delete the vault
# - Servers, credentials and folders CRUD (vault must be unlocked)
# - Save status, explicit save, settings, statistics
# - Share links (build, open, import), password generation, encrypted backups
#
# Vault errors map to HTTP status codes in _status_for().

import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..core.audit_log import EventSeverity, EventType, log_security_event
from ..vault import passwords, share
from ..vault.credentials import Credential, CredentialKind, default_fields
from ..vault.errors import (
    Cancelled,
    CorruptData,
    DecryptionFailed,
    InvalidShare,
    PermissionDenied,
    RecordNotFound,
    ShareExpired,
    StorageUnavailable,
    UnsupportedVersion,
    VaultError,
    VaultStateError,
    ViewLimitReached,
    WrongPassword,
)
from ..vault.lifecycle import ImportMode, VaultLifecycle, VaultState
from ..vault.models import ServerRecord, StorageKind
from .security import verify_session_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vault", tags=["vault"])

# Lazily created so importing the app does not touch the data directory
_lifecycle: Optional[VaultLifecycle] = None


def get_lifecycle() -> VaultLifecycle:
    global _lifecycle
    if _lifecycle is None:
        _lifecycle = VaultLifecycle()
    return _lifecycle


def set_lifecycle(lifecycle: Optional[VaultLifecycle]) -> None:
    """Replace the lifecycle instance (for testing)."""
    global _lifecycle
    _lifecycle = lifecycle


# ── Error mapping ────────────────────────────────────────────────────

_STATUS_MAP = (
    (WrongPassword, status.HTTP_401_UNAUTHORIZED),
    (DecryptionFailed, status.HTTP_401_UNAUTHORIZED),
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
    (RecordNotFound, status.HTTP_404_NOT_FOUND),
    (VaultStateError, status.HTTP_409_CONFLICT),
    (Cancelled, status.HTTP_409_CONFLICT),
    (ShareExpired, status.HTTP_410_GONE),
    (ViewLimitReached, status.HTTP_410_GONE),
    (InvalidShare, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (CorruptData, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (UnsupportedVersion, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (StorageUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _status_for(exc: VaultError) -> int:
    for exc_type, code in _STATUS_MAP:
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _call(fn: Callable, *args, **kwargs) -> Any:
    """Run a lifecycle operation, translating vault errors to HTTP errors."""
    try:
        return fn(*args, **kwargs)
    except DecryptionFailed as exc:
        # Wrong password and corrupted data look the same to the client
        raise HTTPException(
            status_code=_status_for(exc),
            detail="Invalid password or corrupted data",
        ) from exc
    except VaultError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def require_unlocked(token: str = Depends(verify_session_token)) -> VaultLifecycle:
    lifecycle = get_lifecycle()
    if not lifecycle.is_unlocked:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Vault is locked. Unlock vault first."
        )
    return lifecycle


# ── Request models ───────────────────────────────────────────────────


class CreateVaultRequest(BaseModel):
    master_password: str = Field(..., min_length=8)
    storage_kind: StorageKind = StorageKind.EMBEDDED
    file_path: Optional[str] = None


class UnlockVaultRequest(BaseModel):
    master_password: str


class MigrateRequest(BaseModel):
    target: StorageKind
    file_path: Optional[str] = None


class ServerRequest(BaseModel):
    data: Dict[str, Any]
    folder_id: Optional[str] = None


class MoveRequest(BaseModel):
    folder_id: Optional[str] = None


class CredentialRequest(BaseModel):
    type: CredentialKind
    name: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)
    notes: str = ""
    id: Optional[str] = None


class FolderRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    parent_id: Optional[str] = None


class RenameFolderRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class MoveFolderRequest(BaseModel):
    parent_id: Optional[str] = None


class SettingsRequest(BaseModel):
    auto_lock_timeout: Optional[int] = Field(None, ge=0)
    auto_save_delay: Optional[int] = Field(None, ge=0)
    clipboard_clear_timeout: Optional[int] = Field(None, ge=0)
    auto_save_enabled: Optional[bool] = None
    show_save_indicator: Optional[bool] = None
    lock_on_tab_hidden: Optional[bool] = None
    lock_on_tool_switch: Optional[bool] = None
    health_check_on_unlock: Optional[bool] = None
    health_check_notifications: Optional[bool] = None


class ShareBuildRequest(BaseModel):
    server_id: str
    credential_ids: List[str] = Field(default_factory=list)
    include_server: bool = True
    password: Optional[str] = None
    ttl_seconds: int = Field(3600, ge=0)
    max_views: int = Field(0, ge=0)
    base_url: Optional[str] = None


class ShareOpenRequest(BaseModel):
    password: str
    payload: Optional[str] = None
    url: Optional[str] = None


class ShareImportRequest(BaseModel):
    data: Dict[str, Any]
    folder_id: Optional[str] = None
    server_id: Optional[str] = None


class PasswordRequest(BaseModel):
    length: int = Field(16, ge=4, le=128)
    uppercase: bool = True
    lowercase: bool = True
    numbers: bool = True
    symbols: bool = True
    exclude_ambiguous: bool = False


class PassphraseRequest(BaseModel):
    word_count: int = Field(4, ge=2, le=12)
    separator: str = "-"
    capitalize: bool = True


class ImportBackupRequest(BaseModel):
    backup: Dict[str, Any]
    mode: ImportMode = ImportMode.SKIP


def _server_summary(lifecycle: VaultLifecycle, record: ServerRecord) -> Dict[str, Any]:
    data = lifecycle.get_server(record.id)
    return {
        "id": record.id,
        "folderId": record.folder_id,
        "healthStatus": record.health_status.value,
        "createdAt": record.created_at,
        "updatedAt": record.updated_at,
        "name": data.get("name", ""),
        "hostname": data.get("hostname", ""),
        "credentialCount": len(data.get("credentials") or []),
    }


def _folder_view(lifecycle: VaultLifecycle, folder_id: str) -> Dict[str, Any]:
    record = lifecycle.get_folder(folder_id)
    return {
        "id": record.id,
        "name": lifecycle.folder_name(record.id),
        "parentId": record.parent_id,
        "order": record.order,
    }


# ── Lifecycle ────────────────────────────────────────────────────────


@router.get("/status")
def get_vault_status(token: str = Depends(verify_session_token)):
    """Current lifecycle state, backend and save status."""
    lifecycle = get_lifecycle()
    file_path = lifecycle.file_path
    return {
        "state": lifecycle.state.value,
        "vault_exists": lifecycle.state is not VaultState.UNINITIALIZED,
        "is_unlocked": lifecycle.is_unlocked,
        "storage_kind": lifecycle.storage_kind.value,
        "file_path": str(file_path) if file_path else None,
        "failed_attempts": lifecycle.failed_attempts,
        "save_status": lifecycle.save_status.value,
    }


@router.post("/create")
def create_vault(request: CreateVaultRequest, token: str = Depends(verify_session_token)):
    lifecycle = get_lifecycle()
    _call(lifecycle.create, request.master_password, request.storage_kind, request.file_path)
    return {"success": True, "message": "Vault created"}


@router.post("/unlock")
def unlock_vault(request: UnlockVaultRequest, token: str = Depends(verify_session_token)):
    """Unlock with the master password. Failed attempts are counted, not throttled."""
    lifecycle = get_lifecycle()
    try:
        _call(lifecycle.unlock, request.master_password)
    except HTTPException as exc:
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"message": "Invalid master password", "failed_attempts": lifecycle.failed_attempts},
            ) from exc
        raise
    return {"success": True, "message": "Vault unlocked"}


@router.post("/lock")
def lock_vault(token: str = Depends(verify_session_token)):
    """Lock the vault; pending file saves are flushed first."""
    get_lifecycle().lock()
    return {"success": True, "message": "Vault locked"}


@router.post("/activity")
def record_activity(lifecycle: VaultLifecycle = Depends(require_unlocked)):
    """Reset the auto-lock timer."""
    lifecycle.touch()
    return {"success": True}


@router.post("/migrate")
def migrate_vault(request: MigrateRequest, lifecycle: VaultLifecycle = Depends(require_unlocked)):
    _call(lifecycle.migrate, request.target, request.file_path)
    return {"success": True, "storage_kind": lifecycle.storage_kind.value}


@router.delete("")
def delete_vault(token: str = Depends(verify_session_token)):
    _call(get_lifecycle().delete_vault)
    return {"success": True, "message": "Vault deleted"}


# ── Servers ──────────────────────────────────────────────────────────


@router.get("/servers")
def list_servers(lifecycle: VaultLifecycle = Depends(require_unlocked)):
    """Server summaries. Secrets are only returned by GET /servers/{id}."""
    servers = _call(lifecycle.list_servers)
    return {"servers": [_call(_server_summary, lifecycle, s) for s in servers]}


@router.get("/servers/{server_id}")
def get_server(server_id: str, lifecycle: VaultLifecycle = Depends(require_unlocked)):
    record = _call(lifecycle.get_server_record, server_id)
    return {
        "id": record.id,
        "folderId": record.folder_id,
        "healthStatus": record.health_status.value,
        "createdAt": record.created_at,
        "updatedAt": record.updated_at,
        "data": _call(lifecycle.get_server, server_id),
    }


@router.post("/servers")
def add_server(request: ServerRequest, lifecycle: VaultLifecycle = Depends(require_unlocked)):
    record = _call(lifecycle.save_server, request.data, folder_id=request.folder_id)
    return {"success": True, "server_id": record.id}


@router.put("/servers/{server_id}")
def update_server(server_id: str, request: ServerRequest,
                  lifecycle: VaultLifecycle = Depends(require_unlocked)):
    _call(lifecycle.get_server_record, server_id)
    _call(lifecycle.save_server, request.data, server_id=server_id)
    return {"success": True, "server_id": server_id}


@router.post("/servers/{server_id}/move")
def move_server(server_id: str, request: MoveRequest,
                lifecycle: VaultLifecycle = Depends(require_unlocked)):
    _call(lifecycle.move_server, server_id, request.folder_id)
    return {"success": True}


@router.delete("/servers/{server_id}")
def delete_server(server_id: str, lifecycle: VaultLifecycle = Depends(require_unlocked)):
    _call(lifecycle.delete_server, server_id)
    return {"success": True, "message": "Server deleted"}


@router.post("/servers/{server_id}/health")
def run_health_check(server_id: str, lifecycle: VaultLifecycle = Depends(require_unlocked)):
    result = _call(lifecycle.run_health_check, server_id)
    return result.to_dict()


# ── Credentials ──────────────────────────────────────────────────────


@router.get("/credential-kinds")
def list_credential_kinds(token: str = Depends(verify_session_token)):
    """Field schemas for every credential kind."""
    kinds = []
    for kind in CredentialKind:
        schema = kind.schema
        kinds.append({
            "type": kind.value,
            "name": schema.name,
            "category": schema.category,
            "fields": [
                {"key": f.key, "label": f.label, "input": f.input,
                 "default": f.default, "options": list(f.options), "secret": f.secret}
                for f in schema.fields
            ],
            "defaults": default_fields(kind),
        })
    return {"kinds": kinds}


@router.get("/servers/{server_id}/credentials")
def list_credentials(server_id: str, lifecycle: VaultLifecycle = Depends(require_unlocked)):
    credentials = _call(lifecycle.list_credentials, server_id)
    return {"credentials": [c.to_dict() for c in credentials]}


@router.post("/servers/{server_id}/credentials")
def save_credential(server_id: str, request: CredentialRequest,
                    lifecycle: VaultLifecycle = Depends(require_unlocked)):
    credential = Credential(kind=request.type, name=request.name, data=request.data, notes=request.notes)
    if request.id:
        credential.id = request.id
    _call(lifecycle.save_credential, server_id, credential)
    return {"success": True, "credential_id": credential.id}


@router.delete("/servers/{server_id}/credentials/{credential_id}")
def delete_credential(server_id: str, credential_id: str,
                      lifecycle: VaultLifecycle = Depends(require_unlocked)):
    _call(lifecycle.delete_credential, server_id, credential_id)
    return {"success": True}


@router.get("/servers/{server_id}/credentials/{credential_id}/connection-strings")
def connection_strings(server_id: str, credential_id: str,
                       lifecycle: VaultLifecycle = Depends(require_unlocked)):
    for credential in _call(lifecycle.list_credentials, server_id):
        if credential.id == credential_id:
            return {"connection_strings": credential.connection_strings()}
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Credential not found")


# ── Folders ──────────────────────────────────────────────────────────


@router.get("/folders")
def list_folders(parent_id: Optional[str] = None, lifecycle: VaultLifecycle = Depends(require_unlocked)):
    folders = _call(lifecycle.list_folders, parent_id)
    return {"folders": [_call(_folder_view, lifecycle, f.id) for f in folders]}


@router.post("/folders")
def create_folder(request: FolderRequest, lifecycle: VaultLifecycle = Depends(require_unlocked)):
    record = _call(lifecycle.create_folder, request.name, request.parent_id)
    return {"success": True, "folder_id": record.id}


@router.put("/folders/{folder_id}")
def rename_folder(folder_id: str, request: RenameFolderRequest,
                  lifecycle: VaultLifecycle = Depends(require_unlocked)):
    _call(lifecycle.rename_folder, folder_id, request.name)
    return {"success": True}


@router.post("/folders/{folder_id}/move")
def move_folder(folder_id: str, request: MoveFolderRequest,
                lifecycle: VaultLifecycle = Depends(require_unlocked)):
    _call(lifecycle.move_folder, folder_id, request.parent_id)
    return {"success": True}


@router.delete("/folders/{folder_id}")
def delete_folder(folder_id: str, lifecycle: VaultLifecycle = Depends(require_unlocked)):
    _call(lifecycle.delete_folder, folder_id)
    return {"success": True}


# ── Stats, saving, settings ──────────────────────────────────────────


@router.get("/stats")
def get_stats(lifecycle: VaultLifecycle = Depends(require_unlocked)):
    return _call(lifecycle.stats).to_dict()


@router.get("/save-status")
def get_save_status(token: str = Depends(verify_session_token)):
    autosave = get_lifecycle().autosave
    return {
        "status": autosave.status.value,
        "last_saved_at": autosave.last_saved_at,
        "last_error": autosave.last_error,
    }


@router.post("/save")
def save_now(lifecycle: VaultLifecycle = Depends(require_unlocked)):
    """Write pending changes to the vault file immediately."""
    if not _call(lifecycle.save_now):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=lifecycle.autosave.last_error or "Save failed",
        )
    return {"success": True, "status": lifecycle.save_status.value}


@router.get("/settings")
def get_settings(lifecycle: VaultLifecycle = Depends(require_unlocked)):
    return _call(lambda: lifecycle.settings).to_dict()


@router.put("/settings")
def update_settings(request: SettingsRequest, lifecycle: VaultLifecycle = Depends(require_unlocked)):
    settings = _call(lifecycle.update_settings, **request.model_dump(exclude_none=True))
    return settings.to_dict()


# ── Sharing ──────────────────────────────────────────────────────────


@router.post("/share")
def create_share(request: ShareBuildRequest, lifecycle: VaultLifecycle = Depends(require_unlocked)):
    """Build an encrypted share link for a server's selected credentials."""
    server = _call(lifecycle.get_server, request.server_id)
    credentials = _call(lifecycle.list_credentials, request.server_id)
    data = share.build_share_data(server, credentials, request.credential_ids, request.include_server)
    password = request.password or share.generate_share_password()
    payload = share.build_payload(data, password, request.ttl_seconds, request.max_views)
    lifecycle.audit.log_vault_event(
        EventType.SHARE_CREATED,
        "Share link created",
        details={
            "server_id": request.server_id,
            "credentials": len(data["credentials"]),
            "ttl_seconds": request.ttl_seconds,
            "max_views": request.max_views,
        },
    )
    response = {"payload": payload, "password": password}
    if request.base_url:
        response["url"] = share.build_share_url(request.base_url, payload)
    return response


@router.post("/share/open")
def open_share(request: ShareOpenRequest, token: str = Depends(verify_session_token)):
    """Decrypt a share link. Does not need an unlocked vault."""
    if request.payload:
        payload = request.payload
    elif request.url:
        payload = _call(share.extract_share_payload, request.url)
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="payload or url required")
    try:
        envelope = _call(share.read_envelope, payload, request.password)
    except HTTPException as exc:
        log_security_event(
            EventType.SHARE_REJECTED, EventSeverity.ALERT,
            "Share link rejected", details={"status": exc.status_code},
        )
        raise
    log_security_event(EventType.SHARE_OPENED, EventSeverity.INFO, "Share link opened")
    return {
        "data": envelope.data,
        "created": envelope.created_at,
        "expiresAt": envelope.expires_at,
        "maxViews": envelope.max_views,
        "viewCount": envelope.view_count,
    }


@router.post("/share/import")
def import_share(request: ShareImportRequest, lifecycle: VaultLifecycle = Depends(require_unlocked)):
    """Save an opened share's server and credentials into the vault."""
    record = _call(lifecycle.import_share, request.data, request.folder_id, request.server_id)
    return {"success": True, "server_id": record.id}


# ── Generators ───────────────────────────────────────────────────────


@router.post("/generate/password")
def generate_password(request: PasswordRequest, token: str = Depends(verify_session_token)):
    options = passwords.PasswordOptions(**request.model_dump())
    return {
        "password": passwords.generate_password(options),
        "entropy": passwords.calculate_entropy(options),
    }


@router.post("/generate/passphrase")
def generate_passphrase(request: PassphraseRequest, token: str = Depends(verify_session_token)):
    options = passwords.PassphraseOptions(**request.model_dump())
    return {
        "passphrase": passwords.generate_passphrase(options),
        "entropy": passwords.calculate_passphrase_entropy(options.word_count),
    }


# ── Backup ───────────────────────────────────────────────────────────


@router.get("/backup")
def export_backup(lifecycle: VaultLifecycle = Depends(require_unlocked)):
    return _call(lifecycle.export_backup)


@router.post("/backup/import")
def import_backup(request: ImportBackupRequest, lifecycle: VaultLifecycle = Depends(require_unlocked)):
    return _call(lifecycle.import_backup, request.backup, request.mode).to_dict()
