# Vault - Audit Logging
#
# Append-only audit log for vault security events (create, unlock, lock,
# migrate, share, backup). Every entry carries a timestamp, an event id and
# host context. Entries never contain passwords, keys or decrypted data.

import logging
import os
import socket
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Types of vault events that can be logged."""

    # Lifecycle
    VAULT_CREATED = "vault.created"
    VAULT_UNLOCKED = "vault.unlocked"
    VAULT_UNLOCK_FAILED = "vault.unlock.failed"
    VAULT_LOCKED = "vault.locked"
    VAULT_AUTO_LOCKED = "vault.auto_locked"
    VAULT_MIGRATED = "vault.migrated"
    VAULT_DELETED = "vault.deleted"
    VAULT_ERROR = "vault.error"

    # Local API
    API_AUTH_FAILED = "api.auth.failed"

    # Records
    SERVER_SAVED = "vault.server.saved"
    SERVER_DELETED = "vault.server.deleted"
    FOLDER_SAVED = "vault.folder.saved"
    FOLDER_DELETED = "vault.folder.deleted"
    SETTINGS_UPDATED = "vault.settings.updated"

    # Persistence
    SAVE_FAILED = "vault.save.failed"
    BACKUP_EXPORTED = "vault.backup.exported"
    BACKUP_IMPORTED = "vault.backup.imported"

    # Sharing
    SHARE_CREATED = "share.created"
    SHARE_OPENED = "share.opened"
    SHARE_REJECTED = "share.rejected"
    SHARE_IMPORTED = "share.imported"

    # System
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"


class EventSeverity(str, Enum):
    """
    Severity levels for vault events.

    - INFO: Normal activity
    - ALERT: Something the user should notice (failed unlock, rejected share)
    - CRITICAL: Data may be at risk (failed save, corrupt data)
    """
    INFO = "info"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only audit logger for vault events.

    Features:
    - Structured JSON logging (structlog)
    - Automatic timestamp and event ID
    - Host context capture
    - One log file per day
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._setup_file_handler()

        self.logger = structlog.get_logger("offgrid_vault.audit")

    def _setup_file_handler(self):
        """Attach a file handler for today's audit log."""
        today = datetime.now().strftime("%Y-%m-%d")
        self.log_file = self.log_dir / f"audit_{today}.log"

        file_handler = logging.FileHandler(self.log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))  # structlog handles formatting

        audit_logger = logging.getLogger("offgrid_vault.audit")
        audit_logger.addHandler(file_handler)
        audit_logger.setLevel(logging.INFO)
        self._file_handler = file_handler

    def close(self) -> None:
        """Detach and close the file handler."""
        logging.getLogger("offgrid_vault.audit").removeHandler(self._file_handler)
        self._file_handler.close()

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log a vault event (append-only).

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (never secrets!)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())

        self.logger.info(
            "vault_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            timestamp=datetime.now(timezone.utc).isoformat(),
            details=details or {},
            host_context=self._get_host_context(),
        )

        return event_id

    def log_vault_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ) -> str:
        """Log an informational vault event."""
        return self.log_event(
            event_type=event_type,
            severity=EventSeverity.INFO,
            message=f"Vault: {message}",
            details=details
        )

    def _get_host_context(self) -> Dict[str, Any]:
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        from .config import get_config
        _audit_logger = AuditLogger(get_config().audit_log_dir)
    return _audit_logger


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs
) -> str:
    """
    Convenience function for logging vault events.

    Usage:
        log_security_event(
            EventType.VAULT_UNLOCK_FAILED,
            EventSeverity.ALERT,
            "Incorrect master password",
            details={"attempt": 3}
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
