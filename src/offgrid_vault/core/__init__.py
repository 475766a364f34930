# Core Module - Shared Utilities
#
# Shared functionality across the vault engine and its local API:
# - Audit logging
# - Process configuration
# - SQLite connection helper

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
    log_security_event,
)
from .config import AppConfig, get_config

__all__ = [
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "log_security_event",
    # Configuration
    "AppConfig",
    "get_config",
]
