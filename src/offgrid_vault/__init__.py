# OffGrid Vault - Main Package
#
# Local, password-derived-key encrypted secret store for server and
# connection credentials. Works fully offline; data lives either in an
# embedded SQLite store or in a user-selected vault file.

__version__ = "0.3.0"
__author__ = "OffGrid Vault Team"
__description__ = "Offline encrypted credential vault"

from .core import (
    EventType,
    EventSeverity,
    get_audit_logger,
)

__all__ = [
    "__version__",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
]
