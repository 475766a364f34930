"""
Shared pytest fixtures for the OffGrid Vault test suite.

Autouse fixtures below isolate tests from live application data:
  - Process config -> temp data directory (embedded store, audit logs)
  - Audit logger   -> temp directory      (prevents test events in real logs)
  - API lifecycle  -> reset per test
"""

import pytest


@pytest.fixture(autouse=True)
def _isolate_config(tmp_path):
    """Point the process configuration at a temp data directory."""
    from offgrid_vault.core import config as config_mod

    old_config = config_mod._config
    config_mod.set_config(config_mod.AppConfig(data_dir=tmp_path / "data"))

    yield

    config_mod.set_config(old_config)


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test.

    Without this, any test that (directly or indirectly) calls
    ``get_audit_logger().log_event(...)`` writes into the real
    audit log directory.
    """
    import offgrid_vault.core.audit_log as audit_mod

    # Reset the singleton so the next get_audit_logger() builds a fresh one
    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _isolate_api_lifecycle():
    """Drop the API's lifecycle singleton so each test builds its own."""
    import offgrid_vault.api.vault_routes as routes_mod

    old_lifecycle = routes_mod._lifecycle
    routes_mod._lifecycle = None

    yield

    if routes_mod._lifecycle is not None:
        routes_mod._lifecycle.close()
    routes_mod._lifecycle = old_lifecycle


@pytest.fixture
def vault(tmp_path):
    """A fresh, uninitialized VaultLifecycle on a temp embedded store."""
    from offgrid_vault.vault.lifecycle import VaultLifecycle

    lifecycle = VaultLifecycle(tmp_path / "vault.db")
    yield lifecycle
    lifecycle.close()


@pytest.fixture
def vault_file(tmp_path):
    """Path for a user-selected vault file (directory exists, file does not)."""
    directory = tmp_path / "user"
    directory.mkdir()
    return directory / "servers.vault"
