# Main Entry Point - Local vault API
#
# Runs the FastAPI backend on localhost and prints the session token a
# local UI must send in X-Session-Token.

import argparse
import sys
from dataclasses import replace
from pathlib import Path

from . import __version__
from .core import EventSeverity, EventType, get_audit_logger
from .core.config import AppConfig, set_config
from .vault import StorageUnavailable, check_support


def main():
    """Main entry point for OffGrid Vault."""
    config = AppConfig.from_env()

    parser = argparse.ArgumentParser(
        description="OffGrid Vault - offline encrypted credential vault (local API)",
    )
    parser.add_argument(
        "--host",
        default=config.host,
        help=f"API host (default: {config.host})"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=config.port,
        help=f"API port (default: {config.port})"
    )
    parser.add_argument(
        "--data-dir",
        default=str(config.data_dir),
        help=f"Directory for the embedded store and audit logs (default: {config.data_dir})"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"OffGrid Vault v{__version__}"
    )

    args = parser.parse_args()

    config = replace(config, host=args.host, port=args.port, data_dir=Path(args.data_dir))
    set_config(config)

    try:
        check_support(config.store_path)
    except StorageUnavailable as e:
        print(f"Error: {e}")
        sys.exit(1)

    from .api.main import start_api_server
    from .api.security import initialize_session_token

    try:
        token = initialize_session_token()
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print("=" * 60)
    print(f"  OffGrid Vault v{__version__}")
    print("=" * 60)
    print()
    print(f"  API:           http://{config.host}:{config.port}")
    print(f"  Data dir:      {config.data_dir}")
    print(f"  Session token: {token}")
    print()
    print("  Press Ctrl+C to stop")
    print("=" * 60)
    print()

    try:
        start_api_server(host=config.host, port=config.port)
    except KeyboardInterrupt:
        print("\n\nShutting down...")
    except Exception as e:
        print(f"\n\nError: {str(e)}")
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.CRITICAL,
            message=f"OffGrid Vault backend crashed: {str(e)}"
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
