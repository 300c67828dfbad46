"""
Shared utility functions for SolWallet.

Contains path helpers and common utilities used across packages.
"""

import os
from pathlib import Path

APP_DIR_ENV = "SOLWALLET_HOME"


def get_app_dir() -> Path:
    """Get the application data directory ($SOLWALLET_HOME or ~/.solwallet)."""
    override = os.environ.get(APP_DIR_ENV)
    if override:
        app_dir = Path(override).expanduser()
    else:
        app_dir = Path.home() / ".solwallet"

    app_dir.mkdir(parents=True, exist_ok=True)
    return app_dir


def get_wallet_path() -> Path:
    """Get path to the persisted wallet record."""
    return get_app_dir() / "wallet.json"


def get_settings_path() -> Path:
    """Get path to settings file."""
    return get_app_dir() / "settings.json"


def get_logs_dir() -> Path:
    """Get the logs directory."""
    logs_dir = get_app_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir
