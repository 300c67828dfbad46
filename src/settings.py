"""
Settings - User-editable configuration persisted as settings.json.

Unknown keys are ignored so older/newer files keep loading; a corrupt file
falls back to defaults with a warning.
"""

import json
import logging
from dataclasses import dataclass, asdict, field, fields
from pathlib import Path
from typing import Optional

from utils import get_settings_path

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Application settings."""
    custom_rpcs: dict[str, str] = field(default_factory=dict)  # network name -> RPC URL

    # Consent policy
    require_connect_approval: bool = False
    require_sign_approval: bool = True

    # Bridge / approval limits
    request_timeout_seconds: float = 120.0
    approval_timeout_seconds: float = 90.0
    max_pending_approvals: int = 16

    history_limit: int = 10
    log_retention_days: int = 7

    # Argon2id cost (applies to newly encrypted blobs; old blobs carry their own)
    kdf_time_cost: int = 3
    kdf_memory_cost: int = 65536
    kdf_parallelism: int = 4

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from disk (defaults if missing or unreadable)."""
    settings_path = Path(path) if path else get_settings_path()
    if settings_path.exists():
        try:
            with open(settings_path, "r") as f:
                return Settings.from_dict(json.load(f))
        except (json.JSONDecodeError, TypeError, AttributeError, OSError) as e:
            logger.warning(f"Failed to load settings: {e}")
    return Settings()


def save_settings(settings: Settings, path: Optional[Path] = None) -> None:
    """Save settings to disk."""
    settings_path = Path(path) if path else get_settings_path()
    with open(settings_path, "w") as f:
        json.dump(settings.to_dict(), f, indent=2)
