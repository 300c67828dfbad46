"""
Wallet Store - JSON persistence for the wallet record.

Writes go to a temp file first and are then atomically swapped in, so a
crash mid-write never leaves a half-written record behind.
"""

import os
import json
import logging
from pathlib import Path

from .record import WalletRecord

logger = logging.getLogger(__name__)

# Secure file permissions (Unix only)
SECURE_FILE_MODE = 0o600  # Owner read/write only


def set_secure_permissions(filepath: Path) -> None:
    """Set restrictive file permissions on Unix systems."""
    if os.name == 'posix':
        try:
            os.chmod(filepath, SECURE_FILE_MODE)
        except OSError:
            pass


class WalletStore:
    """Loads and saves the single wallet record."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> WalletRecord:
        """
        Load the record (an empty record if none has been saved).

        A file that is present but cannot be parsed comes back as an empty
        record with `readable=False`; the file itself is left untouched.
        """
        if not self.path.exists():
            return WalletRecord()
        try:
            with open(self.path, "r") as f:
                return WalletRecord.from_dict(json.load(f))
        except (json.JSONDecodeError, UnicodeDecodeError, KeyError, TypeError,
                AttributeError, OSError) as e:
            logger.warning(f"Failed to load wallet record: {e}")
            return WalletRecord(readable=False)

    def save(self, record: WalletRecord) -> None:
        """Persist the record atomically. The file is owner-only from creation."""
        temp_path = self.path.with_suffix('.tmp')
        if temp_path.exists():
            temp_path.unlink()
        fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, SECURE_FILE_MODE)
        with os.fdopen(fd, 'w') as f:
            json.dump(record.to_dict(), f, indent=2)
        # os.open's mode is still subject to the umask
        set_secure_permissions(temp_path)
        temp_path.replace(self.path)

    def delete(self) -> None:
        """Remove the persisted record."""
        if self.path.exists():
            self.path.unlink()
            logger.info("Wallet record deleted")
