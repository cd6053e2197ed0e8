import itertools
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pxclean.exceptions import BackupError
from pxclean.models import Backup, BackupMetadata, BackupResult, Resource, utcnow

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup.json"

# Process-wide sequence so two backups in the same microsecond still differ
_sequence = itertools.count(1)


class BackupRecorder:
    """
    Snapshots resource metadata before any destructive removal.

    Backups are written once and never modified afterwards.
    """

    def __init__(self, backup_dir: str = "./backups", host: Optional[str] = None):
        self._backup_dir = Path(backup_dir)
        self.host = host or os.environ.get("PROXMOX_HOST", "unknown")

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    def _ensure_dir(self):
        """Ensure backup directory exists with secure permissions."""
        if not self._backup_dir.exists():
            self._backup_dir.mkdir(parents=True, mode=0o700)

    def _generate_filename(self, now: datetime) -> str:
        timestamp = now.strftime("%Y-%m-%d_%H-%M-%S-%f")
        return f"cleanup_{timestamp}_{next(_sequence):04d}{BACKUP_SUFFIX}"

    def create_backup(self, resources: List[Resource]) -> BackupResult:
        """
        Create a backup of the given resources.

        Args:
            resources (List[Resource]): Resources about to be removed.

        Returns:
            BackupResult: success flag, path of the written file and error message.
        """
        try:
            self._ensure_dir()
            now = utcnow()
            resources = tuple(resources)
            backup = Backup(
                timestamp=now,
                resources=resources,
                metadata=BackupMetadata(
                    host=self.host,
                    total_size_bytes=sum(r.size_bytes for r in resources),
                    resource_count=len(resources),
                ),
            )
            path = self._backup_dir / self._generate_filename(now)
            self.save_backup(backup, path)
            logger.info("Backup of %d resources written to %s", len(resources), path)
            return BackupResult(success=True, path=str(path))
        except (OSError, BackupError) as e:
            logger.error("Backup creation failed: %s", e)
            return BackupResult(success=False, path="", error=f"Failed to create backup: {e}")

    def save_backup(self, backup: Backup, path: Path):
        """
        Write a backup to path. Never overwrites an existing file.

        Raises:
            BackupError: If the file exists or cannot be written.
        """
        try:
            with open(path, "x", encoding="utf-8") as f:
                json.dump(backup.to_dict(), f, indent=2)
        except FileExistsError as e:
            raise BackupError(f"Backup {path} already exists") from e
        except (OSError, TypeError, ValueError) as e:
            raise BackupError(f"Failed to save backup to {path}: {e}") from e

    def load_backup(self, path: str) -> Backup:
        """
        Load a backup written by create_backup.

        Raises:
            BackupError: If the file is missing or does not hold a valid backup.
        """
        path = Path(path)
        if not path.is_absolute() and not path.exists():
            candidate = self._backup_dir / path
            if candidate.exists():
                path = candidate
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return Backup.from_dict(data)
        except FileNotFoundError as e:
            raise BackupError(f"Backup not found: {path}") from e
        except json.JSONDecodeError as e:
            raise BackupError(f"Backup {path} is not valid JSON: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise BackupError(f"Backup {path} is malformed: {e}") from e

    def list_backups(self) -> List[str]:
        """Backup filenames, most recent first."""
        if not self._backup_dir.exists():
            return []
        names = [p.name for p in self._backup_dir.iterdir() if p.name.endswith(BACKUP_SUFFIX)]
        return sorted(names, reverse=True)

    def delete_backup(self, filename: str):
        """
        Delete a backup file by name.

        Raises:
            BackupError: If the file does not exist or cannot be removed.
        """
        path = self._backup_dir / Path(filename).name
        try:
            path.unlink()
        except OSError as e:
            raise BackupError(f"Failed to delete backup {filename}: {e}") from e
