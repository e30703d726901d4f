"""
Backup Manager

Timestamped copies of configuration files and directories, taken before
the first in-place edit.

License: MIT
"""

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

PathLike = Union[str, Path]


class BackupManager:
    """Copies files into the backup directory as ``<name>.backup-<timestamp>``."""

    def __init__(self, backup_dir: Path, logger: logging.Logger, dry_run: bool = False):
        self.backup_dir = Path(backup_dir)
        self.logger = logger
        self.dry_run = dry_run
        self.created: List[Path] = []

    def _backup_path(self, original: Path) -> Path:
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        backup_path = self.backup_dir / f"{original.name}.backup-{timestamp}"
        counter = 1
        while backup_path.exists():
            backup_path = self.backup_dir / f"{original.name}.backup-{timestamp}.{counter}"
            counter += 1
        return backup_path

    def backup_file(self, file_path: PathLike) -> Optional[Path]:
        """Create a backup of a configuration file or directory."""
        original = Path(file_path)

        if not original.exists():
            raise FileNotFoundError(f"File to backup does not exist: {file_path}")

        if self.dry_run:
            self.logger.info(f"[DRY RUN] Would back up {original}")
            return None

        self.backup_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        backup_path = self._backup_path(original)

        if original.is_dir():
            shutil.copytree(original, backup_path)
        else:
            shutil.copy2(original, backup_path)
            backup_path.chmod(0o600)

        self.created.append(backup_path)
        self.logger.info(f"Created backup: {original} -> {backup_path}")
        return backup_path

    def backup_paths(self, paths: Iterable[PathLike]) -> List[Path]:
        """Back up every path that exists, skipping the rest."""
        backups = []
        for path in paths:
            if not Path(path).exists():
                self.logger.debug(f"Nothing to back up at {path}")
                continue
            backup = self.backup_file(path)
            if backup is not None:
                backups.append(backup)
        return backups
