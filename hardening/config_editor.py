"""
Configuration File Editor

Line-level edits for ``Key value`` style files (sshd_config, apt.conf) and
section-level edits for INI style files (Fail2Ban jails). Each file is
backed up once, on its first modification, and only written when its
content actually changes.

License: MIT
"""

import logging
import os
import re
import shutil
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .backup_manager import BackupManager, PathLike

SECTION_HEADER = re.compile(r"^\s*\[([^\]]+)\]\s*$")


def _directive_pattern(key: str, commented: bool) -> "re.Pattern[str]":
    prefix = r"^\s*#\s*" if commented else r"^\s*"
    return re.compile(prefix + re.escape(key) + r"(\s|=|$)", re.IGNORECASE)


def update_directive(lines: List[str], key: str, value: str) -> List[str]:
    """
    Set ``key value`` in a list of lines.

    Active occurrences are replaced; otherwise the first commented-out
    occurrence is; otherwise the line is appended. Lines from the first
    ``Match`` block onward are left alone and appends go before it.
    """
    new_line = f"{key} {value}"
    lines = list(lines)

    match_start = len(lines)
    for index, line in enumerate(lines):
        if re.match(r"^\s*Match\s", line, re.IGNORECASE):
            match_start = index
            break

    active = _directive_pattern(key, commented=False)
    replaced = False
    for index in range(match_start):
        if active.match(lines[index]):
            lines[index] = new_line
            replaced = True
    if replaced:
        return lines

    commented = _directive_pattern(key, commented=True)
    for index in range(match_start):
        if commented.match(lines[index]):
            lines[index] = new_line
            return lines

    lines.insert(match_start, new_line)
    return lines


def update_section(lines: List[str], section: str, options: Dict[str, str]) -> List[str]:
    """Set ``key = value`` options inside ``[section]``, creating it if needed."""
    lines = list(lines)

    start = None
    for index, line in enumerate(lines):
        header = SECTION_HEADER.match(line)
        if header and header.group(1).strip() == section:
            start = index
            break

    if start is None:
        if lines and lines[-1].strip():
            lines.append("")
        lines.append(f"[{section}]")
        lines.extend(f"{key} = {value}" for key, value in options.items())
        return lines

    end = len(lines)
    for index in range(start + 1, len(lines)):
        if SECTION_HEADER.match(lines[index]):
            end = index
            break

    for key, value in options.items():
        pattern = re.compile(r"^\s*" + re.escape(key) + r"\s*=")
        for index in range(start + 1, end):
            if pattern.match(lines[index]):
                lines[index] = f"{key} = {value}"
                break
        else:
            insert_at = end
            while insert_at > start + 1 and not lines[insert_at - 1].strip():
                insert_at -= 1
            lines.insert(insert_at, f"{key} = {value}")
            end += 1
    return lines


class ConfigEditor:
    """Applies edits to configuration files with backup-before-modify."""

    def __init__(self, backups: BackupManager, logger: logging.Logger, dry_run: bool = False):
        self.backups = backups
        self.logger = logger
        self.dry_run = dry_run
        self._backups_taken: Dict[Path, Optional[Path]] = {}

    def read_lines(self, path: PathLike) -> List[str]:
        path = Path(path)
        if not path.exists():
            return []
        return path.read_text(encoding="utf-8").splitlines()

    def _ensure_backup(self, path: Path) -> None:
        if path in self._backups_taken or not path.exists():
            return
        self._backups_taken[path] = self.backups.backup_file(path)

    def write_file(self, path: PathLike, content: str, mode: Optional[int] = None) -> bool:
        """Write ``content`` to ``path`` if it differs. Returns True when changed."""
        path = Path(path)
        current = path.read_text(encoding="utf-8") if path.exists() else None

        if current == content:
            self.logger.debug(f"{path} already up to date")
            return False

        if self.dry_run:
            self.logger.info(f"[DRY RUN] Would update {path}")
            return True

        self._ensure_backup(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        if mode is not None:
            os.chmod(path, mode)
        self.logger.info(f"Updated {path}")
        return True

    def set_directives(self, path: PathLike, settings: Iterable[Tuple[str, str]]) -> bool:
        """Apply several ``Key value`` directives in a single write."""
        lines = self.read_lines(path)
        for key, value in settings:
            lines = update_directive(lines, key, value)
        return self.write_file(path, "\n".join(lines) + "\n")

    def set_directive(self, path: PathLike, key: str, value: str) -> bool:
        return self.set_directives(path, [(key, value)])

    def set_section(self, path: PathLike, section: str, options: Dict[str, str]) -> bool:
        lines = update_section(self.read_lines(path), section, options)
        return self.write_file(path, "\n".join(lines) + "\n")

    def restore(self, path: PathLike) -> bool:
        """Put back the backup taken for ``path`` during this run."""
        path = Path(path)
        backup = self._backups_taken.get(path)
        if backup is None:
            self.logger.warning(f"No backup of {path} to restore")
            return False
        shutil.copy2(backup, path)
        self.logger.warning(f"Restored {path} from {backup}")
        return True
