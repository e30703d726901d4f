"""
Platform Checks

Pre-flight checks run before any module: operating system and privileges.

License: MIT
"""

import os
import shlex
from pathlib import Path
from typing import Dict, Iterable

from .exceptions import PermissionDeniedError, UnsupportedOSError


def read_os_release(path: Path) -> Dict[str, str]:
    """Parse an os-release file into a dict of KEY -> value."""
    info = {}
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        try:
            parts = shlex.split(value)
        except ValueError:
            parts = [value.strip("\"'")]
        info[key.strip()] = parts[0] if parts else ""
    return info


def check_os(os_release: Path, supported: Iterable[str]) -> str:
    """
    Verify the running distribution is supported.

    Matches ``ID`` first, then any entry of ``ID_LIKE``.

    Returns:
        The distribution's pretty name.
    """
    supported = [name.lower() for name in supported]
    try:
        info = read_os_release(os_release)
    except OSError as e:
        raise UnsupportedOSError(f"Cannot determine the operating system: {e}") from e

    ids = [info.get("ID", "").lower()] + info.get("ID_LIKE", "").lower().split()
    pretty_name = info.get("PRETTY_NAME") or info.get("ID") or "unknown"
    if not any(os_id in supported for os_id in ids if os_id):
        raise UnsupportedOSError(
            f"Unsupported operating system: {pretty_name} "
            f"(supported: {', '.join(supported)})"
        )
    return pretty_name


def check_root() -> None:
    if os.geteuid() != 0:
        raise PermissionDeniedError("This script must be run with root privileges")
