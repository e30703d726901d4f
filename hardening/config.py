"""
Runtime Configuration

Paths and platform settings shared by the orchestrator, the module loader
and the standalone tools. Defaults can be overridden from the environment.

License: MIT
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple

DEFAULT_MODULES_ROOT = Path(__file__).resolve().parent / "modules"
DEFAULT_LOG_DIR = Path("/var/log/security-setup")
DEFAULT_BACKUP_DIR = Path("/var/backups/security-setup")
DEFAULT_OS_RELEASE = Path("/etc/os-release")

SUPPORTED_OS = ("debian", "ubuntu")


@dataclass(frozen=True)
class SetupConfig:
    """Settings for one run of the setup tool."""
    modules_root: Path = DEFAULT_MODULES_ROOT
    log_dir: Path = DEFAULT_LOG_DIR
    backup_dir: Path = DEFAULT_BACKUP_DIR
    os_release: Path = DEFAULT_OS_RELEASE
    supported_os: Tuple[str, ...] = SUPPORTED_OS
    verbose: bool = False

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None) -> "SetupConfig":
        """Build a config from SECURITY_SETUP_* environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            modules_root=Path(env.get("SECURITY_SETUP_MODULES_DIR", DEFAULT_MODULES_ROOT)),
            log_dir=Path(env.get("SECURITY_SETUP_LOG_DIR", DEFAULT_LOG_DIR)),
            backup_dir=Path(env.get("SECURITY_SETUP_BACKUP_DIR", DEFAULT_BACKUP_DIR)),
        )
