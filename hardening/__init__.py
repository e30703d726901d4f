"""
Server Security Setup - Core Package

Orchestrator, module loader and shared utilities for hardening Debian and
Ubuntu servers. The hardening tasks themselves live under ``modules/``,
one directory per module.

License: MIT
Version: 1.0
"""

__version__ = "1.0"

# Imported after __version__, which arguments.py reads from this package
from .backup_manager import BackupManager  # noqa: E402
from .command_runner import CommandRunner  # noqa: E402
from .config import SetupConfig  # noqa: E402
from .config_editor import ConfigEditor  # noqa: E402
from .dependency_checker import DependencyChecker  # noqa: E402
from .module_loader import ModuleLoader, ModuleRegistry  # noqa: E402
from .orchestrator import SecuritySetup  # noqa: E402

__all__ = [
    'SecuritySetup',
    'SetupConfig',
    'ModuleLoader',
    'ModuleRegistry',
    'DependencyChecker',
    'CommandRunner',
    'BackupManager',
    'ConfigEditor',
]
