"""
Exception Hierarchy

Every error raised by the setup framework derives from HardeningError and
carries the process exit code the orchestrator should report for it.

License: MIT
"""

from enum import IntEnum
from typing import List, Optional


class ExitCode(IntEnum):
    """Process exit codes reported by the orchestrator."""
    SUCCESS = 0
    INVALID_ARGUMENTS = 1
    DEPENDENCY_FAILURE = 2
    MODULE_FAILURE = 3
    NOT_ROOT = 4
    UNSUPPORTED_OS = 5


class HardeningError(Exception):
    """Base class for all setup errors."""
    exit_code = 1

    def __init__(self, message: str = "", exit_code: Optional[int] = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidArgumentError(HardeningError):
    """Bad command-line input."""
    exit_code = ExitCode.INVALID_ARGUMENTS


class ModulesRootError(InvalidArgumentError):
    """The modules directory is missing or holds no modules."""


class UnsupportedOSError(HardeningError):
    exit_code = ExitCode.UNSUPPORTED_OS


class PermissionDeniedError(HardeningError):
    exit_code = ExitCode.NOT_ROOT


class DependencyError(HardeningError):
    exit_code = ExitCode.DEPENDENCY_FAILURE

    def __init__(self, message: str = "", packages: Optional[List[str]] = None):
        super().__init__(message)
        self.packages = list(packages or [])


class DependencyMissingError(DependencyError):
    """Required packages are not installed."""


class DependencyInstallError(DependencyError):
    """Installation of required packages failed."""


class ModuleError(HardeningError):
    """Failure attributed to a single module run."""
    exit_code = ExitCode.MODULE_FAILURE

    def __init__(self, message: str = "", module: Optional[str] = None,
                 exit_code: Optional[int] = None):
        super().__init__(message, exit_code)
        self.module = module


class ModuleLoadError(ModuleError):
    """The module script could not be loaded or lacks its entry function."""


class ModuleScriptMissingError(ModuleLoadError):
    """The module's entry script does not exist."""


class ModuleExecutionError(ModuleError):
    """The module loaded fine but its task failed."""


class CommandError(HardeningError):
    """An external command exited with a non-zero status."""

    def __init__(self, command: List[str], return_code: int, stderr: str = ""):
        detail = stderr.strip() or f"exit code {return_code}"
        super().__init__(f"Command failed: {' '.join(command)} ({detail})")
        self.command = list(command)
        self.return_code = return_code
        self.stderr = stderr


class RunInterrupted(BaseException):
    """Raised from the signal handler so no ``except Exception`` swallows it."""

    def __init__(self, signum: int):
        super().__init__(f"Received signal {signum}")
        self.signum = signum

    @property
    def exit_code(self) -> int:
        return 128 + self.signum
