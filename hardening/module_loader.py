"""
Module Registry and Loader

Modules live under the modules root as ``<name>/configure_<name>.py`` and
expose a ``configure_<name>(context)`` entry function. The loader runs each
one in a fresh module object with a fresh ModuleContext, tees its log
output into ``security_<name>_<timestamp>.log`` and turns the outcome into
a ModuleResult. A failing module never aborts the run.

License: MIT
"""

import importlib.util
import itertools
import logging
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import ModuleType
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from .backup_manager import BackupManager
from .command_runner import CommandRunner
from .config import SetupConfig
from .config_editor import ConfigEditor
from .console import LOGGER_NAME, create_file_handler, log_success, timestamp
from .exceptions import (
    ExitCode,
    HardeningError,
    ModuleLoadError,
    ModuleScriptMissingError,
)

RunnerFactory = Callable[[logging.Logger, bool], CommandRunner]

_load_counter = itertools.count(1)

SECRET_OPTIONS = ("--password",)


def mask_secrets(args: Sequence[str]) -> List[str]:
    """Copy of module arguments with secret option values replaced by ``****``."""
    masked = []
    hide_next = False
    for arg in args:
        if hide_next:
            masked.append("****")
            hide_next = False
            continue
        option, sep, _ = arg.partition("=")
        if option in SECRET_OPTIONS:
            if sep:
                masked.append(f"{option}=****")
            else:
                masked.append(arg)
                hide_next = True
            continue
        masked.append(arg)
    return masked


@dataclass(frozen=True)
class ModuleSpec:
    """Where a module lives and what it must expose."""
    name: str
    directory: Path

    @property
    def script(self) -> Path:
        return self.directory / f"configure_{self.name}.py"

    @property
    def entry_name(self) -> str:
        return f"configure_{self.name}"


class ModuleRegistry:
    """Modules discovered under a modules root, keyed by name."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self._specs = self._discover()

    def _discover(self) -> Dict[str, ModuleSpec]:
        specs = {}
        if not self.root.is_dir():
            return specs
        for child in sorted(self.root.iterdir()):
            if child.is_dir() and not child.name.startswith(("_", ".")):
                specs[child.name] = ModuleSpec(child.name, child)
        return specs

    def names(self) -> List[str]:
        return list(self._specs)

    def get(self, name: str) -> Optional[ModuleSpec]:
        return self._specs.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[ModuleSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)


class ModuleStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    LOAD_FAILED = "load_failed"
    NOT_FOUND = "not_found"
    DRY_RUN = "dry_run"


@dataclass(frozen=True)
class ModuleResult:
    """Outcome of one module run. Never mutated after creation."""
    module: str
    exit_code: int
    duration_seconds: int
    log_path: Optional[Path]
    status: ModuleStatus
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass
class ModuleContext:
    """Everything a module entry function gets to work with."""
    name: str
    args: List[str]
    logger: logging.Logger
    runner: CommandRunner
    backups: BackupManager
    editor: ConfigEditor
    log_path: Optional[Path] = None
    dry_run: bool = False
    data: Dict[str, object] = field(default_factory=dict)

    def simulate(self) -> None:
        """Switch this module run to dry-run mode."""
        self.dry_run = True
        self.runner.dry_run = True
        self.backups.dry_run = True
        self.editor.dry_run = True
        self.logger.warning("Dry-run mode: no changes will be made")


class ModuleLoader:
    """Runs registered modules one at a time."""

    def __init__(self, registry: ModuleRegistry, config: SetupConfig,
                 logger: logging.Logger, runner_factory: RunnerFactory = CommandRunner,
                 dry_run: bool = False):
        self.registry = registry
        self.config = config
        self.logger = logger
        self.runner_factory = runner_factory
        self.dry_run = dry_run

    def load(self, name: str, extra_args: Sequence[str] = ()) -> ModuleResult:
        """Run one module and report its result."""
        spec = self.registry.get(name)
        script = spec.script if spec else self.registry.root / name / f"configure_{name}.py"

        if spec is None or not script.is_file():
            error = ModuleScriptMissingError(f"Module script not found: {script}", module=name)
            self.logger.error(str(error))
            return ModuleResult(name, error.exit_code, 0, None, ModuleStatus.NOT_FOUND, str(error))

        if self.dry_run:
            arguments = ' '.join(mask_secrets(extra_args)) or '(no arguments)'
            self.logger.warning(f"[DRY RUN] Would run module {name}: {script} {arguments}")
            return ModuleResult(name, 0, 0, None, ModuleStatus.DRY_RUN)

        log_path = self.config.log_dir / f"security_{name}_{timestamp()}.log"
        try:
            self.config.log_dir.mkdir(parents=True, exist_ok=True)
            handler = create_file_handler(log_path)
        except OSError as e:
            error = f"Cannot create module log {log_path}: {e}"
            self.logger.error(f"Module {name} not run. {error}")
            return ModuleResult(name, ExitCode.MODULE_FAILURE, 0, None,
                                ModuleStatus.LOAD_FAILED, error)

        module_logger = logging.getLogger(f"{LOGGER_NAME}.modules.{name}")
        module_logger.addHandler(handler)

        self.logger.info(f"Running module {name}...")
        started = time.monotonic()
        try:
            exit_code, status, error = self._run(spec, list(extra_args), module_logger, log_path)
        finally:
            module_logger.removeHandler(handler)
            handler.close()
        duration = int(time.monotonic() - started)

        if exit_code == 0:
            log_success(self.logger, f"Module {name} completed successfully in {duration}s")
        else:
            self.logger.error(f"Module {name} failed with exit code {exit_code} after "
                              f"{duration}s. See log: {log_path}")
        return ModuleResult(name, exit_code, duration, log_path, status, error)

    def _run(self, spec: ModuleSpec, args: List[str], module_logger: logging.Logger,
             log_path: Path):
        try:
            entry = self._load_entry(spec)
        except ModuleLoadError as e:
            module_logger.error(str(e))
            return e.exit_code, ModuleStatus.LOAD_FAILED, str(e)

        context = self._create_context(spec.name, args, module_logger, log_path)
        try:
            exit_code = self._normalize(entry(context))
        except HardeningError as e:
            module_logger.error(str(e))
            return e.exit_code, ModuleStatus.FAILED, str(e)
        except SystemExit as e:
            exit_code = self._normalize(e.code)
        except Exception as e:
            module_logger.exception(f"Unexpected error in module {spec.name}: {e}")
            return 1, ModuleStatus.FAILED, str(e)

        if exit_code != 0:
            return exit_code, ModuleStatus.FAILED, f"exit code {exit_code}"
        return 0, ModuleStatus.SUCCESS, None

    @staticmethod
    def _normalize(value) -> int:
        if value is None or value is True:
            return 0
        if value is False:
            return 1
        if isinstance(value, int):
            return value
        return 1

    def _load_entry(self, spec: ModuleSpec) -> Callable[[ModuleContext], object]:
        """Load the script into a new module object and return its entry function."""
        module_name = f"_security_setup_{spec.name}_{next(_load_counter)}"
        import_spec = importlib.util.spec_from_file_location(module_name, spec.script)
        if import_spec is None or import_spec.loader is None:
            raise ModuleLoadError(f"Cannot load module script {spec.script}", module=spec.name)

        module: ModuleType = importlib.util.module_from_spec(import_spec)
        # Registered only while executing, for code that looks itself up (dataclasses)
        sys.modules[module_name] = module
        try:
            import_spec.loader.exec_module(module)
        except (Exception, SystemExit) as e:
            raise ModuleLoadError(f"Failed to load {spec.script}: {e}", module=spec.name) from e
        finally:
            sys.modules.pop(module_name, None)

        entry = getattr(module, spec.entry_name, None)
        if not callable(entry):
            raise ModuleLoadError(
                f"Entry function {spec.entry_name}() not found in {spec.script}",
                module=spec.name,
            )
        return entry

    def _create_context(self, name: str, args: List[str], module_logger: logging.Logger,
                        log_path: Optional[Path]) -> ModuleContext:
        runner = self.runner_factory(module_logger, False)
        backups = BackupManager(self.config.backup_dir, module_logger)
        editor = ConfigEditor(backups, module_logger)
        return ModuleContext(
            name=name,
            args=args,
            logger=module_logger,
            runner=runner,
            backups=backups,
            editor=editor,
            log_path=log_path,
        )


def module_exit_code(results: Sequence[ModuleResult]) -> int:
    """Overall exit code for a list of module results."""
    if any(not result.succeeded for result in results):
        return ExitCode.MODULE_FAILURE
    return ExitCode.SUCCESS
