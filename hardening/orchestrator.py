#!/usr/bin/env python3
"""
Server Security Setup - Orchestrator

Runs the setup in a fixed sequence:

    parse arguments -> check OS -> check root -> check dependencies
        -> run each selected module -> summary

Any failure before the module phase skips straight to the summary with a
step-specific exit code. Module failures are recorded and the remaining
modules still run. The summary is always printed.

License: MIT
"""

import logging
import signal
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .arguments import (
    Selection,
    create_argument_parser,
    parse_arguments,
    validate_selection,
    version_string,
)
from .command_runner import CommandRunner
from .config import SetupConfig
from .console import LOGGER_NAME, Colors, log_success, setup_logging
from .dependency_checker import DependencyChecker
from .exceptions import DependencyInstallError, ExitCode, HardeningError, RunInterrupted
from .module_loader import (
    ModuleLoader,
    ModuleRegistry,
    ModuleResult,
    RunnerFactory,
    module_exit_code,
)
from .platform_checks import check_os, check_root


@dataclass(frozen=True)
class ExecutionSummary:
    """End-of-run report."""
    modules: Tuple[str, ...]
    results: Tuple[ModuleResult, ...]
    failed_modules: Tuple[str, ...]
    total_duration: int
    exit_code: int
    log_path: Optional[Path]

    @property
    def modules_run(self) -> int:
        return len(self.results)


def format_duration(seconds: int) -> str:
    minutes, seconds = divmod(int(seconds), 60)
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


class SecuritySetup:
    """Main orchestrator for a setup run."""

    def __init__(self, config: SetupConfig, logger: Optional[logging.Logger] = None,
                 runner_factory: RunnerFactory = CommandRunner,
                 log_path: Optional[Path] = None):
        self.config = config
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.runner_factory = runner_factory
        self.log_path = log_path
        self.registry = ModuleRegistry(config.modules_root)
        self.parser = create_argument_parser(self.registry.names())

    def print_header(self, message: str, level: int = 1) -> None:
        """Print formatted header."""
        if level == 1:
            separator = "=" * 80
            print(f"\n{Colors.BOLD}{separator}")
            print(message.center(80))
            print(f"{separator}{Colors.NC}\n")
        else:
            separator = "-" * 60
            print(f"\n{Colors.CYAN}{separator}")
            print(message.center(60))
            print(f"{separator}{Colors.NC}\n")

    def check_platform(self) -> None:
        """Check the distribution, then root privileges."""
        distribution = check_os(self.config.os_release, self.config.supported_os)
        log_success(self.logger, f"Supported operating system: {distribution}")

        try:
            check_root()
        except HardeningError:
            self.logger.info("Please run: sudo security-setup ...")
            raise
        log_success(self.logger, "Running with root privileges")

    def check_dependencies(self, selection: Selection) -> None:
        """
        Dependency step.

        Skipped under --skip-deps. With --check-deps missing packages are
        installed and a failure is fatal; otherwise they are only reported.
        """
        flags = selection.flags
        if flags.skip_deps:
            self.logger.warning("Skipping dependency check (--skip-deps)")
            return
        if not (flags.check_deps or selection.modules):
            return

        install = flags.check_deps and not flags.dry_run
        if flags.check_deps and flags.dry_run:
            self.logger.warning("[DRY RUN] Missing dependencies will be reported, not installed")

        runner = self.runner_factory(self.logger, flags.dry_run)
        checker = DependencyChecker(runner, self.logger)
        report = checker.ensure(install_if_missing=install)

        if report.ok:
            log_success(self.logger, "All dependencies satisfied")
        elif install:
            raise DependencyInstallError(
                f"Failed to install dependencies: {', '.join(report.failed + report.missing)}",
                packages=report.failed + report.missing,
            )
        else:
            self.logger.warning(f"Missing dependencies: {', '.join(report.missing)}")
            self.logger.warning("Run with --check-deps to install them")

    def run_modules(self, selection: Selection, results: List[ModuleResult]) -> None:
        """Run every selected module, appending each result as it completes."""
        loader = ModuleLoader(self.registry, self.config, self.logger,
                              runner_factory=self.runner_factory,
                              dry_run=selection.flags.dry_run)
        for position, name in enumerate(selection.modules, start=1):
            self.print_header(f"MODULE {position}/{len(selection.modules)}: {name.upper()}", 2)
            results.append(loader.load(name, selection.module_args.get(name, ())))

    def summarize(self, selection: Optional[Selection], results: Sequence[ModuleResult],
                  exit_code: int, started: float) -> ExecutionSummary:
        """Print and return the end-of-run summary."""
        summary = ExecutionSummary(
            modules=selection.modules if selection else (),
            results=tuple(results),
            failed_modules=tuple(r.module for r in results if not r.succeeded),
            total_duration=int(time.monotonic() - started),
            exit_code=int(exit_code),
            log_path=self.log_path,
        )

        self.print_header("EXECUTION SUMMARY", 2)
        self.logger.info(f"Total time: {format_duration(summary.total_duration)}")
        self.logger.info(f"Modules run: {summary.modules_run}")
        if summary.failed_modules:
            self.logger.error(f"Failed modules: {', '.join(summary.failed_modules)}")
        elif summary.exit_code == 0:
            log_success(self.logger, "Completed successfully")
        else:
            self.logger.error(f"Run failed (exit code {summary.exit_code})")
        if summary.log_path:
            self.logger.info(f"Full log: {summary.log_path}")
        return summary

    def run(self, argv: Sequence[str]) -> ExecutionSummary:
        """Execute one full setup run for the given arguments."""
        started = time.monotonic()
        selection: Optional[Selection] = None
        results: List[ModuleResult] = []
        exit_code = ExitCode.SUCCESS

        try:
            selection = parse_arguments(list(argv), self.registry, self.logger, self.parser)

            if selection.show_version:
                print(version_string())
                return ExecutionSummary((), (), (), 0, 0, self.log_path)
            if selection.show_help:
                self.parser.print_help()
                return ExecutionSummary((), (), (), 0, 0, self.log_path)

            validate_selection(selection, self.registry, self.logger)

            self.print_header("SERVER SECURITY SETUP", 1)
            if selection.flags.dry_run:
                self.logger.warning("Dry-run mode: nothing will be changed")
            if selection.modules:
                self.logger.info(f"Selected modules: {', '.join(selection.modules)}")

            self.check_platform()
            self.check_dependencies(selection)

            if selection.modules:
                self.run_modules(selection, results)
                exit_code = module_exit_code(results)

        except HardeningError as e:
            self.logger.error(str(e))
            exit_code = e.exit_code
        except RunInterrupted as e:
            # Reset any color left open by a partial line
            print(Colors.NC, end="")
            self.logger.warning(f"Received signal {e.signum}, stopping")
            exit_code = e.exit_code

        return self.summarize(selection, results, exit_code, started)


def _raise_interrupt(signum: int, frame) -> None:
    raise RunInterrupted(signum)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    argv = list(sys.argv[1:] if argv is None else argv)
    verbose = "--verbose" in argv or "-v" in argv

    config = SetupConfig.from_environment()
    logger, log_path = setup_logging(config.log_dir, verbose=verbose)

    previous = {signum: signal.signal(signum, _raise_interrupt)
                for signum in (signal.SIGINT, signal.SIGTERM)}
    try:
        summary = SecuritySetup(config, logger=logger, log_path=log_path).run(argv)
    except RunInterrupted as e:
        print(Colors.NC)
        logger.warning(f"Interrupted by signal {e.signum}")
        return e.exit_code
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
    return summary.exit_code


if __name__ == "__main__":
    sys.exit(main())
