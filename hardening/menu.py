#!/usr/bin/env python3
"""
Interactive Menu

Terminal menu for picking modules and options, built with Rich. The menu
translates the choices into the equivalent command line and hands it to
the orchestrator.

License: MIT
"""

import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table

from .command_runner import CommandRunner
from .config import SetupConfig
from .console import setup_logging
from .module_loader import ModuleRegistry, RunnerFactory
from .orchestrator import ExecutionSummary, SecuritySetup, format_duration


class SecurityMenu:
    """Menu loop: toggle modules and flags, then run."""

    def __init__(self, config: SetupConfig, console: Optional[Console] = None,
                 log_path: Optional[Path] = None, runner_factory: RunnerFactory = CommandRunner):
        self.config = config
        self.console = console or Console()
        self.log_path = log_path
        self.runner_factory = runner_factory
        self.registry = ModuleRegistry(config.modules_root)
        self.selected: List[str] = []
        self.dry_run = False
        self.check_deps = False

    def toggle_module(self, name: str) -> None:
        if name in self.selected:
            self.selected.remove(name)
        else:
            self.selected.append(name)

    def toggle_all(self) -> None:
        names = self.registry.names()
        self.selected = [] if len(self.selected) == len(names) else list(names)

    def build_argv(self) -> List[str]:
        """Command line equivalent to the current menu state."""
        argv = [f"--{name}" for name in self.selected]
        if self.check_deps:
            argv.append("--check-deps")
        if self.dry_run:
            argv.append("--dry-run")
        return argv

    def render(self) -> None:
        table = Table(title="Server Security Setup", show_header=True, header_style="bold cyan")
        table.add_column("#", justify="right")
        table.add_column("Module")
        table.add_column("Selected", justify="center")
        for index, name in enumerate(self.registry.names(), start=1):
            mark = "[green]yes[/green]" if name in self.selected else "[dim]no[/dim]"
            table.add_row(str(index), name, mark)
        self.console.print(table)

        self.console.print(
            f"[bold]a[/bold] toggle all   "
            f"[bold]d[/bold] dry-run: {'on' if self.dry_run else 'off'}   "
            f"[bold]c[/bold] install dependencies: {'on' if self.check_deps else 'off'}   "
            f"[bold]r[/bold] run   [bold]q[/bold] quit"
        )

    def show_summary(self, summary: ExecutionSummary) -> None:
        table = Table(title="Results", show_header=True, header_style="bold cyan")
        table.add_column("Module")
        table.add_column("Status")
        table.add_column("Exit code", justify="right")
        table.add_column("Duration", justify="right")
        table.add_column("Log")
        for result in summary.results:
            style = "green" if result.succeeded else "red"
            table.add_row(result.module, f"[{style}]{result.status.value}[/{style}]",
                          str(result.exit_code), format_duration(result.duration_seconds),
                          str(result.log_path or "-"))
        self.console.print(table)
        self.console.print(f"Exit code: {summary.exit_code}")

    def run(self) -> int:
        names = self.registry.names()
        if not names:
            self.console.print(f"No modules found in {self.config.modules_root}", style="red")
            return 1

        choices = [str(i) for i in range(1, len(names) + 1)] + ["a", "d", "c", "r", "q"]
        while True:
            self.render()
            choice = Prompt.ask("Select an option", choices=choices, console=self.console)

            if choice == "q":
                return 0
            if choice == "a":
                self.toggle_all()
            elif choice == "d":
                self.dry_run = not self.dry_run
            elif choice == "c":
                self.check_deps = not self.check_deps
            elif choice == "r":
                if not self.selected and not self.check_deps:
                    self.console.print("Select at least one module first", style="yellow")
                    continue
                argv = self.build_argv()
                if not Confirm.ask(f"Run security-setup {' '.join(argv)}?", console=self.console):
                    continue
                summary = SecuritySetup(self.config, log_path=self.log_path,
                                        runner_factory=self.runner_factory).run(argv)
                self.show_summary(summary)
                return summary.exit_code
            else:
                self.toggle_module(names[int(choice) - 1])


def main() -> int:
    """Menu entry point."""
    config = SetupConfig.from_environment()
    _, log_path = setup_logging(config.log_dir)
    try:
        return SecurityMenu(config, log_path=log_path).run()
    except KeyboardInterrupt:
        print()
        return 130


if __name__ == "__main__":
    sys.exit(main())
