"""
Command Runner

Thin wrapper around subprocess used by every module. Commands that change
the system are marked ``mutating`` and are only logged in dry-run mode.

License: MIT
"""

import logging
import os
import shutil
import subprocess
from typing import Dict, List, NamedTuple, Optional

from .exceptions import CommandError


class CommandResult(NamedTuple):
    """Outcome of one external command."""
    success: bool
    stdout: str
    stderr: str
    return_code: int


class CommandRunner:
    """Runs external commands and reports them as CommandResult values."""

    def __init__(self, logger: logging.Logger, dry_run: bool = False):
        self.logger = logger
        self.dry_run = dry_run

    def run(self, command: List[str], check: bool = False, mutating: bool = True,
            env: Optional[Dict[str, str]] = None,
            input_text: Optional[str] = None) -> CommandResult:
        """
        Run a command.

        Args:
            command: Program and arguments.
            check: Raise CommandError when the command fails.
            mutating: The command changes system state; skipped in dry-run.
            env: Extra environment variables merged over os.environ.
            input_text: Text written to the command's stdin.
        """
        display = ' '.join(command)
        if self.dry_run and mutating:
            self.logger.info(f"[DRY RUN] Would run: {display}")
            return CommandResult(True, "", "", 0)

        self.logger.debug(f"Running: {display}")
        result = self._execute(command, env, input_text)

        if not result.success:
            # Failed queries are routine (e.g. checking a missing package)
            log = self.logger.error if (check or mutating) else self.logger.debug
            log(f"Command failed: {display}")
            if result.stderr.strip():
                log(f"Error output: {result.stderr.strip()}")
            if check:
                raise CommandError(command, result.return_code, result.stderr)
        return result

    def _execute(self, command: List[str], env: Optional[Dict[str, str]],
                 input_text: Optional[str]) -> CommandResult:
        run_env = {**os.environ, **env} if env else None
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                env=run_env,
                input=input_text,
            )
        except FileNotFoundError:
            return CommandResult(False, "", f"{command[0]}: command not found", 127)
        except OSError as e:
            return CommandResult(False, "", str(e), 126)
        return CommandResult(completed.returncode == 0, completed.stdout,
                             completed.stderr, completed.returncode)

    def exists(self, program: str) -> bool:
        """Check whether a program is on PATH."""
        return shutil.which(program) is not None
