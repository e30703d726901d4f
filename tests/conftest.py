"""Shared fixtures: a recording command runner and throwaway setup configs."""

import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

from hardening.command_runner import CommandResult, CommandRunner
from hardening.config import SetupConfig
from hardening.console import LOGGER_NAME

UBUNTU_OS_RELEASE = """\
PRETTY_NAME="Ubuntu 24.04.1 LTS"
NAME="Ubuntu"
VERSION_ID="24.04"
ID=ubuntu
ID_LIKE=debian
"""


class FakeRunner(CommandRunner):
    """CommandRunner that records commands instead of executing them.

    ``responses`` maps a command prefix to the result returned for any
    command starting with it; the longest matching prefix wins.
    """

    def __init__(self, logger: logging.Logger, dry_run: bool = False,
                 commands: Optional[List[List[str]]] = None,
                 responses: Optional[Dict[Tuple[str, ...], CommandResult]] = None,
                 programs: Iterable[str] = ()):
        super().__init__(logger, dry_run)
        self.commands = commands if commands is not None else []
        self.responses = responses if responses is not None else {}
        self.programs = set(programs)

    def _execute(self, command, env, input_text) -> CommandResult:
        self.commands.append(list(command))
        best = None
        for prefix, result in self.responses.items():
            if tuple(command[:len(prefix)]) == prefix:
                if best is None or len(prefix) > len(best[0]):
                    best = (prefix, result)
        if best is not None:
            return best[1]
        return CommandResult(True, "", "", 0)

    def exists(self, program: str) -> bool:
        return program in self.programs


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(True, stdout, "", 0)


def fail(stderr: str = "failed", code: int = 1) -> CommandResult:
    return CommandResult(False, "", stderr, code)


class RunnerFactory:
    """Creates FakeRunners that share one command log and response table."""

    def __init__(self, responses=None, programs: Iterable[str] = ()):
        self.commands: List[List[str]] = []
        self.responses = responses if responses is not None else {}
        self.programs = set(programs)

    def __call__(self, logger: logging.Logger, dry_run: bool = False) -> FakeRunner:
        return FakeRunner(logger, dry_run, self.commands, self.responses, self.programs)

    def ran(self, *prefix: str) -> bool:
        return any(tuple(command[:len(prefix)]) == prefix for command in self.commands)


@pytest.fixture
def logger(caplog) -> logging.Logger:
    caplog.set_level(logging.DEBUG, logger=LOGGER_NAME)
    return logging.getLogger(LOGGER_NAME)


@pytest.fixture
def os_release(tmp_path) -> Path:
    path = tmp_path / "os-release"
    path.write_text(UBUNTU_OS_RELEASE)
    return path


@pytest.fixture
def as_root(monkeypatch):
    monkeypatch.setattr(os, "geteuid", lambda: 0)


@pytest.fixture
def as_user(monkeypatch):
    monkeypatch.setattr(os, "geteuid", lambda: 1000)


def make_modules_root(root: Path, scripts: Dict[str, Optional[str]]) -> Path:
    """Create ``<root>/<name>/configure_<name>.py`` for each entry.

    A value of None creates the module directory without its script.
    """
    root.mkdir(parents=True, exist_ok=True)
    for name, source in scripts.items():
        directory = root / name
        directory.mkdir()
        if source is not None:
            (directory / f"configure_{name}.py").write_text(source)
    return root


def recording_module(name: str) -> str:
    """Module source that records its run through the command runner."""
    return (
        f"def configure_{name}(context):\n"
        f"    context.runner.run(['touch', '{name}'])\n"
        f"    context.logger.info('{name} ran with %s', context.args)\n"
        f"    return 0\n"
    )


@pytest.fixture
def make_config(tmp_path, os_release):
    def _make(modules_root: Path) -> SetupConfig:
        return SetupConfig(
            modules_root=modules_root,
            log_dir=tmp_path / "logs",
            backup_dir=tmp_path / "backups",
            os_release=os_release,
        )
    return _make


@pytest.fixture
def bundled_config(tmp_path, os_release) -> SetupConfig:
    """Config pointing at the real module scripts shipped with the package."""
    return SetupConfig(
        log_dir=tmp_path / "logs",
        backup_dir=tmp_path / "backups",
        os_release=os_release,
    )
