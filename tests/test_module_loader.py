"""Tests for module discovery and loading."""

import logging

import pytest

from conftest import RunnerFactory, make_modules_root, recording_module
from hardening.exceptions import ExitCode
from hardening.module_loader import (
    ModuleLoader,
    ModuleRegistry,
    ModuleResult,
    ModuleStatus,
    mask_secrets,
    module_exit_code,
)


def make_loader(config, logger, dry_run=False):
    factory = RunnerFactory()
    registry = ModuleRegistry(config.modules_root)
    return ModuleLoader(registry, config, logger, runner_factory=factory, dry_run=dry_run), factory


def test_registry_discovers_sorted_directories(tmp_path):
    root = make_modules_root(tmp_path, {"zeta": None, "alpha": None, "_private": None})

    registry = ModuleRegistry(root)

    assert registry.names() == ["alpha", "zeta"]
    assert "alpha" in registry
    assert "_private" not in registry
    assert len(registry) == 2


def test_registry_of_missing_root_is_empty(tmp_path):
    assert ModuleRegistry(tmp_path / "nowhere").names() == []


def test_successful_module(tmp_path, make_config, logger):
    root = make_modules_root(tmp_path / "modules", {"alpha": recording_module("alpha")})
    loader, factory = make_loader(make_config(root), logger)

    result = loader.load("alpha", ["--flag"])

    assert result.status is ModuleStatus.SUCCESS
    assert result.succeeded
    assert factory.commands == [["touch", "alpha"]]
    assert "ran with ['--flag']" in result.log_path.read_text()


@pytest.mark.parametrize("body, expected", [
    ("return None", 0),
    ("return True", 0),
    ("return False", 1),
    ("return 7", 7),
    ("raise SystemExit(4)", 4),
    ("raise SystemExit()", 0),
])
def test_return_values_become_exit_codes(tmp_path, make_config, logger, body, expected):
    root = make_modules_root(tmp_path / "modules", {
        "alpha": f"def configure_alpha(context):\n    {body}\n",
    })
    loader, _ = make_loader(make_config(root), logger)

    assert loader.load("alpha").exit_code == expected


def test_module_error_uses_its_exit_code(tmp_path, make_config, logger):
    root = make_modules_root(tmp_path / "modules", {"alpha": (
        "from hardening.exceptions import ModuleExecutionError\n"
        "def configure_alpha(context):\n"
        "    raise ModuleExecutionError('bad config', module='alpha')\n"
    )})
    loader, _ = make_loader(make_config(root), logger)

    result = loader.load("alpha")

    assert result.exit_code == ExitCode.MODULE_FAILURE
    assert result.status is ModuleStatus.FAILED
    assert "bad config" in result.log_path.read_text()


def test_syntax_error_is_a_load_failure(tmp_path, make_config, logger):
    root = make_modules_root(tmp_path / "modules", {"alpha": "def configure_alpha(:\n"})
    loader, _ = make_loader(make_config(root), logger)

    result = loader.load("alpha")

    assert result.status is ModuleStatus.LOAD_FAILED
    assert result.exit_code == ExitCode.MODULE_FAILURE


@pytest.mark.parametrize("source", [
    "import sys\nsys.exit(2)\n",
    "raise SystemExit('refusing to load')\n",
    "raise ImportError('no module named missing')\n",
])
def test_errors_while_importing_are_load_failures(tmp_path, make_config, logger, source):
    root = make_modules_root(tmp_path / "modules", {"alpha": source})
    loader, _ = make_loader(make_config(root), logger)

    result = loader.load("alpha")

    assert result.status is ModuleStatus.LOAD_FAILED
    assert result.exit_code == ExitCode.MODULE_FAILURE
    assert "Failed to load" in result.error


def test_unwritable_log_dir_fails_the_module_only(tmp_path, make_config, logger):
    root = make_modules_root(tmp_path / "modules", {"alpha": recording_module("alpha")})
    config = make_config(root)
    config.log_dir.write_text("not a directory")
    loader, factory = make_loader(config, logger)

    result = loader.load("alpha")

    assert result.status is ModuleStatus.LOAD_FAILED
    assert result.exit_code == ExitCode.MODULE_FAILURE
    assert result.log_path is None
    assert "Cannot create module log" in result.error
    assert factory.commands == []


def test_missing_entry_function_is_a_load_failure(tmp_path, make_config, logger):
    root = make_modules_root(tmp_path / "modules", {"alpha": "def something_else():\n    pass\n"})
    loader, _ = make_loader(make_config(root), logger)

    result = loader.load("alpha")

    assert result.status is ModuleStatus.LOAD_FAILED
    assert "configure_alpha" in result.error


def test_unknown_module_is_not_found(tmp_path, make_config, logger):
    root = make_modules_root(tmp_path / "modules", {})
    loader, _ = make_loader(make_config(root), logger)

    result = loader.load("ghost")

    assert result.status is ModuleStatus.NOT_FOUND
    assert result.log_path is None


def test_dry_run_does_not_load_the_script(tmp_path, make_config, logger, caplog):
    root = make_modules_root(tmp_path / "modules", {
        "alpha": "raise RuntimeError('must not be imported')\n",
    })
    loader, factory = make_loader(make_config(root), logger, dry_run=True)

    result = loader.load("alpha", ["--port=2222"])

    assert result.status is ModuleStatus.DRY_RUN
    assert result.succeeded
    assert factory.commands == []
    assert "[DRY RUN] Would run module alpha" in caplog.text
    assert "--port=2222" in caplog.text


def test_each_load_starts_from_fresh_module_state(tmp_path, make_config, logger):
    root = make_modules_root(tmp_path / "modules", {"alpha": (
        "CALLS = []\n"
        "def configure_alpha(context):\n"
        "    CALLS.append(1)\n"
        "    return len(CALLS) - 1\n"
    )})
    loader, _ = make_loader(make_config(root), logger)

    assert loader.load("alpha").exit_code == 0
    assert loader.load("alpha").exit_code == 0


def test_module_handler_is_removed_after_run(tmp_path, make_config, logger):
    root = make_modules_root(tmp_path / "modules", {"alpha": recording_module("alpha")})
    loader, _ = make_loader(make_config(root), logger)

    loader.load("alpha")

    assert logging.getLogger("security_setup.modules.alpha").handlers == []


def test_module_exit_code():
    passed = ModuleResult("a", 0, 0, None, ModuleStatus.SUCCESS)
    failed = ModuleResult("b", 2, 0, None, ModuleStatus.FAILED)

    assert module_exit_code([]) == ExitCode.SUCCESS
    assert module_exit_code([passed]) == ExitCode.SUCCESS
    assert module_exit_code([passed, failed]) == ExitCode.MODULE_FAILURE


def test_dry_run_line_masks_passwords(tmp_path, make_config, logger, caplog):
    root = make_modules_root(tmp_path / "modules", {"users": recording_module("users")})
    loader, _ = make_loader(make_config(root), logger, dry_run=True)

    loader.load("users", ["--set-password", "deploy", "--password=S3cret"])

    assert "S3cret" not in caplog.text
    assert "--set-password deploy --password=****" in caplog.text


@pytest.mark.parametrize("args, expected", [
    (["--password=S3cret"], ["--password=****"]),
    (["--password", "S3cret", "--lock", "bob"], ["--password", "****", "--lock", "bob"]),
    (["--port=2222"], ["--port=2222"]),
    ([], []),
])
def test_mask_secrets(args, expected):
    assert mask_secrets(args) == expected
