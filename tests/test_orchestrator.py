"""End-to-end runs of the orchestrator against throwaway module roots."""

import signal

import pytest

from conftest import RunnerFactory, fail, make_modules_root, ok, recording_module
from hardening.exceptions import ExitCode
from hardening.module_loader import ModuleStatus
from hardening.orchestrator import SecuritySetup, format_duration

INSTALLED = {("dpkg-query",): ok("install ok installed")}


@pytest.fixture
def three_modules(tmp_path):
    return make_modules_root(tmp_path / "modules", {
        "alpha": recording_module("alpha"),
        "beta": recording_module("beta"),
        "gamma": recording_module("gamma"),
    })


def make_setup(config, logger, responses=None):
    factory = RunnerFactory({**INSTALLED, **(responses or {})})
    return SecuritySetup(config, logger=logger, runner_factory=factory), factory


def touched(factory):
    return [command[1] for command in factory.commands if command[0] == "touch"]


def test_modules_run_in_selection_order(make_config, three_modules, logger, as_root):
    setup, factory = make_setup(make_config(three_modules), logger)

    summary = setup.run(["--gamma", "--alpha"])

    assert summary.exit_code == ExitCode.SUCCESS
    assert summary.modules == ("gamma", "alpha")
    assert touched(factory) == ["gamma", "alpha"]
    assert summary.failed_modules == ()


def test_failing_module_does_not_stop_the_run(tmp_path, make_config, logger, as_root):
    root = make_modules_root(tmp_path / "modules", {
        "alpha": recording_module("alpha"),
        "beta": "def configure_beta(context):\n    return 2\n",
        "gamma": recording_module("gamma"),
    })
    setup, factory = make_setup(make_config(root), logger)

    summary = setup.run(["--alpha", "--beta", "--gamma"])

    assert summary.failed_modules == ("beta",)
    assert summary.modules_run == 3
    assert touched(factory) == ["alpha", "gamma"]
    assert summary.exit_code == ExitCode.MODULE_FAILURE
    assert [r.exit_code for r in summary.results] == [0, 2, 0]


def test_each_module_gets_its_own_log(make_config, three_modules, logger, as_root, tmp_path):
    setup, _ = make_setup(make_config(three_modules), logger)

    summary = setup.run(["--alpha", "--beta"])

    for result in summary.results:
        assert result.log_path.parent == tmp_path / "logs"
        assert result.log_path.name.startswith(f"security_{result.module}_")
        assert f"{result.module} ran with" in result.log_path.read_text()


def test_missing_script_is_a_module_failure(tmp_path, make_config, logger, as_root):
    root = make_modules_root(tmp_path / "modules", {
        "alpha": recording_module("alpha"),
        "broken": None,
    })
    setup, factory = make_setup(make_config(root), logger)

    summary = setup.run(["--broken", "--alpha"])

    assert summary.results[0].status is ModuleStatus.NOT_FOUND
    assert summary.results[0].exit_code == ExitCode.MODULE_FAILURE
    assert touched(factory) == ["alpha"]
    assert summary.exit_code == ExitCode.MODULE_FAILURE


def test_dry_run_changes_nothing_and_is_repeatable(make_config, three_modules, logger,
                                                     as_root, tmp_path):
    config = make_config(three_modules)
    outcomes = []
    for _ in range(2):
        setup, factory = make_setup(config, logger)
        summary = setup.run(["--all", "--dry-run"])
        outcomes.append([(r.module, r.exit_code, r.status) for r in summary.results])
        assert touched(factory) == []
        assert not any(command[0] == "apt-get" for command in factory.commands)
        assert summary.exit_code == ExitCode.SUCCESS

    assert outcomes[0] == outcomes[1]
    assert all(status is ModuleStatus.DRY_RUN for _, _, status in outcomes[0])
    assert not (tmp_path / "backups").exists()


def test_check_and_skip_deps_together_is_rejected(make_config, three_modules, logger, as_root):
    setup, factory = make_setup(make_config(three_modules), logger)

    summary = setup.run(["--alpha", "--check-deps", "--skip-deps"])

    assert summary.exit_code == ExitCode.INVALID_ARGUMENTS
    assert summary.modules_run == 0
    assert factory.commands == []


def test_invalid_option_exits_with_invalid_arguments(make_config, three_modules, logger):
    setup, _ = make_setup(make_config(three_modules), logger)
    assert setup.run(["--nope"]).exit_code == ExitCode.INVALID_ARGUMENTS


def test_non_root_stops_before_any_module(make_config, three_modules, logger, as_user, capsys):
    setup, factory = make_setup(make_config(three_modules), logger)

    summary = setup.run(["--alpha", "--beta", "--skip-deps"])

    assert summary.exit_code == ExitCode.NOT_ROOT
    assert summary.modules_run == 0
    assert factory.commands == []
    assert "EXECUTION SUMMARY" in capsys.readouterr().out


def test_unsupported_os(tmp_path, three_modules, logger, as_root, make_config):
    config = make_config(three_modules)
    config.os_release.write_text('ID=fedora\nPRETTY_NAME="Fedora Linux 40"\n')
    setup, _ = make_setup(config, logger)

    assert setup.run(["--alpha"]).exit_code == ExitCode.UNSUPPORTED_OS


def test_no_arguments_prints_help(make_config, three_modules, logger, capsys):
    setup, factory = make_setup(make_config(three_modules), logger)

    summary = setup.run([])

    assert summary.exit_code == 0
    out = capsys.readouterr().out
    assert "--check-deps" in out
    assert "EXECUTION SUMMARY" not in out
    assert factory.commands == []


def test_version(make_config, three_modules, logger, capsys):
    setup, _ = make_setup(make_config(three_modules), logger)

    assert setup.run(["--version"]).exit_code == 0
    assert "1.0" in capsys.readouterr().out


def test_check_deps_alone_runs_only_the_dependency_step(make_config, three_modules, logger,
                                                          as_root):
    setup, factory = make_setup(make_config(three_modules), logger)

    summary = setup.run(["--check-deps"])

    assert summary.exit_code == ExitCode.SUCCESS
    assert summary.modules_run == 0
    assert factory.ran("dpkg-query")


def test_dependency_install_failure_stops_the_run(make_config, three_modules, logger, as_root):
    setup, factory = make_setup(make_config(three_modules), logger, {
        ("dpkg-query", "-W", "-f=${Status}", "ufw"): fail("no packages found"),
        ("apt-get", "install"): fail("E: Unable to locate package"),
    })

    summary = setup.run(["--alpha", "--check-deps"])

    assert summary.exit_code == ExitCode.DEPENDENCY_FAILURE
    assert summary.modules_run == 0
    assert factory.ran("apt-get", "update")
    assert touched(factory) == []


def test_missing_dependencies_only_warn_without_check_deps(make_config, three_modules, logger,
                                                             as_root, caplog):
    setup, factory = make_setup(make_config(three_modules), logger, {
        ("dpkg-query", "-W", "-f=${Status}", "ufw"): fail("no packages found"),
    })

    summary = setup.run(["--alpha"])

    assert summary.exit_code == ExitCode.SUCCESS
    assert "Missing dependencies: ufw" in caplog.text
    assert not factory.ran("apt-get")
    assert touched(factory) == ["alpha"]


def test_skip_deps_runs_no_package_queries(make_config, three_modules, logger, as_root):
    setup, factory = make_setup(make_config(three_modules), logger)

    setup.run(["--alpha", "--skip-deps"])

    assert not factory.ran("dpkg-query")
    assert touched(factory) == ["alpha"]


def test_signal_during_a_module_stops_the_run(tmp_path, make_config, logger, as_root, capsys):
    root = make_modules_root(tmp_path / "modules", {
        "alpha": (
            "from hardening.exceptions import RunInterrupted\n"
            "def configure_alpha(context):\n"
            f"    raise RunInterrupted({int(signal.SIGTERM)})\n"
        ),
        "beta": recording_module("beta"),
    })
    setup, factory = make_setup(make_config(root), logger)

    summary = setup.run(["--alpha", "--beta", "--skip-deps"])

    assert summary.exit_code == 128 + signal.SIGTERM
    assert touched(factory) == []
    assert "EXECUTION SUMMARY" in capsys.readouterr().out


def test_module_arguments_reach_the_module(tmp_path, make_config, logger, as_root):
    root = make_modules_root(tmp_path / "modules", {
        "alpha": (
            "def configure_alpha(context):\n"
            "    context.runner.run(['echo'] + context.args)\n"
        ),
    })
    setup, factory = make_setup(make_config(root), logger)

    setup.run(["--alpha", "--skip-deps", "--module-arg", "alpha:--port=2222",
               "--module-arg", "alpha:--no-root"])

    assert ["echo", "--port=2222", "--no-root"] in factory.commands


def test_module_exception_is_contained(tmp_path, make_config, logger, as_root):
    root = make_modules_root(tmp_path / "modules", {
        "alpha": "def configure_alpha(context):\n    raise RuntimeError('boom')\n",
        "beta": recording_module("beta"),
    })
    setup, factory = make_setup(make_config(root), logger)

    summary = setup.run(["--alpha", "--beta", "--skip-deps"])

    assert summary.failed_modules == ("alpha",)
    assert summary.results[0].error == "boom"
    assert touched(factory) == ["beta"]


def test_module_exiting_at_import_is_contained(tmp_path, make_config, logger, as_root):
    root = make_modules_root(tmp_path / "modules", {
        "alpha": "import sys\nsys.exit(2)\n",
        "beta": recording_module("beta"),
    })
    setup, factory = make_setup(make_config(root), logger)

    summary = setup.run(["--alpha", "--beta", "--skip-deps"])

    assert summary.failed_modules == ("alpha",)
    assert summary.results[0].status is ModuleStatus.LOAD_FAILED
    assert touched(factory) == ["beta"]


def test_unwritable_module_log_dir_still_reaches_the_summary(tmp_path, make_config, logger,
                                                              as_root, capsys):
    (tmp_path / "logs").write_text("not a directory")
    setup, factory = make_setup(make_config(make_modules_root(tmp_path / "modules", {
        "alpha": recording_module("alpha"),
        "beta": recording_module("beta"),
    })), logger)

    summary = setup.run(["--alpha", "--beta", "--skip-deps"])

    assert summary.failed_modules == ("alpha", "beta")
    assert summary.exit_code == ExitCode.MODULE_FAILURE
    assert touched(factory) == []
    assert "EXECUTION SUMMARY" in capsys.readouterr().out


@pytest.mark.parametrize("seconds, expected", [(0, "0s"), (59, "59s"), (61, "1m 1s"), (600, "10m 0s")])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected
