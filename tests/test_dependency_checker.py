"""Tests for the dependency checker."""

import logging

import pytest

from conftest import FakeRunner, fail, ok
from hardening import dependency_checker
from hardening.console import LOGGER_NAME
from hardening.dependency_checker import DependencyChecker, DependencyReport
from hardening.exceptions import InvalidArgumentError


def installed(*packages):
    return {("dpkg-query", "-W", "-f=${Status}", package): ok("install ok installed")
            for package in packages}


def make_checker(logger, responses=None, programs=()):
    runner = FakeRunner(logger, responses=responses, programs=programs)
    return DependencyChecker(runner, logger), runner


def test_report_lists_missing_packages_without_installing(logger):
    checker, runner = make_checker(logger, installed("openssh-server"))

    report = checker.ensure(["ssh", "firewall"])

    assert report.installed == ["openssh-server"]
    assert report.missing == ["ufw"]
    assert not report.ok
    assert not any(command[0] == "apt-get" for command in runner.commands)


def test_install_updates_index_once_before_first_install(logger):
    checker, runner = make_checker(logger, installed("openssh-server"))

    report = checker.ensure(["ssh", "firewall", "fail2ban"], install_if_missing=True)

    assert report.ok
    assert report.installed == ["openssh-server", "ufw", "fail2ban"]
    apt = [command for command in runner.commands if command[0] == "apt-get"]
    assert apt[0] == ["apt-get", "update"]
    assert apt.count(["apt-get", "update"]) == 1
    assert apt[1][-1] == "ufw"
    assert apt[2][-1] == "fail2ban"


def test_nothing_missing_means_no_index_update(logger):
    checker, runner = make_checker(logger, installed("ufw"))

    checker.ensure(["firewall"], install_if_missing=True)

    assert ["apt-get", "update"] not in runner.commands


def test_failed_install_is_recorded(logger):
    responses = {("apt-get", "install", "-y", "--no-install-recommends", "ufw"): fail()}
    checker, _ = make_checker(logger, responses)

    report = checker.ensure(["firewall"], install_if_missing=True)

    assert report.failed == ["ufw"]
    assert not report.ok


def test_npm_packages_are_checked_through_npm(logger):
    responses = {("npm", "list"): fail("empty")}
    checker, runner = make_checker(logger, responses)

    report = checker.ensure(["caprover-cli"], install_if_missing=True)

    assert report.installed == ["caprover"]
    assert ["npm", "install", "-g", "caprover"] in runner.commands
    assert ["apt-get", "update"] not in runner.commands


def test_npm_package_found_on_path(logger):
    checker, _ = make_checker(logger, {("npm", "list"): fail("empty")}, programs=["caprover"])
    assert checker.ensure(["caprover-cli"]).installed == ["caprover"]


def test_unknown_category_is_rejected(logger):
    checker, _ = make_checker(logger)
    with pytest.raises(InvalidArgumentError, match="nosuch"):
        checker.ensure(["nosuch"])


def test_all_categories_by_default(logger):
    checker, runner = make_checker(logger)

    checker.ensure()

    queried = {command[-1] for command in runner.commands if command[0] == "dpkg-query"}
    assert {"openssh-server", "ufw", "fail2ban", "unattended-upgrades"} <= queried


def test_dry_run_queries_but_never_installs(logger):
    runner = FakeRunner(logger, dry_run=True)
    checker = DependencyChecker(runner, logger)

    report = checker.ensure(["firewall"], install_if_missing=True)

    assert runner.commands == [["dpkg-query", "-W", "-f=${Status}", "ufw"]]
    assert report.installed == ["ufw"]


def test_generate_report_groups_by_category(logger):
    checker, _ = make_checker(logger)
    report = DependencyReport(installed=["openssh-server"], missing=["ufw"], failed=["fail2ban"])

    text = checker.generate_report(report)

    assert "ssh:" in text
    assert "✓ INSTALLED" in text
    assert "✗ MISSING" in text
    assert "✗ FAILED" in text
    assert "monitor:" not in text


class TestMain:
    @pytest.fixture(autouse=True)
    def environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SECURITY_SETUP_LOG_DIR", str(tmp_path / "logs"))
        monkeypatch.setattr(dependency_checker, "check_os", lambda path, supported: "Ubuntu")
        yield
        configured = logging.getLogger(LOGGER_NAME)
        for handler in list(configured.handlers):
            configured.removeHandler(handler)
            handler.close()

    def test_install_requires_root(self, as_user):
        assert dependency_checker.main(["--install"]) == 4

    def test_list_and_install_are_exclusive(self):
        with pytest.raises(SystemExit) as excinfo:
            dependency_checker.main(["--list", "--install"])
        assert excinfo.value.code == 2

    def test_missing_packages_exit_with_dependency_failure(self, monkeypatch, capsys):
        monkeypatch.setattr(dependency_checker, "CommandRunner", lambda logger: FakeRunner(logger))

        assert dependency_checker.main(["--list", "--category", "firewall"]) == 2
        assert "✗ MISSING" in capsys.readouterr().out

    def test_everything_installed(self, monkeypatch):
        monkeypatch.setattr(dependency_checker, "CommandRunner",
                            lambda logger: FakeRunner(logger, responses=installed("ufw")))

        assert dependency_checker.main(["--category", "firewall"]) == 0
