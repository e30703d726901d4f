"""
Dependency Checker

Verifies (and optionally installs) the OS packages the setup modules rely
on. Packages are grouped in categories; the CapRover CLI is distributed
through npm rather than apt and is checked through npm as its own category.

Can also be run on its own:

    sudo security-deps --install
    security-deps --list --category ssh --category firewall

License: MIT
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .command_runner import CommandRunner
from .config import SetupConfig
from .console import LOGGER_NAME, log_success, setup_logging
from .exceptions import (
    DependencyInstallError,
    DependencyMissingError,
    HardeningError,
    InvalidArgumentError,
)
from .platform_checks import check_os, check_root

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


@dataclass
class DependencyReport:
    """Tri-state outcome of a dependency check."""
    installed: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.failed


class DependencyChecker:
    """Checks and installs required packages."""

    # OS packages per category, checked in this order
    DEPENDENCIES: Dict[str, List[str]] = {
        "core": ["apt-utils", "sudo", "curl", "wget", "gnupg2", "ca-certificates", "lsb-release"],
        "ssh": ["openssh-server"],
        "firewall": ["ufw"],
        "fail2ban": ["fail2ban"],
        "monitor": ["htop", "iotop", "iftop", "nethogs"],
        "network": ["net-tools", "iproute2", "dnsutils"],
        "security": ["unattended-upgrades", "apt-listchanges"],
        "caprover": ["docker.io", "nodejs", "npm"],
    }

    # Global CLI tools installed through npm
    NPM_DEPENDENCIES: Dict[str, List[str]] = {
        "caprover-cli": ["caprover"],
    }

    def __init__(self, runner: CommandRunner, logger: logging.Logger):
        self.runner = runner
        self.logger = logger

    @classmethod
    def categories(cls) -> List[str]:
        return list(cls.DEPENDENCIES) + list(cls.NPM_DEPENDENCIES)

    def is_package_installed(self, package: str) -> bool:
        result = self.runner.run(
            ["dpkg-query", "-W", "-f=${Status}", package], mutating=False
        )
        return result.success and "install ok installed" in result.stdout

    def update_package_index(self) -> bool:
        self.logger.info("Updating package lists...")
        result = self.runner.run(["apt-get", "update"], env=APT_ENV)
        if not result.success:
            self.logger.warning("Failed to update package lists")
        return result.success

    def install_package(self, package: str) -> bool:
        self.logger.info(f"Installing {package}...")
        result = self.runner.run(
            ["apt-get", "install", "-y", "--no-install-recommends", package], env=APT_ENV
        )
        return result.success

    def is_npm_package_installed(self, package: str) -> bool:
        result = self.runner.run(["npm", "list", "-g", "--depth=0", package], mutating=False)
        return result.success or self.runner.exists(package)

    def install_npm_package(self, package: str) -> bool:
        self.logger.info(f"Installing {package} with npm...")
        return self.runner.run(["npm", "install", "-g", package]).success

    def ensure(self, categories: Optional[Iterable[str]] = None,
               install_if_missing: bool = False) -> DependencyReport:
        """
        Check every package of the given categories.

        Args:
            categories: Category names; all categories when None.
            install_if_missing: Install missing packages instead of only
                recording them.

        Returns:
            DependencyReport: each package lands in exactly one of
            installed, missing or failed.
        """
        selected = list(categories) if categories is not None else self.categories()
        unknown = [name for name in selected if name not in self.categories()]
        if unknown:
            raise InvalidArgumentError(f"Unknown dependency categories: {', '.join(unknown)}")

        report = DependencyReport()
        index_updated = False

        for category in selected:
            if category in self.NPM_DEPENDENCIES:
                packages = self.NPM_DEPENDENCIES[category]
                is_installed, install = self.is_npm_package_installed, self.install_npm_package
                uses_apt = False
            else:
                packages = self.DEPENDENCIES[category]
                is_installed, install = self.is_package_installed, self.install_package
                uses_apt = True

            self.logger.debug(f"Checking {category} dependencies: {', '.join(packages)}")
            for package in packages:
                if package in report.installed + report.missing + report.failed:
                    continue
                if is_installed(package):
                    self.logger.debug(f"✓ {package} is installed")
                    report.installed.append(package)
                    continue

                if not install_if_missing:
                    self.logger.warning(f"✗ {package} is missing ({category})")
                    report.missing.append(package)
                    continue

                if uses_apt and not index_updated:
                    self.update_package_index()
                    index_updated = True

                if install(package):
                    log_success(self.logger, f"Installed {package}")
                    report.installed.append(package)
                else:
                    self.logger.error(f"Failed to install {package}")
                    report.failed.append(package)

        total = len(report.installed) + len(report.missing) + len(report.failed)
        self.logger.info(f"Dependencies: {len(report.installed)}/{total} installed, "
                         f"{len(report.missing)} missing, {len(report.failed)} failed")
        return report

    def generate_report(self, report: DependencyReport) -> str:
        """Plain-text overview of a dependency report, grouped by category."""
        report_lines = []
        report_lines.append("=" * 60)
        report_lines.append("DEPENDENCY REPORT")
        report_lines.append("=" * 60)

        groups = {**self.DEPENDENCIES, **self.NPM_DEPENDENCIES}
        for category, packages in groups.items():
            checked = [p for p in packages
                       if p in report.installed + report.missing + report.failed]
            if not checked:
                continue
            report_lines.append("")
            report_lines.append(f"{category}:")
            for package in checked:
                if package in report.installed:
                    status = "✓ INSTALLED"
                elif package in report.failed:
                    status = "✗ FAILED"
                else:
                    status = "✗ MISSING"
                report_lines.append(f"  {package:<25} {status}")

        return "\n".join(report_lines)


def create_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check or install the packages required by the security setup modules",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--install', action='store_true',
                      help='Install missing packages (requires root)')
    mode.add_argument('--list', action='store_true',
                      help='Only report package status (default)')
    parser.add_argument('--category', action='append', dest='categories',
                        choices=DependencyChecker.categories(), metavar='NAME',
                        help='Limit the check to a category (repeatable): '
                             + ', '.join(DependencyChecker.categories()))
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Standalone entry point."""
    args = create_argument_parser().parse_args(argv)
    config = SetupConfig.from_environment()
    setup_logging(config.log_dir, verbose=args.verbose)
    logger = logging.getLogger(f"{LOGGER_NAME}.dependencies")

    try:
        check_os(config.os_release, config.supported_os)
        if args.install:
            check_root()
        checker = DependencyChecker(CommandRunner(logger), logger)
        report = checker.ensure(args.categories, install_if_missing=args.install)
        print(checker.generate_report(report))
        if report.failed:
            raise DependencyInstallError(
                f"Failed to install: {', '.join(report.failed)}", packages=report.failed
            )
        if report.missing:
            raise DependencyMissingError(
                f"Missing packages: {', '.join(report.missing)}", packages=report.missing
            )
    except HardeningError as e:
        logger.error(str(e))
        return e.exit_code
    except KeyboardInterrupt:
        logger.warning("Dependency check interrupted by user")
        return 130

    log_success(logger, "All dependencies satisfied")
    return 0


if __name__ == "__main__":
    sys.exit(main())
