"""
Updates Module

Package updates and unattended-upgrades. Without sub-flags it checks for
pending updates and configures automatic security updates.

Sub-flags:
    --check-updates          Refresh package lists and count upgradable packages
    --security-updates       List pending security updates
    --install-updates        Upgrade all packages
    --install-security       Upgrade only packages with security updates
    --setup-auto-updates     Configure and enable unattended-upgrades
    --check-reboot           Report whether a reboot is required
    --schedule-reboot[=MIN]  Schedule a reboot in MIN minutes (default 10)
    --dry-run                Log the changes without applying them

License: MIT
"""

from pathlib import Path
from typing import Callable, List, Tuple

from hardening.exceptions import ModuleExecutionError
from hardening.module_support import ModuleArgumentParser, parse_module_args

APT_CONF_DIR = Path("/etc/apt/apt.conf.d")
REBOOT_REQUIRED = Path("/var/run/reboot-required")

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}
DPKG_OPTIONS = [
    "-o", "Dpkg::Options::=--force-confdef",
    "-o", "Dpkg::Options::=--force-confold",
]

AUTO_UPGRADES = """\
APT::Periodic::Update-Package-Lists "1";
APT::Periodic::Download-Upgradeable-Packages "1";
APT::Periodic::AutocleanInterval "7";
APT::Periodic::Unattended-Upgrade "1";
APT::Periodic::Verbose "1";
"""

UNATTENDED_UPGRADES = """\
Unattended-Upgrade::Allowed-Origins {
        "${distro_id}:${distro_codename}";
        "${distro_id}:${distro_codename}-security";
        "${distro_id}ESMApps:${distro_codename}-apps-security";
        "${distro_id}ESM:${distro_codename}-infra-security";
};
Unattended-Upgrade::AutoFixInterruptedDpkg "true";
Unattended-Upgrade::MinimalSteps "true";
Unattended-Upgrade::Remove-Unused-Kernel-Packages "true";
Unattended-Upgrade::Remove-New-Unused-Dependencies "true";
Unattended-Upgrade::Remove-Unused-Dependencies "true";
Unattended-Upgrade::Automatic-Reboot "false";
Unattended-Upgrade::Automatic-Reboot-Time "02:00";
"""


def create_parser() -> ModuleArgumentParser:
    parser = ModuleArgumentParser("updates")
    parser.add_argument('--check-updates', action='store_true')
    parser.add_argument('--security-updates', action='store_true')
    parser.add_argument('--install-updates', action='store_true')
    parser.add_argument('--install-security', action='store_true')
    parser.add_argument('--setup-auto-updates', action='store_true')
    parser.add_argument('--check-reboot', action='store_true')
    parser.add_argument('--schedule-reboot', nargs='?', type=int, const=10, default=None)
    parser.add_argument('--apt-conf-dir', default=str(APT_CONF_DIR))
    parser.add_argument('--reboot-file', default=str(REBOOT_REQUIRED))
    return parser


class UpdateManager:
    """Package updates and unattended-upgrades configuration."""

    def __init__(self, context, apt_conf_dir: Path, reboot_file: Path):
        """Initialize the update manager."""
        self.context = context
        self.runner = context.runner
        self.logger = context.logger
        self.apt_conf_dir = apt_conf_dir
        self.reboot_file = reboot_file
        self._index_updated = False

    def update_package_lists(self) -> bool:
        """Update package lists."""
        if self._index_updated:
            return True
        self.logger.info("Updating package lists...")
        result = self.runner.run(["apt-get", "update"], env=APT_ENV)
        if result.success:
            self.logger.info("Package lists updated successfully")
            self._index_updated = True
        else:
            self.logger.error("Failed to update package lists")
        return result.success

    def list_upgradable(self) -> List[Tuple[str, str]]:
        """(package, origin) pairs from ``apt list --upgradable``."""
        result = self.runner.run(["apt", "list", "--upgradable"], mutating=False)
        packages = []
        for line in result.stdout.splitlines():
            if "/" not in line or line.startswith("Listing"):
                continue
            name, _, rest = line.partition("/")
            packages.append((name.strip(), rest.split(" ", 1)[0]))
        return packages

    def check_updates(self) -> bool:
        """Refresh package lists and report available upgrades."""
        if not self.update_package_lists():
            return False
        upgradable = self.list_upgradable()
        self.logger.info(f"Found {len(upgradable)} packages available for upgrade")
        return True

    def security_updates(self) -> List[str]:
        """Names of upgradable packages from a security pocket."""
        return [name for name, origin in self.list_upgradable() if "-security" in origin]

    def list_security_updates(self) -> bool:
        """Log the pending security updates."""
        if not self.update_package_lists():
            return False
        packages = self.security_updates()
        if packages:
            self.logger.warning(f"{len(packages)} security updates pending: {', '.join(packages)}")
        else:
            self.logger.info("No pending security updates")
        return True

    def install_updates(self) -> bool:
        """Upgrade installed packages."""
        if not self.update_package_lists():
            return False
        self.logger.info("Upgrading packages...")
        result = self.runner.run(["apt-get", "upgrade", "-y"] + DPKG_OPTIONS, env=APT_ENV)
        if result.success:
            self.logger.info("Packages upgraded successfully")
        else:
            self.logger.error("Package upgrade failed")
        return result.success

    def install_security_updates(self) -> bool:
        """Install only the pending security updates."""
        if not self.update_package_lists():
            return False
        packages = self.security_updates()
        if not packages:
            self.logger.info("All security updates are already installed")
            return True
        self.logger.info(f"Installing {len(packages)} security updates...")
        result = self.runner.run(
            ["apt-get", "install", "-y", "--only-upgrade"] + DPKG_OPTIONS + packages, env=APT_ENV
        )
        if not result.success:
            self.logger.error("Security update installation failed")
        return result.success

    def setup_auto_updates(self) -> bool:
        """Configure unattended-upgrades and enable its service."""
        if not self.runner.exists("unattended-upgrade"):
            self.logger.info("Installing unattended-upgrades...")
            install = self.runner.run(
                ["apt-get", "install", "-y", "unattended-upgrades", "apt-listchanges"],
                env=APT_ENV,
            )
            if not install.success:
                self.logger.error("Failed to install unattended-upgrades")
                return False

        editor = self.context.editor
        editor.write_file(self.apt_conf_dir / "20auto-upgrades", AUTO_UPGRADES, mode=0o644)
        editor.write_file(self.apt_conf_dir / "50unattended-upgrades", UNATTENDED_UPGRADES,
                          mode=0o644)

        for action in ("enable", "restart"):
            result = self.runner.run(["systemctl", action, "unattended-upgrades"])
            if not result.success:
                self.logger.error(f"Could not {action} unattended-upgrades")
                return False
        self.logger.info("Automatic security updates configured")
        return True

    def check_reboot(self) -> bool:
        """Check if a reboot is required."""
        if not self.reboot_file.exists():
            self.logger.info("No reboot required")
            return True
        packages_file = self.reboot_file.with_name(self.reboot_file.name + ".pkgs")
        self.logger.warning("A system reboot is required")
        if packages_file.exists():
            packages = sorted(set(packages_file.read_text().split()))
            self.logger.warning(f"Packages requiring the reboot: {', '.join(packages)}")
        return True

    def schedule_reboot(self, minutes: int) -> bool:
        """Schedule a reboot in the given number of minutes."""
        if minutes < 0:
            self.logger.error(f"Invalid reboot delay: {minutes}")
            return False
        result = self.runner.run(["shutdown", "-r", f"+{minutes}"])
        if result.success:
            self.logger.warning(f"Reboot scheduled in {minutes} minutes "
                                "(cancel with 'shutdown -c')")
        return result.success


def configure_updates(context) -> int:
    args = parse_module_args(create_parser(), context)
    manager = UpdateManager(context, Path(args.apt_conf_dir), Path(args.reboot_file))

    actions: List[Tuple[str, Callable[[], bool]]] = []
    if args.check_updates:
        actions.append(("check updates", manager.check_updates))
    if args.security_updates:
        actions.append(("list security updates", manager.list_security_updates))
    if args.install_updates:
        actions.append(("install updates", manager.install_updates))
    if args.install_security:
        actions.append(("install security updates", manager.install_security_updates))
    if args.setup_auto_updates:
        actions.append(("set up automatic updates", manager.setup_auto_updates))
    if args.check_reboot:
        actions.append(("check reboot", manager.check_reboot))
    if args.schedule_reboot is not None:
        actions.append(("schedule reboot", lambda: manager.schedule_reboot(args.schedule_reboot)))

    if not actions:
        context.logger.info("No action given; checking updates and configuring automatic updates")
        actions = [
            ("check updates", manager.check_updates),
            ("set up automatic updates", manager.setup_auto_updates),
        ]

    failed = [name for name, action in actions if not action()]
    if failed:
        raise ModuleExecutionError(f"Failed: {', '.join(failed)}", module="updates")
    return 0
