"""
Firewall Module

Configures UFW (Uncomplicated Firewall): restrictive default policies, a
rate-limited SSH rule, trusted addresses, loopback traffic and explicit
denies for commonly attacked service ports. Rules that already exist are
left alone, so the module can be re-run safely.

Sub-flags:
    --install            Install UFW when missing
    --enable             Enable the firewall and the ufw service
    --ssh-port=N         SSH port to keep open (default 22)
    --allow-ips=A,B      Addresses or networks allowed full access
    --enable-logging     Turn on UFW logging (medium)
    --dry-run            Log the changes without applying them

License: MIT
"""

import re
from pathlib import Path
from typing import Dict, List, Optional

from hardening.exceptions import ModuleExecutionError
from hardening.module_support import ModuleArgumentParser, parse_module_args
from hardening.validators import validate_ip, validate_port

# Relative to the filesystem root given by --config-root
UFW_CONFIG_FILES = [
    "etc/default/ufw",
    "etc/ufw/before.rules",
    "etc/ufw/after.rules",
    "etc/ufw/user.rules",
    "etc/ufw/user6.rules",
]

DEFAULT_POLICIES = [
    ("deny", "incoming"),
    ("allow", "outgoing"),
    ("deny", "routed"),
]

# Allowed in addition to SSH
SERVICE_RULES = [
    {"rule": "allow 80/tcp", "comment": "HTTP"},
    {"rule": "allow 443/tcp", "comment": "HTTPS"},
    {"rule": "allow 68/udp", "comment": "DHCP client"},
    {"rule": "allow 53/udp", "comment": "DNS"},
    {"rule": "allow 123/udp", "comment": "NTP"},
]

BLOCKED_PORTS = [
    ("135:139", "NetBIOS"),
    ("445", "SMB"),
    ("1433:1434", "MSSQL"),
    ("3306", "MySQL"),
    ("5432", "PostgreSQL"),
    ("3389", "RDP"),
    ("5900", "VNC"),
    ("8080", "HTTP alternate"),
]


def create_parser() -> ModuleArgumentParser:
    parser = ModuleArgumentParser("firewall")
    parser.add_argument('--install', action='store_true')
    parser.add_argument('--enable', action='store_true')
    parser.add_argument('--ssh-port', default="22")
    parser.add_argument('--allow-ips', default="")
    parser.add_argument('--enable-logging', action='store_true')
    parser.add_argument('--config-root', default="/")
    return parser


class UfwConfigurator:
    """Applies the firewall rule set through the ufw CLI."""

    def __init__(self, context, ssh_port: str):
        """Initialize the UFW configurator."""
        self.context = context
        self.runner = context.runner
        self.logger = context.logger
        self.ssh_port = ssh_port
        self._rules: Optional[List[str]] = None

    def _is_ufw_installed(self) -> bool:
        """Check if UFW is installed."""
        return self.runner.exists("ufw")

    def _is_ufw_active(self) -> bool:
        """Check if UFW is active."""
        result = self.runner.run(["ufw", "status"], mutating=False)
        return result.success and "Status: active" in result.stdout

    def _get_ufw_rules(self) -> List[str]:
        """Current rules from ``ufw status numbered``, cached for the run."""
        if self._rules is None:
            self._rules = []
            result = self.runner.run(["ufw", "status", "numbered"], mutating=False)
            if result.success:
                for line in result.stdout.split('\n'):
                    if line.strip() and '[' in line and ']' in line:
                        self._rules.append(line.split(']', 1)[1].strip())
        return self._rules

    def _rule_exists(self, *fragments: str) -> bool:
        """True when one rule contains every fragment as a whole word."""
        patterns = [
            re.compile(r"(?<![\w/.:])" + re.escape(fragment.lower()) + r"(?![\w/.:])")
            for fragment in fragments
        ]
        for rule in self._get_ufw_rules():
            normalized = ' '.join(rule.lower().split())
            if all(pattern.search(normalized) for pattern in patterns):
                return True
        return False

    def _add_rule(self, arguments: List[str], comment: str) -> bool:
        """Add one commented UFW rule."""
        result = self.runner.run(["ufw"] + arguments + ["comment", comment])
        if result.success:
            self.logger.info(f"✓ Added rule: {' '.join(arguments)} ({comment})")
        else:
            self.logger.error(f"Failed to add rule: {' '.join(arguments)}")
        return result.success

    def install_ufw(self, install: bool) -> None:
        """Install UFW if not already installed."""
        if self._is_ufw_installed():
            self.logger.info("UFW is already installed")
            return
        if not install:
            raise ModuleExecutionError("UFW is not installed; re-run with --install",
                                       module="firewall")

        self.logger.info("Installing UFW...")
        self.runner.run(["apt-get", "install", "-y", "ufw"],
                        env={"DEBIAN_FRONTEND": "noninteractive"}, check=True)
        self.logger.info("UFW installed successfully")

    def configure_default_policies(self) -> None:
        """Configure restrictive default policies."""
        for action, direction in DEFAULT_POLICIES:
            self.logger.info(f"Setting default {direction} policy to {action}...")
            self.runner.run(["ufw", "default", action, direction], check=True)

    def add_ssh_rule(self) -> None:
        """Rate-limit the SSH port."""
        if self._rule_exists(f"{self.ssh_port}/tcp", "limit"):
            self.logger.info(f"✓ SSH rule for port {self.ssh_port} already exists")
            return
        if not self._add_rule(["limit", f"{self.ssh_port}/tcp"], "SSH rate limit"):
            raise ModuleExecutionError(f"Could not open SSH port {self.ssh_port}; "
                                       "refusing to continue", module="firewall")

    def add_service_rules(self) -> List[str]:
        """Allow the standard service ports."""
        failed = []
        for rule_config in SERVICE_RULES:
            action, port = rule_config["rule"].split()
            if self._rule_exists(port, action):
                self.logger.info(f"✓ Rule already exists: {rule_config['comment']}")
                continue
            if not self._add_rule([action, port], rule_config["comment"]):
                failed.append(rule_config["rule"])
        return failed

    def allow_trusted_addresses(self, addresses: List[str]) -> List[str]:
        """Allow full access from trusted addresses."""
        failed = []
        for address in addresses:
            if not validate_ip(address):
                self.logger.warning(f"Skipping invalid address: {address}")
                continue
            if self._rule_exists(address, "allow"):
                self.logger.info(f"✓ {address} already allowed")
                continue
            if not self._add_rule(["allow", "from", address], "Trusted address"):
                failed.append(address)
        return failed

    def allow_loopback(self) -> bool:
        """Allow loopback traffic."""
        if self._rule_exists("on lo"):
            return True
        return self._add_rule(["allow", "in", "on", "lo"], "Loopback")

    def block_risky_ports(self) -> List[str]:
        """Deny commonly attacked service ports."""
        failed = []
        for ports, service in BLOCKED_PORTS:
            if self._rule_exists(f"{ports}/tcp", "deny"):
                continue
            if not self._add_rule(["deny", f"{ports}/tcp"], f"Block {service}"):
                failed.append(ports)
        return failed

    def configure_logging(self) -> bool:
        """Configure UFW logging."""
        self.logger.info("Configuring UFW logging...")
        on = self.runner.run(["ufw", "logging", "on"]).success
        medium = self.runner.run(["ufw", "logging", "medium"]).success
        if not (on and medium):
            self.logger.warning("UFW logging configuration had issues")
        return on and medium

    def enable_ufw(self) -> None:
        """Enable UFW firewall."""
        if self._is_ufw_active():
            self.logger.info("UFW is already active, reloading rules")
            self.runner.run(["ufw", "reload"], check=True)
        else:
            self.logger.info("Enabling UFW firewall...")
            self.runner.run(["ufw", "--force", "enable"], check=True)
        self.runner.run(["systemctl", "enable", "ufw"], check=True)
        self.logger.info("UFW firewall and service enabled")

    def show_status(self) -> None:
        """Log the verbose UFW status."""
        result = self.runner.run(["ufw", "status", "verbose"], mutating=False)
        if result.success:
            self.logger.info(f"UFW status:\n{result.stdout.rstrip()}")


def configure_firewall(context) -> int:
    args = parse_module_args(create_parser(), context)

    if not validate_port(args.ssh_port):
        raise ModuleExecutionError(f"Invalid SSH port: {args.ssh_port}", module="firewall")

    ufw = UfwConfigurator(context, str(args.ssh_port))
    ufw.install_ufw(args.install)
    context.backups.backup_paths(Path(args.config_root) / name for name in UFW_CONFIG_FILES)

    ufw.configure_default_policies()
    ufw.add_ssh_rule()

    failures: Dict[str, List[str]] = {
        "service rules": ufw.add_service_rules(),
        "trusted addresses": ufw.allow_trusted_addresses(
            [ip.strip() for ip in args.allow_ips.split(",") if ip.strip()]
        ),
        "blocked ports": ufw.block_risky_ports(),
    }
    if not ufw.allow_loopback():
        failures["loopback"] = ["lo"]

    if args.enable_logging:
        ufw.configure_logging()

    if args.enable:
        ufw.enable_ufw()
    else:
        context.logger.info("Rules configured; firewall not enabled (use --enable)")

    ufw.show_status()

    failed = {name: items for name, items in failures.items() if items}
    if failed:
        detail = "; ".join(f"{name}: {', '.join(items)}" for name, items in failed.items())
        raise ModuleExecutionError(f"Some firewall rules could not be added ({detail})",
                                   module="firewall")
    return 0
