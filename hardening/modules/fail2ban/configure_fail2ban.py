"""
Fail2Ban Module

Writes the jail configuration to jail.local (never jail.conf, which the
package owns), adds the nginx-http-auth jail when nginx is present and
tunes the daemon settings in fail2ban.local.

Sub-flags:
    --install            Install fail2ban when missing
    --enable             Enable and restart the service, then verify it runs
    --ssh-port=N         Port of the sshd jail (default 22)
    --bantime=SECONDS    Ban duration (default 3600)
    --findtime=SECONDS   Window in which failures are counted (default 600)
    --maxretry=N         Failures before a ban (default 5)
    --status             Only report jails and banned addresses
    --unban=IP           Remove a ban from every jail
    --dry-run            Log the changes without applying them

License: MIT
"""

from pathlib import Path
from typing import Dict, List

from hardening.exceptions import ModuleExecutionError
from hardening.module_support import ModuleArgumentParser, parse_module_args
from hardening.validators import validate_ip, validate_port

FAIL2BAN_DIR = Path("/etc/fail2ban")
JAIL_LOCAL = FAIL2BAN_DIR / "jail.local"
FAIL2BAN_LOCAL = FAIL2BAN_DIR / "fail2ban.local"

# Relative to the directory holding jail.local
EXTRA_BACKUPS = [
    "jail.d/defaults-debian.conf",
    "filter.d",
    "action.d",
]

DAEMON_SETTINGS = {
    "loglevel": "INFO",
    "logtarget": "/var/log/fail2ban.log",
    "socket": "/var/run/fail2ban/fail2ban.sock",
    "pidfile": "/var/run/fail2ban/fail2ban.pid",
    "dbfile": "/var/lib/fail2ban/fail2ban.sqlite3",
    "dbmaxmatches": "10",
    "dbpurgeage": "1d",
}

IGNORE_IPS = "127.0.0.1/8 ::1"


def create_parser() -> ModuleArgumentParser:
    parser = ModuleArgumentParser("fail2ban")
    parser.add_argument('--install', action='store_true')
    parser.add_argument('--enable', action='store_true')
    parser.add_argument('--ssh-port', default="22")
    parser.add_argument('--bantime', type=int, default=3600)
    parser.add_argument('--findtime', type=int, default=600)
    parser.add_argument('--maxretry', type=int, default=5)
    parser.add_argument('--status', action='store_true')
    parser.add_argument('--unban')
    parser.add_argument('--jail-file', default=str(JAIL_LOCAL))
    parser.add_argument('--daemon-file', default=str(FAIL2BAN_LOCAL))
    return parser


def build_default_section(args) -> Dict[str, str]:
    """Settings of the [DEFAULT] section."""
    return {
        "bantime": str(args.bantime),
        "findtime": str(args.findtime),
        "maxretry": str(args.maxretry),
        "ignoreip": IGNORE_IPS,
    }


def build_sshd_jail(args) -> Dict[str, str]:
    """Settings of the [sshd] jail."""
    return {
        "enabled": "true",
        "port": str(args.ssh_port),
        "filter": "sshd",
        "logpath": "/var/log/auth.log",
        "backend": "auto",
        "maxretry": str(args.maxretry),
        "bantime": str(args.bantime),
        "findtime": str(args.findtime),
    }


def build_nginx_jail(args) -> Dict[str, str]:
    """Settings of the [nginx-http-auth] jail."""
    return {
        "enabled": "true",
        "port": "http,https",
        "filter": "nginx-http-auth",
        "logpath": "/var/log/nginx/error.log",
        "maxretry": str(args.maxretry),
    }


def get_jails(runner) -> List[str]:
    """Get the active jail names."""
    result = runner.run(["fail2ban-client", "status"], mutating=False)
    for line in result.stdout.splitlines():
        if "Jail list:" in line:
            return [jail.strip() for jail in line.split(":", 1)[1].split(",") if jail.strip()]
    return []


def get_banned_ips(runner, jail: str) -> List[str]:
    """Get the addresses banned in a jail."""
    result = runner.run(["fail2ban-client", "status", jail], mutating=False)
    for line in result.stdout.splitlines():
        if "Banned IP list:" in line:
            return line.split(":", 1)[1].split()
    return []


def show_status(context) -> None:
    """Log every jail with its banned addresses."""
    jails = get_jails(context.runner)
    if not jails:
        context.logger.warning("No active jails (is fail2ban running?)")
        return
    context.logger.info(f"Active jails: {', '.join(jails)}")
    for jail in jails:
        banned = get_banned_ips(context.runner, jail)
        context.logger.info(f"  {jail}: {len(banned)} banned"
                            + (f" ({', '.join(banned)})" if banned else ""))


def unban_ip(context, address: str) -> None:
    """Lift a ban on an address."""
    if not validate_ip(address):
        raise ModuleExecutionError(f"Invalid IP address: {address}", module="fail2ban")
    context.runner.run(["fail2ban-client", "unban", address], check=True)
    context.logger.info(f"Unbanned {address}")


def ensure_installed(context, install: bool) -> None:
    """Install fail2ban if requested and not already installed."""
    if context.runner.exists("fail2ban-client"):
        return
    if not install:
        raise ModuleExecutionError("fail2ban is not installed; re-run with --install",
                                   module="fail2ban")
    context.logger.info("Installing fail2ban...")
    context.runner.run(["apt-get", "install", "-y", "fail2ban"],
                       env={"DEBIAN_FRONTEND": "noninteractive"}, check=True)


def restart_service(context) -> None:
    """Enable and restart fail2ban, then verify it is active."""
    runner = context.runner
    runner.run(["systemctl", "enable", "fail2ban"], check=True)
    runner.run(["systemctl", "restart", "fail2ban"], check=True)
    if context.dry_run:
        return
    if not runner.run(["systemctl", "is-active", "--quiet", "fail2ban"], mutating=False).success:
        raise ModuleExecutionError("fail2ban service failed to start; "
                                   "check 'journalctl -u fail2ban'", module="fail2ban")
    context.logger.info("fail2ban service is active")


def configure_fail2ban(context) -> int:
    args = parse_module_args(create_parser(), context)
    logger = context.logger

    ensure_installed(context, args.install)

    if args.unban:
        unban_ip(context, args.unban)
        return 0
    if args.status:
        show_status(context)
        return 0

    if not validate_port(args.ssh_port):
        raise ModuleExecutionError(f"Invalid SSH port: {args.ssh_port}", module="fail2ban")
    for name in ("bantime", "findtime", "maxretry"):
        if getattr(args, name) <= 0:
            raise ModuleExecutionError(f"--{name} must be positive", module="fail2ban")

    jail_file = Path(args.jail_file)
    context.backups.backup_paths(jail_file.parent / name for name in EXTRA_BACKUPS)
    editor = context.editor
    changed = editor.set_section(jail_file, "DEFAULT", build_default_section(args))
    changed |= editor.set_section(jail_file, "sshd", build_sshd_jail(args))
    logger.info(f"sshd jail: port {args.ssh_port}, maxretry {args.maxretry}, "
                f"bantime {args.bantime}s, findtime {args.findtime}s")

    if context.runner.exists("nginx"):
        changed |= editor.set_section(jail_file, "nginx-http-auth", build_nginx_jail(args))
        logger.info("nginx detected, nginx-http-auth jail enabled")

    changed |= editor.set_section(Path(args.daemon_file), "Definition", DAEMON_SETTINGS)

    if args.enable:
        restart_service(context)
    elif changed:
        reload = context.runner.run(["fail2ban-client", "reload"])
        if not reload.success:
            logger.warning("Could not reload fail2ban; changes apply on the next restart")
    else:
        logger.info("Fail2Ban configuration already up to date")
    return 0
