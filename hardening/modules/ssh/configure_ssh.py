"""
SSH Hardening Module

Applies a hardened sshd configuration: custom port, root login policy,
key-only authentication, modern algorithms and tight session limits. The
result is checked with ``sshd -t`` before the service is restarted; an
invalid configuration is rolled back from its backup.

Sub-flags:
    --port=N         SSH port (default 22)
    --no-root        PermitRootLogin no (default prohibit-password)
    --no-password    Disable password authentication
    --key-only       Public keys as the only authentication method
    --config=PATH    sshd_config to edit
    --dry-run        Log the changes without applying them

License: MIT
"""

from pathlib import Path
from typing import List, Tuple

from hardening.exceptions import ModuleExecutionError
from hardening.module_support import ModuleArgumentParser, parse_module_args
from hardening.validators import validate_port

SSHD_CONFIG = Path("/etc/ssh/sshd_config")
SSH_SERVICE = "ssh"

HARDENED_SETTINGS = [
    ("Protocol", "2"),
    ("LoginGraceTime", "60"),
    ("ClientAliveInterval", "300"),
    ("ClientAliveCountMax", "2"),
    ("MaxAuthTries", "3"),
    ("MaxSessions", "5"),
    ("PermitEmptyPasswords", "no"),
    ("IgnoreRhosts", "yes"),
    ("HostbasedAuthentication", "no"),
    ("X11Forwarding", "no"),
    ("AllowTcpForwarding", "no"),
    ("AllowAgentForwarding", "no"),
    ("PermitTunnel", "no"),
    ("TCPKeepAlive", "yes"),
    ("PrintMotd", "no"),
    ("PrintLastLog", "yes"),
]

ALGORITHM_SETTINGS = [
    ("HostKeyAlgorithms",
     "ssh-ed25519,ssh-ed25519-cert-v01@openssh.com,rsa-sha2-512,rsa-sha2-256"),
    ("KexAlgorithms",
     "curve25519-sha256,curve25519-sha256@libssh.org,"
     "diffie-hellman-group16-sha512,diffie-hellman-group18-sha512"),
    ("Ciphers",
     "chacha20-poly1305@openssh.com,aes256-gcm@openssh.com,aes128-gcm@openssh.com,"
     "aes256-ctr,aes192-ctr,aes128-ctr"),
    ("MACs",
     "hmac-sha2-512-etm@openssh.com,hmac-sha2-256-etm@openssh.com,"
     "umac-128-etm@openssh.com"),
]


def create_parser() -> ModuleArgumentParser:
    parser = ModuleArgumentParser("ssh")
    parser.add_argument('--port', default="22")
    parser.add_argument('--no-root', action='store_true')
    parser.add_argument('--no-password', action='store_true')
    parser.add_argument('--key-only', action='store_true')
    parser.add_argument('--config', default=str(SSHD_CONFIG))
    return parser


def build_settings(args) -> List[Tuple[str, str]]:
    """Directives to apply, in order."""
    settings = [("Port", str(args.port))]
    settings.append(("PermitRootLogin", "no" if args.no_root else "prohibit-password"))

    if args.no_password or args.key_only:
        settings += [
            ("PasswordAuthentication", "no"),
            ("KbdInteractiveAuthentication", "no"),
            ("ChallengeResponseAuthentication", "no"),
            ("PubkeyAuthentication", "yes"),
        ]
    if args.key_only:
        settings.append(("AuthenticationMethods", "publickey"))

    return settings + HARDENED_SETTINGS + ALGORITHM_SETTINGS


def configure_ssh(context) -> int:
    args = parse_module_args(create_parser(), context)
    logger = context.logger
    config_path = Path(args.config)

    if not validate_port(args.port):
        raise ModuleExecutionError(f"Invalid SSH port: {args.port}", module="ssh")
    if not config_path.exists():
        raise ModuleExecutionError(f"SSH configuration not found: {config_path}", module="ssh")

    if args.no_password or args.key_only:
        logger.warning("Password authentication will be disabled; "
                       "make sure a working SSH key is installed first")

    logger.info(f"Hardening {config_path} (port {args.port})...")
    if not context.editor.set_directives(config_path, build_settings(args)):
        logger.info("SSH configuration already hardened, nothing to change")
        return 0

    if context.dry_run:
        logger.info(f"[DRY RUN] Would validate {config_path} and restart {SSH_SERVICE}")
        return 0

    validation = context.runner.run(["sshd", "-t", "-f", str(config_path)], mutating=False)
    if not validation.success:
        context.editor.restore(config_path)
        raise ModuleExecutionError(
            f"sshd rejected the new configuration: {validation.stderr.strip()}", module="ssh"
        )

    context.runner.run(["systemctl", "restart", SSH_SERVICE], check=True)
    logger.info(f"SSH service restarted, listening on port {args.port}")
    return 0
