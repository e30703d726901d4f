"""
Users Module

Account management: create users, set passwords, manage group membership,
sudo rules, account locking and reporting. Several actions can be combined
in one run; they execute in the order listed below.

Sub-flags:
    --create-user NAME       [--fullname TEXT] [--shell PATH] [--home DIR]
    --set-password NAME      [--password PWD]  (random when omitted)
    --add-to-group NAME G1,G2 [--create-groups]
    --setup-sudo TARGET      [--rule RULE] [--file PATH]  (%group for groups)
    --lock-account NAME
    --unlock-account NAME
    --list-users [all|system|human]
    --user-info NAME
    --dry-run

License: MIT
"""

import os
import secrets
import string
import tempfile
from pathlib import Path
from typing import List, NamedTuple, Optional

from hardening.exceptions import ModuleExecutionError
from hardening.module_support import ModuleArgumentParser, parse_module_args
from hardening.validators import validate_username

PASSWD_FILE = Path("/etc/passwd")
SUDOERS_FILE = Path("/etc/sudoers.d/90-custom-users")
DEFAULT_SUDO_RULE = "ALL=(ALL:ALL) ALL"
DEFAULT_SHELL = "/bin/bash"

PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#%^*-_=+"
PASSWORD_LENGTH = 20

# Debian reserves UIDs below 1000 for system accounts and 65534 for nobody
FIRST_HUMAN_UID = 1000
NOBODY_UID = 65534


class PasswdEntry(NamedTuple):
    name: str
    uid: int
    gid: int
    gecos: str
    home: str
    shell: str


def create_parser() -> ModuleArgumentParser:
    parser = ModuleArgumentParser("users")
    parser.add_argument('--create-user', metavar='NAME')
    parser.add_argument('--fullname', default="")
    parser.add_argument('--shell', default=DEFAULT_SHELL)
    parser.add_argument('--home')
    parser.add_argument('--set-password', metavar='NAME')
    parser.add_argument('--password')
    parser.add_argument('--add-to-group', nargs=2, metavar=('NAME', 'GROUPS'))
    parser.add_argument('--create-groups', action='store_true')
    parser.add_argument('--setup-sudo', metavar='TARGET')
    parser.add_argument('--rule', default=DEFAULT_SUDO_RULE)
    parser.add_argument('--file', default=str(SUDOERS_FILE))
    parser.add_argument('--lock-account', metavar='NAME')
    parser.add_argument('--unlock-account', metavar='NAME')
    parser.add_argument('--list-users', nargs='?', const='all',
                        choices=['all', 'system', 'human'])
    parser.add_argument('--user-info', metavar='NAME')
    parser.add_argument('--passwd-file', default=str(PASSWD_FILE))
    return parser


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """Random password from the password alphabet."""
    return ''.join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def read_passwd(path: Path) -> List[PasswdEntry]:
    """Parse a passwd file."""
    entries = []
    for line in path.read_text(encoding="utf-8").splitlines():
        fields = line.split(":")
        if len(fields) < 7 or line.startswith("#"):
            continue
        try:
            uid, gid = int(fields[2]), int(fields[3])
        except ValueError:
            continue
        entries.append(PasswdEntry(fields[0], uid, gid, fields[4], fields[5], fields[6]))
    return entries


def filter_users(entries: List[PasswdEntry], kind: str) -> List[PasswdEntry]:
    """Select human, system or all accounts."""
    if kind == "system":
        return [e for e in entries if e.uid < FIRST_HUMAN_UID]
    if kind == "human":
        return [e for e in entries if FIRST_HUMAN_UID <= e.uid != NOBODY_UID]
    return list(entries)


class UserManager:
    """Wraps useradd, usermod, chpasswd and friends."""

    def __init__(self, context):
        """Initialize the user manager."""
        self.context = context
        self.runner = context.runner
        self.logger = context.logger

    def _fail(self, message: str):
        raise ModuleExecutionError(message, module="users")

    def _check_name(self, name: str) -> None:
        if not validate_username(name):
            self._fail(f"Invalid username '{name}': use 3-32 characters, "
                       "lowercase letters, digits, '-' or '_', not starting with a digit")

    def user_exists(self, name: str) -> bool:
        """Check if a user exists."""
        return self.runner.run(["id", "-u", name], mutating=False).success

    def group_exists(self, group: str) -> bool:
        """Check if a group exists."""
        return self.runner.run(["getent", "group", group], mutating=False).success

    def _require_user(self, name: str) -> None:
        if not self.user_exists(name) and not self.context.dry_run:
            self._fail(f"User '{name}' does not exist")

    def create_user(self, name: str, fullname: str, shell: str,
                    home: Optional[str] = None) -> None:
        """Create a user with a home directory."""
        self._check_name(name)
        if self.user_exists(name):
            self.logger.warning(f"User '{name}' already exists, skipping creation")
            return
        command = ["useradd", "--create-home", "--shell", shell]
        if fullname:
            command += ["--comment", fullname]
        if home:
            command += ["--home-dir", home]
        self.runner.run(command + [name], check=True)
        self.logger.info(f"Created user '{name}'")

    def set_password(self, name: str, password: Optional[str] = None) -> None:
        """Set a password, generating one when none is given."""
        self._require_user(name)
        generated = password is None
        if generated:
            password = generate_password()
        self.runner.run(["chpasswd"], input_text=f"{name}:{password}\n", check=True)
        self.logger.info(f"Password set for '{name}'")
        if generated and not self.context.dry_run:
            # Shown once on the terminal, never written to the logs
            print(f"Generated password for {name}: {password}")
            self.logger.warning(f"A random password was generated for '{name}' "
                                "(shown on the console only); ask the user to change it")

    def add_to_groups(self, name: str, groups: List[str], create: bool) -> None:
        """Add a user to groups, creating them on request."""
        self._require_user(name)
        for group in groups:
            if self.group_exists(group):
                continue
            if not create:
                self._fail(f"Group '{group}' does not exist (use --create-groups)")
            self.runner.run(["groupadd", group], check=True)
            self.logger.info(f"Created group '{group}'")
        self.runner.run(["usermod", "--append", "--groups", ",".join(groups), name], check=True)
        self.logger.info(f"Added '{name}' to: {', '.join(groups)}")

    def setup_sudo(self, target: str, rule: str, sudoers_file: Path) -> None:
        """Add a sudo rule in a drop-in file, validated with visudo first."""
        if target.startswith("%"):
            if not self.group_exists(target[1:]) and not self.context.dry_run:
                self._fail(f"Group '{target[1:]}' does not exist")
        else:
            self._require_user(target)

        entry = f"{target} {rule}"
        lines = self.context.editor.read_lines(sudoers_file)
        if entry in (line.strip() for line in lines):
            self.logger.info(f"Sudo rule already present: {entry}")
            return
        content = "\n".join(lines + [entry]) + "\n"

        if not self.context.dry_run:
            self._validate_sudoers(content)
        self.context.editor.write_file(sudoers_file, content, mode=0o440)
        self.logger.info(f"Sudo rule added: {entry}")

    def _validate_sudoers(self, content: str) -> None:
        handle, temp_path = tempfile.mkstemp(prefix="sudoers-")
        try:
            with os.fdopen(handle, "w") as temp:
                temp.write(content)
            result = self.runner.run(["visudo", "-cf", temp_path], mutating=False)
        finally:
            os.unlink(temp_path)
        if not result.success:
            self._fail(f"visudo rejected the sudo rule: "
                       f"{(result.stderr or result.stdout).strip()}")

    def lock(self, name: str) -> None:
        """Lock an account."""
        self._require_user(name)
        self.runner.run(["usermod", "--lock", name], check=True)
        self.logger.info(f"Locked account '{name}'")

    def unlock(self, name: str) -> None:
        """Unlock an account."""
        self._require_user(name)
        self.runner.run(["usermod", "--unlock", name], check=True)
        self.logger.info(f"Unlocked account '{name}'")

    def list_users(self, kind: str, passwd_file: Path) -> None:
        """Log the accounts of one kind."""
        users = filter_users(read_passwd(passwd_file), kind)
        self.logger.info(f"{len(users)} {kind} users:")
        for user in users:
            self.logger.info(f"  {user.name:<20} uid={user.uid:<6} {user.home} {user.shell}")

    def user_info(self, name: str) -> None:
        """Log the id, password aging and last login of a user."""
        if not self.user_exists(name):
            self._fail(f"User '{name}' does not exist")
        for command in (["id", name], ["chage", "-l", name], ["lastlog", "-u", name]):
            result = self.runner.run(command, mutating=False)
            if result.success and result.stdout.strip():
                self.logger.info(result.stdout.rstrip())


def configure_users(context) -> int:
    args = parse_module_args(create_parser(), context)
    users = UserManager(context)
    did_something = False

    if args.create_user:
        users.create_user(args.create_user, args.fullname, args.shell, args.home)
        did_something = True
    if args.set_password:
        users.set_password(args.set_password, args.password)
        did_something = True
    if args.add_to_group:
        name, groups = args.add_to_group
        users.add_to_groups(name, [g.strip() for g in groups.split(",") if g.strip()],
                            args.create_groups)
        did_something = True
    if args.setup_sudo:
        users.setup_sudo(args.setup_sudo, args.rule, Path(args.file))
        did_something = True
    if args.lock_account:
        users.lock(args.lock_account)
        did_something = True
    if args.unlock_account:
        users.unlock(args.unlock_account)
        did_something = True
    if args.list_users:
        users.list_users(args.list_users, Path(args.passwd_file))
        did_something = True
    if args.user_info:
        users.user_info(args.user_info)
        did_something = True

    if not did_something:
        context.logger.info("No user action requested; pass options with "
                            "--module-arg users:<option>")
    return 0
