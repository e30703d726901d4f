"""
Command-Line Arguments

Turns argv into the ordered list of selected modules plus the global flags.
Module names come from flags (``--ssh``), from bare tokens naming an
existing module directory, or from ``--all``.

License: MIT
"""

import argparse
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from . import __version__
from .exceptions import InvalidArgumentError, ModulesRootError
from .module_loader import ModuleRegistry

BUILTIN_MODULES = ("ssh", "firewall", "fail2ban", "users", "updates", "caprover")

MODULE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_-]*$")


@dataclass(frozen=True)
class GlobalFlags:
    check_deps: bool = False
    skip_deps: bool = False
    dry_run: bool = False


@dataclass(frozen=True)
class Selection:
    """Parsed command line. Read-only once built."""
    modules: Tuple[str, ...] = ()
    flags: GlobalFlags = GlobalFlags()
    module_args: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    verbose: bool = False
    show_help: bool = False
    show_version: bool = False


class ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises instead of exiting."""

    def error(self, message: str):
        raise InvalidArgumentError(message)


def create_argument_parser(module_names: Iterable[str] = ()) -> ArgumentParser:
    """Create and configure argument parser."""
    names = list(dict.fromkeys(list(BUILTIN_MODULES) + list(module_names)))

    parser = ArgumentParser(
        prog="security-setup",
        description="Server Security Setup - modular hardening for Debian and Ubuntu servers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
        allow_abbrev=False,
        epilog="""
Examples:
  sudo security-setup --all                      # Every available module
  sudo security-setup --ssh --firewall           # Selected modules
  sudo security-setup --check-deps               # Install dependencies only
  sudo security-setup --ssh --module-arg ssh:--port=2222
  security-setup --all --dry-run                 # Show what would run

Exit codes: 0 success, 1 invalid arguments, 2 dependency failure,
3 module failure, 4 not root, 5 unsupported OS
        """
    )

    parser.add_argument('-h', '--help', action='store_true',
                        help='Show this help message and exit')
    parser.add_argument('--version', action='store_true',
                        help='Show version and exit')
    parser.add_argument('--all', action='store_true',
                        help='Run every module found in the modules directory')

    modules = parser.add_argument_group('modules')
    for name in names:
        modules.add_argument(f'--{name}', action='append_const', const=name,
                             dest='requested', help=f'Run the {name} module')

    parser.add_argument('--check-deps', action='store_true',
                        help='Check and install required packages')
    parser.add_argument('--skip-deps', action='store_true',
                        help='Skip the dependency check')
    parser.add_argument('--dry-run', action='store_true',
                        help='Log what would be done without changing anything')
    parser.add_argument('--module-arg', action='append', default=[], metavar='MODULE:ARG',
                        help='Pass ARG to MODULE (repeatable), e.g. ssh:--port=2222')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    return parser


def _split_module_args(values: List[str]) -> Dict[str, Tuple[str, ...]]:
    module_args: Dict[str, List[str]] = {}
    for value in values:
        module, sep, arg = value.partition(":")
        if not sep or not module or not arg:
            raise InvalidArgumentError(f"Invalid --module-arg '{value}', expected MODULE:ARG")
        module_args.setdefault(module, []).append(arg)
    return {module: tuple(args) for module, args in module_args.items()}


def _ordered_requests(argv: List[str], flag_names: Dict[str, str]) -> List[str]:
    """Module flags and bare tokens in the order they appear on the command line."""
    tokens = []
    skip_next = False
    for token in argv:
        if skip_next:
            skip_next = False
            continue
        if token == "--module-arg":
            skip_next = True
        elif token in flag_names:
            tokens.append(flag_names[token])
        elif not token.startswith("-"):
            tokens.append(token)
    return tokens


def parse_arguments(argv: List[str], registry: ModuleRegistry,
                    logger: logging.Logger,
                    parser: Optional[ArgumentParser] = None) -> Selection:
    """
    Parse argv into a Selection.

    Unknown options are an InvalidArgumentError. Unknown bare tokens are
    treated as module names: kept when the module exists, otherwise
    ignored with a warning.
    """
    parser = parser or create_argument_parser(registry.names())
    args, extras = parser.parse_known_args(argv)

    for token in extras:
        if token.startswith("-"):
            raise InvalidArgumentError(f"Invalid option: {token}")

    flags = GlobalFlags(check_deps=args.check_deps, skip_deps=args.skip_deps,
                        dry_run=args.dry_run)
    module_args = _split_module_args(args.module_arg)

    if args.help or args.version:
        return Selection(flags=flags, module_args=module_args, verbose=args.verbose,
                         show_help=args.help, show_version=args.version)

    flag_names = {f"--{name}": name for name in (args.requested or [])}
    bare_tokens = set(extras)
    selected: List[str] = []
    for token in _ordered_requests(argv, flag_names):
        if token in bare_tokens and token not in flag_names.values():
            if not MODULE_NAME_PATTERN.match(token) or token not in registry:
                logger.warning(f"Unknown module '{token}' ignored")
                continue
        if token not in selected:
            selected.append(token)

    if args.all:
        if selected:
            logger.debug(f"--all overrides explicitly selected modules: {', '.join(selected)}")
        selected = registry.names()
        if not selected:
            raise ModulesRootError(f"No modules found in {registry.root}")
        logger.info(f"Selected all modules: {', '.join(selected)}")

    show_help = not selected and not flags.check_deps
    return Selection(
        modules=tuple(selected),
        flags=flags,
        module_args=module_args,
        verbose=args.verbose,
        show_help=show_help,
    )


def validate_selection(selection: Selection, registry: ModuleRegistry,
                       logger: Optional[logging.Logger] = None) -> None:
    """Reject conflicting flags and modules without a directory."""
    if selection.flags.check_deps and selection.flags.skip_deps:
        raise InvalidArgumentError("--check-deps and --skip-deps cannot be used together")

    for name in selection.modules:
        spec = registry.get(name)
        if spec is None or not spec.directory.is_dir():
            raise InvalidArgumentError(
                f"Module '{name}' not found in {registry.root}"
            )

    if logger is not None:
        for name in selection.module_args:
            if name not in selection.modules:
                logger.warning(f"Arguments given for module '{name}', which is not selected")


def version_string() -> str:
    return f"Server Security Setup v{__version__}"
