"""
Helpers shared by module scripts.

Module scripts import these through the ``hardening`` package, so they
behave the same whether loaded by the orchestrator or run from a test.

License: MIT
"""

import argparse

from .exceptions import ModuleExecutionError
from .module_loader import ModuleContext, mask_secrets


class ModuleArgumentParser(argparse.ArgumentParser):
    """Sub-flag parser for a module; errors fail the module instead of exiting."""

    def __init__(self, module: str, **kwargs):
        super().__init__(prog=f"configure_{module}", add_help=False,
                         allow_abbrev=False, **kwargs)
        self.module = module
        self.add_argument('--dry-run', action='store_true',
                          help='Log the changes without applying them')

    def error(self, message: str):
        raise ModuleExecutionError(f"Invalid arguments: {message}", module=self.module)


def parse_module_args(parser: ModuleArgumentParser, context: ModuleContext) -> argparse.Namespace:
    """Parse the context's arguments, warning about (and ignoring) unknown ones."""
    args, unknown = parser.parse_known_args(context.args)
    for token in mask_secrets(unknown):
        context.logger.warning(f"Ignoring unknown option: {token}")
    if args.dry_run and not context.dry_run:
        context.simulate()
    return args
