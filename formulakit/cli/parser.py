"""
Argument parsing and command dispatch for `fkit`.

Each subcommand lives in its own module under formulakit.cli.commands and
exposes run(args) -> int. Modules are imported only when their command runs.
"""

import argparse
import importlib
import logging
import sys
import traceback
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import List, Optional

try:
    __version__ = version("formulakit")
except PackageNotFoundError:
    __version__ = "0.1.0"

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130

COMMAND_MODULES = {
    "install": "formulakit.cli.commands.install",
    "uninstall": "formulakit.cli.commands.uninstall",
    "list": "formulakit.cli.commands.list_installed",
    "test": "formulakit.cli.commands.smoke",
    "cleanup": "formulakit.cli.commands.cleanup",
}

# (level, format) per verbosity
LOG_SETTINGS = {
    "verbose": (logging.DEBUG, "%(levelname)s [%(name)s] %(message)s"),
    "quiet": (logging.ERROR, "%(levelname)s: %(message)s"),
    "normal": (logging.INFO, "%(message)s"),
}


class CLI:
    """The `fkit` command-line interface."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="fkit",
            description="FormulaKit - build and install software from formulas",
            epilog='Run "fkit COMMAND --help" for the options of a command',
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self._add_global_options(parser)

        subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
        self._add_install_command(subparsers)
        self._add_uninstall_command(subparsers)
        self._add_list_command(subparsers)
        self._add_test_command(subparsers)
        self._add_cleanup_command(subparsers)
        return parser

    def _add_global_options(self, parser):
        parser.add_argument("--version", action="version", version=f"FormulaKit {__version__}")

        verbosity = parser.add_mutually_exclusive_group()
        verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug output, list installed files")
        verbosity.add_argument("-q", "--quiet", action="store_true", help="Only report errors")

        paths = parser.add_argument_group("locations")
        paths.add_argument(
            "--home",
            type=Path,
            metavar="DIR",
            help="State directory for manifests, locks and staging "
            "(default: $FORMULAKIT_HOME or ~/.formulakit)",
        )
        paths.add_argument(
            "--config", type=Path, metavar="FILE", help="Settings file (default: <home>/config.yaml)"
        )
        paths.add_argument(
            "--prefix", type=Path, metavar="DIR", help="Where artifacts are installed (default: <home>/prefix)"
        )
        paths.add_argument(
            "--formula-path",
            type=Path,
            metavar="DIR",
            action="append",
            help="Search DIR for formula files before the configured paths; repeatable",
        )

    def _add_install_command(self, subparsers):
        """Add 'install' subcommand."""
        parser = subparsers.add_parser(
            "install",
            help="Fetch, verify, build and install formulas",
            description="Install formulas given by name or by formula file. "
            "Formulas whose recorded install is intact are skipped.",
        )
        parser.add_argument("targets", nargs="+", metavar="NAME|FILE")
        parser.add_argument("--force", action="store_true", help="Rebuild even if already installed")
        parser.add_argument(
            "-j", "--jobs", type=int, default=1, metavar="N", help="Formulas installed concurrently (default: 1)"
        )

    def _add_uninstall_command(self, subparsers):
        """Add 'uninstall' subcommand."""
        parser = subparsers.add_parser("uninstall", help="Remove an installed formula's files")
        parser.add_argument("name", metavar="NAME")

    def _add_list_command(self, subparsers):
        """Add 'list' subcommand."""
        subparsers.add_parser("list", help="Show installed formulas")

    def _add_test_command(self, subparsers):
        """Add 'test' subcommand."""
        parser = subparsers.add_parser(
            "test",
            help="Run an installed formula's smoke test",
            description="Execute the installed executable with the formula's test arguments.",
        )
        parser.add_argument("name", metavar="NAME|FILE")

    def _add_cleanup_command(self, subparsers):
        """Add 'cleanup' subcommand."""
        parser = subparsers.add_parser(
            "cleanup",
            help="Remove leftovers of interrupted installs",
            description="Delete abandoned staging directories and lock files "
            "older than --max-age hours.",
        )
        parser.add_argument("--max-age", type=float, default=24, metavar="HOURS")

    def parse_args(self, args: Optional[List[str]] = None) -> argparse.Namespace:
        return self.parser.parse_args(args)

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Parse args, set up logging and run the selected command.

        Returns:
            The command's exit code; 1 for unexpected errors, 130 on Ctrl-C
        """
        parsed_args = self.parse_args(args)
        self._configure_logging(parsed_args)

        if not parsed_args.command:
            self.parser.print_help()
            return 1

        try:
            return self._dispatch_command(parsed_args)
        except KeyboardInterrupt:
            logger.info("Interrupted")
            return EXIT_INTERRUPTED
        except Exception as e:
            logger.error(f"Error: {e}")
            if parsed_args.verbose:
                traceback.print_exc()
            return 1

    def _configure_logging(self, args):
        if args.verbose:
            level, fmt = LOG_SETTINGS["verbose"]
        elif args.quiet:
            level, fmt = LOG_SETTINGS["quiet"]
        else:
            level, fmt = LOG_SETTINGS["normal"]

        logging.basicConfig(level=level, format=fmt, force=True)

    def _dispatch_command(self, args) -> int:
        module = importlib.import_module(COMMAND_MODULES[args.command])
        return module.run(args)


def main():
    """Entry point of the `fkit` script."""
    sys.exit(CLI().run())


if __name__ == "__main__":
    main()
