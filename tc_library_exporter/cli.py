"""
Command-line entry point.

Usage:
    tc-library-export -v C:\\Jenkins\\workspace\\TcProject\\TcProject.sln
        -n "TcProject^TcProject Project" -l C:\\out\\TcProject.compiled-library
    # or
    python -m tc_library_exporter.cli [OPTIONS]
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from . import runner
from .models import ExitCode, RunnerConfig

PROG = "tc-library-export"

EPILOG = f"""\
examples:
  {PROG} -v "C:\\Jenkins\\workspace\\TcProject\\TcProject.sln" -n "TcProject^TcProject Project" -l "C:\\out\\TcProject.library"
  {PROG} -v "C:\\Jenkins\\workspace\\TcProject\\TcProject.sln" -n "TcProject^TcProject Project" -l "C:\\out\\TcProject.compiled-library" -w "3.1.4024.11"
  {PROG} -v "C:\\Jenkins\\workspace\\TcProject\\TcProject.sln" -n "TcProject^TcProject Project" -l "C:\\out\\TcProject.library" -u 5
"""


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that exits with ``ExitCode.ARGUMENT_ERROR`` on bad input."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(
            int(ExitCode.ARGUMENT_ERROR),
            f"{self.prog}: error: {message}\n"
            f"Try `{self.prog} --help' for more information.\n",
        )


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog=PROG,
        description=(
            "Loads the selected Visual Studio solution and TwinCAT project, "
            "builds it, checks all objects of the PLC project and saves it "
            "as a library."
        ),
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
    )
    parser.add_argument(
        "-v", "--VisualStudioSolutionFilePath", dest="solution_path",
        help="The full path to the TwinCAT project (sln-file)",
    )
    parser.add_argument(
        "-w", "--TcVersion", dest="forced_tc_version",
        help="[OPTIONAL] The TwinCAT version to be used to load the TwinCAT project",
    )
    parser.add_argument(
        "-n", "--PLCProjectName", dest="plc_project_name",
        help="The full name of the PLC project, eg 'NameOfProject^NameOfProject Project'",
    )
    parser.add_argument(
        "-l", "--LibraryPath", dest="library_path",
        help=("The full path of the library file including name and file "
              "extension (.library or .compiled-library)"),
    )
    parser.add_argument(
        "-t", "--TaskName", dest="task_name",
        help=("[OPTIONAL] Task to enable and autostart; all other tasks "
              "are disabled"),
    )
    parser.add_argument(
        "-c", "--CompilerDefine", dest="compiler_defines", action="append",
        default=[], metavar="DEFINE",
        help="[OPTIONAL] Compiler define added to the PLC project before building (repeatable)",
    )
    parser.add_argument(
        "-i", "--InstallLibrary", dest="install_library", action="store_true",
        help="[OPTIONAL] Install the saved library into the library repository",
    )
    parser.add_argument(
        "-u", "--Timeout", dest="timeout_minutes", type=float,
        help="[OPTIONAL] Timeout in minutes after which the process is killed",
    )
    parser.add_argument(
        "-d", "--debug", action="store_true",
        help="[OPTIONAL] Increase debug message verbosity",
    )
    parser.add_argument(
        "-h", "-?", "--help", action="help",
        help="Show this help message and exit",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    return parser


def parse_args(argv: Optional[List[str]] = None) -> RunnerConfig:
    """Parse the command line into a :class:`RunnerConfig`."""
    args = build_parser().parse_args(argv)
    if args.timeout_minutes is not None and args.timeout_minutes <= 0:
        build_parser().error("Timeout must be a positive number of minutes")
    return RunnerConfig(
        solution_path=args.solution_path,
        plc_project_name=args.plc_project_name,
        library_path=args.library_path,
        forced_tc_version=args.forced_tc_version,
        timeout_minutes=args.timeout_minutes,
        debug=args.debug,
        task_name=args.task_name,
        compiler_defines=list(args.compiler_defines),
        install_library=args.install_library,
    )


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        stream=sys.stderr,
        force=True,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Run the exporter and return the process exit code."""
    config = parse_args(argv)
    configure_logging(config.debug)
    return int(runner.run(config))


if __name__ == "__main__":
    sys.exit(main())
