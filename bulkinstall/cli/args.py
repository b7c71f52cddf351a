from __future__ import annotations

import argparse

from bulkinstall import __version__

_EPILOG = """\
Entries use name[:command]. Without a command, the install template is used
with {name} replaced by the package name, e.g. "apt-get install -y {name}".
When no template is given, it is chosen from the detected distribution.

exit codes: 0 all succeeded, 1 partial failure, 2 all failed,
64 invalid input, 70 cannot start processes, 130 interrupted
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bulkinstall",
        description="Install many packages with one customizable install command.",
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "packages",
        nargs="*",
        metavar="PACKAGE",
        help="Package entries, name[:command]",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="Settings file (.yaml/.yml, .toml, .json)",
    )
    parser.add_argument(
        "-f",
        "--file",
        action="append",
        default=[],
        help="Package list file, one entry per line (repeatable)",
    )
    parser.add_argument(
        "-t",
        "--template",
        help="Default install command template containing {name}",
    )
    parser.add_argument(
        "--distro",
        help="Use this distribution's install template instead of detecting it",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Per-package timeout in seconds (default: 300)",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        help="Run up to N installs in parallel (default: 1, sequential)",
    )
    parser.add_argument(
        "--stderr-lines",
        type=int,
        help="Lines of stderr kept for failed packages (default: 20)",
    )
    parser.add_argument(
        "--grace-period",
        type=float,
        help="Seconds between SIGTERM and SIGKILL (default: 5)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the resolved commands without running them",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="More logging on stderr (-v info, -vv debug)",
    )
    parser.add_argument(
        "--log-file",
        help="Also write a debug log to this file",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser
