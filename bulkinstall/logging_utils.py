from __future__ import annotations

import logging
from pathlib import Path

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def verbosity_to_level(verbose: int) -> int:
    if verbose >= 2:
        return logging.DEBUG
    if verbose == 1:
        return logging.INFO
    return logging.WARNING


def configure_logging(level: int = logging.WARNING, log_file: str | None = None) -> None:
    """Configure root logging for the CLI.

    Diagnostics go to stderr so stdout only carries per-package lines. An
    optional log file always records at DEBUG. Calling this again replaces
    the handlers installed by the previous call.
    """

    root = logging.getLogger()
    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    for handler in getattr(root, "_bulkinstall_handlers", []):
        root.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = []

    console = logging.StreamHandler()
    console.setFormatter(fmt)
    console.setLevel(level)
    handlers.append(console)

    if log_file:
        Path(log_file).expanduser().parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(Path(log_file).expanduser(), encoding="utf-8")
        file_handler.setFormatter(fmt)
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    root.setLevel(logging.DEBUG if log_file else level)
    for handler in handlers:
        root.addHandler(handler)

    setattr(root, "_bulkinstall_handlers", handlers)
