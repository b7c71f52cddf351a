from .executor import Installer, resolve_command
from .types import (
    EngineFatal,
    FailureReason,
    InstallResult,
    InvalidTransitionError,
    Outcome,
    RunReport,
    Status,
)

__all__ = [
    "Installer",
    "resolve_command",
    "EngineFatal",
    "FailureReason",
    "InstallResult",
    "InvalidTransitionError",
    "Outcome",
    "RunReport",
    "Status",
]
