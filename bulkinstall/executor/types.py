from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from bulkinstall.config.types import PackageSpec


class Status(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"


class FailureReason(Enum):
    EXIT_CODE = "exit_code"
    TIMEOUT = "timeout"
    INTERRUPTED = "interrupted"
    NOT_FOUND = "not_found"
    NOT_ATTEMPTED = "not_attempted"


class Outcome(Enum):
    ALL_SUCCEEDED = "all_succeeded"
    PARTIAL_FAILURE = "partial_failure"
    ALL_FAILED = "all_failed"


_TRANSITIONS: dict[Status, frozenset[Status]] = {
    Status.PENDING: frozenset({Status.RUNNING, Status.NOT_ATTEMPTED}),
    Status.RUNNING: frozenset({Status.SUCCESS, Status.FAILED}),
    Status.SUCCESS: frozenset(),
    Status.FAILED: frozenset(),
    Status.NOT_ATTEMPTED: frozenset(),
}


def check_transition(current: Status, nxt: Status) -> Status:
    if nxt not in _TRANSITIONS[current]:
        raise InvalidTransitionError(current, nxt)
    return nxt


def is_terminal(status: Status) -> bool:
    return not _TRANSITIONS[status]


@dataclass(frozen=True)
class InstallResult:
    package: PackageSpec
    status: Status
    argv: tuple[str, ...]
    exit_code: int | None = None
    stderr_tail: str = ""
    reason: FailureReason | None = None
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is Status.SUCCESS


@dataclass(frozen=True)
class RunReport:
    results: tuple[InstallResult, ...]
    interrupted: bool = False

    def __iter__(self):
        return iter(self.results)

    def __len__(self):
        return len(self.results)

    @property
    def succeeded(self) -> list[InstallResult]:
        return [r for r in self.results if r.status is Status.SUCCESS]

    @property
    def failed(self) -> list[InstallResult]:
        return [r for r in self.results if r.status is Status.FAILED]

    @property
    def not_attempted(self) -> list[InstallResult]:
        return [r for r in self.results if r.status is Status.NOT_ATTEMPTED]

    @property
    def outcome(self) -> Outcome:
        ok = len(self.succeeded)
        if ok == len(self.results):
            return Outcome.ALL_SUCCEEDED
        if ok == 0:
            return Outcome.ALL_FAILED
        return Outcome.PARTIAL_FAILURE


class InvalidTransitionError(Exception):
    def __init__(self, current: Status, nxt: Status):
        super().__init__(f"Illegal state transition: {current.value} -> {nxt.value}")
        self.current = current
        self.nxt = nxt


class EngineFatal(Exception):
    """Processes cannot be started at all; the run was aborted.

    ``report`` holds every result recorded before the abort, with the
    remaining packages marked not attempted.
    """

    def __init__(self, message: str, report: RunReport):
        super().__init__(message)
        self.report = report
