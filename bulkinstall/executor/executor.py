from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Sequence

from bulkinstall.config import ConfigError, InstallerConfig, PackageSpec, validate_specs
from bulkinstall.config.distro import LOCKING_MANAGERS

from .types import (
    EngineFatal,
    FailureReason,
    InstallResult,
    RunReport,
    Status,
    check_transition,
)

logger = logging.getLogger(__name__)

ResultCallback = Callable[[InstallResult], None]
Plan = list[tuple[PackageSpec, list[str]]]

_POLL_S = 0.05


def resolve_command(spec: PackageSpec, template: str | None) -> list[str]:
    """Build the argv for one package.

    The override (or the template) is tokenized first and ``{name}`` is then
    substituted inside each token, so a package name can never add arguments.
    """
    raw = spec.install_command if spec.install_command is not None else template
    if raw is None:
        raise ConfigError(f"{spec.name}: no install command and no default template")

    try:
        tokens = shlex.split(raw)
    except ValueError as exc:
        raise ConfigError(f"{spec.name}: cannot parse command {raw!r}: {exc}") from exc

    if len(tokens) < 1:
        raise ConfigError(f"{spec.name}: command is empty")

    return [token.replace("{name}", spec.name) for token in tokens]


def _spawn(argv: Sequence[str]) -> subprocess.Popen:
    return subprocess.Popen(
        list(argv),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        errors="replace",
        start_new_session=True,
    )


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    # Each install runs in its own session, so its pgid is its pid.
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass


def _group_alive(proc: subprocess.Popen) -> bool:
    proc.poll()
    try:
        os.killpg(proc.pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _stop_groups(procs: list[subprocess.Popen], grace_s: float) -> None:
    """SIGTERM each process group, then SIGKILL whatever outlives the grace period."""
    for proc in procs:
        _signal_group(proc, signal.SIGTERM)

    deadline = time.monotonic() + grace_s
    while any(_group_alive(p) for p in procs) and time.monotonic() < deadline:
        time.sleep(_POLL_S)

    for proc in procs:
        if _group_alive(proc):
            logger.warning("process group %s ignored SIGTERM, killing", proc.pid)
            _signal_group(proc, signal.SIGKILL)


def _fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def _tail(text: str, lines: int) -> str:
    if lines < 1 or not text:
        return ""
    return "\n".join(text.splitlines()[-lines:])


class _Run:
    """Mutable bookkeeping for a single invocation of Installer.run()."""

    def __init__(self, specs: list[PackageSpec], on_result: ResultCallback | None):
        self.specs = specs
        self.on_result = on_result
        self.states: dict[str, Status] = {spec.name: Status.PENDING for spec in specs}
        self.stop = threading.Event()
        self.interrupted = False
        self.fatal: OSError | None = None
        self._results: dict[str, InstallResult] = {}
        self._procs: set[subprocess.Popen] = set()
        self._lock = threading.Lock()

    def mark_running(self, spec: PackageSpec, proc: subprocess.Popen | None = None) -> None:
        with self._lock:
            self.states[spec.name] = check_transition(self.states[spec.name], Status.RUNNING)
            if proc is None:
                return
            self._procs.add(proc)
            cancelled = self.interrupted

        # Cancelled between the stop check and the spawn.
        if cancelled:
            _signal_group(proc, signal.SIGTERM)

    def untrack(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._procs.discard(proc)

    def record(self, result: InstallResult) -> None:
        name = result.package.name
        with self._lock:
            self.states[name] = check_transition(self.states[name], result.status)
            self._results[name] = result
            if result.status is Status.FAILED:
                logger.warning(
                    "%s failed (%s, exit=%s)%s",
                    name,
                    result.reason.value if result.reason else "unknown",
                    result.exit_code,
                    "\n" + result.stderr_tail if result.stderr_tail else "",
                )
            else:
                logger.info("%s: %s in %.3fs", name, result.status.value, result.duration_s)
            if self.on_result is not None:
                self.on_result(result)

    def cancel(self) -> None:
        with self._lock:
            self.interrupted = True
        self.stop.set()

    def abort(self, exc: OSError) -> None:
        with self._lock:
            if self.fatal is None:
                self.fatal = exc
        self.stop.set()

    def terminate_inflight(self, grace_s: float) -> None:
        with self._lock:
            procs = list(self._procs)

        _stop_groups(procs, grace_s)

    def finalize(self) -> RunReport:
        for spec in self.specs:
            if spec.name in self._results:
                continue
            if self.states[spec.name] is Status.RUNNING:
                status, reason = Status.FAILED, FailureReason.INTERRUPTED
            else:
                status, reason = Status.NOT_ATTEMPTED, FailureReason.NOT_ATTEMPTED
            self.record(InstallResult(spec, status, (), reason=reason))

        results = tuple(self._results[spec.name] for spec in self.specs)
        return RunReport(results, interrupted=self.interrupted)


class Installer:
    def __init__(self, config: InstallerConfig):
        self.config = config

    def plan(self, specs: Sequence[PackageSpec]) -> Plan:
        """Validate every spec and resolve its argv without running anything."""
        self._check_config()
        valid = validate_specs(specs)
        self._check_template(valid)
        return [(spec, resolve_command(spec, self.config.template)) for spec in valid]

    def run(
        self,
        specs: Sequence[PackageSpec],
        *,
        on_result: ResultCallback | None = None,
    ) -> RunReport:
        planned = self.plan(specs)
        run = _Run([spec for spec, _ in planned], on_result)

        if self.config.jobs > 1 and len(planned) > 1:
            self._warn_if_locking(planned)
            self._run_parallel(planned, run)
        else:
            self._run_sequential(planned, run)

        report = run.finalize()

        if run.fatal is not None:
            raise EngineFatal(
                f"Cannot start install processes: {run.fatal}", report
            ) from run.fatal

        return report

    def _check_config(self) -> None:
        if self.config.jobs < 1:
            raise ConfigError(f"jobs must be >= 1, got {self.config.jobs}")

        if self.config.timeout_s <= 0:
            raise ConfigError(f"timeout must be positive, got {self.config.timeout_s}")

        if self.config.stderr_lines < 0:
            raise ConfigError(f"stderr_lines must be >= 0, got {self.config.stderr_lines}")

        if self.config.grace_s < 0:
            raise ConfigError(f"grace period must be >= 0, got {self.config.grace_s}")

    def _check_template(self, specs: list[PackageSpec]) -> None:
        if all(spec.install_command is not None for spec in specs):
            return

        template = self.config.template
        if template is None or "{name}" not in template:
            raise ConfigError(f"Install template must contain '{{name}}': {template!r}")

    def _run_sequential(self, planned: Plan, run: _Run) -> None:
        try:
            for spec, argv in planned:
                self._attempt(spec, argv, run)
        except KeyboardInterrupt:
            logger.warning("Interrupted, not starting remaining installs")
            run.cancel()

    def _run_parallel(self, planned: Plan, run: _Run) -> None:
        pool = ThreadPoolExecutor(
            max_workers=self.config.jobs, thread_name_prefix="bulkinstall"
        )
        try:
            futures = [pool.submit(self._attempt, spec, argv, run) for spec, argv in planned]
            for future in as_completed(futures):
                future.result()
        except KeyboardInterrupt:
            logger.warning("Interrupted, stopping in-flight installs")
            run.cancel()
            run.terminate_inflight(self.config.grace_s)
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

    def _attempt(self, spec: PackageSpec, argv: list[str], run: _Run) -> None:
        if run.stop.is_set():
            return

        logger.info("CMD %s", _fmt_argv(argv))
        start = time.monotonic()

        try:
            proc = _spawn(argv)
        except (FileNotFoundError, PermissionError) as exc:
            run.mark_running(spec)
            run.record(
                InstallResult(
                    spec,
                    Status.FAILED,
                    tuple(argv),
                    exit_code=127 if isinstance(exc, FileNotFoundError) else 126,
                    stderr_tail=str(exc),
                    reason=FailureReason.NOT_FOUND,
                    duration_s=time.monotonic() - start,
                )
            )
            return
        except OSError as exc:
            logger.error("%s: cannot spawn %s: %s", spec.name, argv[0], exc)
            run.abort(exc)
            return

        run.mark_running(spec, proc)
        try:
            result = self._wait(spec, argv, proc, run, start)
        finally:
            run.untrack(proc)

        run.record(result)

    def _wait(
        self,
        spec: PackageSpec,
        argv: list[str],
        proc: subprocess.Popen,
        run: _Run,
        start: float,
    ) -> InstallResult:
        reason: FailureReason | None = None

        try:
            out, err = proc.communicate(timeout=self.config.timeout_s)
        except subprocess.TimeoutExpired:
            logger.warning(
                "%s: timed out after %ss, terminating", spec.name, self.config.timeout_s
            )
            self._stop(proc)
            out, err = self._drain(proc)
            reason = FailureReason.TIMEOUT
        except KeyboardInterrupt:
            logger.warning("%s: interrupted, terminating", spec.name)
            run.cancel()
            self._stop(proc)
            out, err = self._drain(proc)
            reason = FailureReason.INTERRUPTED

        duration = time.monotonic() - start
        code = proc.returncode

        if out:
            logger.debug("STDOUT %s: %s", spec.name, out.strip())
        if err:
            logger.debug("STDERR %s: %s", spec.name, err.strip())

        if reason is None and code == 0:
            status = Status.SUCCESS
        else:
            status = Status.FAILED
            if reason is None:
                reason = FailureReason.INTERRUPTED if run.interrupted else FailureReason.EXIT_CODE

        return InstallResult(
            spec,
            status,
            tuple(argv),
            exit_code=code,
            stderr_tail=_tail(err or "", self.config.stderr_lines),
            reason=reason,
            duration_s=duration,
        )

    def _stop(self, proc: subprocess.Popen) -> None:
        _stop_groups([proc], self.config.grace_s)
        proc.wait()

    def _drain(self, proc: subprocess.Popen) -> tuple[str, str]:
        # Survivors outside the group may still hold the pipes open.
        try:
            return proc.communicate(timeout=self.config.grace_s)
        except subprocess.TimeoutExpired:
            return "", ""

    def _warn_if_locking(self, planned: Plan) -> None:
        for _, argv in planned:
            head = argv[1:2] if argv[0] == "sudo" else argv[:1]
            if head and Path(head[0]).name in LOCKING_MANAGERS:
                logger.warning(
                    "Running %d parallel jobs with %s, which holds a system-wide lock",
                    self.config.jobs,
                    Path(head[0]).name,
                )
                return
