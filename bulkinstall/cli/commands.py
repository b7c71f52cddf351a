from __future__ import annotations

import argparse
import shlex
import sys

from bulkinstall.config import (
    ConfigError,
    FileSettings,
    InstallerConfig,
    PackageSpec,
    detect_distro,
    load_package_list,
    load_settings,
    parse_spec,
    template_for,
)
from bulkinstall.executor import (
    EngineFatal,
    FailureReason,
    Installer,
    InstallResult,
    Outcome,
    RunReport,
)
from bulkinstall.logging_utils import configure_logging, verbosity_to_level

from .args import build_parser

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_ALL_FAILED = 2
EXIT_CONFIG = 64
EXIT_FATAL = 70
EXIT_INTERRUPTED = 130

_OUTCOME_CODES = {
    Outcome.ALL_SUCCEEDED: EXIT_OK,
    Outcome.PARTIAL_FAILURE: EXIT_PARTIAL,
    Outcome.ALL_FAILED: EXIT_ALL_FAILED,
}


def run_cli(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        # --help/--version exit 0, usage errors are invalid input
        return EXIT_OK if not exc.code else EXIT_CONFIG

    try:
        _setup_logging(args)
        installer, specs = _prepare(args)
        if args.dry_run:
            return cmd_plan(installer, specs)
        return cmd_install(installer, specs)

    except ConfigError as exc:
        print(f"bulkinstall: {exc}", file=sys.stderr)
        return EXIT_CONFIG

    except EngineFatal as exc:
        _print_summary(exc.report)
        print(f"bulkinstall: {exc}", file=sys.stderr)
        return EXIT_FATAL

    except KeyboardInterrupt:
        return EXIT_INTERRUPTED


def main() -> None:
    sys.exit(run_cli())


def cmd_install(installer: Installer, specs: list[PackageSpec]) -> int:
    report = installer.run(specs, on_result=_print_result)
    _print_summary(report)
    if report.interrupted:
        return EXIT_INTERRUPTED
    return _OUTCOME_CODES[report.outcome]


def cmd_plan(installer: Installer, specs: list[PackageSpec]) -> int:
    for spec, argv in installer.plan(specs):
        print(f"{spec.name}: {shlex.join(argv)}")
    return EXIT_OK


def _setup_logging(args: argparse.Namespace) -> None:
    try:
        configure_logging(verbosity_to_level(args.verbose), args.log_file)
    except OSError as exc:
        raise ConfigError(f"Cannot open log file {args.log_file}: {exc}") from exc


def _prepare(args: argparse.Namespace) -> tuple[Installer, list[PackageSpec]]:
    settings = load_settings(args.config) if args.config else FileSettings()

    specs = list(settings.packages)
    for path in args.file:
        specs.extend(load_package_list(path))
    for entry in args.packages:
        specs.append(parse_spec(entry))

    needs_template = any(spec.install_command is None for spec in specs)
    config = InstallerConfig(template=_resolve_template(args, settings, needs_template))
    config.timeout_s = _pick(args.timeout, settings.timeout_s, config.timeout_s)
    config.jobs = _pick(args.jobs, settings.jobs, config.jobs)
    config.stderr_lines = _pick(args.stderr_lines, settings.stderr_lines, config.stderr_lines)
    config.grace_s = _pick(args.grace_period, settings.grace_s, config.grace_s)

    return Installer(config), specs


def _resolve_template(
    args: argparse.Namespace, settings: FileSettings, needed: bool
) -> str | None:
    if args.template is not None:
        return args.template
    if args.distro is not None:
        return template_for(args.distro)
    if settings.template is not None:
        return settings.template
    if settings.distro is not None:
        return template_for(settings.distro)
    if not needed:
        # Every entry carries its own command.
        return None

    distro = detect_distro()
    if distro is None:
        raise ConfigError(
            "Cannot detect the distribution's package manager; pass --template or --distro"
        )
    return template_for(distro)


def _pick(cli, file, default):
    if cli is not None:
        return cli
    if file is not None:
        return file
    return default


def _format_result(result: InstallResult) -> str:
    if result.ok:
        return f"{result.package.name}: OK"

    match result.reason:
        case FailureReason.TIMEOUT:
            detail = "timeout"
        case FailureReason.INTERRUPTED:
            detail = "interrupted"
        case FailureReason.NOT_ATTEMPTED:
            detail = "not attempted"
        case _:
            detail = f"exit={result.exit_code}"

    return f"{result.package.name}: FAILED ({detail})"


def _print_result(result: InstallResult) -> None:
    print(_format_result(result), flush=True)


def _print_summary(report: RunReport) -> None:
    print(
        f"Summary: {len(report)} packages, {len(report.succeeded)} succeeded, "
        f"{len(report.failed)} failed, {len(report.not_attempted)} not attempted"
    )
