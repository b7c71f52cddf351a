import json
import re
import tomllib
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

from .types import ConfigError, FileSettings, PackageSpec, UnsupportedConfigFormatError

# Package manager names never need shell metacharacters or whitespace.
_NAME_RE = re.compile(r"^[A-Za-z0-9@][A-Za-z0-9._+@/=~-]*$")

_SETTINGS_KEYS = {
    "template",
    "distro",
    "timeout",
    "jobs",
    "stderr_lines",
    "grace_period",
    "packages",
}


def load_settings(path: str | Path) -> FileSettings:
    pure_path = _resolve_file(path)
    fmt = _detect_format(pure_path)
    raw_file = _parse_file(pure_path, fmt)
    return _build_settings(raw_file)


def load_package_list(path: str | Path) -> list[PackageSpec]:
    """Read a package list: one ``name[:command]`` entry per line.

    Blank lines and lines starting with ``#`` are skipped.
    """
    pure_path = _resolve_file(path)

    try:
        text = pure_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"{pure_path}: cannot read package list") from exc

    specs = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        entry = line.strip()
        if not entry or entry.startswith("#"):
            continue
        try:
            specs.append(parse_spec(entry))
        except ConfigError as exc:
            raise ConfigError(f"{pure_path}:{lineno}: {exc}") from exc

    return specs


def parse_spec(entry: str) -> PackageSpec:
    """Parse ``name[:command]``, splitting at the first colon."""
    name, sep, command = entry.partition(":")
    name = name.strip()

    if len(name) < 1:
        raise ConfigError(f"Package name missing in entry: {entry!r}")

    if not sep:
        return PackageSpec(name)

    command = command.strip()
    if len(command) < 1:
        raise ConfigError(f"{name}: custom command is empty")

    return PackageSpec(name, command)


def validate_specs(specs: Iterable[PackageSpec]) -> list[PackageSpec]:
    out: list[PackageSpec] = []
    seen: set[str] = set()

    for spec in specs:
        if not isinstance(spec.name, str) or len(spec.name) < 1:
            raise ConfigError("A package name can't be empty")

        if not _NAME_RE.match(spec.name):
            raise ConfigError(f"Invalid package name: {spec.name!r}")

        if spec.name in seen:
            raise ConfigError(f"Duplicate package: {spec.name}")

        if spec.install_command is not None and len(spec.install_command.strip()) < 1:
            raise ConfigError(f"{spec.name}: custom command is empty")

        out.append(spec)
        seen.add(spec.name)

    if len(out) < 1:
        raise ConfigError("There must be at least one package to install")

    return out


def _resolve_file(path: str | Path) -> Path:
    pure_path = Path(path).expanduser().resolve()

    if not pure_path.exists():
        raise ConfigError(f"File not found: {pure_path}")

    if not pure_path.is_file():
        raise ConfigError(f"Path is not a file: {pure_path}")

    return pure_path


def _detect_format(path: Path) -> str:
    fmt = path.suffix
    match fmt:
        case ".yaml" | ".yml":
            return "yaml"
        case ".toml":
            return "toml"
        case ".json":
            return "json"
        case _:
            raise UnsupportedConfigFormatError(
                f"Non supported file extension: {fmt}\n Expected format: .yml/.yaml, .toml, .json"
            )


def _parse_file(path: Path, fmt: str) -> Mapping[str, Any]:
    match fmt:
        case "yaml":
            return _parse_yaml(path)
        case "toml":
            return _parse_toml(path)
        case "json":
            return _parse_json(path)
        case _:
            raise AssertionError("Unreachable")


def _parse_yaml(path: Path) -> Mapping[str, Any]:
    try:
        raw_file = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML") from exc

    return _check_mapping(path, "YAML", raw_file)


def _parse_toml(path: Path) -> Mapping[str, Any]:
    try:
        raw_file = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: invalid TOML") from exc

    return _check_mapping(path, "TOML", raw_file)


def _parse_json(path: Path) -> Mapping[str, Any]:
    try:
        raw_file = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path}: invalid JSON") from exc

    return _check_mapping(path, "JSON", raw_file)


def _check_mapping(path: Path, fmt: str, raw_file: Any) -> Mapping[str, Any]:
    if not isinstance(raw_file, Mapping):
        raise ConfigError(
            f"{path}: {fmt} parsed succesfully but top-level value is not an object: {type(raw_file)}"
        )

    return raw_file


def _build_settings(raw: Mapping[str, Any]) -> FileSettings:
    settings = FileSettings()

    for key in raw.keys():
        if key not in _SETTINGS_KEYS:
            raise ConfigError(f"Can't process setting: {key}")

    if "template" in raw:
        settings.template = _non_empty_str(raw["template"], "template")

    if "distro" in raw:
        settings.distro = _non_empty_str(raw["distro"], "distro").lower()

    if "timeout" in raw:
        settings.timeout_s = _positive_number(raw["timeout"], "timeout")

    if "jobs" in raw:
        settings.jobs = _int_at_least(raw["jobs"], "jobs", 1)

    if "stderr_lines" in raw:
        settings.stderr_lines = _int_at_least(raw["stderr_lines"], "stderr_lines", 0)

    if "grace_period" in raw:
        settings.grace_s = _non_negative_number(raw["grace_period"], "grace_period")

    if "packages" in raw:
        settings.packages = _build_packages(raw["packages"])

    return settings


def _build_packages(raw: Any) -> list[PackageSpec]:
    if not isinstance(raw, list):
        raise ConfigError(f"'packages' must be a list, got {type(raw)}")

    specs = []
    for item in raw:
        if isinstance(item, str):
            specs.append(parse_spec(item))
            continue

        if not isinstance(item, Mapping):
            raise ConfigError(f"{item!r} should be a string or a mapping in 'packages'")

        for field in item.keys():
            if field not in {"name", "command"}:
                raise ConfigError(f"Can't process package field: {field}")

        if "name" not in item:
            raise ConfigError(f"Package entry missing 'name': {dict(item)}")

        name = _non_empty_str(item["name"], "name")
        command = None
        if "command" in item:
            command = _non_empty_str(item["command"], f"{name}: command")

        specs.append(PackageSpec(name, command))

    return specs


def _non_empty_str(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"'{what}' should be a string")

    if len(value.strip()) < 1:
        raise ConfigError(f"'{what}' can't be empty")

    return value.strip()


def _positive_number(value: Any, what: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"'{what}' must be a positive number")

    return float(value)


def _int_at_least(value: Any, what: str, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigError(f"'{what}' must be an integer >= {minimum}")

    return value


def _non_negative_number(value: Any, what: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigError(f"'{what}' must be a non-negative number")

    return float(value)
