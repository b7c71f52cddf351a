from dataclasses import dataclass, field


@dataclass(frozen=True)
class PackageSpec:
    name: str
    install_command: str | None = None


@dataclass
class InstallerConfig:
    template: str | None = None
    timeout_s: float = 300.0
    jobs: int = 1
    stderr_lines: int = 20
    grace_s: float = 5.0


@dataclass
class FileSettings:
    template: str | None = None
    distro: str | None = None
    timeout_s: float | None = None
    jobs: int | None = None
    stderr_lines: int | None = None
    grace_s: float | None = None
    packages: list[PackageSpec] = field(default_factory=list)


class ConfigError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class UnsupportedConfigFormatError(ConfigError):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)
