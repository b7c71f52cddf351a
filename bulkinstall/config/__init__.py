from .distro import detect_distro, template_for
from .loader import load_package_list, load_settings, parse_spec, validate_specs
from .types import (
    ConfigError,
    FileSettings,
    InstallerConfig,
    PackageSpec,
    UnsupportedConfigFormatError,
)

__all__ = [
    "load_settings",
    "load_package_list",
    "parse_spec",
    "validate_specs",
    "detect_distro",
    "template_for",
    "PackageSpec",
    "InstallerConfig",
    "FileSettings",
    "ConfigError",
    "UnsupportedConfigFormatError",
]
