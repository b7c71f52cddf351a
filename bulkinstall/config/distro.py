"""Default install templates per Linux distribution.

The distro id comes from ``/etc/os-release`` (``ID`` first, then each entry
of ``ID_LIKE``), so derivatives such as Mint or Manjaro fall back to their
parent's package manager.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .types import ConfigError

logger = logging.getLogger(__name__)

OS_RELEASE = "/etc/os-release"

_APT = "apt-get install -y {name}"
_DNF = "dnf install -y {name}"
_YUM = "yum install -y {name}"
_PACMAN = "pacman -S --noconfirm --needed {name}"
_ZYPPER = "zypper --non-interactive install {name}"
_APK = "apk add {name}"
_EMERGE = "emerge --noreplace {name}"

TEMPLATES: dict[str, str] = {
    "debian": _APT,
    "ubuntu": _APT,
    "linuxmint": _APT,
    "pop": _APT,
    "raspbian": _APT,
    "fedora": _DNF,
    "rhel": _DNF,
    "centos": _DNF,
    "rocky": _DNF,
    "almalinux": _DNF,
    "amzn": _YUM,
    "arch": _PACMAN,
    "manjaro": _PACMAN,
    "endeavouros": _PACMAN,
    "opensuse": _ZYPPER,
    "opensuse-leap": _ZYPPER,
    "opensuse-tumbleweed": _ZYPPER,
    "sles": _ZYPPER,
    "suse": _ZYPPER,
    "alpine": _APK,
    "gentoo": _EMERGE,
}

# Package managers that serialize on a system-wide lock file.
LOCKING_MANAGERS = frozenset(
    {"apt", "apt-get", "dpkg", "dnf", "yum", "pacman", "zypper", "apk", "emerge"}
)


def read_os_release(path: str | Path = OS_RELEASE) -> dict[str, str]:
    fields: dict[str, str] = {}
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return fields
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Cannot read %s: %s", path, exc)
        return fields

    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        fields[key.strip()] = value.strip().strip("\"'")

    return fields


def detect_distro(path: str | Path = OS_RELEASE) -> str | None:
    """Return the first known distro id from os-release, or None."""
    fields = read_os_release(path)
    candidates = [fields.get("ID", "")]
    candidates += fields.get("ID_LIKE", "").split()

    for candidate in candidates:
        candidate = candidate.lower()
        if candidate in TEMPLATES:
            logger.info("Detected distro %s (os-release ID=%s)", candidate, fields.get("ID"))
            return candidate

    logger.debug("No known distro in %s: %s", path, fields)
    return None


def template_for(distro: str) -> str:
    key = distro.strip().lower()
    if key not in TEMPLATES:
        known = ", ".join(sorted(TEMPLATES))
        raise ConfigError(f"Unknown distro '{distro}'. Known: {known}")

    return TEMPLATES[key]
