"""Build and runtime version information."""

from __future__ import annotations

import dataclasses
import functools
import json
import platform as _platform
import sys
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as _dist_version

UNKNOWN = "unknown"
DEFAULT_GIT_VERSION = "devel"

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "armv7l": "arm",
}


@dataclass
class Info:
    """Known information on how this program was built and is running."""

    git_version: str = DEFAULT_GIT_VERSION
    git_commit: str = UNKNOWN
    git_tree_state: str = UNKNOWN
    build_date: str = UNKNOWN
    python_version: str = UNKNOWN
    compiler: str = UNKNOWN
    platform: str = UNKNOWN

    ascii_name: str = "true"
    font_name: str = ""
    name: str = ""
    description: str = ""

    def _rows(self) -> list[tuple[str, str]]:
        return [
            ("GitVersion:", self.git_version),
            ("GitCommit:", self.git_commit),
            ("GitTreeState:", self.git_tree_state),
            ("BuildDate:", self.build_date),
            ("PythonVersion:", self.python_version),
            ("Compiler:", self.compiler),
            ("Platform:", self.platform),
        ]

    def __str__(self) -> str:
        parts: list[str] = []
        if self.name:
            header = self.name
            if self.description:
                header += f": {self.description}"
            parts.append(header + "\n\n")

        rows = self._rows()
        width = max(len(label) for label, _ in rows) + 2
        parts.extend(f"{label.ljust(width)}{value}\n" for label, value in rows)
        return "".join(parts)

    def to_json(self) -> str:
        """Return the version information as indented JSON."""
        payload = {
            "gitVersion": self.git_version,
            "gitCommit": self.git_commit,
            "gitTreeState": self.git_tree_state,
            "buildDate": self.build_date,
            "pythonVersion": self.python_version,
            "compiler": self.compiler,
            "platform": self.platform,
        }
        return json.dumps(payload, indent=2)


def _git_version() -> str:
    try:
        found = _dist_version("hauler")
    except PackageNotFoundError:
        return DEFAULT_GIT_VERSION
    return found or DEFAULT_GIT_VERSION


def _platform_string() -> str:
    system = _platform.system().lower() or sys.platform
    machine = _platform.machine().lower()
    arch = _ARCH_ALIASES.get(machine, machine or UNKNOWN)
    return f"{system}/{arch}"


@functools.lru_cache(maxsize=None)
def _base_info() -> Info:
    return Info(
        git_version=_git_version(),
        python_version=_platform.python_version(),
        compiler=_platform.python_implementation().lower(),
        platform=_platform_string(),
    )


def get_version_info() -> Info:
    """Return a fresh copy of the version information, computed once."""
    return dataclasses.replace(_base_info())