"""
Version helpers for the ZeroSync package.
"""

from typing import Tuple

VersionInfo = Tuple[int, int, int, str, int]


def get_version(version: VersionInfo) -> str:
    """
    Build a PEP 440 version string from a version tuple.

    Args:
        version: (major, minor, micro, releaselevel, serial)

    Returns:
        Version string such as "0.1.0", "0.1.0a1" or "0.2.dev3"
    """
    major, minor, micro, releaselevel, serial = version

    version_str = f"{major}.{minor}.{micro}"
    suffixes = {"alpha": "a", "beta": "b", "rc": "rc"}

    if releaselevel == "dev":
        version_str += f".dev{serial}"
    elif releaselevel in suffixes:
        version_str += f"{suffixes[releaselevel]}{serial}"

    return version_str


def get_major_version(version: VersionInfo) -> str:
    """Return "major.minor" for a version tuple."""
    major, minor, _, _, _ = version
    return f"{major}.{minor}"
