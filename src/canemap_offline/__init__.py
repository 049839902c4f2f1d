"""CaneMap offline cache gate: network-first page caching for field roles."""

from __future__ import annotations

import warnings
from importlib import metadata

DISTRIBUTION = "canemap-offline"
UNINSTALLED_VERSION = "0.0.0+unknown"


def installed_version() -> str:
    """Version of the installed distribution.

    Running from a source checkout has no distribution metadata; the
    gate still starts, but its User-Agent and startup logs say so.
    """
    try:
        return metadata.version(DISTRIBUTION)
    except metadata.PackageNotFoundError:
        warnings.warn(
            f"{DISTRIBUTION} is not installed; reporting version {UNINSTALLED_VERSION}",
            RuntimeWarning,
            stacklevel=2,
        )
        return UNINSTALLED_VERSION


__version__ = installed_version()
