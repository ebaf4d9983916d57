"""Build metadata resolved once at startup."""

import os
from dataclasses import dataclass
from importlib import metadata
from typing import Mapping, Optional

DISTRIBUTION_NAME = "aplos"
ENV_BUILD_COMMIT = "APLOS_BUILD_COMMIT"


@dataclass(frozen=True)
class BuildInfo:
    """Version and commit identifiers of the running build."""

    version: str = "dev"
    commit: str = "unknown"


def resolve_build_info(environ: Optional[Mapping[str, str]] = None) -> BuildInfo:
    """Read the installed distribution version and the injected commit hash."""
    if environ is None:
        environ = os.environ
    try:
        version = metadata.version(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        version = "dev"
    return BuildInfo(version=version, commit=environ.get(ENV_BUILD_COMMIT) or "unknown")
