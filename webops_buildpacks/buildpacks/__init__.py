"""
Toolchain buildpacks.

Each buildpack implements the same detect/build interface; the phase
controller knows nothing about individual toolchains.
"""

from typing import List

from .base import Buildpack, DetectResult, opt_in, opt_out
from .dotnet import DotNetSDKBuildpack
from .nodejs import NPMBuildpack

__all__ = [
    'Buildpack',
    'DetectResult',
    'opt_in',
    'opt_out',
    'DotNetSDKBuildpack',
    'NPMBuildpack',
    'ALL_BUILDPACKS',
    'get_buildpack',
]

# Buildpacks in execution order; all are optional members of the default group.
ALL_BUILDPACKS = [
    DotNetSDKBuildpack,
    NPMBuildpack,
]


def get_buildpack(name: str) -> Buildpack:
    """
    Get a buildpack instance by name.

    Raises:
        KeyError: If no buildpack has that name.
    """
    for buildpack_class in ALL_BUILDPACKS:
        if buildpack_class.name == name:
            return buildpack_class()
    raise KeyError(f"unknown buildpack {name!r}")


def default_group() -> List[Buildpack]:
    return [buildpack_class() for buildpack_class in ALL_BUILDPACKS]
