"""WebOps buildpacks - layer lifecycle engine for container image builds."""

__version__ = "0.1.0"

from .cache import CacheDecision, compute_cache_decision, fingerprint, install_with_cache
from .capabilities import CapabilityRule, CapabilityTable, parse_version, select_behavior
from .config import BuildConfig, DetectOverride
from .environment import Environment, LayerEnvironment, Scope
from .errors import (
    BuildpackError,
    CapabilityMismatchError,
    ConfigurationError,
    DetectionError,
    EnvironmentModeError,
    InstallationError,
    LayerCreationError,
)
from .layers import Layer, LayerFlags, LayerStore
from .lifecycle import BuildContext, BuildpackState, BuildReport, DetectContext, PhaseController

__all__ = [
    "__version__",
    "BuildConfig",
    "BuildContext",
    "BuildpackError",
    "BuildpackState",
    "BuildReport",
    "CacheDecision",
    "CapabilityMismatchError",
    "CapabilityRule",
    "CapabilityTable",
    "ConfigurationError",
    "DetectContext",
    "DetectOverride",
    "DetectionError",
    "Environment",
    "EnvironmentModeError",
    "InstallationError",
    "Layer",
    "LayerCreationError",
    "LayerEnvironment",
    "LayerFlags",
    "LayerStore",
    "PhaseController",
    "Scope",
    "compute_cache_decision",
    "fingerprint",
    "install_with_cache",
    "parse_version",
    "select_behavior",
]
