"""Build configuration for WebOps buildpacks with validation.

Everything a buildpack would otherwise read ad hoc from the process
environment (dev mode, forced runtime, stack) is resolved once into a
``BuildConfig`` and injected into the phase controller.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Self

from .errors import ConfigurationError

DEVMODE_ENV = "WEBOPS_DEVMODE"
RUNTIME_ENV = "WEBOPS_RUNTIME"
RUNTIME_VERSION_ENV = "WEBOPS_RUNTIME_VERSION"
STACK_ID_ENV = "CNB_STACK_ID"
LAYERS_DIR_ENV = "CNB_LAYERS_DIR"
DOWNLOAD_CACHE_ENV = "WEBOPS_DOWNLOAD_CACHE"

TRUE_VALUES = {"1", "t", "true"}
FALSE_VALUES = {"0", "f", "false"}


def parse_bool(name: str, value: Optional[str]) -> bool:
    """Parse a boolean environment value strictly.

    Raises:
        ConfigurationError: If the value is not a recognized boolean.
    """
    if value is None or value.strip() == "":
        return False
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ConfigurationError(
        f"invalid boolean value {value!r} for {name}",
        [f"Set {name} to true or false"]
    )


@dataclass(frozen=True)
class DetectOverride:
    """A forced detect outcome that replaces probing for one runtime."""
    opt_in: bool
    reason: str


@dataclass
class BuildConfig:
    """Resolved configuration of a single build."""

    # Configuration schema for validation
    CONFIG_SCHEMA = {
        'app_dir': {'type': str, 'required': True},
        'layers_dir': {'type': str, 'required': True},
        'dev_mode': {'type': bool, 'required': False, 'default': False},
        'stack_id': {'type': str, 'required': False, 'default': ''},
        'runtime': {'type': str, 'required': False, 'validator': 'validate_runtime'},
        'runtime_version': {'type': str, 'required': False},
        'download_cache_dir': {'type': str, 'required': False},
    }

    app_dir: Path
    layers_dir: Path
    dev_mode: bool = False
    stack_id: str = ""
    runtime_version: Optional[str] = None
    download_cache_dir: Optional[Path] = None
    detect_overrides: Dict[str, DetectOverride] = field(default_factory=dict)
    forced_runtime: Optional[str] = None

    def override_for(self: Self, runtime: str) -> Optional[DetectOverride]:
        """Return the forced detect outcome for ``runtime``, if any.

        An explicit entry in ``detect_overrides`` wins. Otherwise a forced
        runtime opts that runtime in and every other runtime out.
        """
        if runtime in self.detect_overrides:
            return self.detect_overrides[runtime]
        if not self.forced_runtime:
            return None
        if self.forced_runtime == runtime:
            return DetectOverride(True, f"Using runtime from {RUNTIME_ENV}")
        return DetectOverride(
            False, f'{RUNTIME_ENV} is set to "{self.forced_runtime}", not "{runtime}"'
        )

    @staticmethod
    def validate_runtime(runtime: str) -> bool:
        return bool(runtime) and runtime.replace("-", "").replace("_", "").isalnum()

    @classmethod
    def validate(cls, values: Dict[str, Any]) -> None:
        """Validate raw configuration values against the schema.

        Raises:
            ConfigurationError: If validation fails.
        """
        errors = []

        for key, schema in cls.CONFIG_SCHEMA.items():
            value = values.get(key)

            if schema['required'] and value is None:
                errors.append(f"Required field '{key}' is missing")
                continue

            if value is None:
                continue

            if not isinstance(value, schema['type']):
                errors.append(f"Field '{key}' must be of type {schema['type'].__name__}")
                continue

            if 'validator' in schema:
                validator = getattr(cls, schema['validator'])
                if not validator(value):
                    errors.append(f"Field '{key}' failed validation")

        unknown = sorted(set(values) - set(cls.CONFIG_SCHEMA))
        if unknown:
            errors.append(f"Unknown fields: {', '.join(unknown)}")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "BuildConfig":
        cls.validate(values)
        download_cache = values.get('download_cache_dir')
        return cls(
            app_dir=Path(values['app_dir']),
            layers_dir=Path(values['layers_dir']),
            dev_mode=values.get('dev_mode', False),
            stack_id=values.get('stack_id', ''),
            runtime_version=values.get('runtime_version') or None,
            download_cache_dir=Path(download_cache) if download_cache else None,
            forced_runtime=values.get('runtime') or None,
        )

    @classmethod
    def from_environ(
        cls,
        app_dir: Path,
        layers_dir: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
        config_file: Optional[Path] = None,
    ) -> "BuildConfig":
        """
        Resolve configuration from an environment mapping.

        Args:
            app_dir: Application source directory
            layers_dir: Layers root; falls back to ``CNB_LAYERS_DIR``
            environ: Environment to read, defaults to ``os.environ``
            config_file: Optional JSON file whose values are overridden
                by the environment

        Raises:
            ConfigurationError: If a value is missing or malformed.
        """
        if environ is None:
            environ = os.environ

        values: Dict[str, Any] = {}
        if config_file is not None:
            values.update(load_config_file(config_file))

        values['app_dir'] = str(app_dir)
        if layers_dir is not None:
            values['layers_dir'] = str(layers_dir)
        elif environ.get(LAYERS_DIR_ENV):
            values['layers_dir'] = environ[LAYERS_DIR_ENV]

        if DEVMODE_ENV in environ:
            values['dev_mode'] = parse_bool(DEVMODE_ENV, environ[DEVMODE_ENV])
        if environ.get(STACK_ID_ENV):
            values['stack_id'] = environ[STACK_ID_ENV]
        if environ.get(RUNTIME_ENV):
            values['runtime'] = environ[RUNTIME_ENV].strip()
        if environ.get(RUNTIME_VERSION_ENV):
            values['runtime_version'] = environ[RUNTIME_VERSION_ENV].strip()
        if environ.get(DOWNLOAD_CACHE_ENV):
            values['download_cache_dir'] = environ[DOWNLOAD_CACHE_ENV]

        return cls.from_dict(values)


def load_config_file(path: Path) -> Dict[str, Any]:
    """Load build configuration values from a JSON file.

    Raises:
        ConfigurationError: If the file cannot be read or is not a JSON object.
    """
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Failed to load configuration file {path}: {e}",
            ["Check that the file exists and contains a JSON object"]
        ) from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a JSON object")
    return data
