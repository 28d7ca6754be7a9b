"""
Layer storage for buildpacks.

A layer is a directory owned by exactly one buildpack plus a metadata
record persisted next to it:

    <layers_dir>/<buildpack_id>/<name>/        layer contents and env/ dirs
    <layers_dir>/<buildpack_id>/<name>.toml    [types] flags and [metadata]

Metadata is read once when the layer is acquired and written once when
the owning buildpack's build succeeds. Clearing a layer deletes its
record; nothing else touches it.
"""

import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import tomlkit
from tomlkit.exceptions import TOMLKitError

from .environment import Environment, LayerEnvironment
from .errors import EnvironmentModeError, LayerCreationError

logger = logging.getLogger(__name__)

LAYER_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


@dataclass(frozen=True)
class LayerFlags:
    """Which phases may use a layer. Fixed when the layer is acquired."""
    build: bool = False
    cache: bool = False
    launch: bool = False
    launch_if_dev_mode: bool = False

    def is_launch(self, dev_mode: bool) -> bool:
        """Whether the layer is part of the launch image for this build."""
        return self.launch or (self.launch_if_dev_mode and dev_mode)


class Layer:
    """Handle to a single layer acquired during a build."""

    def __init__(
        self,
        name: str,
        path: Path,
        flags: LayerFlags,
        dev_mode: bool = False,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        self.name = name
        self.path = path
        self.flags = flags
        self.dev_mode = dev_mode
        self.metadata: Dict[str, str] = dict(metadata or {})
        self.env = LayerEnvironment()
        self._env_mode: Optional[bool] = None

    def __repr__(self) -> str:
        return f"Layer(name={self.name!r}, path={str(self.path)!r}, flags={self.flags})"

    @property
    def toml_path(self) -> Path:
        return self.path.with_name(f"{self.name}.toml")

    @property
    def launch(self) -> bool:
        return self.flags.is_launch(self.dev_mode)

    @property
    def build_env(self) -> Environment:
        return self.env.build

    @property
    def shared_env(self) -> Environment:
        return self.env.shared

    @property
    def launch_env(self) -> Environment:
        """Launch scope; only writable when the layer is part of the launch image."""
        if not self.launch:
            raise EnvironmentModeError(
                f"layer {self.name!r} is not a launch layer in this build "
                f"(dev mode: {str(self.dev_mode).lower()}); launch environment is unavailable"
            )
        return self.env.launch

    def select_environment_mode(self, dev_mode: bool) -> bool:
        """Pick the environment strategy for this layer, exactly once.

        Must be called before any environment entry is written, and a
        layer that is launchable only in dev mode must agree with the
        build's dev mode.

        Returns:
            The selected mode, so callers can branch on it directly.
        """
        if self._env_mode is not None:
            if self._env_mode != dev_mode:
                raise EnvironmentModeError(
                    f"environment mode of layer {self.name!r} was already selected "
                    f"(dev mode: {str(self._env_mode).lower()})"
                )
            return dev_mode
        if not self.env.is_empty():
            raise EnvironmentModeError(
                f"environment mode of layer {self.name!r} must be selected before "
                "environment entries are written"
            )
        if self.flags.launch_if_dev_mode and dev_mode != self.dev_mode:
            raise EnvironmentModeError(
                f"layer {self.name!r} is launchable only in dev mode, but the requested "
                f"mode ({str(dev_mode).lower()}) differs from the build's"
            )
        self._env_mode = dev_mode
        return dev_mode

    def reset(self) -> None:
        """Forget metadata and environment after the directory was cleared."""
        self.metadata = {}
        self.env = LayerEnvironment()
        self._env_mode = None


class LayerStore:
    """Creates, clears and persists the layers of one buildpack."""

    def __init__(self, layers_dir: Path, buildpack_id: str, dev_mode: bool = False) -> None:
        """
        Initialize the store.

        Args:
            layers_dir: Root directory shared by all buildpacks of the build
            buildpack_id: Namespace for this buildpack's layers
            dev_mode: Whether the build runs in developer mode
        """
        self.root = Path(layers_dir) / buildpack_id
        self.buildpack_id = buildpack_id
        self.dev_mode = dev_mode
        self._layers: Dict[str, Layer] = {}

    @property
    def layers(self) -> List[Layer]:
        return list(self._layers.values())

    def acquire(self, name: str, flags: LayerFlags) -> Layer:
        """
        Return the layer called ``name``, creating its directory if needed.

        Acquiring the same name twice in one build returns the same layer.

        Raises:
            LayerCreationError: If the name is invalid, the flags conflict
                with an earlier acquisition, or the directory cannot be created.
        """
        existing = self._layers.get(name)
        if existing is not None:
            if existing.flags != flags:
                raise LayerCreationError(
                    f"layer {name!r} was already acquired with flags {existing.flags}, not {flags}"
                )
            return existing

        if not LAYER_NAME_PATTERN.match(name):
            raise LayerCreationError(f"invalid layer name {name!r}")

        path = self.root / name
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LayerCreationError(
                f"creating layer {name!r} at {path}: {e}",
                ["Check free space and permissions of the layers directory"]
            ) from e

        layer = Layer(name, path, flags, dev_mode=self.dev_mode)
        if flags.cache:
            layer.metadata = self._read_record(layer)
        else:
            # Non-cached layers never carry contents over from a previous build.
            self._empty_directory(layer)

        self._layers[name] = layer
        logger.debug(f"Acquired layer {self.buildpack_id}/{name} with {flags}")
        return layer

    def read_metadata(self, layer: Layer, key: str) -> Optional[str]:
        return layer.metadata.get(key)

    def write_metadata(self, layer: Layer, key: str, value: str) -> None:
        layer.metadata[key] = str(value)

    def clear(self, layer: Layer) -> None:
        """Remove every file in the layer directory and its persisted record.

        Until the next successful flush the layer has no fingerprint, so a
        build that fails after clearing leaves the next build a cache miss.
        """
        self._empty_directory(layer)
        try:
            layer.toml_path.unlink(missing_ok=True)
        except OSError as e:
            raise LayerCreationError(f"removing metadata of layer {layer.name!r}: {e}") from e
        layer.reset()

    def flush(self, layer: Layer) -> None:
        """Persist environment files, then the metadata record.

        On a cache hit the environment is empty and the record renders
        identically, so nothing on disk changes.
        """
        layer.env.write(layer.path)
        self._write_record(layer)

    def flush_all(self) -> None:
        for layer in self._layers.values():
            self.flush(layer)

    def _empty_directory(self, layer: Layer) -> None:
        try:
            for child in layer.path.iterdir():
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child)
                else:
                    child.unlink()
        except OSError as e:
            raise LayerCreationError(f"clearing layer {layer.name!r}: {e}") from e

    def _read_record(self, layer: Layer) -> Dict[str, str]:
        if not layer.toml_path.exists():
            return {}
        try:
            document = tomlkit.parse(layer.toml_path.read_text())
        except (OSError, TOMLKitError) as e:
            logger.warning(f"Unreadable metadata for layer {layer.name!r}, treating as absent: {e}")
            return {}
        metadata = document.get("metadata", {})
        return {str(key): str(value) for key, value in metadata.items()}

    def _render_record(self, layer: Layer) -> str:
        document = tomlkit.document()

        types = tomlkit.table()
        types.add("build", layer.flags.build)
        types.add("cache", layer.flags.cache)
        types.add("launch", layer.launch)
        document.add("types", types)

        metadata = tomlkit.table()
        for key in sorted(layer.metadata):
            metadata.add(key, layer.metadata[key])
        document.add("metadata", metadata)

        return tomlkit.dumps(document)

    def _write_record(self, layer: Layer) -> None:
        rendered = self._render_record(layer)
        target = layer.toml_path

        # Leave an identical record untouched.
        if target.exists() and target.read_text() == rendered:
            return

        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{layer.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(rendered)
            os.replace(tmp_name, target)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


def read_layer_types(toml_path: Path) -> Dict[str, bool]:
    """Return the ``[types]`` table of a layer record, or all-False."""
    types = {"build": False, "cache": False, "launch": False}
    try:
        document = tomlkit.parse(toml_path.read_text())
    except (OSError, TOMLKitError) as e:
        logger.warning(f"Unreadable layer record {toml_path}: {e}")
        return types
    for key, value in document.get("types", {}).items():
        if key in types:
            types[key] = bool(value)
    return types


def discover_layers(layers_dir: Path) -> List[Tuple[Path, Dict[str, bool]]]:
    """List persisted layers as ``(layer_path, types)`` in a stable order."""
    found = []
    for toml_path in sorted(Path(layers_dir).glob("*/*.toml")):
        layer_path = toml_path.with_suffix("")
        if layer_path.is_dir():
            found.append((layer_path, read_layer_types(toml_path)))
    return found
