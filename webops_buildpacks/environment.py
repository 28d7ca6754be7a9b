"""
Layer environment scopes.

Each layer carries three scopes of environment variables:

- Build: visible to later buildpacks while the image is being built
- Launch: visible to the application process at run time
- Shared: visible in both phases

Each scope supports three write operators (default, override, prepend).
Scopes are serialized next to the layer directory using the Cloud Native
Buildpacks layout, one file per variable, and can be read back and
applied on top of a process environment.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


class Action(Enum):
    """Write operator recorded for an environment entry."""
    DEFAULT = "default"
    OVERRIDE = "override"
    PREPEND = "prepend"


class Scope(Enum):
    """Phase partition of layer environment variables."""
    BUILD = "build"
    LAUNCH = "launch"
    SHARED = "shared"

    @property
    def directory(self) -> str:
        """Directory name used for this scope inside a layer."""
        if self is Scope.SHARED:
            return "env"
        return f"env.{self.value}"


@dataclass
class EnvEntry:
    """A single environment variable with its write operator."""
    value: str
    action: Action
    delimiter: str = ""


class Environment:
    """An ordered key/value store for one scope."""

    def __init__(self) -> None:
        self._entries: Dict[str, EnvEntry] = {}

    def default(self, key: str, value: str) -> None:
        """Set ``key`` only if it is not already present."""
        if key in self._entries:
            return
        self._entries[key] = EnvEntry(value, Action.DEFAULT)

    def override(self, key: str, value: str) -> None:
        """Set ``key`` unconditionally."""
        self._entries[key] = EnvEntry(value, Action.OVERRIDE)

    def prepend(self, key: str, delimiter: str, value: str) -> None:
        """Put ``value`` in front of the current value of ``key``.

        The most recently prepended value wins at lookup time, so two
        calls with A then B produce ``B<delim>A<delim><existing>``.

        Prepending to a default turns the entry into a prepend, so the
        search path also reaches a process environment that already sets
        ``key``. An override stays an override with the joined value.
        """
        existing = self._entries.get(key)
        if existing is None:
            self._entries[key] = EnvEntry(value, Action.PREPEND, delimiter)
            return
        existing.value = f"{value}{delimiter}{existing.value}"
        if existing.action is Action.DEFAULT:
            existing.action = Action.PREPEND
        if existing.action is Action.PREPEND:
            existing.delimiter = delimiter

    def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        return entry.value if entry else None

    def entry(self, key: str) -> Optional[EnvEntry]:
        return self._entries.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def items(self) -> Iterator[Tuple[str, EnvEntry]]:
        return iter(self._entries.items())

    def as_dict(self) -> Dict[str, str]:
        """Plain key/value view of the scope."""
        return {key: entry.value for key, entry in self._entries.items()}

    def apply(self, base: Mapping[str, str]) -> Dict[str, str]:
        """Compose this scope on top of ``base`` and return the result.

        Args:
            base: Environment to start from; it is not modified.

        Returns:
            A new mapping with default, override and prepend entries applied.
        """
        result = dict(base)
        for key, entry in self._entries.items():
            if entry.action is Action.DEFAULT:
                result.setdefault(key, entry.value)
            elif entry.action is Action.OVERRIDE:
                result[key] = entry.value
            elif key in result and result[key]:
                result[key] = f"{entry.value}{entry.delimiter}{result[key]}"
            else:
                result[key] = entry.value
        return result

    def write(self, directory: Path) -> None:
        """Serialize the scope into ``directory``, one file per variable."""
        if not self._entries:
            return
        directory.mkdir(parents=True, exist_ok=True)
        for key, entry in self._entries.items():
            (directory / f"{key}.{entry.action.value}").write_text(entry.value)
            if entry.action is Action.PREPEND:
                (directory / f"{key}.delim").write_text(entry.delimiter)

    @classmethod
    def read(cls, directory: Path) -> "Environment":
        """Load a scope previously written with :meth:`write`."""
        env = cls()
        if not directory.is_dir():
            return env

        for path in sorted(directory.iterdir()):
            key, _, suffix = path.name.rpartition(".")
            if not key or suffix == "delim":
                continue
            try:
                action = Action(suffix)
            except ValueError:
                logger.warning(f"Ignoring unknown environment file {path}")
                continue
            delimiter = ""
            if action is Action.PREPEND:
                delim_file = directory / f"{key}.delim"
                if delim_file.exists():
                    delimiter = delim_file.read_text()
            env._entries[key] = EnvEntry(path.read_text(), action, delimiter)
        return env


class LayerEnvironment:
    """The three environment scopes of a single layer."""

    def __init__(self) -> None:
        self.scopes: Dict[Scope, Environment] = {scope: Environment() for scope in Scope}

    @property
    def build(self) -> Environment:
        return self.scopes[Scope.BUILD]

    @property
    def launch(self) -> Environment:
        return self.scopes[Scope.LAUNCH]

    @property
    def shared(self) -> Environment:
        return self.scopes[Scope.SHARED]

    def is_empty(self) -> bool:
        return not any(len(env) for env in self.scopes.values())

    def for_phase(self, phase: Scope, base: Mapping[str, str]) -> Dict[str, str]:
        """Compose the environment seen by ``phase`` on top of ``base``.

        Shared entries apply first, then the phase's own scope.
        """
        if phase is Scope.SHARED:
            raise ValueError("phase must be Scope.BUILD or Scope.LAUNCH")
        return self.scopes[phase].apply(self.shared.apply(base))

    def write(self, layer_path: Path) -> None:
        for scope, env in self.scopes.items():
            env.write(layer_path / scope.directory)

    @classmethod
    def read(cls, layer_path: Path) -> "LayerEnvironment":
        layer_env = cls()
        for scope in Scope:
            layer_env.scopes[scope] = Environment.read(layer_path / scope.directory)
        return layer_env
