"""Base buildpack interface."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, List

from ..errors import DetectionError

if TYPE_CHECKING:
    from ..lifecycle import BuildContext, DetectContext


@dataclass(frozen=True)
class DetectResult:
    """Result from buildpack detection."""

    opt_in: bool
    reason: str


def opt_in(reason: str) -> DetectResult:
    return DetectResult(True, reason)


def opt_out(reason: str) -> DetectResult:
    return DetectResult(False, reason)


class Buildpack(ABC):
    """Base buildpack class.

    ``name`` namespaces the buildpack's layers on disk; ``runtime`` is the
    key that a forced runtime override is matched against.
    """

    name: str = 'base'
    display_name: str = 'Base'
    runtime: str = ''

    @abstractmethod
    def detect(self, ctx: "DetectContext") -> DetectResult:
        """
        Detect if this buildpack applies to the application.

        Must not create or modify layers.

        Args:
            ctx: Read-only detect context

        Returns:
            DetectResult with the opt-in decision and its reason

        Raises:
            DetectionError: If applicability cannot be determined
        """
        pass

    @abstractmethod
    def build(self, ctx: "BuildContext") -> None:
        """
        Provision this buildpack's layers.

        Any exception raised here fails the build.
        """
        pass

    def _file_exists(self, repo_path: Path, *paths: str) -> bool:
        """Check if any of the files exists in the app."""
        for path in paths:
            if (repo_path / path).exists():
                return True
        return False

    def _read_json(self, file_path: Path) -> Any:
        """Read a JSON manifest, failing detection when it is malformed."""
        try:
            return json.loads(file_path.read_text())
        except json.JSONDecodeError as e:
            raise DetectionError(
                f"parsing {file_path.name}: {e}",
                [f"Fix the JSON syntax of {file_path.name}"]
            ) from e
        except OSError as e:
            raise DetectionError(f"reading {file_path.name}: {e}") from e

    def _find_files(self, repo_path: Path, pattern: str, max_depth: int = 3) -> List[Path]:
        """
        Find files matching pattern.

        Args:
            repo_path: Application path
            pattern: Glob pattern
            max_depth: Maximum search depth

        Returns:
            Sorted list of matching file paths
        """
        excluded_dirs = {'.git', 'node_modules', 'bin', 'obj', '__pycache__', '.venv'}
        results = []

        for file in repo_path.rglob(pattern):
            relative = file.relative_to(repo_path)
            if len(relative.parts) > max_depth:
                continue

            if any(excluded in relative.parts for excluded in excluded_dirs):
                continue

            results.append(file)

        return sorted(results)
