"""Error taxonomy and error display for WebOps buildpacks.

Every fatal condition in the lifecycle is raised as a ``BuildpackError``
subclass carrying optional recovery suggestions, the same way the WebOps
CLI reports its failures.
"""

import re
from typing import Any, Dict, List, Optional, Self

from rich.console import Console
from rich.panel import Panel

console = Console(stderr=True)

CAPABILITY_MISMATCH_PREFIX = "Capability mismatch:"


class BuildpackError(Exception):
    """Base exception class for buildpack lifecycle errors."""

    def __init__(self: Self, message: str, suggestions: Optional[List[str]] = None) -> None:
        """Initialize buildpack error.

        Args:
            message: The error message to display.
            suggestions: Optional list of recovery suggestions.
        """
        super().__init__(message)
        self.message = message
        self.suggestions = suggestions or []


class ConfigurationError(BuildpackError):
    """Raised when build configuration is invalid."""
    pass


class DetectionError(BuildpackError):
    """Raised when detect cannot determine whether a buildpack applies."""
    pass


class LayerCreationError(BuildpackError):
    """Raised when the storage for a layer cannot be created."""
    pass


class InstallationError(BuildpackError):
    """Raised when an installer fails to place toolchain content."""
    pass


class EnvironmentModeError(BuildpackError):
    """Raised when a layer environment is written against its launch mode."""
    pass


class CapabilityMismatchError(BuildpackError):
    """Raised when a discovered tool version violates a buildpack requirement.

    The message always starts with ``CAPABILITY_MISMATCH_PREFIX`` so that
    callers can match on a stable prefix even when the detail comes from
    a tool with non-deterministic output.
    """

    def __init__(self: Self, detail: str, suggestions: Optional[List[str]] = None) -> None:
        super().__init__(f"{CAPABILITY_MISMATCH_PREFIX} {detail}", suggestions)
        self.detail = detail


class ErrorHandler:
    """Displays lifecycle errors with recovery suggestions."""

    def __init__(self: Self) -> None:
        """Initialize the error handler."""
        self.error_patterns: Dict[str, Dict[str, Any]] = {
            "disk": {
                "keywords": ["no space left", "disk full", "read-only file system", "permission denied"],
                "suggestions": [
                    "Check free space and permissions of the layers directory",
                    "Point the build at a writable location: webops-buildpacks build --layers-dir <DIR>",
                ]
            },
            "network": {
                "keywords": ["connection", "timed out", "timeout", "name resolution", "404"],
                "suggestions": [
                    "Check network access to the toolchain download host",
                    "Verify that the requested version exists",
                    "Re-run the build; layers that failed are retried from scratch",
                ]
            },
            "version": {
                "keywords": ["version", "semantic"],
                "suggestions": [
                    "Use a MAJOR.MINOR.PATCH version string",
                    "Set the version explicitly with WEBOPS_RUNTIME_VERSION",
                ]
            },
            "manifest": {
                "keywords": ["json", "manifest", "package.json", "global.json"],
                "suggestions": [
                    "Validate the manifest file syntax",
                    "Remove trailing commas and comments from JSON manifests",
                ]
            },
        }

    def identify_error_type(self: Self, error_message: str) -> Optional[str]:
        """Identify the type of error based on the message.

        Args:
            error_message: The error message to analyze.

        Returns:
            The error type key if identified, None otherwise.
        """
        error_lower = error_message.lower()

        for error_type, pattern_data in self.error_patterns.items():
            for keyword in pattern_data["keywords"]:
                if keyword in error_lower:
                    return error_type

        return None

    def get_suggestions(self: Self, error_message: str) -> List[str]:
        """Get recovery suggestions for an error message."""
        error_type = self.identify_error_type(error_message)

        if error_type:
            return self.error_patterns[error_type]["suggestions"]

        return [
            "Re-run the build with --verbose for diagnostic logs",
            "Check which buildpacks participated: webops-buildpacks detect <APP_DIR>",
        ]

    def display_error(
        self: Self,
        error: Exception,
        context: Optional[str] = None,
        show_suggestions: bool = True
    ) -> None:
        """Display an error with formatting and suggestions.

        Args:
            error: The exception that occurred.
            context: Optional context about what was being attempted.
            show_suggestions: Whether to show recovery suggestions.
        """
        error_message = str(error)
        content = []

        if context:
            content.append(f"[bold]Context:[/bold] {context}")
            content.append("")

        content.append(f"[bold red]Error:[/bold red] {error_message}")

        if show_suggestions:
            if isinstance(error, BuildpackError) and error.suggestions:
                suggestions = error.suggestions
            else:
                suggestions = self.get_suggestions(error_message)

            if suggestions:
                content.append("")
                content.append("[bold blue]Suggested solutions:[/bold blue]")
                for i, suggestion in enumerate(suggestions, 1):
                    content.append(f"  {i}. {suggestion}")

        console.print(Panel(
            "\n".join(content),
            title="[bold red]Build Failed[/bold red]",
            border_style="red",
            expand=False
        ))


def matches_failure(output: str, pattern: str) -> bool:
    """Return True if build output matches a failure pattern.

    Tool output such as dependency-conflict messages is not deterministic,
    so failures are asserted with a regular expression (or a plain prefix,
    which is a valid expression) rather than exact text.
    """
    return re.search(pattern, output, re.MULTILINE) is not None
