"""Build output for WebOps buildpacks.

User-facing build logs go through ``BuildOutput``: lines are rendered
with rich and kept in a plain-text transcript so that callers can assert
on required or forbidden output.
"""

from collections import Counter
from typing import IO, List, Optional, Self

from rich.console import Console
from rich.table import Table


class BuildOutput:
    """Build log, advisory warnings and cache statistics."""

    def __init__(self: Self, file: Optional[IO[str]] = None, quiet: bool = False) -> None:
        """Initialize build output.

        Args:
            file: Stream to render to. Defaults to stdout.
            quiet: Keep the transcript without rendering anything.
        """
        self.console = Console(file=file, highlight=False, soft_wrap=True)
        self.quiet = quiet
        self.lines: List[str] = []
        self.warnings: List[str] = []
        self.cache_hits: Counter = Counter()
        self.cache_misses: Counter = Counter()

    def _emit(self: Self, line: str, style: Optional[str] = None) -> None:
        self.lines.append(line)
        if not self.quiet:
            self.console.print(line, style=style, markup=False)

    def log(self: Self, message: str) -> None:
        self._emit(message)

    def header(self: Self, message: str) -> None:
        self._emit(f"=== {message} ===", style="bold cyan")

    def warn(self: Self, message: str) -> None:
        """Report a non-fatal condition; the build continues."""
        self.warnings.append(message)
        self._emit(f"WARNING: {message}", style="yellow")

    def error(self: Self, message: str) -> None:
        self._emit(f"ERROR: {message}", style="bold red")

    def cache_hit(self: Self, layer: str) -> None:
        self.cache_hits[layer] += 1
        self._emit(f"Cache hit for layer {layer!r}, skipping installation.", style="green")

    def cache_miss(self: Self, layer: str) -> None:
        self.cache_misses[layer] += 1
        self._emit(f"Cache miss for layer {layer!r}, installing.", style="magenta")

    @property
    def text(self: Self) -> str:
        return "\n".join(self.lines)

    def show_cache_summary(self: Self) -> None:
        """Render a table of cache hits and misses per layer."""
        if self.quiet:
            return
        layers = sorted(set(self.cache_hits) | set(self.cache_misses))
        if not layers:
            return

        table = Table(title="Layer Cache")
        table.add_column("Layer", style="cyan")
        table.add_column("Hits", justify="right", style="green")
        table.add_column("Misses", justify="right", style="magenta")
        for layer in layers:
            table.add_row(layer, str(self.cache_hits[layer]), str(self.cache_misses[layer]))
        self.console.print(table)
