"""Command-line interface for WebOps buildpacks."""

import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .buildpacks import default_group, get_buildpack
from .buildpacks.base import Buildpack
from .config import DEVMODE_ENV, RUNTIME_ENV, RUNTIME_VERSION_ENV, BuildConfig
from .environment import Scope
from .errors import BuildpackError, ErrorHandler
from .lifecycle import BuildpackState, PhaseController, compose_environment
from .output import BuildOutput

console = Console()
error_handler = ErrorHandler()

STATE_STYLES = {
    BuildpackState.SUCCEEDED: "green",
    BuildpackState.OPTED_IN: "green",
    BuildpackState.OPTED_OUT: "dim",
    BuildpackState.FAILED: "red",
}


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def resolve_buildpacks(names: Tuple[str, ...]) -> List[Buildpack]:
    if not names:
        return default_group()
    try:
        return [get_buildpack(name) for name in names]
    except KeyError as e:
        raise click.BadParameter(str(e), param_hint="--buildpack")


def group_optional(buildpacks: List[Buildpack], names: Tuple[str, ...]) -> List[str]:
    """Members allowed to opt out: all of the default group, none of an explicit list."""
    if names:
        return []
    return [bp.name for bp in buildpacks]


def load_config(
    app_dir: Path,
    layers_dir: Optional[Path],
    dev_mode: Optional[bool],
    runtime: Optional[str],
    runtime_version: Optional[str],
    config_file: Optional[Path],
) -> BuildConfig:
    """Resolve configuration from the environment; command-line options win."""
    environ: Dict[str, str] = dict(os.environ)
    if dev_mode is not None:
        environ[DEVMODE_ENV] = str(dev_mode).lower()
    if runtime:
        environ[RUNTIME_ENV] = runtime
    if runtime_version:
        environ[RUNTIME_VERSION_ENV] = runtime_version
    return BuildConfig.from_environ(app_dir, layers_dir, environ=environ, config_file=config_file)


def display_runs(controller: PhaseController) -> None:
    table = Table(title="Buildpacks")
    table.add_column("Buildpack", style="cyan")
    table.add_column("State")
    table.add_column("Reason")
    for run in controller.report.runs:
        style = STATE_STYLES.get(run.state, "")
        table.add_row(run.buildpack, f"[{style}]{run.state.value}[/{style}]" if style else run.state.value, run.reason)
    console.print(table)


def common_options(func):
    func = click.option('--config', 'config_file', type=click.Path(exists=True, dir_okay=False, path_type=Path),
                        help='JSON file with build configuration')(func)
    func = click.option('--runtime-version', help='Toolchain version to install')(func)
    func = click.option('--runtime', help='Force detection for a single runtime (e.g. dotnet)')(func)
    func = click.option('--dev-mode/--no-dev-mode', default=None, help='Build for development')(func)
    func = click.option('--buildpack', 'buildpack_names', multiple=True,
                        help='Buildpack to run; repeat for a group (default: all)')(func)
    func = click.option('--layers-dir', type=click.Path(file_okay=False, path_type=Path),
                        help='Root directory for layers (default: $CNB_LAYERS_DIR)')(func)
    func = click.option('--verbose', '-v', is_flag=True, help='Show diagnostic logs')(func)
    func = click.argument('app_dir', type=click.Path(exists=True, file_okay=False, path_type=Path))(func)
    return func


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """WebOps buildpacks - detect toolchains and build cached layers."""
    pass


@main.command()
@common_options
def detect(
    app_dir: Path,
    verbose: bool,
    layers_dir: Optional[Path],
    buildpack_names: Tuple[str, ...],
    dev_mode: Optional[bool],
    runtime: Optional[str],
    runtime_version: Optional[str],
    config_file: Optional[Path],
) -> None:
    """Show which buildpacks apply to APP_DIR."""
    setup_logging(verbose)
    try:
        config = load_config(app_dir, layers_dir or app_dir / ".layers", dev_mode, runtime,
                             runtime_version, config_file)
        buildpacks = resolve_buildpacks(buildpack_names)
        controller = PhaseController(buildpacks, config, BuildOutput(quiet=True),
                                     optional=group_optional(buildpacks, buildpack_names))
        detected = controller.detect()
    except BuildpackError as e:
        error_handler.display_error(e, "Detecting buildpacks")
        sys.exit(1)

    display_runs(controller)
    if not detected:
        console.print("[yellow]No buildpack group passed detection.[/yellow]")
        sys.exit(1)


@main.command()
@common_options
def build(
    app_dir: Path,
    verbose: bool,
    layers_dir: Optional[Path],
    buildpack_names: Tuple[str, ...],
    dev_mode: Optional[bool],
    runtime: Optional[str],
    runtime_version: Optional[str],
    config_file: Optional[Path],
) -> None:
    """Detect and build layers for APP_DIR."""
    setup_logging(verbose)
    output = BuildOutput()
    controller = None
    try:
        config = load_config(app_dir, layers_dir, dev_mode, runtime, runtime_version, config_file)
        buildpacks = resolve_buildpacks(buildpack_names)
        controller = PhaseController(buildpacks, config, output,
                                     optional=group_optional(buildpacks, buildpack_names))
        report = controller.run()
    except Exception as e:
        if controller is not None:
            display_runs(controller)
        error_handler.display_error(e, "Building layers")
        sys.exit(1)

    display_runs(controller)
    output.show_cache_summary()
    if not report.detected:
        console.print("[yellow]No buildpack group passed detection.[/yellow]")
        sys.exit(1)
    console.print(f"[green]Build succeeded:[/green] {', '.join(report.participants)}")


@main.command()
@click.argument('layers_dir', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--phase', type=click.Choice(['build', 'launch']), default='launch', show_default=True,
              help='Which phase to compose the environment for')
def env(layers_dir: Path, phase: str) -> None:
    """Print the environment that LAYERS_DIR contributes to a phase."""
    composed = compose_environment(layers_dir, Scope(phase), base={})
    for key in sorted(composed):
        click.echo(f"{key}={composed[key]}")


if __name__ == '__main__':
    main()
