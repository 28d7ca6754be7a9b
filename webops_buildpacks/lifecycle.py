"""
Detect/Build lifecycle.

The phase controller runs every buildpack of a group through

    NOT_STARTED -> DETECTING -> OPTED_OUT
                             -> OPTED_IN -> BUILDING -> SUCCEEDED | FAILED

Detect is read-only. Build is the only phase that may acquire layers,
write environments or execute installers. A build failure is re-raised
to the caller unchanged and aborts the whole image build.
"""

import logging
import os
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .buildpacks.base import Buildpack, DetectResult
from .config import BuildConfig
from .environment import LayerEnvironment, Scope
from .errors import InstallationError, LayerCreationError
from .layers import Layer, LayerFlags, LayerStore, discover_layers
from .output import BuildOutput

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


class BuildpackState(Enum):
    NOT_STARTED = "not_started"
    DETECTING = "detecting"
    OPTED_OUT = "opted_out"
    OPTED_IN = "opted_in"
    BUILDING = "building"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TRANSITIONS: Dict[BuildpackState, Sequence[BuildpackState]] = {
    BuildpackState.NOT_STARTED: (BuildpackState.DETECTING,),
    BuildpackState.DETECTING: (BuildpackState.OPTED_IN, BuildpackState.OPTED_OUT, BuildpackState.FAILED),
    BuildpackState.OPTED_IN: (BuildpackState.BUILDING,),
    BuildpackState.BUILDING: (BuildpackState.SUCCEEDED, BuildpackState.FAILED),
    BuildpackState.OPTED_OUT: (),
    BuildpackState.SUCCEEDED: (),
    BuildpackState.FAILED: (),
}


@dataclass
class BuildpackRun:
    """Lifecycle record of one buildpack within a build."""
    buildpack: str
    optional: bool = False
    state: BuildpackState = BuildpackState.NOT_STARTED
    reason: str = ""
    error: Optional[BaseException] = None

    def transition(self, state: BuildpackState) -> None:
        if state not in TRANSITIONS[self.state]:
            raise RuntimeError(
                f"buildpack {self.buildpack!r} cannot move from {self.state.value} to {state.value}"
            )
        logger.debug(f"{self.buildpack}: {self.state.value} -> {state.value}")
        self.state = state

    @property
    def terminal(self) -> bool:
        return not TRANSITIONS[self.state]


@dataclass
class BuildReport:
    """Outcome of a phase controller run."""
    runs: List[BuildpackRun] = field(default_factory=list)
    detected: bool = False
    succeeded: bool = False
    output: Optional[BuildOutput] = None

    def run_for(self, buildpack: str) -> BuildpackRun:
        for run in self.runs:
            if run.buildpack == buildpack:
                return run
        raise KeyError(buildpack)

    @property
    def participants(self) -> List[str]:
        return [run.buildpack for run in self.runs if run.state is BuildpackState.SUCCEEDED]


class DetectContext:
    """Read-only view of the application given to ``detect``."""

    def __init__(self, config: BuildConfig, buildpack: Buildpack, output: BuildOutput) -> None:
        self.config = config
        self.buildpack = buildpack
        self.output = output

    @property
    def app_dir(self) -> Path:
        return self.config.app_dir

    @property
    def dev_mode(self) -> bool:
        return self.config.dev_mode

    @property
    def stack_id(self) -> str:
        return self.config.stack_id

    def log(self, message: str) -> None:
        self.output.log(message)

    def warn(self, message: str) -> None:
        self.output.warn(message)

    def layer(self, name: str, flags: LayerFlags) -> Layer:
        raise LayerCreationError(f"layer {name!r} requested during detect; layers are only available in build")


class BuildContext(DetectContext):
    """Context given to ``build``: layers, metadata, environment and processes."""

    def __init__(
        self,
        config: BuildConfig,
        buildpack: Buildpack,
        output: BuildOutput,
        store: LayerStore,
        prior_layers: Iterable[Layer] = (),
        runner: Optional[Runner] = None,
    ) -> None:
        super().__init__(config, buildpack, output)
        self.store = store
        self.prior_layers = list(prior_layers)
        self.runner = runner or subprocess.run

    def layer(self, name: str, flags: LayerFlags) -> Layer:
        return self.store.acquire(name, flags)

    def get_metadata(self, layer: Layer, key: str) -> Optional[str]:
        return self.store.read_metadata(layer, key)

    def set_metadata(self, layer: Layer, key: str, value: str) -> None:
        self.store.write_metadata(layer, key, value)

    def clear_layer(self, layer: Layer) -> None:
        self.store.clear(layer)

    def cache_hit(self, layer_name: str) -> None:
        self.output.cache_hit(layer_name)

    def cache_miss(self, layer_name: str) -> None:
        self.output.cache_miss(layer_name)

    def build_environment(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Process environment as seen by this buildpack.

        Build layers of earlier buildpacks apply in order, followed by the
        build layers this buildpack has populated so far.
        """
        env = dict(os.environ if base is None else base)
        for layer in self.prior_layers:
            if layer.flags.build:
                env = LayerEnvironment.read(layer.path).for_phase(Scope.BUILD, env)
        for layer in self.store.layers:
            if layer.flags.build:
                # Cached layers keep their env files on disk until cleared.
                env = LayerEnvironment.read(layer.path).for_phase(Scope.BUILD, env)
                env = layer.env.for_phase(Scope.BUILD, env)
        return env

    def exec(
        self,
        args: Sequence[str],
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> subprocess.CompletedProcess:
        """Run an installation command and fail the build if it fails.

        Raises:
            InstallationError: If the command cannot start or exits non-zero.
        """
        command = " ".join(args)
        self.log(f"Running {command!r}")
        try:
            result = self.runner(
                list(args),
                cwd=str(cwd or self.app_dir),
                env=dict(env) if env is not None else self.build_environment(),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            raise InstallationError(f"running {command!r}: {e}") from e

        for line in (result.stdout or "").splitlines():
            self.log(line)
        if result.returncode != 0:
            raise InstallationError(
                f"running {command!r} failed with exit code {result.returncode}: "
                f"{(result.stderr or '').strip()}"
            )
        return result


class PhaseController:
    """Runs detect then build for a group of buildpacks."""

    def __init__(
        self,
        buildpacks: Sequence[Buildpack],
        config: BuildConfig,
        output: Optional[BuildOutput] = None,
        optional: Iterable[str] = (),
        runner: Optional[Runner] = None,
    ) -> None:
        """
        Args:
            buildpacks: Group members in execution order
            config: Resolved build configuration, including detect overrides
            output: Build output sink
            optional: Names of buildpacks allowed to opt out without
                failing group detection
            runner: Process runner handed to build contexts
        """
        names = [bp.name for bp in buildpacks]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate buildpack names in group: {names}")
        self.buildpacks = list(buildpacks)
        self.config = config
        self.output = output or BuildOutput()
        self.optional = set(optional)
        self.runner = runner
        self.report = BuildReport(output=self.output)

    def run(self) -> BuildReport:
        """Detect, and build when the group passes detection.

        Returns:
            The build report. ``report.detected`` is False when the group
            did not pass detection, in which case no build ran.

        Raises:
            Exception: The unmodified error of the first failing detect
                or build.
        """
        self.report = BuildReport(output=self.output)
        if not self.detect():
            return self.report
        self.build()
        return self.report

    def detect(self) -> bool:
        self.output.header("DETECTING")
        for buildpack in self.buildpacks:
            run = BuildpackRun(buildpack.name, optional=buildpack.name in self.optional)
            self.report.runs.append(run)
            result = self._detect_one(buildpack, run)
            verdict = "opted in" if result.opt_in else "opted out"
            self.output.log(f"{buildpack.name}: {verdict}: {result.reason}")

        required_out = [
            run.buildpack for run in self.report.runs
            if run.state is BuildpackState.OPTED_OUT and not run.optional
        ]
        any_in = any(run.state is BuildpackState.OPTED_IN for run in self.report.runs)

        if required_out:
            self.output.log(f"Detection failed: required buildpacks opted out: {', '.join(required_out)}")
        elif not any_in:
            self.output.log("Detection failed: no buildpack opted in")

        self.report.detected = any_in and not required_out
        return self.report.detected

    def _detect_one(self, buildpack: Buildpack, run: BuildpackRun) -> DetectResult:
        run.transition(BuildpackState.DETECTING)

        override = self.config.override_for(buildpack.runtime) if buildpack.runtime else None
        if override is not None:
            result = DetectResult(override.opt_in, override.reason)
        else:
            ctx = DetectContext(self.config, buildpack, self.output)
            try:
                result = buildpack.detect(ctx)
            except Exception as e:
                run.error = e
                run.transition(BuildpackState.FAILED)
                self.output.error(f"{buildpack.name}: detect failed: {e}")
                raise

        run.reason = result.reason
        run.transition(BuildpackState.OPTED_IN if result.opt_in else BuildpackState.OPTED_OUT)
        return result

    def build(self) -> None:
        self.output.header("BUILDING")
        built: List[Layer] = []

        for buildpack in self.buildpacks:
            run = self.report.run_for(buildpack.name)
            if run.state is not BuildpackState.OPTED_IN:
                continue

            run.transition(BuildpackState.BUILDING)
            self.output.log(f"--- {buildpack.display_name} ({buildpack.name})")
            store = LayerStore(self.config.layers_dir, buildpack.name, dev_mode=self.config.dev_mode)
            ctx = BuildContext(self.config, buildpack, self.output, store, built, runner=self.runner)
            try:
                buildpack.build(ctx)
                store.flush_all()
            except Exception as e:
                run.error = e
                run.transition(BuildpackState.FAILED)
                self.output.error(f"{buildpack.name}: build failed: {e}")
                logger.debug(f"Build of {buildpack.name} failed", exc_info=True)
                raise

            run.transition(BuildpackState.SUCCEEDED)
            built.extend(store.layers)

        self.report.succeeded = True


def compose_environment(
    layers_dir: Path,
    phase: Scope,
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Compose the environment of every persisted layer used by ``phase``.

    Args:
        layers_dir: Layers root of a finished build
        phase: ``Scope.BUILD`` or ``Scope.LAUNCH``
        base: Environment to start from, defaults to ``os.environ``
    """
    env = dict(os.environ if base is None else base)
    type_key = "build" if phase is Scope.BUILD else "launch"
    for layer_path, types in discover_layers(layers_dir):
        if types[type_key]:
            env = LayerEnvironment.read(layer_path).for_phase(phase, env)
    return env
