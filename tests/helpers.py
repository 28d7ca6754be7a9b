"""Shared test buildpacks and process fakes."""

import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional

from webops_buildpacks.buildpacks.base import Buildpack, DetectResult, opt_in
from webops_buildpacks.cache import fingerprint, install_with_cache
from webops_buildpacks.errors import InstallationError
from webops_buildpacks.layers import Layer, LayerFlags

SDK_FLAGS = LayerFlags(build=True, cache=True, launch_if_dev_mode=True)


class RecordingSDKBuildpack(Buildpack):
    """Installs a fake SDK with install-with-cache and counts every call."""

    name = 'test-sdk'
    display_name = 'Test SDK'
    runtime = 'dotnet'

    def __init__(self, version: str = '3.1.0', fail: bool = False) -> None:
        self.version = version
        self.fail = fail
        self.detect_calls = 0
        self.build_calls = 0
        self.installs: List[str] = []

    def detect(self, ctx) -> DetectResult:
        self.detect_calls += 1
        return opt_in("test sdk always applies")

    def build(self, ctx) -> None:
        self.build_calls += 1

        def install(layer: Layer) -> None:
            self.installs.append(self.version)
            (layer.path / 'sdk.txt').write_text(self.version)
            if self.fail:
                raise InstallationError(f"downloading sdk {self.version}: connection reset")
            if layer.select_environment_mode(ctx.dev_mode):
                layer.shared_env.prepend('PATH', ':', str(layer.path))
                layer.launch_env.default('SDK_RUNNING_IN_CONTAINER', 'true')
            else:
                layer.build_env.prepend('PATH', ':', str(layer.path))

        install_with_cache(
            ctx, 'sdk', SDK_FLAGS, fingerprint(self.version, devMode=ctx.dev_mode), install
        )


class FunctionBuildpack(Buildpack):
    """Buildpack whose detect and build are plain callables."""

    display_name = 'Function'

    def __init__(
        self,
        name: str,
        detect: Optional[Callable] = None,
        build: Optional[Callable] = None,
        runtime: str = '',
    ) -> None:
        self.name = name
        self.runtime = runtime
        self._detect = detect or (lambda ctx: opt_in(f"{name} applies"))
        self._build = build or (lambda ctx: None)
        self.build_calls = 0

    def detect(self, ctx) -> DetectResult:
        return self._detect(ctx)

    def build(self, ctx) -> None:
        self.build_calls += 1
        self._build(ctx)


class FakeRunner:
    """Stands in for subprocess.run and records the commands it was given."""

    def __init__(self, outputs: Optional[Dict[str, str]] = None, failures: Optional[Dict[str, str]] = None) -> None:
        self.outputs = outputs or {}
        self.failures = failures or {}
        self.calls: List[List[str]] = []
        self.cwds: List[str] = []

    @property
    def commands(self) -> List[str]:
        return [" ".join(call) for call in self.calls]

    def __call__(self, args, cwd=None, env=None, capture_output=False, text=False, check=False):
        command = " ".join(args)
        self.calls.append(list(args))
        self.cwds.append(cwd)
        if command in self.failures:
            return subprocess.CompletedProcess(args, 1, stdout="", stderr=self.failures[command])
        return subprocess.CompletedProcess(args, 0, stdout=self.outputs.get(command, ""), stderr="")


def layer_record(layers_dir: Path, buildpack: str, name: str) -> Path:
    return Path(layers_dir) / buildpack / f"{name}.toml"
