""".NET SDK buildpack."""

import logging
import os
import re
from pathlib import Path
from typing import List, Optional

from ..cache import fingerprint, install_with_cache
from ..capabilities import parse_version
from ..errors import DetectionError
from ..installers import DOTNET_SDK, TarballInstaller
from ..layers import Layer, LayerFlags
from .base import Buildpack, DetectResult, opt_in, opt_out

logger = logging.getLogger(__name__)

SDK_LAYER_NAME = 'sdk'
GOOGLE_MIN_22 = 'google.min.22'
DEFAULT_SDK_VERSION = '8.0.404'
PROJECT_PATTERNS = ('*.csproj', '*.fsproj', '*.vbproj')

# SDK installed for a TargetFramework when global.json does not pin one.
SDK_FOR_TARGET_FRAMEWORK = {
    '6.0': '6.0.428',
    '7.0': '7.0.410',
    '8.0': '8.0.404',
    '9.0': '9.0.101',
}

# Keep the SDK for launch in dev mode because `dotnet watch` needs it.
SDK_LAYER_FLAGS = LayerFlags(build=True, cache=True, launch_if_dev_mode=True)


class DotNetSDKBuildpack(Buildpack):
    """Detect .NET applications and install the .NET SDK."""

    name = 'dotnet-sdk'
    display_name = '.NET SDK'
    runtime = 'dotnet'

    def __init__(self, installer: Optional[TarballInstaller] = None) -> None:
        self.installer = installer

    def detect(self, ctx) -> DetectResult:
        files = self.project_files(ctx.app_dir)
        if files:
            names = ', '.join(str(f.relative_to(ctx.app_dir)) for f in files)
            return opt_in(f"found project files: {names}")
        return opt_out("no project files or .dll files found")

    def project_files(self, app_dir: Path) -> List[Path]:
        files: List[Path] = []
        for pattern in PROJECT_PATTERNS:
            files.extend(self._find_files(app_dir, pattern))
        return sorted(files)

    def sdk_version(self, ctx) -> str:
        """Resolve the SDK version to install.

        Order: explicit runtime version, ``global.json`` ``sdk.version``,
        the project's TargetFramework, then the default.

        Raises:
            DetectionError: If a manifest is malformed or the version is
                not a plain semantic version.
        """
        if ctx.config.runtime_version:
            version = ctx.config.runtime_version
        else:
            version = self._global_json_version(ctx.app_dir) or self._target_framework_version(ctx.app_dir)
        parse_version(version)
        return version

    def _global_json_version(self, app_dir: Path) -> Optional[str]:
        global_json = app_dir / 'global.json'
        if not global_json.exists():
            return None
        data = self._read_json(global_json)
        sdk = data.get('sdk') if isinstance(data, dict) else None
        if sdk is None:
            return None
        if not isinstance(sdk, dict) or not isinstance(sdk.get('version', ''), str):
            raise DetectionError("global.json: 'sdk' must be an object with a string 'version'")
        return sdk.get('version') or None

    def _target_framework_version(self, app_dir: Path) -> str:
        for project in self.project_files(app_dir):
            match = re.search(r'<TargetFramework>net(\d+\.\d+)</TargetFramework>', project.read_text())
            if match and match.group(1) in SDK_FOR_TARGET_FRAMEWORK:
                return SDK_FOR_TARGET_FRAMEWORK[match.group(1)]
        return DEFAULT_SDK_VERSION

    def build(self, ctx) -> None:
        version = self.sdk_version(ctx)
        dev_mode = ctx.dev_mode

        def install(layer: Layer) -> None:
            installer = self.installer or TarballInstaller(ctx.config.download_cache_dir)
            installer.install(DOTNET_SDK, version, layer.path)
            self.set_env_vars(ctx, layer, dev_mode)

        install_with_cache(
            ctx,
            SDK_LAYER_NAME,
            SDK_LAYER_FLAGS,
            fingerprint(version, devMode=dev_mode),
            install,
        )

    def set_env_vars(self, ctx, layer: Layer, dev_mode: bool) -> None:
        if layer.select_environment_mode(dev_mode):
            self._set_env_vars_dev_mode(layer)
        else:
            self._set_env_vars_for_build(layer)
        if ctx.stack_id == GOOGLE_MIN_22:
            layer.build_env.default('DOTNET_SYSTEM_GLOBALIZATION_INVARIANT', 'true')

    def _set_env_vars_dev_mode(self, layer: Layer) -> None:
        """In dev mode the full SDK is present at launch time."""
        layer.shared_env.default('DOTNET_ROOT', str(layer.path))
        layer.shared_env.prepend('PATH', os.pathsep, str(layer.path))
        layer.launch_env.default('DOTNET_RUNNING_IN_CONTAINER', 'true')

    def _set_env_vars_for_build(self, layer: Layer) -> None:
        """Outside dev mode the SDK is only needed while building."""
        layer.build_env.default('DOTNET_ROOT', str(layer.path))
        layer.build_env.prepend('PATH', os.pathsep, str(layer.path))
