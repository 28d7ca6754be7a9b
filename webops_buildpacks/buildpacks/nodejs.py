"""Node.js npm buildpack.

Installs ``node_modules`` into a cached layer. Which install command is
used, and whether devDependencies can be pruned afterwards, depends on
the npm version found on the build image.
"""

import hashlib
import json
import logging
import os
import shutil
from pathlib import Path

from ..cache import fingerprint, install_with_cache
from ..capabilities import CapabilityTable, SEMVER_PATTERN, parse_version
from ..errors import CapabilityMismatchError, DetectionError
from ..layers import Layer, LayerFlags
from .base import Buildpack, DetectResult, opt_in, opt_out

logger = logging.getLogger(__name__)

NPM_LAYER_NAME = 'npm_modules'
LOCKFILE = 'package-lock.json'
MANIFEST = 'package.json'

NPM_LAYER_FLAGS = LayerFlags(build=True, cache=True, launch=True)

# `npm ci` is used from this version on; earlier versions fall back to `npm install`.
NPM_INSTALL_COMMANDS: CapabilityTable[str] = CapabilityTable([('5.7.1', 'ci')], default='install')

# `npm prune --production` is usable from this version on.
NPM_PRUNE_SUPPORT: CapabilityTable[bool] = CapabilityTable([('5.7.0', True)], default=False)


def npm_install_command(npm_version: str) -> str:
    """Return the npm subcommand used to install dependencies."""
    return NPM_INSTALL_COMMANDS.select(npm_version)


def supports_npm_prune(npm_version: str) -> bool:
    return NPM_PRUNE_SUPPORT.select(npm_version)


def requested_npm_version(app_dir: Path) -> str:
    """Return ``engines.npm`` from package.json, or an empty string.

    Raises:
        DetectionError: If package.json is not valid JSON.
    """
    path = Path(app_dir) / MANIFEST
    try:
        manifest = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise DetectionError(f"parsing {MANIFEST}: {e}", [f"Fix the JSON syntax of {MANIFEST}"]) from e
    except OSError as e:
        raise DetectionError(f"reading {MANIFEST}: {e}") from e
    if not isinstance(manifest, dict):
        raise DetectionError(f"{MANIFEST} must contain a JSON object")
    engines = manifest.get('engines') or {}
    return str(engines.get('npm', '')) if isinstance(engines, dict) else ''


def dependency_hash(app_dir: Path) -> str:
    """Hash of the manifest and lockfile, which determine node_modules."""
    digest = hashlib.sha256()
    for name in (MANIFEST, LOCKFILE):
        path = Path(app_dir) / name
        digest.update(name.encode())
        if path.exists():
            digest.update(path.read_bytes())
    return digest.hexdigest()


class NPMBuildpack(Buildpack):
    """Install npm dependencies for Node.js applications."""

    name = 'nodejs-npm'
    display_name = 'npm'
    runtime = 'nodejs'

    def detect(self, ctx) -> DetectResult:
        if self._file_exists(ctx.app_dir, MANIFEST):
            return opt_in(f"found {MANIFEST}")
        return opt_out(f"{MANIFEST} not found")

    def npm_version(self, ctx) -> str:
        """Version of the npm binary available to the build."""
        result = ctx.exec(['npm', '--version'])
        return result.stdout.strip()

    def check_requested_version(self, ctx, requested: str, discovered: str) -> None:
        """Fail when package.json asks for a newer npm than the one found.

        Only exact versions are enforced; ranges are reported as advisory.
        """
        if not requested:
            return
        if not SEMVER_PATTERN.match(requested):
            ctx.warn(f"engines.npm {requested!r} is not an exact version and is not enforced")
            return
        if parse_version(discovered) < parse_version(requested):
            raise CapabilityMismatchError(
                f"package.json requires npm {requested}, but npm {discovered} is installed",
                ["Lower engines.npm in package.json", "Use a build image with a newer npm"]
            )

    def build(self, ctx) -> None:
        app_dir = ctx.app_dir
        requested = requested_npm_version(app_dir)
        discovered = self.npm_version(ctx)
        self.check_requested_version(ctx, requested, discovered)
        dev_mode = ctx.dev_mode

        def install(layer: Layer) -> None:
            self.install_modules(ctx, layer, discovered, dev_mode)

        install_with_cache(
            ctx,
            NPM_LAYER_NAME,
            NPM_LAYER_FLAGS,
            fingerprint(discovered, dependencies=dependency_hash(app_dir), devMode=dev_mode),
            install,
        )

    def install_modules(self, ctx, layer: Layer, npm_version: str, dev_mode: bool) -> None:
        has_lockfile = self._file_exists(ctx.app_dir, LOCKFILE)
        for name in (MANIFEST, LOCKFILE):
            if (ctx.app_dir / name).exists():
                shutil.copy2(ctx.app_dir / name, layer.path / name)

        command = npm_install_command(npm_version) if has_lockfile else 'install'
        ctx.exec(['npm', command, '--quiet'], cwd=layer.path)

        if not dev_mode:
            if supports_npm_prune(npm_version):
                ctx.exec(['npm', 'prune', '--production'], cwd=layer.path)
            else:
                ctx.warn(f"npm {npm_version} does not support pruning; devDependencies stay installed")

        modules = layer.path / 'node_modules'
        layer.select_environment_mode(dev_mode)
        layer.shared_env.prepend('NODE_PATH', os.pathsep, str(modules))
        layer.shared_env.prepend('PATH', os.pathsep, str(modules / '.bin'))
        layer.launch_env.default('NODE_ENV', 'development' if dev_mode else 'production')
