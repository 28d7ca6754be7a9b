"""Toolchain tarball installer.

Downloads a release tarball once into a keyed download cache shared by
all layers and builds, then extracts it into a layer directory.
"""

import hashlib
import logging
import os
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Self

import requests

from .errors import InstallationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300
CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class TarballSource:
    """Where a runtime's release tarballs are published."""
    name: str
    url_template: str
    strip_components: int = 0

    def url(self: Self, version: str) -> str:
        return self.url_template.format(version=version)


DOTNET_SDK = TarballSource(
    name="dotnet-sdk",
    url_template="https://dotnetcli.azureedge.net/dotnet/Sdk/{version}/dotnet-sdk-{version}-linux-x64.tar.gz",
)


class TarballInstaller:
    """Installs tarball releases into layer directories."""

    def __init__(
        self: Self,
        download_cache_dir: Optional[Path] = None,
        session: Optional[requests.Session] = None,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the installer.

        Args:
            download_cache_dir: Directory for downloaded tarballs. Defaults to
                ``~/.webops/buildpacks/downloads``.
            session: HTTP session to use.
            timeout: Per-request timeout in seconds.
        """
        if download_cache_dir is None:
            download_cache_dir = Path.home() / ".webops" / "buildpacks" / "downloads"
        self.download_cache_dir = Path(download_cache_dir)
        self.session = session or requests.Session()
        self.timeout = timeout

    def cache_path(self: Self, url: str) -> Path:
        key = hashlib.sha256(url.encode()).hexdigest()
        return self.download_cache_dir / f"{key}.tar.gz"

    def install(self: Self, source: TarballSource, version: str, dest: Path) -> bool:
        """Download (or reuse) and extract ``source`` at ``version`` into ``dest``.

        Returns:
            True if the tarball came from the download cache.

        Raises:
            InstallationError: If the download or the extraction fails.
        """
        url = source.url(version)
        tarball = self.cache_path(url)
        cached = tarball.exists()

        if cached:
            logger.info(f"Using cached {source.name} {version} from {tarball}")
        else:
            self._download(url, tarball)

        self._extract(tarball, dest, source.strip_components)
        return cached

    def _download(self: Self, url: str, target: Path) -> None:
        logger.info(f"Downloading {url}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with self.session.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                fd, tmp_name = tempfile.mkstemp(dir=target.parent, suffix=".part")
                try:
                    with os.fdopen(fd, "wb") as f:
                        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                            f.write(chunk)
                    os.replace(tmp_name, target)
                finally:
                    if os.path.exists(tmp_name):
                        os.unlink(tmp_name)
        except requests.RequestException as e:
            raise InstallationError(
                f"downloading {url}: {e}",
                ["Check network access to the download host", "Verify that the requested version exists"]
            ) from e
        except OSError as e:
            raise InstallationError(f"saving {url} to {target}: {e}") from e

    def _extract(self: Self, tarball: Path, dest: Path, strip_components: int) -> None:
        try:
            with tarfile.open(tarball, "r:*") as tar:
                members = []
                for member in tar.getmembers():
                    parts = Path(member.name).parts[strip_components:]
                    if not parts:
                        continue
                    member.name = str(Path(*parts))
                    members.append(member)
                dest.mkdir(parents=True, exist_ok=True)
                tar.extractall(dest, members=members, filter="data")
        except (tarfile.TarError, OSError) as e:
            # A corrupt download must not be reused by the next build.
            tarball.unlink(missing_ok=True)
            raise InstallationError(f"extracting {tarball.name} into {dest}: {e}") from e
