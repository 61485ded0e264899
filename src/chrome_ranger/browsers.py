# Copyright (c) Syntropy Systems
"""Chrome for Testing binaries: download, cache and listing."""
from __future__ import annotations

import logging
import os
import platform
import shutil
import sys
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Union, cast

import httpx
from typing_extensions import Self, TypeAlias

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

DOWNLOAD_BASE_URL = "https://storage.googleapis.com/chrome-for-testing-public"
KNOWN_GOOD_VERSIONS_URL = (
    "https://googlechromelabs.github.io/chrome-for-testing/"
    "known-good-versions-with-downloads.json"
)

_MAC_APP = "Google Chrome for Testing.app/Contents/MacOS/Google Chrome for Testing"


class BrowserError(Exception):
    """Chrome for Testing could not be reached or understood."""


@dataclass(frozen=True)
class BinaryInstalled:
    version: str
    executable_path: Path


@dataclass(frozen=True)
class BinaryUnavailable:
    version: str
    reason: str


BinaryResolution: TypeAlias = Union[BinaryInstalled, BinaryUnavailable]


def detect_platform() -> str:
    """Chrome for Testing platform name for this machine."""
    machine = platform.machine().lower()
    if sys.platform.startswith("linux"):
        return "linux64"
    if sys.platform == "darwin":
        return "mac-arm64" if machine in ("arm64", "aarch64") else "mac-x64"
    if sys.platform in ("win32", "cygwin"):
        return "win64" if machine.endswith("64") else "win32"
    msg = f"Unsupported platform: {sys.platform}"
    raise BrowserError(msg)


def executable_relpath(platform_name: str) -> str:
    """Path of the chrome executable inside an extracted archive."""
    folder = f"chrome-{platform_name}"
    if platform_name.startswith("mac"):
        return f"{folder}/{_MAC_APP}"
    if platform_name.startswith("win"):
        return f"{folder}/chrome.exe"
    return f"{folder}/chrome"


def resolve_cache_dir(configured: str | None = None, base_dir: Path | None = None) -> Path:
    """Binary cache directory: config value, then XDG cache, then ~/.cache.

    A relative configured path is taken relative to base_dir.
    """
    if configured:
        path = Path(configured).expanduser()
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        return path.resolve()
    xdg_cache = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache:
        return Path(xdg_cache).resolve() / "chrome-ranger"
    return Path.home() / ".cache" / "chrome-ranger"


def _extract(archive: Path, destination: Path) -> None:
    with zipfile.ZipFile(archive) as zf:
        for info in zf.infolist():
            target = Path(zf.extract(info, destination))
            mode = (info.external_attr >> 16) & 0o777
            if mode and not info.is_dir():
                target.chmod(mode)


class ChromeProvisioner:
    """Ensures Chrome for Testing builds are present in a local cache."""

    cache_dir: Path
    platform_name: str
    _client: httpx.Client

    def __init__(
        self,
        cache_dir: Path,
        platform_name: str | None = None,
        client: httpx.Client | None = None,
        timeout: float = 300.0,
    ) -> None:
        """Initialize the provisioner.

        Args:
            cache_dir: Root of the binary cache
            platform_name: Chrome for Testing platform (detected if omitted)
            client: HTTP client to use (created if omitted)
            timeout: Request timeout in seconds

        """
        self.cache_dir = cache_dir
        self.platform_name = platform_name or detect_platform()
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def install_dir(self, version: str) -> Path:
        return self.cache_dir / "chrome" / f"{self.platform_name}-{version}"

    def executable_path(self, version: str) -> Path:
        return self.install_dir(version) / executable_relpath(self.platform_name)

    def download_url(self, version: str) -> str:
        name = self.platform_name
        return f"{DOWNLOAD_BASE_URL}/{version}/{name}/chrome-{name}.zip"

    def ensure(self, version: str) -> BinaryResolution:
        """Return the cached executable for version, downloading it if needed."""
        executable = self.executable_path(version)
        if executable.is_file():
            return BinaryInstalled(version, executable)

        try:
            self._download(version)
        except (httpx.HTTPError, OSError, zipfile.BadZipFile) as e:
            logger.debug("Download of Chrome %s failed", version, exc_info=True)
            return BinaryUnavailable(version, f"Failed to download Chrome {version}: {e}")

        if not executable.is_file():
            return BinaryUnavailable(
                version, f"Chrome {version} archive did not contain {executable.name}"
            )
        return BinaryInstalled(version, executable)

    def _download(self, version: str) -> None:
        url = self.download_url(version)
        logger.info("Downloading Chrome %s from %s", version, url)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(dir=self.cache_dir, prefix=".download-") as tmp:
            archive = Path(tmp) / "chrome.zip"
            with self._client.stream("GET", url) as response:
                _ = response.raise_for_status()
                with archive.open("wb") as f:
                    for chunk in response.iter_bytes():
                        _ = f.write(chunk)

            staging = Path(tmp) / "extracted"
            _extract(archive, staging)

            final = self.install_dir(version)
            if final.exists():
                shutil.rmtree(final)
            final.parent.mkdir(parents=True, exist_ok=True)
            _ = shutil.move(str(staging), str(final))

    def list_versions(self) -> list[str]:
        """Known-good Chrome for Testing versions, newest first."""
        try:
            response = self._client.get(KNOWN_GOOD_VERSIONS_URL)
            _ = response.raise_for_status()
            data = cast("dict[str, object]", response.json())
        except httpx.HTTPError as e:
            msg = f"Failed to fetch Chrome versions: {e}"
            raise BrowserError(msg) from e
        except ValueError as e:
            msg = f"Invalid Chrome versions index: {e}"
            raise BrowserError(msg) from e

        entries = data.get("versions")
        if not isinstance(entries, list):
            msg = "Invalid Chrome versions index: missing 'versions'"
            raise BrowserError(msg)
        versions = [
            str(entry["version"])
            for entry in cast("list[dict[str, object]]", entries)
            if isinstance(entry, dict) and "version" in entry
        ]
        versions.reverse()
        return versions


def clean_cache(cache_dir: Path) -> bool:
    """Remove the binary cache. Returns whether anything was removed."""
    if not cache_dir.exists():
        return False
    shutil.rmtree(cache_dir)
    return True
