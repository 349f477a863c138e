import contextlib
import hashlib
import pathlib
from typing import Dict, List, Set, Tuple

import pytest

from qmlauncher.errors import DownloadError
from qmlauncher.instance import InstanceStore, Loader
from qmlauncher.paths import LauncherPaths


class FakeResolver:
    """Stands in for VersionResolver.resolve_ids without touching the network."""

    def __init__(self, latest_release: str = "1.21.5", latest_loader: str = "0.16.14") -> None:
        self.latest_release = latest_release
        self.latest_loader = latest_loader
        self.calls: List[Tuple[str, Loader, str]] = []

    async def resolve_ids(self, game_version: str, loader: Loader, loader_version: str = "") -> Tuple[str, str]:
        self.calls.append((game_version, loader, loader_version))
        game_id = self.latest_release if game_version in ("release", "latest") else game_version
        if loader is Loader.VANILLA:
            return game_id, ""
        return game_id, self.latest_loader if loader_version == "latest" else loader_version


class FakeCloudClient:
    """Serves manifest files from memory; paths in ``failing`` raise DownloadError."""

    host = "127.0.0.1"
    port = 8240

    def __init__(self, files: Dict[str, bytes], failing: Set[str] = frozenset()) -> None:
        self.files = files
        self.failing = set(failing)
        self.downloads: List[str] = []
        self.manifest = None
        self.scopes = 0

    @contextlib.asynccontextmanager
    async def session_scope(self):
        self.scopes += 1
        yield None

    async def download(self, server_id: int, relative_path: str, dest: pathlib.Path, md5: str = None) -> None:
        self.downloads.append(relative_path)
        content = self.files[relative_path]
        if relative_path in self.failing:
            raise DownloadError(f"Failed to download {relative_path}", [relative_path])
        if md5 and md5_of(content) != md5:
            raise DownloadError(f"md5 mismatch for {relative_path}", [relative_path])
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(content)

    async def fetch_manifest_async(self, server_id: int):
        return self.manifest


def md5_of(content: bytes) -> str:
    return hashlib.md5(content).hexdigest()


@pytest.fixture
def paths(tmp_path: pathlib.Path) -> LauncherPaths:
    """Launcher layout rooted in a temporary directory."""
    return LauncherPaths(root=tmp_path / "root")


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def store(paths: LauncherPaths, resolver: FakeResolver) -> InstanceStore:
    return InstanceStore(paths, resolver=resolver)
