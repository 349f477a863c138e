import json
from pathlib import Path
from typing import Dict

import pytest

from conftest import FakeCloudClient, md5_of
from qmlauncher.errors import SyncError
from qmlauncher.instance import Instance
from qmlauncher.sync import DataManifest, FileInfo, ManifestSyncer, resolve_destination


@pytest.fixture
def instance(tmp_path: Path) -> Instance:
    inst = Instance(name="Server", uuid="7c9e6679-7425-40de-944b-e07fc1f90ae7", game_version="1.20.1",
                    instances_dir=tmp_path / "instances")
    inst.dir.mkdir(parents=True)
    return inst


def make_manifest(files: Dict[str, bytes], generated: int = 1000) -> DataManifest:
    return DataManifest(
        server_id=42,
        server_uuid="srv-uuid",
        files=[FileInfo(path, md5_of(content), len(content), 1700000000) for path, content in files.items()],
        generated=generated,
    )


def test_downloads_missing_files_and_caches_manifest(instance: Instance) -> None:
    """Missing files are fetched and data.json holds the fresh manifest."""
    files = {"mods/a.jar": b"abc", "config/a.toml": b"x = 1"}
    client = FakeCloudClient(files)
    manifest = make_manifest(files)

    report = ManifestSyncer(client).sync(instance, manifest)

    assert report.downloaded == ["config/a.toml", "mods/a.jar"]
    assert (instance.dir / "mods" / "a.jar").read_bytes() == b"abc"
    cached = json.loads(instance.data_manifest_path.read_text())
    assert DataManifest.from_dict(cached) == manifest


def test_second_sync_with_same_manifest_is_noop(instance: Instance) -> None:
    files = {"mods/a.jar": b"abc"}
    client = FakeCloudClient(files)
    syncer = ManifestSyncer(client)
    syncer.sync(instance, make_manifest(files))
    client.downloads.clear()

    report = syncer.sync(instance, make_manifest(files))

    assert client.downloads == []
    assert not report.changed
    assert report.skipped == []


def test_matching_md5_is_skipped(instance: Instance) -> None:
    files = {"mods/a.jar": b"abc"}
    (instance.dir / "mods").mkdir()
    (instance.dir / "mods" / "a.jar").write_bytes(b"abc")
    client = FakeCloudClient(files)

    report = ManifestSyncer(client).sync(instance, make_manifest(files))

    assert report.skipped == ["mods/a.jar"]
    assert client.downloads == []


def test_changed_file_is_overwritten(instance: Instance) -> None:
    files = {"config/game.cfg": b"new"}
    (instance.dir / "config").mkdir()
    (instance.dir / "config" / "game.cfg").write_bytes(b"old")

    report = ManifestSyncer(FakeCloudClient(files)).sync(instance, make_manifest(files))

    assert report.downloaded == ["config/game.cfg"]
    assert (instance.dir / "config" / "game.cfg").read_bytes() == b"new"


def test_options_txt_is_protected_once_present(instance: Instance) -> None:
    files = {"options.txt": b"fov:90"}
    (instance.dir / "options.txt").write_bytes(b"fov:70")

    report = ManifestSyncer(FakeCloudClient(files)).sync(instance, make_manifest(files))

    assert report.protected == ["options.txt"]
    assert (instance.dir / "options.txt").read_bytes() == b"fov:70"


def test_options_txt_is_downloaded_when_absent(instance: Instance) -> None:
    files = {"options.txt": b"fov:90"}

    report = ManifestSyncer(FakeCloudClient(files)).sync(instance, make_manifest(files))

    assert report.downloaded == ["options.txt"]
    assert (instance.dir / "options.txt").read_bytes() == b"fov:90"


def test_orphans_removed_only_in_managed_dirs(instance: Instance) -> None:
    """Unlisted files go away under mods/config/packs; saves and root files stay."""
    files = {"mods/keep.jar": b"k"}
    for relative in ("mods/keep.jar", "mods/old.jar", "config/sub/old.json", "saves/world/level.dat", "notes.txt"):
        path = instance.dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"k" if relative == "mods/keep.jar" else b"stale")

    report = ManifestSyncer(FakeCloudClient(files)).sync(instance, make_manifest(files))

    assert sorted(report.removed) == ["config/sub/old.json", "mods/old.jar"]
    assert (instance.dir / "mods" / "keep.jar").exists()
    assert (instance.dir / "saves" / "world" / "level.dat").exists()
    assert (instance.dir / "notes.txt").exists()


def test_failed_download_is_reported_and_others_continue(instance: Instance) -> None:
    files = {"mods/a.jar": b"a", "mods/b.jar": b"b"}
    client = FakeCloudClient(files, failing={"mods/b.jar"})

    report = ManifestSyncer(client).sync(instance, make_manifest(files))

    assert report.downloaded == ["mods/a.jar"]
    assert report.failed == ["mods/b.jar"]


def test_all_downloads_failing_raises(instance: Instance) -> None:
    files = {"mods/a.jar": b"a", "mods/b.jar": b"b"}
    client = FakeCloudClient(files, failing=set(files))

    with pytest.raises(SyncError):
        ManifestSyncer(client).sync(instance, make_manifest(files))
    assert not instance.data_manifest_path.exists()


def test_failed_file_is_retried_on_next_sync(instance: Instance) -> None:
    """A sync that left files missing does not let the same manifest take the fast path."""
    files = {"mods/a.jar": b"a", "mods/b.jar": b"b"}
    manifest = make_manifest(files)
    ManifestSyncer(FakeCloudClient(files, failing={"mods/a.jar"})).sync(instance, manifest)

    client = FakeCloudClient(files)
    report = ManifestSyncer(client).sync(instance, manifest)

    assert client.downloads == ["mods/a.jar"]
    assert report.skipped == ["mods/b.jar"]
    assert (instance.dir / "mods" / "a.jar").read_bytes() == b"a"
    assert DataManifest.from_dict(json.loads(instance.data_manifest_path.read_text())) == manifest


def test_download_with_wrong_md5_fails(instance: Instance) -> None:
    files = {"mods/a.jar": b"truncated"}
    manifest = DataManifest(42, "srv-uuid", [FileInfo("mods/a.jar", md5_of(b"full jar"), 8, 1)], 1)

    with pytest.raises(SyncError):
        ManifestSyncer(FakeCloudClient(files)).sync(instance, manifest)
    assert not (instance.dir / "mods" / "a.jar").exists()


def test_downloads_share_one_session_scope(instance: Instance) -> None:
    files = {"mods/a.jar": b"a", "mods/b.jar": b"b", "mods/c.jar": b"c"}
    client = FakeCloudClient(files)

    ManifestSyncer(client).sync(instance, make_manifest(files))

    assert client.scopes == 1


def test_paths_escaping_instance_are_rejected(instance: Instance) -> None:
    files = {"../escape.txt": b"x", "mods/a.jar": b"a"}
    client = FakeCloudClient(files)

    report = ManifestSyncer(client).sync(instance, make_manifest(files))

    assert report.failed == ["../escape.txt"]
    assert "../escape.txt" not in client.downloads
    assert not (instance.dir.parent / "escape.txt").exists()


def test_resolve_destination(tmp_path: Path) -> None:
    assert resolve_destination(tmp_path, "mods/a.jar") == (tmp_path / "mods" / "a.jar").resolve()
    assert resolve_destination(tmp_path, "/etc/passwd") is None
    assert resolve_destination(tmp_path, "mods/../../x") is None
    assert resolve_destination(tmp_path, "") is None


def test_sync_from_remote_fetches_manifest(instance: Instance) -> None:
    files = {"mods/a.jar": b"a"}
    client = FakeCloudClient(files)
    client.manifest = make_manifest(files)

    report = ManifestSyncer(client).sync_from_remote(instance, 42)

    assert report.downloaded == ["mods/a.jar"]


# --- Manifest equality ---

def test_manifest_equality_ignores_file_order() -> None:
    a = make_manifest({"mods/a.jar": b"a", "mods/b.jar": b"b"})
    b = DataManifest(a.server_id, a.server_uuid, list(reversed(a.files)), a.generated)

    assert a == b


@pytest.mark.parametrize("change", ["md5", "size", "modified", "generated", "missing"])
def test_manifest_equality_detects_changes(change: str) -> None:
    a = make_manifest({"mods/a.jar": b"a", "mods/b.jar": b"b"})
    files = list(a.files)
    generated = a.generated
    first = files[0]
    if change == "md5":
        files[0] = FileInfo(first.path, md5_of(b"other"), first.size, first.modified)
    elif change == "size":
        files[0] = FileInfo(first.path, first.md5, first.size + 1, first.modified)
    elif change == "modified":
        files[0] = FileInfo(first.path, first.md5, first.size, first.modified + 1)
    elif change == "generated":
        generated += 1
    else:
        files.pop()

    assert a != DataManifest(a.server_id, a.server_uuid, files, generated)


def test_manifest_from_dict_reads_wire_keys() -> None:
    manifest = DataManifest.from_dict({
        "server_id": 7,
        "server_uuid": "u",
        "generated": 5,
        "files": [{"path": "mods/x.jar", "md5": "ABCDEF", "size": 3, "modified": 9}],
    })

    assert manifest.files == [FileInfo("mods/x.jar", "abcdef", 3, 9)]
    assert manifest.to_dict()["files"][0]["path"] == "mods/x.jar"
