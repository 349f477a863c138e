import asyncio
import json
import logging
import uuid
import zipfile
from pathlib import Path
from typing import List
from unittest.mock import patch

import pytest

from qmlauncher.environment import (
    EnvironmentBuilder,
    LaunchOptions,
    Session,
    expand_arguments,
    split_server_address,
)
from qmlauncher.errors import DownloadError, InvalidLaunchOptionsError, LaunchError, LauncherError
from qmlauncher.events import (
    AssetsResolvedEvent,
    DownloadingEvent,
    LibrariesResolvedEvent,
    MetadataResolvedEvent,
    PostProcessingEvent,
)
from qmlauncher.instance import Instance, InstanceConfig, Loader, WindowResolution
from qmlauncher.paths import LauncherPaths
from qmlauncher.version import Library, VersionDescriptor

MODERN_GAME_ARGS = [
    "--username", "${auth_player_name}",
    "--uuid", "${auth_uuid}",
    "--accessToken", "${auth_access_token}",
    "--userType", "${user_type}",
    "--gameDir", "${game_directory}",
    "--assetIndex", "${assets_index_name}",
    {"rules": [{"action": "allow", "features": {"is_demo_user": True}}], "value": "--demo"},
    {"rules": [{"action": "allow", "features": {"has_custom_resolution": True}}],
     "value": ["--width", "${resolution_width}", "--height", "${resolution_height}"]},
    {"rules": [{"action": "allow", "features": {"is_quick_play_multiplayer": True}}],
     "value": ["--quickPlayMultiplayer", "${quickPlayMultiplayer}"]},
    {"rules": [{"action": "allow", "features": {"is_quick_play_singleplayer": True}}],
     "value": ["--quickPlaySingleplayer", "${quickPlaySingleplayer}"]},
]


def modern_descriptor(**overrides) -> VersionDescriptor:
    values = dict(
        id="1.21.5",
        game_version="1.21.5",
        loader=Loader.VANILLA,
        loader_version="",
        main_class="net.minecraft.client.main.Main",
        libraries=[Library("com.mojang:brigadier:1.1.8", "com/mojang/brigadier/1.1.8/brigadier-1.1.8.jar",
                           "https://libraries.minecraft.net/brigadier.jar", "b")],
        asset_index={"id": "24", "url": "https://example.invalid/24.json", "sha1": None},
        client={"url": "https://example.invalid/client.jar", "sha1": "c"},
        jvm_arguments=["-Djava.library.path=${natives_directory}", "-cp", "${classpath}"],
        game_arguments=list(MODERN_GAME_ARGS),
        java_major=21,
    )
    values.update(overrides)
    return VersionDescriptor(**values)


def legacy_descriptor() -> VersionDescriptor:
    return modern_descriptor(
        id="1.7.10",
        game_version="1.7.10",
        jvm_arguments=[],
        game_arguments=[],
        legacy_arguments="--username ${auth_player_name} --session ${auth_session} --gameDir ${game_directory}",
        java_major=8,
    )


@pytest.fixture
def instance(paths: LauncherPaths) -> Instance:
    return Instance(name="Test", uuid="c0ffee00-0000-4000-8000-000000000000", game_version="1.21.5",
                    instances_dir=paths.instances_dir)


def build(paths: LauncherPaths, instance: Instance, options: LaunchOptions, descriptor: VersionDescriptor,
          config: InstanceConfig = None):
    builder = EnvironmentBuilder(paths)
    classpath = [paths.libraries_dir / "a.jar", paths.versions_dir / "v" / "v.jar"]
    return builder.build_arguments(descriptor, instance, options, config or instance.config,
                                   classpath, paths.assets_dir)


# --- Sessions ---

def test_offline_session_uuid_is_stable_version_3() -> None:
    first = Session.offline_uuid("Steve")

    assert first == Session.offline_uuid("Steve")
    assert first != Session.offline_uuid("Alex")
    assert uuid.UUID(first).version == 3
    assert Session("Steve").user_type == "legacy"
    assert Session("Steve", access_token="tok").user_type == "msa"


def test_quick_play_server_and_world_are_exclusive(paths: LauncherPaths, instance: Instance) -> None:
    options = LaunchOptions(Session("Steve"), quick_play_server="mc.example.org:25565", quick_play_world="World")
    with pytest.raises(InvalidLaunchOptionsError):
        asyncio.run(EnvironmentBuilder(paths).prepare_async(instance, options))


def test_invalid_options_are_launch_errors() -> None:
    with pytest.raises(LaunchError):
        LaunchOptions(Session("")).validate()
    with pytest.raises(LauncherError):
        LaunchOptions(Session("Steve"), quick_play_server="a:1", quick_play_world="w").validate()


# --- Arguments ---

def test_placeholders_are_substituted(paths: LauncherPaths, instance: Instance) -> None:
    jvm_args, game_args = build(paths, instance, LaunchOptions(Session("Steve")), modern_descriptor())

    assert game_args[:2] == ["--username", "Steve"]
    assert game_args[game_args.index("--uuid") + 1] == Session.offline_uuid("Steve")
    assert game_args[game_args.index("--userType") + 1] == "legacy"
    assert game_args[game_args.index("--gameDir") + 1] == str(instance.dir)
    assert game_args[game_args.index("--assetIndex") + 1] == "24"
    assert "--demo" not in game_args
    assert "--width" not in game_args
    assert jvm_args[0] == f"-Djava.library.path={instance.natives_dir}"
    assert jvm_args[2].count(str(paths.libraries_dir / "a.jar")) == 1


def test_memory_and_extra_jvm_args(paths: LauncherPaths, instance: Instance) -> None:
    config = InstanceConfig(min_memory=512, max_memory=4096, java_args='-XX:+UseG1GC -Dfoo="a b"')

    jvm_args, _ = build(paths, instance, LaunchOptions(Session("Steve")), modern_descriptor(), config)

    assert jvm_args[:2] == ["-Xms512M", "-Xmx4096M"]
    assert jvm_args[-2:] == ["-XX:+UseG1GC", "-Dfoo=a b"]


def test_feature_guarded_arguments(paths: LauncherPaths, instance: Instance) -> None:
    config = InstanceConfig(resolution=WindowResolution(1280, 720))
    options = LaunchOptions(Session("Steve"), quick_play_server="mc.example.org:25565", demo=True,
                            disable_multiplayer=True, disable_chat=True)

    _, game_args = build(paths, instance, options, modern_descriptor(), config)

    assert "--demo" in game_args
    assert game_args[game_args.index("--width") + 1] == "1280"
    assert game_args[game_args.index("--quickPlayMultiplayer") + 1] == "mc.example.org:25565"
    assert "--server" not in game_args
    assert game_args[-2:] == ["--disableMultiplayer", "--disableChat"]


def test_quick_play_singleplayer(paths: LauncherPaths, instance: Instance) -> None:
    _, game_args = build(paths, instance, LaunchOptions(Session("Steve"), quick_play_world="My World"),
                         modern_descriptor())

    assert game_args[game_args.index("--quickPlaySingleplayer") + 1] == "My World"
    assert "--quickPlayMultiplayer" not in game_args


def test_legacy_version_uses_server_and_port(paths: LauncherPaths, instance: Instance) -> None:
    options = LaunchOptions(Session("Steve", access_token="tok"), quick_play_server="mc.example.org:25570")

    jvm_args, game_args = build(paths, instance, options, legacy_descriptor())

    assert game_args[:4] == ["--username", "Steve", "--session", "tok"]
    assert game_args[-4:] == ["--server", "mc.example.org", "--port", "25570"]
    assert "-cp" in jvm_args


def test_split_server_address_defaults_port() -> None:
    assert split_server_address("mc.example.org") == ("mc.example.org", "25565")
    assert split_server_address("mc.example.org:1234") == ("mc.example.org", "1234")


def test_expand_arguments_skips_excluded_entries() -> None:
    entries = ["a", {"rules": [{"action": "allow", "features": {"x": True}}], "value": "b"}, {"value": ["c", "d"]}]

    assert expand_arguments(entries, {}, logging.getLogger(__name__)) == ["a", "c", "d"]
    assert expand_arguments(entries, {"x": True}, logging.getLogger(__name__)) == ["a", "b", "c", "d"]


# --- Full prepare with fakes ---

class FakeVersionResolver:
    def __init__(self, descriptor: VersionDescriptor) -> None:
        self.descriptor = descriptor

    async def resolve_async(self, game_version, loader, loader_version, java_provider=None):
        return self.descriptor


class FakeRuntime:
    def __init__(self, java: Path) -> None:
        self.java = java
        self.requested: List[int] = []

    async def resolve_async(self, configured: str, major: int) -> Path:
        self.requested.append(major)
        return self.java


class FakeDownloader:
    """Reports every queued entry as finished without any I/O."""

    def __init__(self, session, max_concurrency=16, retries=1, logger=None) -> None:
        self.queued = []

    def add(self, entry) -> None:
        self.queued.append(entry)

    def __len__(self) -> int:
        return len(self.queued)

    async def run(self, on_progress=None) -> int:
        for done in range(1, len(self.queued) + 1):
            on_progress(done, len(self.queued))
        return 0


def test_prepare_emits_milestones_in_order(paths: LauncherPaths, instance: Instance) -> None:
    """Milestones arrive once each, in order, with one download event per unit."""
    native = Library("org.lwjgl:lwjgl:3.3.3:natives-linux", "org/lwjgl/lwjgl-natives-linux.jar",
                     "https://libraries.minecraft.net/lwjgl-natives-linux.jar", None, native=True)
    descriptor = modern_descriptor(libraries=modern_descriptor().libraries + [native])

    native_jar = paths.libraries_dir / native.path
    native_jar.parent.mkdir(parents=True)
    with zipfile.ZipFile(native_jar, "w") as jar:
        jar.writestr("liblwjgl.so", b"native")
        jar.writestr("META-INF/MANIFEST.MF", b"Manifest-Version: 1.0")

    index = {"objects": {"minecraft/sounds/a.ogg": {"hash": "ab" + "0" * 38, "size": 1}}}

    async def fake_download_file(session, url, dest, expected_hash, **kwargs):
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(json.dumps(index))
        return True

    runtime = FakeRuntime(Path("/opt/java/bin/java"))
    builder = EnvironmentBuilder(paths, resolver=FakeVersionResolver(descriptor), runtime=runtime)
    events = []
    with patch("qmlauncher.environment.download_file", fake_download_file), \
            patch("qmlauncher.environment.Downloader", FakeDownloader):
        environment = builder.prepare(instance, LaunchOptions(Session("Steve")), events.append)

    # client jar, two libraries, one asset
    assert events == [
        LibrariesResolvedEvent(2),
        AssetsResolvedEvent(1),
        MetadataResolvedEvent(),
        DownloadingEvent(1, 4),
        DownloadingEvent(2, 4),
        DownloadingEvent(3, 4),
        DownloadingEvent(4, 4),
        PostProcessingEvent(),
    ]
    assert runtime.requested == [21]
    assert (instance.natives_dir / "liblwjgl.so").read_bytes() == b"native"
    assert not (instance.natives_dir / "META-INF").exists()
    assert environment.classpath[-1] == paths.versions_dir / "1.21.5" / "1.21.5.jar"
    assert native_jar not in environment.classpath
    command = environment.command()
    assert command[0] == "/opt/java/bin/java"
    assert "net.minecraft.client.main.Main" in command
    assert environment.game_dir == instance.dir


def test_custom_jar_replaces_client(paths: LauncherPaths, instance: Instance, tmp_path: Path) -> None:
    custom = tmp_path / "patched.jar"
    custom.write_bytes(b"jar")
    options = LaunchOptions(Session("Steve"), config=InstanceConfig(custom_jar=str(custom)))

    async def fake_download_file(session, url, dest, expected_hash, **kwargs):
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(json.dumps({"objects": {}}))
        return True

    builder = EnvironmentBuilder(paths, resolver=FakeVersionResolver(modern_descriptor()),
                                 runtime=FakeRuntime(Path("java")))
    with patch("qmlauncher.environment.download_file", fake_download_file), \
            patch("qmlauncher.environment.Downloader", FakeDownloader):
        environment = builder.prepare(instance, options)

    assert environment.classpath[-1] == custom
    assert paths.versions_dir / "1.21.5" / "1.21.5.jar" not in environment.classpath


def test_asset_index_download_is_retried_once(paths: LauncherPaths, instance: Instance) -> None:
    attempts = []

    async def flaky_download_file(session, url, dest, expected_hash, **kwargs):
        attempts.append(url)
        if len(attempts) == 1:
            raise DownloadError(f"Failed to download {url}: 503", [url])
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(json.dumps({"objects": {}}))
        return True

    builder = EnvironmentBuilder(paths, resolver=FakeVersionResolver(modern_descriptor()),
                                 runtime=FakeRuntime(Path("java")))
    with patch("qmlauncher.environment.download_file", flaky_download_file), \
            patch("qmlauncher.environment.Downloader", FakeDownloader):
        builder.prepare(instance, LaunchOptions(Session("Steve")))

    assert attempts == ["https://example.invalid/24.json"] * 2


def test_asset_index_failing_twice_is_fatal(paths: LauncherPaths, instance: Instance) -> None:
    attempts = []

    async def broken_download_file(session, url, dest, expected_hash, **kwargs):
        attempts.append(url)
        raise DownloadError(f"Failed to download {url}: 503", [url])

    builder = EnvironmentBuilder(paths, resolver=FakeVersionResolver(modern_descriptor()),
                                 runtime=FakeRuntime(Path("java")))
    events = []
    with patch("qmlauncher.environment.download_file", broken_download_file), \
            patch("qmlauncher.environment.Downloader", FakeDownloader):
        with pytest.raises(DownloadError):
            builder.prepare(instance, LaunchOptions(Session("Steve")), events.append)

    assert len(attempts) == 2
    assert events == [LibrariesResolvedEvent(1)]
