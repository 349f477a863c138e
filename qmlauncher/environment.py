"""
Preparation of a launch environment for an instance.

``EnvironmentBuilder.prepare`` resolves the version descriptor and the Java
runtime, brings the shared library/asset cache up to date and computes the
final JVM and game argument lists. Nothing is launched here; the result is a
:class:`LaunchEnvironment` handed to :mod:`qmlauncher.launch`.
"""
import asyncio
import hashlib
import json
import logging
import os
import pathlib
import shlex
import shutil
import uuid
import zipfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os
import aiohttp

from . import __version__
from .errors import DownloadError, InvalidLaunchOptionsError, LaunchError, VersionResolutionError
from .events import (
    AssetsResolvedEvent,
    DownloadingEvent,
    EventWatcher,
    LibrariesResolvedEvent,
    MetadataResolvedEvent,
    PostProcessingEvent,
    null_watcher,
)
from .instance import Instance, InstanceConfig
from .java import RuntimeResolver
from .network import Downloader, DownloadEntry, download_file, http_session
from .paths import LauncherPaths
from .replacer import substitute_all
from .rules import check_item_rules
from .version import Library, VersionDescriptor, VersionResolver

log = logging.getLogger(__name__)

# --- Constants ---
RESOURCES_URL = 'https://resources.download.minecraft.net'
LAUNCHER_NAME = 'QMLauncher'
DEFAULT_WIDTH = 854
DEFAULT_HEIGHT = 480
ASSET_INDEX_RETRIES = 1

# JVM arguments for versions whose manifest has no "arguments.jvm" list
LEGACY_JVM_ARGUMENTS = [
    '-Djava.library.path=${natives_directory}',
    '-cp',
    '${classpath}',
]


# --- Sessions and options ---

@dataclass(frozen=True)
class Session:
    """Player identity. An empty access token means an offline session."""

    username: str
    access_token: str = ''
    uuid: str = ''
    xuid: str = '0'

    @property
    def is_offline(self) -> bool:
        return not self.access_token

    @property
    def user_type(self) -> str:
        return 'legacy' if self.is_offline else 'msa'

    @property
    def player_uuid(self) -> str:
        return self.uuid or self.offline_uuid(self.username)

    @staticmethod
    def offline_uuid(username: str) -> str:
        """The UUID servers assign to offline players (name-based, MD5, version 3)."""
        digest = hashlib.md5(f"OfflinePlayer:{username}".encode('utf-8')).digest()
        return str(uuid.UUID(bytes=digest, version=3))


@dataclass
class LaunchOptions:
    session: Session
    # Merged over the stored instance configuration for this launch only
    config: Optional[InstanceConfig] = None
    quick_play_server: str = ''
    quick_play_world: str = ''
    demo: bool = False
    disable_multiplayer: bool = False
    disable_chat: bool = False

    def validate(self) -> None:
        if self.quick_play_server and self.quick_play_world:
            raise InvalidLaunchOptionsError("Quick play server and world are mutually exclusive")
        if not self.session.username:
            raise InvalidLaunchOptionsError("A session username is required")


@dataclass
class LaunchEnvironment:
    java_path: pathlib.Path
    jvm_args: List[str]
    main_class: str
    game_args: List[str]
    game_dir: pathlib.Path
    classpath: List[pathlib.Path] = field(default_factory=list)
    natives_dir: Optional[pathlib.Path] = None

    def command(self) -> List[str]:
        return [str(self.java_path), *self.jvm_args, self.main_class, *self.game_args]


# --- Helpers ---

def split_server_address(address: str) -> tuple:
    """Splits ``host[:port]``; the port defaults to 25565."""
    host, sep, port = address.rpartition(':')
    if sep and port.isdigit() and host:
        return host, port
    return address, '25565'


def expand_arguments(entries: List[Any], features: Dict[str, bool], logger: logging.Logger) -> List[str]:
    """Flattens a modern argument list, dropping entries whose rules exclude them."""
    templates: List[str] = []
    for arg_entry in entries:
        if isinstance(arg_entry, str):
            templates.append(arg_entry)
        elif isinstance(arg_entry, dict):
            if not check_item_rules(arg_entry.get('rules'), features):
                continue
            value = arg_entry.get('value')
            if isinstance(value, list):
                templates.extend(str(v) for v in value)
            elif isinstance(value, str):
                templates.append(value)
            else:
                logger.warning(f"Unsupported value type in argument object: {value}")
        else:
            logger.warning(f"Unsupported argument format: {arg_entry}")
    return templates


def _extract_zip_sync(jar_path: pathlib.Path, extract_to_dir: pathlib.Path, logger: logging.Logger) -> None:
    with zipfile.ZipFile(jar_path, 'r') as zip_ref:
        for member in zip_ref.infolist():
            # Skip directories and META-INF
            if member.is_dir() or member.filename.upper().startswith('META-INF/'):
                continue
            try:
                zip_ref.extract(member, extract_to_dir)
            except OSError as extract_error:
                logger.warning(f"Could not extract {member.filename} from {jar_path.name}: {extract_error}")


def _copy_assets_sync(objects: Dict[str, Any], objects_dir: pathlib.Path, target_dir: pathlib.Path) -> None:
    for asset_key, asset_details in objects.items():
        asset_hash = asset_details.get('hash')
        if not asset_hash:
            continue
        target = target_dir / asset_key
        if target.is_file() and target.stat().st_size == asset_details.get('size', -1):
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(objects_dir / asset_hash[:2] / asset_hash, target)


class EnvironmentBuilder:
    """
    Turns an instance into a LaunchEnvironment.

    Libraries, assets and the client jar live in the shared cache under the
    launcher root; only natives and legacy resources are per-instance.
    """

    def __init__(self, paths: LauncherPaths, resolver: Optional[VersionResolver] = None,
                 runtime: Optional[RuntimeResolver] = None):
        self.paths = paths
        self._resolver = resolver
        self._runtime = runtime

    # --- Steps ---

    async def _asset_index(self, session: aiohttp.ClientSession, descriptor: VersionDescriptor,
                           logger: logging.Logger) -> Dict[str, Any]:
        info = descriptor.asset_index
        index_path = self.paths.asset_indexes_dir / f"{info['id']}.json"
        attempt = 0
        while True:
            try:
                await download_file(session, info['url'], index_path, info.get('sha1'), logger=logger)
                break
            except (DownloadError, OSError) as error:
                if attempt >= ASSET_INDEX_RETRIES:
                    raise
                attempt += 1
                logger.warning(f"Retrying {info['url']} after error: {error}")
        try:
            async with aiofiles.open(index_path, 'r', encoding='utf-8') as f:
                return json.loads(await f.read())
        except (OSError, json.JSONDecodeError) as e:
            raise VersionResolutionError(f"Failed to read asset index {index_path}: {e}") from e

    def _client_jar(self, descriptor: VersionDescriptor) -> pathlib.Path:
        return self.paths.versions_dir / descriptor.game_version / f"{descriptor.game_version}.jar"

    def _queue_downloads(self, downloader: Downloader, descriptor: VersionDescriptor,
                         objects: Dict[str, Any], custom_jar: Optional[pathlib.Path],
                         logger: logging.Logger) -> None:
        if custom_jar is None:
            if not descriptor.client or not descriptor.client.get('url'):
                raise VersionResolutionError(f"Version {descriptor.id} has no client download")
            downloader.add(DownloadEntry(descriptor.client['url'], self._client_jar(descriptor),
                                         descriptor.client.get('sha1')))

        for lib in descriptor.libraries:
            lib_path = self.paths.libraries_dir / lib.path
            if lib.url:
                downloader.add(DownloadEntry(lib.url, lib_path, lib.hash, lib.algorithm))
            elif not lib_path.is_file():
                # Installer-provided libraries have no URL and must already exist
                logger.warning(f"Library {lib.name} has no download URL and is missing at {lib_path}")

        for asset_key, asset_details in objects.items():
            asset_hash = asset_details.get('hash')
            if not asset_hash:
                logger.warning(f"Asset '{asset_key}' is missing hash in index, skipping.")
                continue
            hash_prefix = asset_hash[:2]
            downloader.add(DownloadEntry(f"{RESOURCES_URL}/{hash_prefix}/{asset_hash}",
                                         self.paths.asset_objects_dir / hash_prefix / asset_hash,
                                         asset_hash))

    async def _extract_natives(self, natives: List[Library], natives_dir: pathlib.Path,
                               logger: logging.Logger) -> None:
        loop = asyncio.get_running_loop()
        if await aiofiles.os.path.isdir(natives_dir):
            await loop.run_in_executor(None, shutil.rmtree, natives_dir)
        await aiofiles.os.makedirs(natives_dir, exist_ok=True)
        for lib in natives:
            jar_path = self.paths.libraries_dir / lib.path
            try:
                await loop.run_in_executor(None, _extract_zip_sync, jar_path, natives_dir, logger)
            except (OSError, zipfile.BadZipFile) as e:
                raise LaunchError(f"Failed to extract natives from {jar_path.name}: {e}") from e

    def _game_assets_dir(self, index: Dict[str, Any], instance: Instance, assets_id: str) -> pathlib.Path:
        if index.get('map_to_resources'):
            return instance.dir / 'resources'
        if index.get('virtual'):
            return self.paths.assets_dir / 'virtual' / assets_id
        return self.paths.assets_dir

    # --- Arguments ---

    def _features(self, options: LaunchOptions, config: InstanceConfig) -> Dict[str, bool]:
        return {
            'is_demo_user': options.demo,
            'has_custom_resolution': config.resolution.is_set,
            'is_quick_play_multiplayer': bool(options.quick_play_server),
            'is_quick_play_singleplayer': bool(options.quick_play_world),
            'has_quick_plays_support': False,
            'is_quick_play_realms': False,
        }

    def build_arguments(self, descriptor: VersionDescriptor, instance: Instance, options: LaunchOptions,
                        config: InstanceConfig, classpath: List[pathlib.Path], game_assets: pathlib.Path,
                        logger: Optional[logging.Logger] = None) -> tuple:
        """Returns ``(jvm_args, game_args)`` with every placeholder substituted."""
        logger = logger or log
        session = options.session
        features = self._features(options, config)
        width = config.resolution.width if config.resolution.is_set else DEFAULT_WIDTH
        height = config.resolution.height if config.resolution.is_set else DEFAULT_HEIGHT

        values = {
            'auth_player_name': session.username,
            'auth_uuid': session.player_uuid,
            'auth_access_token': session.access_token or '0',
            'auth_session': session.access_token or '0',
            'auth_xuid': session.xuid,
            'clientid': 'N/A',
            'user_type': session.user_type,
            'user_properties': '{}',
            'version_name': descriptor.id,
            'version_type': descriptor.type,
            'game_directory': str(instance.dir),
            'assets_root': str(self.paths.assets_dir),
            'assets_index_name': descriptor.assets_id,
            'game_assets': str(game_assets),
            'natives_directory': str(instance.natives_dir),
            'library_directory': str(self.paths.libraries_dir),
            'classpath': os.pathsep.join(str(p) for p in classpath),
            'classpath_separator': os.pathsep,
            'launcher_name': LAUNCHER_NAME,
            'launcher_version': __version__,
            'resolution_width': str(width),
            'resolution_height': str(height),
            'quickPlayMultiplayer': options.quick_play_server,
            'quickPlaySingleplayer': options.quick_play_world,
            'quickPlayPath': str(instance.dir / 'quickPlay' / 'log.json'),
        }

        # --- JVM arguments ---
        jvm_args: List[str] = []
        if config.min_memory > 0:
            jvm_args.append(f"-Xms{config.min_memory}M")
        if config.max_memory > 0:
            jvm_args.append(f"-Xmx{config.max_memory}M")
        jvm_templates = expand_arguments(descriptor.jvm_arguments, features, logger)
        if not jvm_templates:
            jvm_templates = list(LEGACY_JVM_ARGUMENTS)
        jvm_args += substitute_all(jvm_templates, values)
        if config.java_args:
            jvm_args += shlex.split(config.java_args)

        # --- Game arguments ---
        legacy = not descriptor.game_arguments and bool(descriptor.legacy_arguments)
        if legacy:
            game_args = substitute_all(descriptor.legacy_arguments.split(), values)
            if config.resolution.is_set:
                game_args += ['--width', str(width), '--height', str(height)]
            if options.demo:
                game_args.append('--demo')
        else:
            game_args = substitute_all(expand_arguments(descriptor.game_arguments, features, logger), values)

        if options.quick_play_server and not descriptor.uses_quick_play:
            host, port = split_server_address(options.quick_play_server)
            game_args += ['--server', host, '--port', port]
        if options.disable_multiplayer:
            game_args.append('--disableMultiplayer')
        if options.disable_chat:
            game_args.append('--disableChat')
        return jvm_args, game_args

    # --- Orchestration ---

    async def prepare_async(self, instance: Instance, options: LaunchOptions,
                            watcher: Optional[EventWatcher] = None,
                            logger: Optional[logging.Logger] = None) -> LaunchEnvironment:
        logger = logger or log
        watcher = watcher or null_watcher
        options.validate()
        config = instance.config.merged(options.config) if options.config else instance.config

        custom_jar = None
        if config.custom_jar:
            custom_jar = pathlib.Path(config.custom_jar).expanduser()
            if not custom_jar.is_absolute():
                custom_jar = instance.dir / custom_jar
            if not custom_jar.is_file():
                raise LaunchError(f"Custom game jar not found: {custom_jar}")

        async with http_session() as session:
            resolver = self._resolver or VersionResolver(self.paths, session=session, logger=logger)
            runtime = self._runtime or RuntimeResolver(self.paths, session=session, logger=logger)

            async def java_provider(major: int) -> pathlib.Path:
                return await runtime.resolve_async(config.java, major)

            # 1-2. Descriptor and platform libraries
            logger.info(f"Resolving {instance.game_version} {instance.loader.value} {instance.loader_version}".rstrip())
            descriptor = await resolver.resolve_async(instance.game_version, instance.loader,
                                                      instance.loader_version, java_provider)
            watcher(LibrariesResolvedEvent(len(descriptor.libraries)))

            # 3. Asset index
            index = await self._asset_index(session, descriptor, logger)
            objects = index.get('objects', {}) or {}
            watcher(AssetsResolvedEvent(len(objects)))

            # 4. Java runtime
            java_path = await java_provider(descriptor.java_major)
            logger.info(f"Using Java executable: {java_path}")
            watcher(MetadataResolvedEvent())

            # 5. Shared cache downloads
            downloader = Downloader(session, max_concurrency=self.paths.max_downloads, logger=logger)
            self._queue_downloads(downloader, descriptor, objects, custom_jar, logger)
            logger.info(f"Checking {len(downloader)} files...")
            transferred = await downloader.run(lambda done, total: watcher(DownloadingEvent(done, total)))
            logger.info(f"Downloaded {transferred} files.")

        # 6. Post-processing
        watcher(PostProcessingEvent())
        natives = [lib for lib in descriptor.libraries if lib.native]
        await self._extract_natives(natives, instance.natives_dir, logger)

        game_assets = self._game_assets_dir(index, instance, descriptor.assets_id)
        if game_assets != self.paths.assets_dir:
            await asyncio.get_running_loop().run_in_executor(
                None, _copy_assets_sync, objects, self.paths.asset_objects_dir, game_assets)

        # 7. Arguments
        classpath: List[pathlib.Path] = []
        for lib in descriptor.libraries:
            lib_path = self.paths.libraries_dir / lib.path
            if not lib.native and lib_path not in classpath:
                classpath.append(lib_path)
        classpath.append(custom_jar or self._client_jar(descriptor))

        jvm_args, game_args = self.build_arguments(descriptor, instance, options, config,
                                                   classpath, game_assets, logger)
        return LaunchEnvironment(
            java_path=java_path,
            jvm_args=jvm_args,
            main_class=descriptor.main_class,
            game_args=game_args,
            game_dir=instance.dir,
            classpath=classpath,
            natives_dir=instance.natives_dir,
        )

    def prepare(self, instance: Instance, options: LaunchOptions, watcher: Optional[EventWatcher] = None,
                logger: Optional[logging.Logger] = None) -> LaunchEnvironment:
        return asyncio.run(self.prepare_async(instance, options, watcher, logger))
