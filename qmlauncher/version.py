"""Resolution of game versions and mod-loader profiles into launchable descriptors."""
import asyncio
import contextlib
import json
import logging
import pathlib
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

import aiofiles
import aiofiles.os
import aiohttp

from .errors import (
    LoaderInstallError,
    LoaderNotFoundError,
    NetworkError,
    NotCachedError,
    VersionNotFoundError,
    VersionResolutionError,
)
from .instance import Loader
from .network import fetch_json, fetch_text, file_digest, http_session, stream_to_file
from .paths import LauncherPaths
from .rules import check_item_rules, get_arch_name, get_os_name

log = logging.getLogger(__name__)

# --- Endpoints ---
VERSION_MANIFEST_URL = 'https://piston-meta.mojang.com/mc/game/version_manifest_v2.json'
MOJANG_LIBRARIES_URL = 'https://libraries.minecraft.net/'
FABRIC_META_URL = 'https://meta.fabricmc.net/v2'
QUILT_META_URL = 'https://meta.quiltmc.org/v3'
FORGE_PROMOTIONS_URL = 'https://files.minecraftforge.net/net/minecraftforge/forge/promotions_slim.json'
FORGE_MAVEN_URL = 'https://maven.minecraftforge.net/net/minecraftforge/forge'
NEOFORGE_MAVEN_URL = 'https://maven.neoforged.net/releases/net/neoforged/neoforge'

LATEST = 'latest'
DEFAULT_JAVA_MAJOR = 8

JavaProvider = Callable[[int], Awaitable[pathlib.Path]]


# --- Descriptor types ---

@dataclass(frozen=True)
class Library:
    name: str
    path: str  # relative to the libraries directory
    url: Optional[str] = None
    hash: Optional[str] = None
    algorithm: str = 'sha1'
    size: Optional[int] = None
    native: bool = False


@dataclass
class VersionDescriptor:
    """A version manifest merged with its loader profile, filtered for this platform."""

    id: str
    game_version: str
    loader: Loader
    loader_version: str
    main_class: str
    libraries: List[Library]
    asset_index: Dict[str, Any]
    client: Optional[Dict[str, Any]]
    jvm_arguments: List[Any] = field(default_factory=list)
    game_arguments: List[Any] = field(default_factory=list)
    legacy_arguments: Optional[str] = None
    java_major: int = DEFAULT_JAVA_MAJOR
    java_component: str = 'jre-legacy'
    type: str = 'release'

    @property
    def assets_id(self) -> str:
        return self.asset_index.get('id', 'legacy')

    @property
    def uses_quick_play(self) -> bool:
        for arg in self.game_arguments:
            if not isinstance(arg, dict):
                continue
            for rule in arg.get('rules') or []:
                if 'is_quick_play_multiplayer' in (rule.get('features') or {}):
                    return True
        return False


# --- Maven helpers ---

def maven_path(name: str) -> str:
    """
    Converts a maven coordinate ``group:artifact:version[:classifier][@ext]``
    to its repository-relative path.
    """
    ext = 'jar'
    if '@' in name:
        name, ext = name.split('@', 1)
    parts = name.split(':')
    if len(parts) < 3:
        raise ValueError(f"Invalid maven coordinate: {name}")
    group, artifact, version = parts[0], parts[1], parts[2]
    classifier = f"-{parts[3]}" if len(parts) > 3 else ''
    return f"{group.replace('.', '/')}/{artifact}/{version}/{artifact}-{version}{classifier}.{ext}"


def library_key(name: str) -> str:
    """Maven coordinate without its version, used to let loader libraries replace base ones."""
    parts = name.split('@', 1)[0].split(':')
    if len(parts) < 3:
        return name
    return ':'.join([parts[0], parts[1]] + parts[3:])


# --- Manifest merging ---

def merge_manifests(target_manifest: Dict[str, Any], base_manifest: Dict[str, Any]) -> Dict[str, Any]:
    """Merges two version manifests (target inheriting from base)."""
    target_id = target_manifest.get('id', 'unknown-target')
    base_id = base_manifest.get('id', 'unknown-base')
    log.debug(f"Merging manifests: {target_id} inheriting from {base_id}")

    # Libraries keyed by coordinate without version so the target overrides
    combined_libraries: Dict[str, Dict[str, Any]] = {}
    for lib in base_manifest.get('libraries', []) or []:
        if 'name' in lib:
            combined_libraries[library_key(lib['name'])] = lib
    for lib in target_manifest.get('libraries', []) or []:
        if 'name' in lib:
            combined_libraries[library_key(lib['name'])] = lib

    base_args = base_manifest.get('arguments', {}) or {}
    target_args = target_manifest.get('arguments', {}) or {}
    combined_arguments = {
        "game": (base_args.get('game', []) or []) + (target_args.get('game', []) or []),
        "jvm": (base_args.get('jvm', []) or []) + (target_args.get('jvm', []) or []),
    }

    merged = {
        "id": target_manifest.get('id'),
        "time": target_manifest.get('time', base_manifest.get('time')),
        "releaseTime": target_manifest.get('releaseTime', base_manifest.get('releaseTime')),
        "type": target_manifest.get('type', base_manifest.get('type')),
        "mainClass": target_manifest.get('mainClass', base_manifest.get('mainClass')),
        "assetIndex": target_manifest.get('assetIndex', base_manifest.get('assetIndex')),
        "assets": target_manifest.get('assets', base_manifest.get('assets')),
        "downloads": base_manifest.get('downloads'),
        "javaVersion": target_manifest.get('javaVersion', base_manifest.get('javaVersion')),
        "libraries": list(combined_libraries.values()),
        "arguments": combined_arguments if (base_args or target_args) else None,
        "minecraftArguments": target_manifest.get('minecraftArguments', base_manifest.get('minecraftArguments')),
        "logging": target_manifest.get('logging', base_manifest.get('logging')),
        "complianceLevel": target_manifest.get('complianceLevel', base_manifest.get('complianceLevel')),
    }
    return {k: v for k, v in merged.items() if v is not None}


def platform_libraries(manifest: Mapping[str, Any],
                       features: Optional[Mapping[str, bool]] = None) -> List[Library]:
    """Selects the libraries (and native classifiers) that apply to the current platform."""
    os_name = get_os_name()
    arch_name = get_arch_name()
    libraries: List[Library] = []

    for lib in manifest.get('libraries', []) or []:
        if not check_item_rules(lib.get('rules'), features):
            continue

        lib_name = lib.get('name', 'unknown-library')
        downloads = lib.get('downloads', {}) or {}
        artifact = downloads.get('artifact')
        classifiers = downloads.get('classifiers', {}) or {}
        natives_rules = lib.get('natives', {}) or {}

        # --- Main artifact ---
        if artifact and artifact.get('path'):
            libraries.append(Library(
                name=lib_name,
                path=artifact['path'],
                url=artifact.get('url') or None,
                hash=artifact.get('sha1'),
                size=artifact.get('size'),
            ))
        elif not downloads and 'name' in lib:
            # Maven-style entry (fabric/quilt profiles, old forge)
            path = maven_path(lib_name)
            base_url = lib.get('url') or MOJANG_LIBRARIES_URL
            if not base_url.endswith('/'):
                base_url += '/'
            libraries.append(Library(
                name=lib_name,
                path=path,
                url=base_url + path,
                hash=lib.get('sha1'),
                size=lib.get('size'),
            ))

        # --- Native classifier ---
        native_key = None
        if os_name in natives_rules:
            arch_replace = '64' if arch_name == 'x64' else ('32' if arch_name == 'x86' else arch_name)
            candidate = natives_rules[os_name].replace('${arch}', arch_replace)
            if candidate in classifiers:
                native_key = candidate
        if native_key is None and classifiers:
            for candidate in (f"natives-{os_name}-{arch_name}", f"natives-{os_name}"):
                if candidate in classifiers:
                    native_key = candidate
                    break
        if native_key is not None:
            native_info = classifiers[native_key]
            if native_info.get('path'):
                libraries.append(Library(
                    name=f"{lib_name}:{native_key}",
                    path=native_info['path'],
                    url=native_info.get('url') or None,
                    hash=native_info.get('sha1'),
                    size=native_info.get('size'),
                    native=True,
                ))

    return libraries


def build_descriptor(manifest: Mapping[str, Any], game_version: str, loader: Loader,
                     loader_version: str) -> VersionDescriptor:
    version_id = manifest.get('id')
    main_class = manifest.get('mainClass')
    if not version_id or not main_class:
        raise VersionResolutionError(f"Version manifest for {game_version} is missing 'id' or 'mainClass'")
    asset_index = manifest.get('assetIndex')
    if not (asset_index and 'id' in asset_index and 'url' in asset_index):
        raise VersionResolutionError(f"Version manifest for {version_id} is missing asset index information")

    java_info = manifest.get('javaVersion') or {}
    arguments = manifest.get('arguments') or {}
    return VersionDescriptor(
        id=version_id,
        game_version=game_version,
        loader=loader,
        loader_version=loader_version,
        main_class=main_class,
        libraries=platform_libraries(manifest),
        asset_index=asset_index,
        client=(manifest.get('downloads') or {}).get('client'),
        jvm_arguments=list(arguments.get('jvm', []) or []),
        game_arguments=list(arguments.get('game', []) or []),
        legacy_arguments=manifest.get('minecraftArguments'),
        java_major=int(java_info.get('majorVersion', DEFAULT_JAVA_MAJOR)),
        java_component=java_info.get('component', 'jre-legacy'),
        type=manifest.get('type', 'release'),
    )


def neoforge_prefix(game_version: str) -> str:
    """NeoForge builds for 1.X.Y are versioned X.Y.*, and 1.X is X.0.*."""
    parts = game_version.split('.')
    if len(parts) < 2 or parts[0] != '1':
        raise LoaderNotFoundError(f"NeoForge does not support game version {game_version}")
    minor = parts[2] if len(parts) > 2 else '0'
    return f"{parts[1]}.{minor}."


def pick_latest_fabric_like(entries: List[Dict[str, Any]]) -> Optional[str]:
    """Chooses the newest stable build from a fabric/quilt loader list (newest first)."""
    versions = []
    for entry in entries:
        loader_info = entry.get('loader', entry) if isinstance(entry, dict) else {}
        version = loader_info.get('version')
        if version:
            versions.append((version, loader_info.get('stable')))
    if not versions:
        return None
    for version, stable in versions:
        if stable is True:
            return version
    for version, stable in versions:
        if stable is None and 'beta' not in version and 'pre' not in version:
            return version
    return versions[0][0]


class VersionResolver:
    """
    Resolves ``(game_version, loader, loader_version)`` into a VersionDescriptor.

    Version JSON files are cached under ``<root>/versions``; mutable indexes
    (version manifest, loader lists) are refetched on each resolution and only
    read from the cache when the network is unavailable.
    """

    def __init__(self, paths: LauncherPaths, session: Optional[aiohttp.ClientSession] = None,
                 logger: Optional[logging.Logger] = None):
        self.paths = paths
        self._session = session
        self.log = logger or log

    @contextlib.asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session is not None:
            yield self._session
            return
        async with http_session() as session:
            self._session = session
            try:
                yield session
            finally:
                self._session = None

    # --- Cache helpers ---

    async def _read_json(self, path: pathlib.Path) -> Optional[Any]:
        try:
            async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                return json.loads(await f.read())
        except (OSError, json.JSONDecodeError):
            return None

    async def _write_json(self, path: pathlib.Path, data: Any) -> None:
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(data, indent=2))

    async def _fetch_cached(self, session: aiohttp.ClientSession, url: str, cache_path: pathlib.Path) -> Any:
        """Fetches a mutable JSON index, falling back to the cached copy when offline."""
        try:
            data = await fetch_json(session, url)
        except NetworkError as e:
            if e.status is not None and e.status < 500:
                # The remote answered; the document does not exist
                raise
            cached = await self._read_json(cache_path)
            if cached is None:
                raise NotCachedError(f"{url} is unreachable and no cached copy exists: {e}") from e
            self.log.warning(f"Using cached {cache_path.name}: {e}")
            return cached
        await self._write_json(cache_path, data)
        return data

    # --- Vanilla ---

    async def version_manifest(self, session: aiohttp.ClientSession) -> Dict[str, Any]:
        return await self._fetch_cached(session, VERSION_MANIFEST_URL,
                                        self.paths.caches_dir / 'version_manifest_v2.json')

    async def resolve_game_id(self, session: aiohttp.ClientSession, game_version: str) -> Tuple[str, Dict[str, Any]]:
        manifest = await self.version_manifest(session)
        latest = manifest.get('latest', {})
        version_id = game_version
        if game_version in ('release', LATEST, ''):
            version_id = latest.get('release')
        elif game_version == 'snapshot':
            version_id = latest.get('snapshot')
        for entry in manifest.get('versions', []):
            if entry.get('id') == version_id:
                return version_id, entry
        raise VersionNotFoundError(f"Game version '{game_version}' does not exist")

    async def load_version_json(self, session: aiohttp.ClientSession, version_id: str,
                                entry: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Loads versions/<id>/<id>.json, downloading it when missing or stale."""
        path = self.paths.versions_dir / version_id / f"{version_id}.json"
        if entry is None:
            cached = await self._read_json(path)
            if cached is not None:
                return cached
            version_id, entry = await self.resolve_game_id(session, version_id)

        expected = entry.get('sha1')
        if path.is_file() and expected:
            if (await file_digest(path, 'sha1')) == expected:
                cached = await self._read_json(path)
                if cached is not None:
                    return cached
        elif path.is_file():
            cached = await self._read_json(path)
            if cached is not None:
                return cached

        try:
            await stream_to_file(session, entry['url'], path)
        except NetworkError as e:
            raise NotCachedError(f"Could not download version metadata for {version_id}: {e}") from e
        data = await self._read_json(path)
        if data is None:
            raise VersionResolutionError(f"Version metadata for {version_id} is not valid JSON")
        return data

    # --- Loader lookups ---

    async def latest_loader_version(self, session: aiohttp.ClientSession, loader: Loader, game_id: str) -> str:
        versions = await self.loader_versions(session, loader, game_id)
        if not versions:
            raise LoaderNotFoundError(f"No {loader.value} builds available for {game_id}")
        if loader in (Loader.FABRIC, Loader.QUILT):
            return versions[0]
        return versions[-1]

    async def loader_versions(self, session: aiohttp.ClientSession, loader: Loader, game_id: str) -> List[str]:
        """
        Lists loader builds for a game version. Fabric and Quilt are
        returned newest first with the preferred build at index 0; Forge
        and NeoForge oldest first with the preferred build last.
        """
        cache_dir = self.paths.caches_dir / 'loaders'
        if loader in (Loader.FABRIC, Loader.QUILT):
            base = FABRIC_META_URL if loader is Loader.FABRIC else QUILT_META_URL
            try:
                entries = await self._fetch_cached(session, f"{base}/versions/loader/{game_id}",
                                                   cache_dir / f"{loader.value}-{game_id}.json")
            except NetworkError as e:
                if e.status in (400, 404):
                    return []
                raise
            if not isinstance(entries, list):
                return []
            latest = pick_latest_fabric_like(entries)
            all_versions = [(e.get('loader') or {}).get('version') for e in entries if isinstance(e, dict)]
            all_versions = [v for v in all_versions if v]
            if latest in all_versions:
                all_versions.remove(latest)
                all_versions.insert(0, latest)
            return all_versions

        if loader is Loader.FORGE:
            promotions = await self._fetch_cached(session, FORGE_PROMOTIONS_URL, cache_dir / 'forge-promotions.json')
            promos = promotions.get('promos', {}) if isinstance(promotions, dict) else {}
            found = [promos[key] for key in (f"{game_id}-recommended", f"{game_id}-latest") if key in promos]
            # Deduplicate while keeping "latest" last
            return list(dict.fromkeys(found))

        if loader is Loader.NEOFORGE:
            prefix = neoforge_prefix(game_id)
            xml_text = await self._neoforge_metadata(session, cache_dir / 'neoforge-metadata.xml')
            try:
                root = ET.fromstring(xml_text)
            except ET.ParseError as e:
                raise VersionResolutionError(f"Invalid NeoForge maven metadata: {e}") from e
            matching = [v.text for v in root.iter('version') if v.text and v.text.startswith(prefix)]
            stable = [v for v in matching if 'beta' not in v and 'alpha' not in v]
            # Stable builds last so the preferred build sits at the end
            return [v for v in matching if v not in stable] + stable

        return []

    async def _neoforge_metadata(self, session: aiohttp.ClientSession, cache_path: pathlib.Path) -> str:
        url = f"{NEOFORGE_MAVEN_URL}/maven-metadata.xml"
        try:
            text = await fetch_text(session, url)
        except NetworkError as e:
            if cache_path.is_file():
                self.log.warning(f"Using cached NeoForge metadata: {e}")
                return cache_path.read_text(encoding='utf-8')
            raise NotCachedError(f"{url} is unreachable and no cached copy exists: {e}") from e
        await aiofiles.os.makedirs(cache_path.parent, exist_ok=True)
        async with aiofiles.open(cache_path, 'w', encoding='utf-8') as f:
            await f.write(text)
        return text

    async def _resolve_ids(self, session: aiohttp.ClientSession, game_version: str, loader: Loader,
                           loader_version: str) -> Tuple[str, Dict[str, Any], str]:
        game_id, entry = await self.resolve_game_id(session, game_version)
        if loader is Loader.VANILLA:
            return game_id, entry, ''
        if not loader_version or loader_version == LATEST:
            loader_id = await self.latest_loader_version(session, loader, game_id)
            self.log.info(f"Resolved latest {loader.value} build for {game_id}: {loader_id}")
            return game_id, entry, loader_id
        available = await self.loader_versions(session, loader, game_id)
        # Forge promotions only list a few builds; trust explicit versions there.
        if loader is not Loader.FORGE and loader_version not in available:
            raise LoaderNotFoundError(f"{loader.value} {loader_version} is not available for {game_id}")
        return game_id, entry, loader_version

    async def resolve_ids(self, game_version: str, loader: Union[str, Loader],
                          loader_version: str = '') -> Tuple[str, str]:
        """Resolves sentinels ("release", "latest", …) into concrete game and loader ids."""
        loader = Loader.parse(loader)
        async with self._session_scope() as session:
            game_id, _entry, loader_id = await self._resolve_ids(session, game_version, loader, loader_version)
        return game_id, loader_id

    # --- Loader profiles ---

    async def _fabric_like_profile(self, session: aiohttp.ClientSession, loader: Loader,
                                   game_id: str, loader_id: str) -> Dict[str, Any]:
        base = FABRIC_META_URL if loader is Loader.FABRIC else QUILT_META_URL
        profile_id = f"{loader.value}-loader-{loader_id}-{game_id}"
        path = self.paths.versions_dir / profile_id / f"{profile_id}.json"
        cached = await self._read_json(path)
        if cached is not None:
            return cached
        try:
            profile = await fetch_json(session, f"{base}/versions/loader/{game_id}/{loader_id}/profile/json")
        except NetworkError as e:
            if e.status in (400, 404):
                raise LoaderNotFoundError(f"{loader.value} {loader_id} is not available for {game_id}") from e
            raise NotCachedError(f"Could not fetch {loader.value} profile {loader_id}: {e}") from e
        await self._write_json(path, profile)
        return profile

    def _read_client_storage(self) -> Dict[str, Any]:
        path = self.paths.client_storage_path
        try:
            with open(path, 'r', encoding='utf-8') as f:
                storage = json.load(f)
        except FileNotFoundError:
            storage = {}
        except (OSError, json.JSONDecodeError) as e:
            self.log.warning(f"Failed to load or parse {path}: {e}. Reinitializing.")
            storage = {}
        if not isinstance(storage, dict):
            storage = {}
        if not isinstance(storage.get('installedLoaders'), list):
            storage['installedLoaders'] = []
        return storage

    def _write_client_storage(self, storage: Dict[str, Any]) -> None:
        path = self.paths.client_storage_path
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(storage, f, indent=2)

    def ensure_launcher_profiles(self) -> None:
        """The Forge-family installers refuse to run without launcher_profiles.json."""
        path = self.paths.launcher_profiles_path
        if path.is_file():
            return
        profiles_data = {
            "profiles": {},
            "settings": {},
            "version": 4,
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(profiles_data, f, indent=2)
        self.log.info(f"Created {path}")

    async def _forge_like_profile(self, session: aiohttp.ClientSession, loader: Loader, game_id: str,
                                  loader_id: str, java_provider: Optional[JavaProvider],
                                  base_manifest: Dict[str, Any]) -> Dict[str, Any]:
        if loader is Loader.FORGE:
            profile_id = f"{game_id}-forge-{loader_id}"
            full = f"{game_id}-{loader_id}"
            installer_url = f"{FORGE_MAVEN_URL}/{full}/forge-{full}-installer.jar"
            install_flag = '--installClient'
        else:
            profile_id = f"neoforge-{loader_id}"
            installer_url = f"{NEOFORGE_MAVEN_URL}/{loader_id}/neoforge-{loader_id}-installer.jar"
            install_flag = '--install-client'

        profile_path = self.paths.versions_dir / profile_id / f"{profile_id}.json"
        storage = self._read_client_storage()
        if profile_id in storage['installedLoaders']:
            cached = await self._read_json(profile_path)
            if cached is not None:
                return cached

        if java_provider is None:
            raise LoaderInstallError(f"A Java runtime is required to install {loader.value} {loader_id}")
        java_major = int((base_manifest.get('javaVersion') or {}).get('majorVersion', DEFAULT_JAVA_MAJOR))
        java_executable = await java_provider(java_major)

        installer_path = self.paths.caches_dir / 'installers' / installer_url.rsplit('/', 1)[-1]
        try:
            if not installer_path.is_file():
                await stream_to_file(session, installer_url, installer_path)
        except NetworkError as e:
            raise LoaderNotFoundError(f"Could not download {loader.value} installer {loader_id}: {e}") from e

        self.ensure_launcher_profiles()
        self.log.info(f"Setting up {loader.value} {loader_id} for {game_id}...")
        setup_command_args = [str(java_executable), '-jar', str(installer_path), install_flag, str(self.paths.root)]
        self.log.debug(f"Running installer command: {' '.join(setup_command_args)}")
        process = await asyncio.create_subprocess_exec(
            *setup_command_args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(self.paths.root),
        )
        stdout, stderr = await process.communicate()
        if stdout:
            self.log.debug(f"{loader.value} installer output:\n" + stdout.decode(errors='ignore'))
        if process.returncode != 0:
            if stderr:
                self.log.error(f"{loader.value} installer errors:\n" + stderr.decode(errors='ignore'))
            raise LoaderInstallError(f"{loader.value} installer exited with code {process.returncode}")

        profile = await self._read_json(profile_path)
        if profile is None:
            raise LoaderInstallError(f"{loader.value} installer did not produce {profile_path}")
        storage['installedLoaders'].append(profile_id)
        self._write_client_storage(storage)
        self.log.info(f"{loader.value} {loader_id} setup completed successfully.")
        return profile

    # --- Full resolution ---

    async def resolve_async(self, game_version: str, loader: Union[str, Loader] = Loader.VANILLA,
                            loader_version: str = '',
                            java_provider: Optional[JavaProvider] = None) -> VersionDescriptor:
        loader = Loader.parse(loader)
        async with self._session_scope() as session:
            game_id, entry, loader_id = await self._resolve_ids(session, game_version, loader, loader_version)
            base_manifest = await self.load_version_json(session, game_id, entry)
            final_manifest = base_manifest

            if loader in (Loader.FABRIC, Loader.QUILT):
                profile = await self._fabric_like_profile(session, loader, game_id, loader_id)
                final_manifest = merge_manifests(profile, base_manifest)
            elif loader in (Loader.FORGE, Loader.NEOFORGE):
                profile = await self._forge_like_profile(session, loader, game_id, loader_id,
                                                         java_provider, base_manifest)
                final_manifest = merge_manifests(profile, base_manifest)
            else:
                self.log.debug(f"Manifest {game_id} does not inherit from another version.")

        return build_descriptor(final_manifest, game_id, loader, loader_id)

    def resolve(self, game_version: str, loader: Union[str, Loader] = Loader.VANILLA,
                loader_version: str = '', java_provider: Optional[JavaProvider] = None) -> VersionDescriptor:
        return asyncio.run(self.resolve_async(game_version, loader, loader_version, java_provider))
