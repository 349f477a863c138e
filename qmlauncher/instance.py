import asyncio
import json
import logging
import os
import pathlib
import shutil
import tomllib
import uuid
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import tomli_w

from .errors import (
    CorruptInstanceConfigError,
    DirectoryMoveError,
    InstanceAlreadyExistsError,
    InstanceError,
    InstanceIntegrityError,
    InstanceNotFoundError,
    InvalidInstanceNameError,
    InvalidLoaderError,
)
from .paths import LauncherPaths

log = logging.getLogger(__name__)

CONFIG_FILENAME = 'instance.toml'
LEGACY_CONFIG_FILENAME = 'instance.json'
INVALID_NAME_CHARS = set('<>:"/\\|?*')


class Loader(str, Enum):
    VANILLA = 'vanilla'
    FABRIC = 'fabric'
    QUILT = 'quilt'
    FORGE = 'forge'
    NEOFORGE = 'neoforge'

    @classmethod
    def parse(cls, value: Union[str, 'Loader', None]) -> 'Loader':
        if isinstance(value, Loader):
            return value
        if not value:
            return cls.VANILLA
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidLoaderError(f"Unknown mod loader: {value}")

    def __str__(self) -> str:
        return self.value


@dataclass
class WindowResolution:
    width: int = 0
    height: int = 0

    @property
    def is_set(self) -> bool:
        return self.width > 0 and self.height > 0


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


@dataclass
class InstanceConfig:
    """Configurable values of an instance. Every field has a safe default."""

    resolution: WindowResolution = field(default_factory=WindowResolution)
    java: str = ''
    java_args: str = ''
    custom_jar: str = ''
    min_memory: int = 0
    max_memory: int = 0
    last_server: str = ''
    last_user: str = ''
    # Remote profile linkage
    qmserver_host: str = ''
    qmserver_port: int = 0
    is_using_qmserver_cloud: bool = False
    is_premium: bool = False

    # Written only when set
    _OPTIONAL = ('qmserver_host', 'qmserver_port', 'is_using_qmserver_cloud', 'is_premium')

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'InstanceConfig':
        data = data or {}
        resolution = data.get('resolution') or {}
        if not isinstance(resolution, dict):
            resolution = {}
        return cls(
            resolution=WindowResolution(_as_int(resolution.get('width')), _as_int(resolution.get('height'))),
            java=str(data.get('java') or ''),
            java_args=str(data.get('java_args') or ''),
            custom_jar=str(data.get('custom_jar') or ''),
            min_memory=_as_int(data.get('min_memory')),
            max_memory=_as_int(data.get('max_memory')),
            last_server=str(data.get('last_server') or ''),
            last_user=str(data.get('last_user') or ''),
            qmserver_host=str(data.get('qmserver_host') or ''),
            qmserver_port=_as_int(data.get('qmserver_port')),
            is_using_qmserver_cloud=bool(data.get('is_using_qmserver_cloud', False)),
            is_premium=bool(data.get('is_premium', False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == 'resolution':
                continue
            if f.name in self._OPTIONAL and not value:
                continue
            data[f.name] = value
        data['resolution'] = {'width': self.resolution.width, 'height': self.resolution.height}
        return data

    def merged(self, overrides: 'InstanceConfig') -> 'InstanceConfig':
        """Returns a copy where every non-empty override replaces the stored value."""
        result = replace(self, resolution=replace(self.resolution))
        if overrides.resolution.is_set:
            result.resolution = replace(overrides.resolution)
        for name in ('java', 'java_args', 'custom_jar', 'min_memory', 'max_memory',
                     'last_server', 'last_user', 'qmserver_host', 'qmserver_port'):
            value = getattr(overrides, name)
            if value:
                setattr(result, name, value)
        return result


@dataclass
class Instance:
    """A named, UUID-identified installation of the game."""

    name: str
    uuid: str
    game_version: str
    loader: Loader = Loader.VANILLA
    loader_version: str = ''
    config: InstanceConfig = field(default_factory=InstanceConfig)
    instances_dir: pathlib.Path = field(default=pathlib.Path('instances'), compare=False, repr=False)

    @property
    def dir(self) -> pathlib.Path:
        return self.instances_dir / self.name / self.uuid

    @property
    def config_path(self) -> pathlib.Path:
        return self.dir / CONFIG_FILENAME

    @property
    def mods_dir(self) -> pathlib.Path:
        return self.dir / 'mods'

    @property
    def logs_dir(self) -> pathlib.Path:
        return self.dir / 'logs'

    @property
    def natives_dir(self) -> pathlib.Path:
        return self.dir / 'natives'

    @property
    def tmp_dir(self) -> pathlib.Path:
        return self.dir / 'tmp'

    @property
    def data_manifest_path(self) -> pathlib.Path:
        return self.dir / 'data.json'

    def to_document(self) -> Dict[str, Any]:
        # Name is not stored; it is the parent directory name.
        doc: Dict[str, Any] = {
            'uuid': self.uuid,
            'game_version': self.game_version,
            'mod_loader': self.loader.value,
        }
        if self.loader_version:
            doc['mod_loader_version'] = self.loader_version
        doc['config'] = self.config.to_dict()
        return doc

    @classmethod
    def from_document(cls, name: str, uuid_dir: str, doc: Dict[str, Any],
                      instances_dir: pathlib.Path) -> 'Instance':
        if not isinstance(doc, dict):
            raise CorruptInstanceConfigError(f"Instance '{name}' configuration is not a table")
        game_version = doc.get('game_version')
        if not isinstance(game_version, str) or not game_version:
            raise CorruptInstanceConfigError(f"Instance '{name}' has no game_version")
        try:
            loader = Loader.parse(doc.get('mod_loader'))
        except InvalidLoaderError as e:
            raise CorruptInstanceConfigError(f"Instance '{name}': {e}") from e
        config = doc.get('config')
        if config is not None and not isinstance(config, dict):
            raise CorruptInstanceConfigError(f"Instance '{name}' config section is not a table")
        return cls(
            name=name,
            # The directory name is authoritative for the UUID
            uuid=uuid_dir,
            game_version=game_version,
            loader=loader,
            loader_version=str(doc.get('mod_loader_version') or ''),
            config=InstanceConfig.from_dict(config),
            instances_dir=instances_dir,
        )


# --- Versioned configuration loading ---

@dataclass(frozen=True)
class CurrentFormat:
    path: pathlib.Path
    data: Dict[str, Any]


@dataclass(frozen=True)
class LegacyFormat:
    path: pathlib.Path
    data: Dict[str, Any]


ConfigDocument = Union[CurrentFormat, LegacyFormat]


def load_config_document(uuid_dir: pathlib.Path) -> ConfigDocument:
    """
    Reads the configuration stored in an instance's UUID directory.

    instance.toml takes precedence; instance.json is the legacy format.
    """
    toml_path = uuid_dir / CONFIG_FILENAME
    json_path = uuid_dir / LEGACY_CONFIG_FILENAME
    if toml_path.is_file():
        try:
            with open(toml_path, 'rb') as f:
                return CurrentFormat(toml_path, tomllib.load(f))
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise CorruptInstanceConfigError(f"parse instance configuration {toml_path}: {e}") from e
    if json_path.is_file():
        try:
            with open(json_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CorruptInstanceConfigError(f"parse instance configuration (JSON) {json_path}: {e}") from e
        return LegacyFormat(json_path, data)
    raise InstanceNotFoundError(f"instance configuration missing in {uuid_dir}")


def write_config(instance: Instance) -> None:
    """Writes the instance configuration to instance.toml (full overwrite)."""
    instance.dir.mkdir(parents=True, exist_ok=True)
    data = tomli_w.dumps(instance.to_document())
    tmp_path = instance.config_path.with_suffix('.toml.tmp')
    with open(tmp_path, 'w', encoding='utf-8') as f:
        f.write(data)
    os.replace(tmp_path, instance.config_path)


def upgrade_config(instance: Instance, legacy: LegacyFormat, logger: Optional[logging.Logger] = None) -> None:
    """Rewrites a legacy JSON configuration as instance.toml and removes the JSON file."""
    logger = logger or log
    write_config(instance)
    try:
        legacy.path.unlink()
    except OSError as e:
        logger.warning(f"Could not remove legacy configuration {legacy.path}: {e}")
    logger.info(f"Migrated instance '{instance.name}' configuration to {CONFIG_FILENAME}")


def validate_name(name: str) -> None:
    if not name or not name.strip():
        raise InvalidInstanceNameError("invalid instance name")
    if name in ('.', '..') or name != name.strip():
        raise InvalidInstanceNameError(f"invalid instance name: {name!r}")
    if any(ch in INVALID_NAME_CHARS or ord(ch) < 32 for ch in name):
        raise InvalidInstanceNameError(f"instance name contains invalid characters: {name!r}")


class InstanceStore:
    """Filesystem-backed store of instances under ``<root>/instances``."""

    def __init__(self, paths: LauncherPaths, resolver=None, logger: Optional[logging.Logger] = None):
        self.paths = paths
        self._resolver = resolver
        self.log = logger or log

    @property
    def instances_dir(self) -> pathlib.Path:
        return self.paths.instances_dir

    @property
    def resolver(self):
        if self._resolver is None:
            from .version import VersionResolver
            self._resolver = VersionResolver(self.paths, logger=self.log)
        return self._resolver

    def _config_dirs(self, name: str) -> List[pathlib.Path]:
        instance_dir = self.instances_dir / name
        if not instance_dir.is_dir():
            return []
        return sorted(
            entry for entry in instance_dir.iterdir()
            if entry.is_dir() and ((entry / CONFIG_FILENAME).is_file() or (entry / LEGACY_CONFIG_FILENAME).is_file())
        )

    def _locate(self, name: str) -> pathlib.Path:
        candidates = self._config_dirs(name)
        if not candidates:
            raise InstanceNotFoundError(f"instance '{name}' does not exist")
        if len(candidates) > 1:
            found = ', '.join(c.name for c in candidates)
            raise InstanceIntegrityError(f"instance '{name}' has more than one data directory: {found}")
        return candidates[0]

    def exists(self, name: str) -> bool:
        if not name:
            return False
        return bool(self._config_dirs(name))

    def fetch(self, name: str) -> Instance:
        """Loads an instance, upgrading a legacy JSON configuration in place."""
        validate_name(name)
        uuid_dir = self._locate(name)
        document = load_config_document(uuid_dir)
        instance = Instance.from_document(name, uuid_dir.name, document.data, self.instances_dir)
        if isinstance(document, LegacyFormat):
            upgrade_config(instance, document, self.log)
        return instance

    def fetch_all(self) -> List[Instance]:
        """Loads every readable instance. Entries that fail to load are skipped."""
        if not self.instances_dir.is_dir():
            return []
        instances = []
        for entry in sorted(self.instances_dir.iterdir()):
            if not entry.is_dir():
                continue
            try:
                instances.append(self.fetch(entry.name))
            except (InstanceNotFoundError, CorruptInstanceConfigError, InstanceIntegrityError,
                    InvalidInstanceNameError, OSError) as e:
                self.log.debug(f"Skipping instance directory {entry.name}: {e}")
        return instances

    async def create_async(self, name: str, game_version: str, loader: Union[str, Loader] = Loader.VANILLA,
                           loader_version: str = '', config: Optional[InstanceConfig] = None) -> Instance:
        validate_name(name)
        loader = Loader.parse(loader)
        if self.exists(name):
            raise InstanceAlreadyExistsError(f"instance '{name}' already exists")
        if loader is Loader.VANILLA:
            loader_version = ''
        elif not loader_version:
            loader_version = 'latest'

        game_id, loader_id = await self.resolver.resolve_ids(game_version, loader, loader_version)

        instance = Instance(
            name=name,
            uuid=str(uuid.uuid4()),
            game_version=game_id,
            loader=loader,
            loader_version=loader_id,
            config=config or InstanceConfig(),
            instances_dir=self.instances_dir,
        )
        try:
            instance.dir.mkdir(parents=True, exist_ok=False)
        except OSError as e:
            raise InstanceError(f"create instance directory: {e}") from e
        write_config(instance)
        self.log.info(f"Created instance '{name}' ({game_id} {loader.value} {loader_id})".rstrip())
        return instance

    def create(self, name: str, game_version: str, loader: Union[str, Loader] = Loader.VANILLA,
               loader_version: str = '', config: Optional[InstanceConfig] = None) -> Instance:
        return asyncio.run(self.create_async(name, game_version, loader, loader_version, config))

    def remove(self, name: str) -> None:
        validate_name(name)
        self._locate(name)
        try:
            shutil.rmtree(self.instances_dir / name)
        except OSError as e:
            raise DirectoryMoveError(f"remove instance directory: {e}") from e
        self.log.info(f"Removed instance '{name}'")

    def rename(self, instance: Instance, new_name: str) -> Instance:
        validate_name(new_name)
        if new_name == instance.name:
            return instance
        if (self.instances_dir / new_name).exists():
            raise InstanceAlreadyExistsError(f"instance '{new_name}' already exists")
        old_dir = self.instances_dir / instance.name
        new_dir = self.instances_dir / new_name
        try:
            new_dir.parent.mkdir(parents=True, exist_ok=True)
            os.rename(old_dir, new_dir)
        except OSError as e:
            raise DirectoryMoveError(f"rename instance '{instance.name}' to '{new_name}': {e}") from e
        self.log.info(f"Renamed instance '{instance.name}' to '{new_name}'")
        return replace(instance, name=new_name, instances_dir=self.instances_dir)

    def write_config(self, instance: Instance) -> None:
        write_config(instance)

    def update_config(self, instance: Instance, overrides: InstanceConfig) -> Tuple[Instance, bool]:
        """Merges overrides into the stored config, writing only if something changed."""
        merged = instance.config.merged(overrides)
        if merged == instance.config:
            return instance, False
        updated = replace(instance, config=merged)
        write_config(updated)
        return updated, True
