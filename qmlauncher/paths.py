import json
import logging
import os
import pathlib
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .replacer import replace_text

log = logging.getLogger(__name__)

# --- Defaults ---
DEFAULT_CLOUD_HOST = '178.172.201.248'
DEFAULT_CLOUD_PORT = 8240
DEFAULT_MAX_DOWNLOADS = 16
HOME_ENV_VAR = 'QMLAUNCHER_HOME'
LAUNCHER_CONFIG_FILENAME = 'launcher_config.json'


def default_root() -> pathlib.Path:
    """Launcher root: $QMLAUNCHER_HOME or ~/.qmlauncher."""
    env_root = os.environ.get(HOME_ENV_VAR)
    if env_root:
        return pathlib.Path(env_root).expanduser()
    return pathlib.Path.home() / '.qmlauncher'


@dataclass(frozen=True)
class LauncherPaths:
    """Directory layout of the launcher root and launcher-wide settings."""

    root: pathlib.Path
    cloud_host: str = DEFAULT_CLOUD_HOST
    cloud_port: int = DEFAULT_CLOUD_PORT
    max_downloads: int = DEFAULT_MAX_DOWNLOADS

    @property
    def instances_dir(self) -> pathlib.Path:
        return self.root / 'instances'

    @property
    def versions_dir(self) -> pathlib.Path:
        return self.root / 'versions'

    @property
    def libraries_dir(self) -> pathlib.Path:
        return self.root / 'libraries'

    @property
    def assets_dir(self) -> pathlib.Path:
        return self.root / 'assets'

    @property
    def asset_indexes_dir(self) -> pathlib.Path:
        return self.assets_dir / 'indexes'

    @property
    def asset_objects_dir(self) -> pathlib.Path:
        return self.assets_dir / 'objects'

    @property
    def java_dir(self) -> pathlib.Path:
        return self.root / 'java'

    @property
    def caches_dir(self) -> pathlib.Path:
        return self.root / 'caches'

    @property
    def launcher_profiles_path(self) -> pathlib.Path:
        return self.root / 'launcher_profiles.json'

    @property
    def client_storage_path(self) -> pathlib.Path:
        return self.root / 'client_storage.json'

    @property
    def recent_connections_path(self) -> pathlib.Path:
        return self.root / '.recent_connections.json'

    @classmethod
    def load(cls, config_file: Optional[Union[str, pathlib.Path]] = None) -> 'LauncherPaths':
        """
        Builds the layout from an optional launcher_config.json.

        String values may use ``:thisdir:`` which expands to the directory
        containing the config file. Recognized keys: ``basepath``,
        ``cloud_host``, ``cloud_port``, ``max_downloads``.
        """
        if config_file is None:
            candidate = default_root() / LAUNCHER_CONFIG_FILENAME
            if not candidate.is_file():
                return cls(root=default_root())
            config_file = candidate

        config_path = pathlib.Path(config_file).resolve()
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                raw: Dict[str, Any] = json.load(f)
        except FileNotFoundError:
            log.warning(f"{config_path} not found. Using defaults.")
            return cls(root=default_root())
        except json.JSONDecodeError as e:
            log.warning(f"Could not parse {config_path}: {e}. Using defaults.")
            return cls(root=default_root())

        this_dir = str(config_path.parent)
        config = {key: replace_text(value, {':thisdir:': this_dir}) for key, value in raw.items()}
        log.debug(f"Launcher config: {json.dumps(config, indent=2)}")

        basepath = config.get('basepath')
        root = pathlib.Path(basepath).expanduser() if basepath else default_root()
        return cls(
            root=root,
            cloud_host=config.get('cloud_host', DEFAULT_CLOUD_HOST),
            cloud_port=int(config.get('cloud_port', DEFAULT_CLOUD_PORT)),
            max_downloads=int(config.get('max_downloads', DEFAULT_MAX_DOWNLOADS)),
        )
