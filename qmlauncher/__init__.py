__version__ = '1.0.0'

from .environment import EnvironmentBuilder, LaunchEnvironment, LaunchOptions, Session  # noqa: E402
from .instance import Instance, InstanceConfig, InstanceStore, Loader  # noqa: E402
from .launch import console_runner, launch, log_runner, quiet_runner  # noqa: E402
from .paths import LauncherPaths  # noqa: E402
from .sync import DataManifest, ManifestSyncer, SyncReport  # noqa: E402

__all__ = [
    'DataManifest',
    'EnvironmentBuilder',
    'Instance',
    'InstanceConfig',
    'InstanceStore',
    'LaunchEnvironment',
    'LaunchOptions',
    'LauncherPaths',
    'Loader',
    'ManifestSyncer',
    'Session',
    'SyncReport',
    'console_runner',
    'launch',
    'log_runner',
    'quiet_runner',
]
