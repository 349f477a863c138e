# python -m qmlauncher
import argparse
import dataclasses
import logging
import sys
from typing import List, Optional

from . import logs
from .cloud import CloudClient, link_instance_config
from .connections import RecentConnections
from .environment import EnvironmentBuilder, LaunchOptions, Session
from .errors import LauncherError, NetworkError, SyncError, tips_for
from .events import progress_watcher
from .instance import InstanceConfig, InstanceStore
from .launch import console_runner, launch, quiet_runner
from .paths import LauncherPaths
from .sync import ManifestSyncer

log = logging.getLogger('qmlauncher')

TIPS = {
    'internet': "Check your internet connection.",
    'cache': "Metadata is not cached yet; connect to the internet once to download it.",
    'nojvm': "Install a Java runtime or set 'java' in the instance configuration.",
}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog='qmlauncher', description="Prepare and launch a Minecraft instance.")
    parser.add_argument('instance', help="Instance name")
    parser.add_argument('-u', '--username', default='', help="Offline player name (defaults to the last one used)")
    parser.add_argument('-s', '--server', default='', help="Join host:port after startup")
    parser.add_argument('--world', default='', help="Open a singleplayer world after startup")
    parser.add_argument('--create', metavar='GAME_VERSION', help="Create the instance first")
    parser.add_argument('--loader', default='vanilla', help="Mod loader used with --create")
    parser.add_argument('--loader-version', default='', help="Mod loader version used with --create")
    parser.add_argument('--config', help="Path to launcher_config.json")
    parser.add_argument('--demo', action='store_true')
    parser.add_argument('-v', '--verbose', action='store_true', help="Show debug output and the game console")
    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> None:
    paths = LauncherPaths.load(args.config)
    store = InstanceStore(paths)

    if args.create:
        instance = store.create(args.instance, args.create, args.loader, args.loader_version)
    else:
        instance = store.fetch(args.instance)

    session_log = logs.instance_logger(instance.dir)
    try:
        username = args.username or instance.config.last_user
        if not username:
            raise ValueError("A username is required for the first launch (--username)")
        instance, _ = store.update_config(instance, InstanceConfig(last_user=username, last_server=args.server))

        client = CloudClient(paths.cloud_host, paths.cloud_port, logger=session_log)
        check = None
        if args.server:
            try:
                check = client.check_server(args.server)
            except NetworkError as e:
                log.warning(f"Server directory unavailable: {e}")
            if check is not None:
                config, changed = link_instance_config(instance.config, check, paths.cloud_host, paths.cloud_port)
                if changed:
                    instance = dataclasses.replace(instance, config=config)
                    store.write_config(instance)
            RecentConnections(paths.recent_connections_path, session_log).add(
                username, args.server, instance.name,
                instance.config.is_using_qmserver_cloud, instance.config.is_premium)

        options = LaunchOptions(
            session=Session(username),
            quick_play_server=args.server,
            quick_play_world=args.world,
            demo=args.demo,
        )
        environment = EnvironmentBuilder(paths).prepare(
            instance, options, progress_watcher(args.verbose), session_log)

        if instance.config.is_using_qmserver_cloud and check is not None and check.exists:
            try:
                ManifestSyncer(client, session_log).sync_from_remote(
                    instance, check.server_id, instance.config.qmserver_host, instance.config.qmserver_port)
            except (SyncError, NetworkError) as e:
                log.warning(f"File synchronization failed, launching with local files: {e}")

        launch(environment, console_runner if args.verbose else quiet_runner, session_log)
    finally:
        logs.close_instance_logger(session_log)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logs.setup(args.verbose)
    try:
        run(args)
    except KeyboardInterrupt:
        log.info("Launch cancelled by user.")
        return 130
    except (LauncherError, ValueError) as e:
        log.error(str(e))
        for tip in tips_for(e):
            log.info(TIPS[tip])
        if args.verbose:
            log.exception("--- An error occurred during setup or launch ---")
        return 1
    return 0


# --- Script Entry Point ---
if __name__ == "__main__":
    sys.exit(main())
