"""Command line entry point for tqm."""

import argparse
import fcntl
import json
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from tqm.clients.base import TagClient, TorrentClient
from tqm.clients.registry import new_client
from tqm.config import CONFIG_FILE, LOG_FILE, LOG_MAX_FILES, ClientConfig, Config, default_config_dir
from tqm.errors import ActionError, ConfigError
from tqm.file_map import TorrentFileMap
from tqm.orphan import OrphanCleaner
from tqm.torrent_filter import TorrentFilter
from tqm.torrent_manager import TorrentManager
from tqm.trackers.registry import TrackerRegistry
from tqm.utils.format import format_bytes, format_gb
from tqm.utils.logger import setup_logger, verbosity_to_level
from tqm.version import __version__


CLIENT_COMMANDS = ('manage', 'label', 'retag', 'orphan')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='tqm', description='A CLI torrent queue manager')
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument('--config-dir', help='Config folder (default: $TQM_CONFIG_DIR, '
                                             'the working directory or ~/.config/tqm)')
    parser.add_argument('-c', '--config', help=f"Config file (default: <config-dir>/{CONFIG_FILE})")
    parser.add_argument('-l', '--log', help=f"Log file (default: <config-dir>/{LOG_FILE})")
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help='Verbose level, repeat to also dump the torrent snapshot')
    parser.add_argument('--dry-run', action='store_true', help='Dry run mode')

    subparsers = parser.add_subparsers(dest='command', required=True)

    manage = subparsers.add_parser('manage', help='Check a client queue for torrents to remove')
    manage.add_argument('client')
    manage.add_argument('--label', action='store_true', help='Also relabel eligible torrents')

    label = subparsers.add_parser('label', help='Check a client queue for torrents to relabel')
    label.add_argument('client')

    retag = subparsers.add_parser('retag', help='Check a client queue for torrents to retag')
    retag.add_argument('client')
    retag.add_argument('--filter', help='Filter to use instead of the client\'s one')

    orphan = subparsers.add_parser('orphan', help='Remove files in the download path that no torrent owns')
    orphan.add_argument('client')

    subparsers.add_parser('update', help='Update to the latest version')
    return parser


def run_update() -> int:
    logger = logging.getLogger(__name__)
    logger.info(f"tqm {__version__}: self-update is not supported")
    logger.info("Upgrade with: pip install --upgrade tqm")
    return 0


def fetch_snapshot(client: TorrentClient, client_config: ClientConfig, verbosity: int,
                   with_free_space: bool = True):
    """
    Fetch the torrents of a connected client and build the file map.

    Returns:
        (torrents, file_map)
    """
    logger = logging.getLogger(__name__)

    if with_free_space and client_config.free_space_path:
        try:
            space = client.get_current_free_space(client_config.free_space_path)
            logger.info(
                f"Retrieved free-space for {client_config.free_space_path!r}: "
                f"{format_bytes(space)} ({format_gb(space)})"
            )
        except ActionError as e:
            logger.warning(f"Failed retrieving free-space for {client_config.free_space_path!r}: {e}")

    torrents = client.get_torrents()
    logger.info(f"Retrieved {len(torrents)} torrents")

    if verbosity > 1:
        logger.debug(json.dumps({h: t.to_dict() for h, t in torrents.items()}))

    file_map = TorrentFileMap.from_torrents(torrents.values())
    logger.info(f"Mapped torrents to {len(file_map)} unique torrent files")
    return torrents, file_map


def run_client_command(args: argparse.Namespace, config: Config) -> int:
    """Run one of the per-client commands."""
    logger = logging.getLogger(__name__)

    client_config = config.get_client(args.client)

    torrent_filter = None
    if args.command != 'orphan':
        filter_name = getattr(args, 'filter', None) or client_config.filter
        torrent_filter = TorrentFilter.from_config(config.get_filter(filter_name), name=filter_name)
        logger.debug(f"Compiled filter {filter_name!r}")
    elif not client_config.download_path:
        raise ConfigError(f"Client {args.client!r}: download_path must be set")

    trackers = TrackerRegistry.from_config(config.trackers)
    client = new_client(client_config.type, client_config.name, client_config.settings, sleep=time.sleep)

    if args.command == 'retag' and not isinstance(client, TagClient):
        raise ConfigError(f"Retagging is not supported for {client.type_name} clients")

    logger.info(f"Initialized client {client_config.name!r}, type: {client.type_name} "
                f"({len(trackers)} trackers)")

    client.connect()
    try:
        torrents, file_map = fetch_snapshot(client, client_config, args.verbose,
                                            with_free_space=args.command != 'orphan')

        if args.command == 'orphan':
            cleaner = OrphanCleaner(client_config.download_path, client_config.download_path_mapping,
                                    dry_run=args.dry_run)
            cleaner.clean(file_map)
            return 0

        manager = TorrentManager(
            client,
            torrent_filter,
            dry_run=args.dry_run,
            retention_limit=config.retention_limit_for(client_config),
            trackers=trackers,
            sleep=time.sleep,
        )

        if args.command == 'manage':
            stats = manager.remove_eligible(torrents, file_map)
            if args.label:
                relabel(manager, torrents, file_map)
            log_removed(stats.removed_torrents)
        elif args.command == 'label':
            relabel(manager, torrents, file_map)
        elif args.command == 'retag':
            if torrent_filter.has_tags:
                manager.retag_eligible(torrents)
            else:
                logger.warning(f"Filter {torrent_filter.name!r} has no tag rules, nothing to retag")
    finally:
        client.close()

    return 0


def relabel(manager: TorrentManager, torrents, file_map: TorrentFileMap) -> None:
    if not manager.filter.has_labels:
        logging.getLogger(__name__).warning(
            f"Filter {manager.filter.name!r} has no label rules, nothing to relabel"
        )
        return
    manager.relabel_eligible(torrents, file_map)


def log_removed(names: List[str]) -> None:
    if not names:
        return
    logger = logging.getLogger(__name__)
    logger.info("=" * 80)
    logger.info("Removed torrents:")
    for name in names:
        logger.info(f"  - {name}")
    logger.info("=" * 80)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point. Returns the process exit status."""
    args = build_parser().parse_args(argv)

    # Basic logger so startup errors are formatted
    logger = setup_logger('tqm', 'INFO')
    lock_file = None

    try:
        config_dir = Path(args.config_dir) if args.config_dir else default_config_dir()
        config_file = Path(args.config) if args.config else config_dir / CONFIG_FILE
        log_file = Path(args.log) if args.log else config_dir / LOG_FILE

        logger = setup_logger('tqm', verbosity_to_level(args.verbose), str(log_file), LOG_MAX_FILES)

        logger.info(f"Using VERSION = {__version__}")
        logger.info(f"Using CONFIG  = {str(config_file)!r}")
        logger.info(f"Using LOG     = {str(log_file)!r}")
        logger.info("------------------")

        if args.command == 'update':
            return run_update()

        config = Config(str(config_file))
        logger.info(f"\n{config}")

        if args.dry_run:
            logger.warning("Running in DRY RUN mode - no changes will be made")

        # One run per client at a time
        lock_path = config_dir / f".{args.client}.lock"
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = open(lock_path, 'w')
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            logger.warning(f"Another instance is already running for {args.client!r}, skipping this run")
            return 0

        return run_client_command(args, config)

    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1

    finally:
        if lock_file is not None:
            lock_file.close()


if __name__ == '__main__':
    sys.exit(main())
