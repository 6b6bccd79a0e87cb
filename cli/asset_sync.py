"""Command-line tool for mirroring the remote assets library to a local server."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from assetsync.config import Settings, validate_remote_url
from assetsync.exceptions import AssetSyncError
from assetsync.migration.world_store import NedbWorldDatabase
from assetsync.models.sync import SyncOptions, SyncStatus
from assetsync.providers.local_disk import DiskLocalFileServer
from assetsync.providers.local_server import HttpLocalFileServer
from assetsync.providers.remote_library import HttpRemoteLibrary
from assetsync.services.hash_service import ContentHasher
from assetsync.services.mapping_service import MappingStore
from assetsync.services.progress_service import ThrottledProgress
from assetsync.services.sync_service import AssetSyncService

if TYPE_CHECKING:
    from assetsync.providers.base import LocalFileServer

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    """Configure CLI logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="assetsync",
        description="Mirror your remote assets library to a local file server",
    )
    parser.add_argument("--api-key", help="API key (default: ASSETSYNC_API_KEY)")
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--data-dir", "-d", help="Local mirror directory")
    target.add_argument("--local-url", help="Base URL of a local file server")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// URLs for non-localhost hosts",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")
    sync_parser = subparsers.add_parser("sync", help="Synchronize assets to the local mirror")
    sync_parser.add_argument(
        "--force-local-rehash",
        action="store_true",
        help="Ignore the mapping file and verify local files by content hash",
    )
    sync_parser.add_argument(
        "--overwrite-local-mismatches",
        action="store_true",
        help="Replace local files that differ from the remote library",
    )
    sync_parser.add_argument(
        "--update-world-db",
        action="store_true",
        help="Rewrite the world to use the local copies after syncing",
    )
    sync_parser.add_argument("--world-dir", help="World directory to rewrite")
    subparsers.add_parser("map", help="Summarize the saved asset mapping file")
    return parser


def _open_local(
    settings: Settings, args: argparse.Namespace, hasher: ContentHasher
) -> LocalFileServer:
    local_url = args.local_url or (None if args.data_dir else settings.local_url)
    if local_url:
        return HttpLocalFileServer(
            validate_remote_url(local_url, args.allow_insecure_http),
            retries=settings.retries,
            timeout=settings.request_timeout,
        )
    data_dir = Path(args.data_dir) if args.data_dir else settings.data_dir
    if not data_dir.is_dir():
        msg = f"Local mirror directory does not exist: {data_dir}"
        raise NotADirectoryError(msg)
    return DiskLocalFileServer(data_dir.resolve(), hasher)


async def _close(client: object) -> None:
    aclose = getattr(client, "aclose", None)
    if aclose is not None:
        await aclose()


def _print_report(service: AssetSyncService) -> None:
    report = service.report
    print(service.status.description)
    print(f"  Synced:          {len(report.synced)}")
    print(f"  Failed:          {len(report.failed)}")
    print(f"  Skipped:         {len(report.skipped)}")
    print(f"  Folders created: {report.created_dirs}")
    for folder in report.failed_folders:
        print(f"    ! {folder} (folder could not be created)")
    for name in report.conflicts:
        print(f"    ! {name} (conflict)")
    for asset in report.failed:
        if asset.name not in report.conflicts:
            print(f"    - {asset.name} (failed)")
    if report.migration_errors:
        print("World migration:")
        for line in report.migration_errors:
            print(f"  {line}")


async def run_sync(settings: Settings, args: argparse.Namespace) -> int:
    options = SyncOptions(
        force_local_rehash=args.force_local_rehash,
        overwrite_local_mismatches=args.overwrite_local_mismatches,
        update_world_db=args.update_world_db,
    )
    world_dir = Path(args.world_dir) if args.world_dir else settings.world_dir
    if options.update_world_db and world_dir is None:
        print("Error: --update-world-db requires --world-dir (or ASSETSYNC_WORLD_DIR)")
        return SyncStatus.FAILED.exit_code

    remote_url = validate_remote_url(settings.remote_api_url, args.allow_insecure_http)
    hasher = ContentHasher(settings.chunk_size)
    local = _open_local(settings, args, hasher)
    remote = HttpRemoteLibrary(
        remote_url,
        args.api_key or settings.api_key,
        retries=settings.retries,
        timeout=settings.request_timeout,
    )
    service = AssetSyncService(
        remote,
        local,
        api_key=args.api_key or settings.api_key,
        options=options,
        mapping_store=MappingStore(local, settings.mapping_file_name),
        hasher=hasher,
        retries=settings.retries,
        progress=ThrottledProgress(interval=settings.progress_interval),
        max_concurrency=settings.max_concurrency,
        world=NedbWorldDatabase(world_dir) if world_dir is not None else None,
        assets_prefix=settings.assets_library_prefix,
    )

    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, service.cancel)
    try:
        await service.sync()
    except Exception as exc:
        print(f"Error: {exc}")
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        await _close(remote)
        await _close(local)

    _print_report(service)
    return service.status.exit_code


async def run_map(settings: Settings, args: argparse.Namespace) -> int:
    local = _open_local(settings, args, ContentHasher(settings.chunk_size))
    try:
        state = await MappingStore(local, settings.mapping_file_name).load()
    except AssetSyncError as exc:
        print(f"Error: {exc}")
        return 2
    finally:
        await _close(local)

    print("Asset mapping:")
    print(f"  Assets: {len(state.assets)}")
    print(f"  Hashes: {len(state.etags)}")
    if state.assets:
        rows = sorted(state.assets.values(), key=lambda row: row.last_sync_date)
        print(f"  First sync: {min(row.first_sync_date for row in rows).isoformat()}")
        print(f"  Last sync:  {rows[-1].last_sync_date.isoformat()}")
        for row in sorted(state.assets.values(), key=lambda row: row.remote_name):
            print(f"    {row.remote_name} ({row.remote_hash})")
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = Settings()
    configure_logging(args.debug or settings.debug)

    if args.command not in ("sync", "map"):
        parser.print_help()
        return 2

    try:
        if args.command == "sync":
            return asyncio.run(run_sync(settings, args))
        return asyncio.run(run_map(settings, args))
    except (ValueError, NotADirectoryError) as exc:
        print(f"Error: {exc}")
        return 2
    except KeyboardInterrupt:
        print("Sync process Cancelled")
        return SyncStatus.CANCELLED.exit_code


if __name__ == "__main__":
    sys.exit(main())
