"""
Reconciliation of an instance directory with a remote data manifest.

The remote side publishes the list of files (mods, configs, packs) an
instance must contain. ``ManifestSyncer`` downloads what is missing or
changed, leaves ``options.txt`` alone once it exists and removes files the
manifest no longer lists from a fixed set of content directories.
"""
import asyncio
import json
import logging
import os
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiofiles.os

from .errors import NetworkError, SyncError
from .instance import Instance
from .network import file_exists, file_md5

log = logging.getLogger(__name__)

PROTECTED_FILES = frozenset({'options.txt'})
ORPHAN_DIRS = ('mods', 'config', 'shaderpacks', 'resourcepacks', 'schematics')
DEFAULT_SYNC_CONCURRENCY = 4


@dataclass(frozen=True)
class FileInfo:
    path: str
    md5: str
    size: int = 0
    modified: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileInfo':
        return cls(
            path=str(data['path']),
            md5=str(data.get('md5', '')).lower(),
            size=int(data.get('size') or 0),
            modified=int(data.get('modified') or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {'path': self.path, 'md5': self.md5, 'size': self.size, 'modified': self.modified}


@dataclass(eq=False)
class DataManifest:
    server_id: int
    server_uuid: str = ''
    files: List[FileInfo] = field(default_factory=list)
    generated: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DataManifest':
        return cls(
            server_id=int(data.get('server_id') or 0),
            server_uuid=str(data.get('server_uuid') or ''),
            files=[FileInfo.from_dict(f) for f in data.get('files') or []],
            generated=int(data.get('generated') or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'server_id': self.server_id,
            'server_uuid': self.server_uuid,
            'files': [f.to_dict() for f in self.files],
            'generated': self.generated,
        }

    def by_path(self) -> Dict[str, FileInfo]:
        return {f.path: f for f in self.files}

    def __eq__(self, other: object) -> bool:
        # File order is irrelevant
        if not isinstance(other, DataManifest):
            return NotImplemented
        if (self.server_id, self.server_uuid, self.generated) != (other.server_id, other.server_uuid, other.generated):
            return False
        if len(self.files) != len(other.files):
            return False
        return self.by_path() == other.by_path()


@dataclass
class SyncReport:
    downloaded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    protected: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.downloaded or self.removed)


def load_cached_manifest(path: pathlib.Path, logger: Optional[logging.Logger] = None) -> Optional[DataManifest]:
    """Reads a previously stored data.json; any read or parse failure counts as no cache."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return DataManifest.from_dict(json.load(f))
    except FileNotFoundError:
        return None
    except (OSError, ValueError, KeyError, TypeError) as e:
        (logger or log).debug(f"Ignoring unreadable cached manifest {path}: {e}")
        return None


def save_manifest(path: pathlib.Path, manifest: DataManifest) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    with open(tmp_path, 'w', encoding='utf-8') as f:
        json.dump(manifest.to_dict(), f, indent=2)
    os.replace(tmp_path, path)


def forget_manifest(path: pathlib.Path, logger: Optional[logging.Logger] = None) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        (logger or log).warning(f"Could not remove cached manifest {path}: {e}")


def resolve_destination(instance_dir: pathlib.Path, relative_path: str) -> Optional[pathlib.Path]:
    """Maps a manifest path into the instance directory, or None if it would escape it."""
    if not relative_path or relative_path.startswith(('/', '\\')) or '\\' in relative_path:
        return None
    base = instance_dir.resolve()
    dest = (base / relative_path).resolve()
    if dest == base or base not in dest.parents:
        return None
    return dest


class ManifestSyncer:
    """
    Brings an instance directory in line with a DataManifest.

    ``client`` provides ``download(server_id, relative_path, dest, md5)``,
    ``fetch_manifest_async(server_id)`` and a ``session_scope()`` async context
    held open around a batch of requests; see :class:`qmlauncher.cloud.CloudClient`.

    ``data.json`` is only updated once a sync finishes without failed files, so
    an interrupted or partial sync is redone on the next call.
    """

    def __init__(self, client, logger: Optional[logging.Logger] = None,
                 max_concurrency: int = DEFAULT_SYNC_CONCURRENCY):
        self.client = client
        self.log = logger or log
        self.max_concurrency = max(1, max_concurrency)

    def _client_for(self, remote_host: Optional[str], remote_port: Optional[int]):
        if not remote_host or (remote_host == self.client.host and (not remote_port or remote_port == self.client.port)):
            return self.client
        from .cloud import CloudClient
        return CloudClient(remote_host, remote_port or self.client.port, logger=self.log)

    async def _remove_orphans(self, instance_dir: pathlib.Path, wanted: Dict[str, FileInfo],
                              report: SyncReport) -> None:
        for dir_name in ORPHAN_DIRS:
            dir_path = instance_dir / dir_name
            if not dir_path.is_dir():
                continue
            for file_path in sorted(p for p in dir_path.rglob('*') if p.is_file() or p.is_symlink()):
                relative = file_path.relative_to(instance_dir).as_posix()
                if relative in wanted:
                    continue
                try:
                    await aiofiles.os.remove(file_path)
                    report.removed.append(relative)
                    self.log.info(f"Removed orphaned file: {relative}")
                except OSError as e:
                    self.log.warning(f"Could not remove orphaned file {relative}: {e}")

    async def sync_async(self, instance: Instance, manifest: DataManifest,
                         remote_host: Optional[str] = None, remote_port: Optional[int] = None) -> SyncReport:
        """
        Synchronizes ``instance`` with ``manifest``.

        Raises SyncError only when downloads were attempted and none succeeded;
        every other per-file problem is logged and listed in the report.
        """
        return await self._sync_with(self._client_for(remote_host, remote_port), instance, manifest)

    async def _sync_with(self, client, instance: Instance, manifest: DataManifest) -> SyncReport:
        report = SyncReport()
        instance_dir = instance.dir
        cache_path = instance.data_manifest_path

        cached = load_cached_manifest(cache_path, self.log)
        if cached is not None and cached == manifest:
            save_manifest(cache_path, manifest)
            self.log.info("Data manifest unchanged, skipping file synchronization")
            return report

        self.log.info(f"Synchronizing {len(manifest.files)} files for instance '{instance.name}'")
        wanted = manifest.by_path()
        pending = []
        for relative, info in sorted(wanted.items()):
            dest = resolve_destination(instance_dir, relative)
            if dest is None:
                self.log.warning(f"Rejecting manifest path outside the instance directory: {relative}")
                report.failed.append(relative)
                continue
            exists = await file_exists(dest)
            if relative in PROTECTED_FILES and exists:
                report.protected.append(relative)
                continue
            if exists:
                try:
                    if (await file_md5(dest)) == info.md5:
                        report.skipped.append(relative)
                        continue
                except OSError as e:
                    self.log.warning(f"Could not hash existing file {dest}: {e}")
            pending.append((relative, dest, info.md5))

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def fetch(relative: str, dest: pathlib.Path, md5: str) -> None:
            async with semaphore:
                self.log.info(f"Downloading file: {relative}")
                try:
                    await client.download(manifest.server_id, relative, dest, md5)
                except (NetworkError, OSError) as e:
                    self.log.error(f"Failed to download {relative}: {e}")
                    report.failed.append(relative)
                    return
            report.downloaded.append(relative)

        if pending:
            async with client.session_scope():
                await asyncio.gather(*(fetch(*item) for item in pending))

        await self._remove_orphans(instance_dir, wanted, report)

        report.downloaded.sort()
        report.failed.sort()
        if report.failed:
            # Keep the next sync with this manifest off the fast path
            forget_manifest(cache_path, self.log)
        else:
            save_manifest(cache_path, manifest)
        if pending and not report.downloaded:
            raise SyncError(f"All {len(pending)} downloads failed for instance '{instance.name}'")
        self.log.info(f"Synchronization finished: {len(report.downloaded)} downloaded, "
                      f"{len(report.skipped)} up to date, {len(report.removed)} removed, "
                      f"{len(report.failed)} failed")
        return report

    async def sync_from_remote_async(self, instance: Instance, server_id: int,
                                     remote_host: Optional[str] = None,
                                     remote_port: Optional[int] = None) -> SyncReport:
        client = self._client_for(remote_host, remote_port)
        async with client.session_scope():
            manifest = await client.fetch_manifest_async(server_id)
            return await self._sync_with(client, instance, manifest)

    def sync(self, instance: Instance, manifest: DataManifest,
             remote_host: Optional[str] = None, remote_port: Optional[int] = None) -> SyncReport:
        return asyncio.run(self.sync_async(instance, manifest, remote_host, remote_port))

    def sync_from_remote(self, instance: Instance, server_id: int,
                         remote_host: Optional[str] = None, remote_port: Optional[int] = None) -> SyncReport:
        return asyncio.run(self.sync_from_remote_async(instance, server_id, remote_host, remote_port))
