"""Client for the remote server directory (server check, data manifests, file downloads)."""
import asyncio
import contextlib
import dataclasses
import logging
import pathlib
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import aiohttp

from .errors import CloudError
from .instance import InstanceConfig
from .network import DEFAULT_TIMEOUT, USER_AGENT, download_file
from .paths import DEFAULT_CLOUD_HOST, DEFAULT_CLOUD_PORT
from .sync import DataManifest

log = logging.getLogger(__name__)

API_PREFIX = '/api/v1'


@dataclass(frozen=True)
class ServerCheck:
    exists: bool
    server_id: int = 0
    name: str = ''
    version: str = ''
    is_premium: bool = False
    error: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ServerCheck':
        return cls(
            exists=bool(data.get('exists', False)),
            server_id=int(data.get('server_id') or 0),
            name=data.get('name') or '',
            version=data.get('version') or '',
            is_premium=bool(data.get('is_premium', False)),
            error=data.get('error') or '',
        )


@dataclass(frozen=True)
class ServerInfo:
    id: int
    uuid: str = ''
    name: str = ''
    host: str = ''
    port: int = 0
    version: str = ''
    mod_loader: str = ''
    mod_loader_version: str = ''
    is_premium: bool = False
    created_at: str = ''
    updated_at: str = ''

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ServerInfo':
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})


@dataclass(frozen=True)
class ServersList:
    count: int = 0
    server_profiles: List[ServerInfo] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ServersList':
        profiles = [ServerInfo.from_dict(p) for p in data.get('server_profiles') or [] if isinstance(p, dict)]
        return cls(count=int(data.get('count') or len(profiles)), server_profiles=profiles)


def parse_address(address: str) -> Tuple[str, int]:
    """Splits a ``host:port`` server address."""
    parts = address.split(':')
    if len(parts) != 2 or not parts[0]:
        raise ValueError(f"invalid server address format: {address}")
    try:
        port = int(parts[1])
    except ValueError:
        raise ValueError(f"invalid port in server address: {address}")
    return parts[0], port


def filter_servers(servers: List[ServerInfo], search: str = '', kind: str = 'all',
                   limit: int = 0) -> List[ServerInfo]:
    """
    Applies a name search and a category filter, then sorts premium servers
    first and newer servers before older ones.

    ``kind`` is ``all``, ``online`` (every listed server) or ``premium``.
    A ``limit`` of zero keeps everything.
    """
    needle = search.lower()
    filtered = [
        server for server in servers
        if (not needle or needle in server.name.lower())
        and (kind.lower() != 'premium' or server.is_premium)
    ]
    filtered.sort(key=lambda s: s.created_at, reverse=True)
    filtered.sort(key=lambda s: not s.is_premium)
    if limit > 0:
        filtered = filtered[:limit]
    return filtered


def link_instance_config(config: InstanceConfig, check: Optional[ServerCheck],
                         host: str = DEFAULT_CLOUD_HOST,
                         port: int = DEFAULT_CLOUD_PORT) -> Tuple[InstanceConfig, bool]:
    """
    Updates the remote-profile fields of a config from a server check.

    A server known to the directory links the instance; otherwise any
    existing link is cleared. Returns the new config and whether it changed.
    """
    if check is not None and check.exists:
        updated = dataclasses.replace(config, is_using_qmserver_cloud=True, qmserver_host=host,
                                      qmserver_port=port, is_premium=check.is_premium)
    else:
        updated = dataclasses.replace(config, is_using_qmserver_cloud=False, qmserver_host='',
                                      qmserver_port=0, is_premium=False)
    return updated, updated != config


class CloudClient:
    def __init__(self, host: str = DEFAULT_CLOUD_HOST, port: int = DEFAULT_CLOUD_PORT,
                 timeout: aiohttp.ClientTimeout = DEFAULT_TIMEOUT,
                 session: Optional[aiohttp.ClientSession] = None,
                 logger: Optional[logging.Logger] = None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self._session = session
        self._owns_session = False
        self._scope_depth = 0
        self.log = logger or log

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}{API_PREFIX}"

    @contextlib.asynccontextmanager
    async def session_scope(self) -> AsyncIterator[aiohttp.ClientSession]:
        """
        Yields the client session, opening one if none is active.

        Scopes nest and may overlap across tasks; a session opened here is
        closed when the last open scope exits. An injected session is never closed.
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers={'User-Agent': USER_AGENT})
            self._owns_session = True
        self._scope_depth += 1
        try:
            yield self._session
        finally:
            self._scope_depth -= 1
            if self._scope_depth == 0 and self._owns_session:
                session, self._session = self._session, None
                self._owns_session = False
                await session.close()

    async def _request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        async with self.session_scope() as session:
            try:
                async with session.request(method, url, json=json_body) as response:
                    try:
                        data = await response.json(content_type=None)
                    except ValueError:
                        data = None
                    if not response.ok:
                        message = data.get('error') if isinstance(data, dict) else None
                        raise CloudError(message or f"server directory returned status {response.status}",
                                         response.status)
            except aiohttp.ClientError as e:
                raise CloudError(f"failed to connect to the server directory: {e}") from e
            except asyncio.TimeoutError as e:
                raise CloudError(f"{method} {url} timed out") from e
        if not isinstance(data, dict):
            raise CloudError(f"{method} {url} returned an invalid response")
        return data

    # --- Endpoints ---

    async def check_server_async(self, address: str) -> ServerCheck:
        host, port = parse_address(address)
        data = await self._request('POST', '/check/server', {'host': host, 'port': port})
        check = ServerCheck.from_dict(data)
        self.log.debug(f"Server check for {address}: {check}")
        return check

    async def fetch_manifest_async(self, server_id: int) -> DataManifest:
        data = await self._request('GET', f"/check/data/{server_id}")
        try:
            return DataManifest.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise CloudError(f"failed to parse data manifest: {e}") from e

    async def list_servers_async(self) -> ServersList:
        data = await self._request('GET', '/servers')
        if data.get('error'):
            raise CloudError(data['error'])
        return ServersList.from_dict(data)

    def file_url(self, server_id: int, relative_path: str) -> str:
        return f"{self.base_url}/download/{server_id}/{urllib.parse.quote(relative_path)}"

    async def download(self, server_id: int, relative_path: str, dest: pathlib.Path,
                       md5: Optional[str] = None) -> None:
        """
        Streams one manifest file to ``dest`` (atomically replaced).

        With ``md5`` set the written file must match it; a mismatching file is
        removed and DownloadError is raised.
        """
        async with self.session_scope() as session:
            await download_file(session, self.file_url(server_id, relative_path), dest, md5 or None,
                                algorithm='md5', force_download=True, logger=self.log)

    # --- Blocking wrappers ---

    def check_server(self, address: str) -> ServerCheck:
        return asyncio.run(self.check_server_async(address))

    def fetch_manifest(self, server_id: int) -> DataManifest:
        return asyncio.run(self.fetch_manifest_async(server_id))

    def list_servers(self) -> ServersList:
        return asyncio.run(self.list_servers_async())
