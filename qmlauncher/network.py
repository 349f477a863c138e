import asyncio
import hashlib
import logging
import os
import pathlib
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import aiofiles
import aiofiles.os
import aiohttp

from . import __version__
from .errors import DownloadError, NetworkError

log = logging.getLogger(__name__)

# --- Constants ---
CHUNK_SIZE = 8192
# No overall deadline so large runtimes can finish, but a stalled
# connection or read fails after 30 seconds.
DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=None, sock_connect=30, sock_read=30)
USER_AGENT = f"QMLauncher/{__version__}"


# --- Helper Functions ---

async def file_digest(file_path: pathlib.Path, algorithm: str = 'sha1') -> str:
    """Calculates the hex digest of a file asynchronously, streaming its content."""
    digest = hashlib.new(algorithm)
    try:
        async with aiofiles.open(file_path, 'rb') as f:
            while True:
                chunk = await f.read(CHUNK_SIZE)
                if not chunk:
                    break
                digest.update(chunk)
        return digest.hexdigest()
    except FileNotFoundError:
        raise FileNotFoundError(f"File not found for {algorithm} calculation: {file_path}")


async def file_md5(file_path: pathlib.Path) -> str:
    return await file_digest(file_path, 'md5')


async def file_exists(file_path: pathlib.Path) -> bool:
    """Checks if a regular file exists asynchronously."""
    try:
        return await aiofiles.os.path.isfile(file_path)
    except OSError:
        return False


def http_session(timeout: aiohttp.ClientTimeout = DEFAULT_TIMEOUT) -> aiohttp.ClientSession:
    """Creates the client session used for one prepare/sync call."""
    return aiohttp.ClientSession(timeout=timeout, headers={'User-Agent': USER_AGENT})


def temp_path_for(dest_path: pathlib.Path) -> pathlib.Path:
    """Unique sibling path so concurrent writers never share a partial file."""
    return dest_path.with_name(f".{dest_path.name}.{secrets.token_hex(4)}.part")


async def remove_quietly(path: pathlib.Path) -> None:
    try:
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
    except OSError as e:
        log.debug(f"Could not remove {path}: {e}")


async def fetch_json(session: aiohttp.ClientSession, url: str, method: str = 'GET',
                     json_body: Optional[Dict[str, Any]] = None) -> Any:
    """Requests a JSON document, raising NetworkError on any transport or status failure."""
    try:
        async with session.request(method, url, json=json_body) as response:
            if not response.ok:
                raise NetworkError(f"{method} {url} returned status {response.status}", response.status)
            return await response.json(content_type=None)
    except aiohttp.ClientError as e:
        raise NetworkError(f"{method} {url} failed: {e}") from e
    except asyncio.TimeoutError as e:
        raise NetworkError(f"{method} {url} timed out") from e
    except ValueError as e:
        raise NetworkError(f"{method} {url} returned invalid JSON: {e}") from e


async def fetch_text(session: aiohttp.ClientSession, url: str) -> str:
    try:
        async with session.get(url) as response:
            if not response.ok:
                raise NetworkError(f"GET {url} returned status {response.status}", response.status)
            return await response.text()
    except aiohttp.ClientError as e:
        raise NetworkError(f"GET {url} failed: {e}") from e
    except asyncio.TimeoutError as e:
        raise NetworkError(f"GET {url} timed out") from e


async def stream_to_file(session: aiohttp.ClientSession, url: str, dest_path: pathlib.Path) -> None:
    """
    Streams a response body into dest_path.

    The body goes to a temporary sibling first and is moved into place
    only once complete.
    """
    await aiofiles.os.makedirs(dest_path.parent, exist_ok=True)
    tmp_path = temp_path_for(dest_path)
    try:
        async with session.get(url) as response:
            if not response.ok:
                raise DownloadError(f"Failed to download {url}: {response.status} {response.reason}", [url])
            async with aiofiles.open(tmp_path, 'wb') as f:
                async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                    await f.write(chunk)
        os.replace(tmp_path, dest_path)
    except aiohttp.ClientError as e:
        raise DownloadError(f"Failed to download {url}: {e}", [url]) from e
    except asyncio.TimeoutError as e:
        raise DownloadError(f"Timed out downloading {url}", [url]) from e
    finally:
        await remove_quietly(tmp_path)


async def download_file(
    session: aiohttp.ClientSession,
    url: str,
    dest_path: pathlib.Path,
    expected_hash: Optional[str],
    algorithm: str = 'sha1',
    force_download: bool = False,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """
    Downloads a file asynchronously and verifies its hash.

    Returns True if a transfer happened, False if a valid copy was already on disk.
    """
    logger = logger or log

    if not force_download and await file_exists(dest_path):
        if not expected_hash:
            return False
        try:
            current = await file_digest(dest_path, algorithm)
            if current.lower() == expected_hash.lower():
                return False
            logger.warning(f"{algorithm} mismatch for existing file {dest_path.name}. Expected {expected_hash}, got {current}. Redownloading.")
        except OSError as hash_error:
            logger.warning(f"Could not hash existing file {dest_path}. Redownloading. Error: {hash_error}")

    await stream_to_file(session, url, dest_path)

    if expected_hash:
        downloaded = await file_digest(dest_path, algorithm)
        if downloaded.lower() != expected_hash.lower():
            await remove_quietly(dest_path)
            raise DownloadError(f"{algorithm} mismatch for {dest_path.name}. Expected {expected_hash}, got {downloaded}", [url])
    return True


@dataclass(frozen=True)
class DownloadEntry:
    url: str
    path: pathlib.Path
    hash: Optional[str] = None
    algorithm: str = 'sha1'
    executable: bool = False


class Downloader:
    """
    Collects download entries and fetches them concurrently.

    Entries are keyed by destination path; since destinations are derived
    from content identity (asset hash, maven coordinate) a repeated entry
    is the same file and is only fetched once.
    """

    def __init__(self, session: aiohttp.ClientSession, max_concurrency: int = 16,
                 retries: int = 1, logger: Optional[logging.Logger] = None):
        self.session = session
        self.max_concurrency = max(1, max_concurrency)
        self.retries = retries
        self.log = logger or log
        self._entries: Dict[pathlib.Path, DownloadEntry] = {}

    def add(self, entry: DownloadEntry) -> None:
        self._entries.setdefault(entry.path, entry)

    @property
    def entries(self) -> List[DownloadEntry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    async def _fetch(self, entry: DownloadEntry) -> bool:
        attempt = 0
        while True:
            try:
                fetched = await download_file(self.session, entry.url, entry.path, entry.hash,
                                              algorithm=entry.algorithm, logger=self.log)
                if fetched and entry.executable:
                    os.chmod(entry.path, 0o755)
                return fetched
            except (DownloadError, OSError) as error:
                if attempt >= self.retries:
                    raise
                attempt += 1
                self.log.warning(f"Retrying {entry.url} after error: {error}")

    async def run(self, on_progress: Optional[Callable[[int, int], None]] = None) -> int:
        """
        Fetches every entry, calling on_progress(completed, total) after each unit.

        Raises DownloadError listing every URL that still failed after retrying.
        Returns the number of files actually transferred.
        """
        entries = self.entries
        total = len(entries)
        completed = 0
        transferred = 0
        failed: List[str] = []
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def worker(entry: DownloadEntry) -> None:
            nonlocal completed, transferred
            async with semaphore:
                try:
                    if await self._fetch(entry):
                        transferred += 1
                except (DownloadError, OSError) as error:
                    self.log.error(f"Error downloading {entry.url}: {error}")
                    failed.append(entry.url)
                    return
            completed += 1
            if on_progress:
                on_progress(completed, total)

        await asyncio.gather(*(worker(entry) for entry in entries))

        if failed:
            raise DownloadError(f"{len(failed)} of {total} files could not be downloaded", failed)
        self._entries.clear()
        return transferred
