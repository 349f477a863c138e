import asyncio
import logging
import os
import pathlib
import platform
import re
import shutil
import tarfile
import tempfile
import zipfile
from dataclasses import dataclass
from typing import Dict, List, Optional

import aiofiles.os
import aiohttp

from .errors import JavaBadSystemError, JavaNoVersionError, NetworkError
from .network import http_session, remove_quietly, stream_to_file
from .paths import LauncherPaths

log = logging.getLogger(__name__)

# --- Configuration ---
ADOPTIUM_API_BASE = 'https://api.adoptium.net/v3'
DEFAULT_IMAGE_TYPE = 'jre'
VERSION_PROBE_TIMEOUT = 10

SYSTEM_JAVA_ROOTS = {
    'Windows': [r'C:\Program Files\Java', r'C:\Program Files (x86)\Java', r'C:\Program Files\Eclipse Adoptium'],
    'Linux': ['/usr/lib/jvm', '/usr/java', '/opt/java'],
    'Darwin': ['/Library/Java/JavaVirtualMachines', '/usr/local/opt', '/opt/homebrew/opt'],
}

VERSION_PATTERN = re.compile(r'version "(\d+)(?:\.(\d+))?[^"]*"')


def java_binary_name() -> str:
    return 'java.exe' if platform.system() == 'Windows' else 'java'


def get_api_os_arch() -> Optional[Dict[str, str]]:
    """Maps Python platform/machine to Adoptium API values."""
    system = platform.system()
    machine = platform.machine().lower()

    if system == 'Windows':
        api_os = 'windows'
    elif system == 'Darwin':
        api_os = 'mac'
    elif system == 'Linux':
        api_os = 'linux'
    else:
        log.error(f"Unsupported operating system: {system}")
        return None

    if machine in ['amd64', 'x86_64']:
        api_arch = 'x64'
    elif machine in ['arm64', 'aarch64']:
        api_arch = 'aarch64'
    elif machine in ['i386', 'i686', 'x86']:
        api_arch = 'x86'
    elif machine.startswith('armv7'):
        api_arch = 'arm'
    else:
        log.error(f"Unsupported architecture: {machine}")
        return None

    return {"os": api_os, "arch": api_arch}


def is_executable_file(path: pathlib.Path) -> bool:
    return path.is_file() and (platform.system() == 'Windows' or os.access(path, os.X_OK))


def parse_java_major(version_output: str) -> Optional[int]:
    """Extracts the major version from ``java -version`` output ("1.8.0_402" -> 8, "21.0.2" -> 21)."""
    match = VERSION_PATTERN.search(version_output)
    if not match:
        return None
    major = int(match.group(1))
    if major == 1 and match.group(2):
        return int(match.group(2))
    return major


def find_java_executable(extract_dir: pathlib.Path, system: Optional[str] = None) -> Optional[pathlib.Path]:
    """
    Finds the Java executable inside an extracted runtime directory.

    Checks the directory itself and its first-level subdirectories, using
    the macOS bundle layout (Contents/Home) where applicable.
    """
    system = system or platform.system()
    if not extract_dir.is_dir():
        return None

    def candidates(base: pathlib.Path) -> List[pathlib.Path]:
        paths = [base / 'bin' / java_binary_name()]
        if system == 'Darwin':
            paths.insert(0, base / 'Contents' / 'Home' / 'bin' / 'java')
        return paths

    bases = [extract_dir]
    try:
        bases += sorted(entry for entry in extract_dir.iterdir() if entry.is_dir())
    except OSError as e:
        log.warning(f"Could not scan directory {extract_dir}: {e}")

    for base in bases:
        for path in candidates(base):
            if is_executable_file(path):
                return path.resolve()
            if path.is_file():
                log.warning(f"File found but not executable: {path}")
    return None


def _extract_zip(archive_path: pathlib.Path, dest_path: pathlib.Path) -> None:
    with zipfile.ZipFile(archive_path, 'r') as zip_ref:
        zip_ref.extractall(dest_path)


def _extract_tar(tar_path: pathlib.Path, dest_path: pathlib.Path) -> None:
    if not tar_path.is_file():
        raise FileNotFoundError(f"Tar file not found: {tar_path}")
    with tarfile.open(tar_path, "r:gz") as tar_ref:
        tar_ref.extractall(path=dest_path, filter='data')


@dataclass(frozen=True)
class JavaInstallation:
    name: str
    path: pathlib.Path


class RuntimeResolver:
    """
    Locates or provisions a Java runtime.

    Order: explicit configured path, then a managed runtime already cached
    under ``<root>/java/<major>``, then system installations of the required
    major version, then a fresh Temurin download into the managed directory.
    """

    def __init__(self, paths: LauncherPaths, session: Optional[aiohttp.ClientSession] = None,
                 logger: Optional[logging.Logger] = None, allow_download: bool = True):
        self.paths = paths
        self._session = session
        self.log = logger or log
        self.allow_download = allow_download

    # --- Probing ---

    async def probe_major(self, java_path: pathlib.Path) -> Optional[int]:
        """Runs ``java -version`` and returns its major version, or None if it cannot be run."""
        try:
            process = await asyncio.create_subprocess_exec(
                str(java_path), '-version',
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            stdout, _ = await asyncio.wait_for(process.communicate(), VERSION_PROBE_TIMEOUT)
        except (OSError, asyncio.TimeoutError) as e:
            self.log.debug(f"Could not run {java_path} -version: {e}")
            return None
        return parse_java_major(stdout.decode(errors='ignore'))

    def system_candidates(self) -> List[pathlib.Path]:
        """Java executables found in JAVA_HOME, PATH and common install roots."""
        found: List[pathlib.Path] = []
        java_home = os.environ.get('JAVA_HOME')
        if java_home:
            found.append(pathlib.Path(java_home) / 'bin' / java_binary_name())
        on_path = shutil.which('java')
        if on_path:
            found.append(pathlib.Path(on_path))
        for root in SYSTEM_JAVA_ROOTS.get(platform.system(), []):
            root_path = pathlib.Path(root)
            try:
                entries = sorted(root_path.iterdir(), reverse=True)
            except OSError:
                continue
            for entry in entries:
                if entry.is_dir():
                    executable = find_java_executable(entry)
                    if executable:
                        found.append(executable)

        unique: List[pathlib.Path] = []
        for path in found:
            if is_executable_file(path) and path not in unique:
                unique.append(path)
        return unique

    async def find_system_java(self, major: int) -> Optional[pathlib.Path]:
        for candidate in self.system_candidates():
            if await self.probe_major(candidate) == major:
                self.log.info(f"Using system Java {major}: {candidate}")
                return candidate
        return None

    # --- Managed runtimes ---

    def managed_dir(self, major: int) -> pathlib.Path:
        return self.paths.java_dir / str(major)

    def list_installed(self) -> List[JavaInstallation]:
        """Managed runtimes under ``<root>/java``, sorted by name."""
        if not self.paths.java_dir.is_dir():
            return []
        installs = [
            JavaInstallation(entry.name, entry)
            for entry in self.paths.java_dir.iterdir()
            if entry.is_dir() and find_java_executable(entry) is not None
        ]
        return sorted(installs, key=lambda j: j.name.lower())

    async def download_java(self, version: int, image_type: str = DEFAULT_IMAGE_TYPE,
                            vendor: str = 'eclipse', jvm_impl: str = 'hotspot') -> pathlib.Path:
        """
        Downloads and extracts a Temurin runtime unless one is already present.

        Args:
            version: The major Java version (e.g., 8, 17, 21).
            image_type: Type of Java package ('jdk' or 'jre').
            vendor: The build vendor (usually 'eclipse' for Temurin).
            jvm_impl: The JVM implementation.

        Returns:
            The absolute path to the Java executable.

        Raises:
            JavaNoVersionError: no build exists for this platform or the download failed.
        """
        destination_dir = self.managed_dir(version).resolve()
        existing = find_java_executable(destination_dir)
        if existing:
            self.log.debug(f"Valid Java executable already found at: {existing}. Skipping download.")
            return existing

        platform_info = get_api_os_arch()
        if not platform_info:
            raise JavaNoVersionError(f"No Java {version} builds for this platform")
        api_os, api_arch = platform_info["os"], platform_info["arch"]
        api_url = (f"{ADOPTIUM_API_BASE}/binary/latest/{version}/ga/{api_os}/{api_arch}"
                   f"/{image_type}/{jvm_impl}/normal/{vendor}")
        self.log.info(f"Downloading Java {version} ({image_type}) for {api_os}-{api_arch} from Adoptium API.")

        archive_suffix = '.zip' if api_os == 'windows' else '.tar.gz'
        fd, archive_str = tempfile.mkstemp(archive_suffix, "java-dl-")
        os.close(fd)
        archive_path = pathlib.Path(archive_str)
        # Extract next to the destination and move into place once complete
        staging_dir = destination_dir.with_name(f".{destination_dir.name}.staging")

        session_ctx = http_session() if self._session is None else None
        session = self._session or await session_ctx.__aenter__()
        try:
            await stream_to_file(session, api_url, archive_path)
            loop = asyncio.get_running_loop()
            if staging_dir.exists():
                await loop.run_in_executor(None, shutil.rmtree, staging_dir)
            await aiofiles.os.makedirs(staging_dir, exist_ok=True)
            if archive_suffix == '.zip':
                await loop.run_in_executor(None, _extract_zip, archive_path, staging_dir)
            else:
                await loop.run_in_executor(None, _extract_tar, archive_path, staging_dir)
            if destination_dir.exists():
                await loop.run_in_executor(None, shutil.rmtree, destination_dir)
            os.replace(staging_dir, destination_dir)
        except NetworkError as e:
            raise JavaNoVersionError(f"Could not download Java {version}: {e}") from e
        except (OSError, zipfile.BadZipFile, tarfile.TarError) as e:
            raise JavaNoVersionError(f"Could not extract Java {version}: {e}") from e
        finally:
            await remove_quietly(archive_path)
            if session_ctx is not None:
                await session_ctx.__aexit__(None, None, None)

        java_path = find_java_executable(destination_dir)
        if java_path is None:
            self.log.error(f"Extraction succeeded but no Java executable was found in {destination_dir}")
            raise JavaNoVersionError(f"Downloaded Java {version} has no executable")
        self.log.info(f"Java {version} installed at {java_path}")
        return java_path

    # --- Resolution ---

    async def resolve_async(self, configured: str, major: int) -> pathlib.Path:
        if configured:
            path = pathlib.Path(configured).expanduser()
            if not is_executable_file(path):
                raise JavaBadSystemError(f"Configured Java executable is not usable: {path}")
            return path

        managed = find_java_executable(self.managed_dir(major))
        if managed:
            return managed

        system_java = await self.find_system_java(major)
        if system_java:
            return system_java

        if not self.allow_download:
            raise JavaNoVersionError(f"No Java {major} runtime found")
        return await self.download_java(major)

    def resolve(self, configured: str, major: int) -> pathlib.Path:
        return asyncio.run(self.resolve_async(configured, major))
