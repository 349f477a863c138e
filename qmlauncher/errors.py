from typing import List, Optional


class LauncherError(Exception):
    """Base class for every error raised by the launcher core."""

    pass


# --- Instances ---

class InstanceError(LauncherError):
    pass


class InvalidInstanceNameError(InstanceError):
    """
    Raised when an instance name is empty or cannot be used
    as a directory name
    """

    pass


class InstanceAlreadyExistsError(InstanceError):
    pass


class InstanceNotFoundError(InstanceError):
    pass


class CorruptInstanceConfigError(InstanceError):
    """
    Raised when instance.toml / instance.json exists
    but cannot be read or parsed
    """

    pass


class InstanceIntegrityError(InstanceError):
    """
    Raised when an instance directory holds more than one
    UUID subdirectory with a configuration file
    """

    pass


class DirectoryMoveError(InstanceError):
    pass


class InvalidLoaderError(InstanceError):
    pass


# --- Version resolution ---

class VersionResolutionError(LauncherError):
    pass


class VersionNotFoundError(VersionResolutionError):
    pass


class LoaderNotFoundError(VersionResolutionError):
    pass


class NotCachedError(VersionResolutionError):
    """
    Raised when metadata could not be fetched from the remote source
    and no cached copy exists
    """

    pass


class LoaderInstallError(VersionResolutionError):
    pass


# --- Network ---

class NetworkError(LauncherError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class DownloadError(NetworkError):
    def __init__(self, message: str, urls: Optional[List[str]] = None):
        super().__init__(message)
        self.urls = urls or []


class CloudError(NetworkError):
    pass


# --- Java ---

class JavaError(LauncherError):
    pass


class JavaNoVersionError(JavaError):
    """No usable Java runtime could be found or provisioned"""

    pass


class JavaBadSystemError(JavaError):
    """The configured Java executable does not exist or is not executable"""

    pass


# --- Sync / launch ---

class SyncError(LauncherError):
    pass


class LaunchError(LauncherError):
    pass


class InvalidLaunchOptionsError(LaunchError, ValueError):
    """Contradictory or incomplete launch options."""


def tips_for(error: BaseException) -> List[str]:
    """Maps an error to remediation hint keys for the user-facing layer."""
    tips = []
    if isinstance(error, (NetworkError, OSError)) and not isinstance(error, FileNotFoundError):
        tips.append("internet")
    if isinstance(error, NotCachedError):
        tips.append("cache")
    if isinstance(error, JavaError):
        tips.append("nojvm")
    return tips
