"""Progress events emitted while an environment is being prepared.

Watchers receive events synchronously on the thread running ``prepare``.
They are meant for progress reporting only.
"""
from dataclasses import dataclass
from typing import Callable, Optional, Union

from tqdm import tqdm


@dataclass(frozen=True)
class DownloadingEvent:
    """One download unit finished (fetched or found valid in the cache)."""
    completed: int
    total: int


@dataclass(frozen=True)
class LibrariesResolvedEvent:
    total: int


@dataclass(frozen=True)
class AssetsResolvedEvent:
    total: int


@dataclass(frozen=True)
class MetadataResolvedEvent:
    pass


@dataclass(frozen=True)
class PostProcessingEvent:
    pass


Event = Union[DownloadingEvent, LibrariesResolvedEvent, AssetsResolvedEvent,
              MetadataResolvedEvent, PostProcessingEvent]
EventWatcher = Callable[[Event], None]


def null_watcher(event: Event) -> None:
    pass


def progress_watcher(verbose: bool = False, desc: str = "Downloading") -> EventWatcher:
    """Returns a watcher rendering download progress with a tqdm bar."""
    bar: Optional[tqdm] = None

    def watch(event: Event) -> None:
        nonlocal bar
        if isinstance(event, DownloadingEvent):
            if bar is None:
                bar = tqdm(total=event.total, desc=desc, unit="file", leave=False)
            bar.total = event.total
            bar.update(event.completed - bar.n)
            if event.completed >= event.total:
                bar.close()
                bar = None
        elif isinstance(event, LibrariesResolvedEvent):
            if verbose:
                tqdm.write(f"Resolved {event.total} libraries")
        elif isinstance(event, AssetsResolvedEvent):
            if verbose:
                tqdm.write(f"Resolved {event.total} assets")
        elif isinstance(event, MetadataResolvedEvent):
            if verbose:
                tqdm.write("Resolved version metadata")
        elif isinstance(event, PostProcessingEvent):
            if bar is not None:
                bar.close()
                bar = None
            tqdm.write("Post-processing...")

    return watch
