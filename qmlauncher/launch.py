import asyncio
import logging
import os
import pathlib
import sys
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .environment import LaunchEnvironment
from .errors import LaunchError

log = logging.getLogger(__name__)

SENSITIVE_FLAGS = ('--accessToken', '--uuid')


@dataclass
class ProcessHandle:
    """Everything a runner needs to start the game process."""

    args: List[str]
    cwd: pathlib.Path
    env: Dict[str, str] = field(default_factory=dict)


Runner = Callable[[ProcessHandle], None]


def mask_arguments(args: List[str]) -> List[str]:
    """Replaces the values following --accessToken and --uuid with ``***``."""
    masked = []
    hide_next = False
    for arg in args:
        masked.append('***' if hide_next else arg)
        hide_next = arg in SENSITIVE_FLAGS
    return masked


async def run_process(handle: ProcessHandle, stdout=None, stderr=None) -> int:
    process = await asyncio.create_subprocess_exec(
        *handle.args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=stdout,
        stderr=stderr,
        cwd=str(handle.cwd),
        env=handle.env or None,
    )
    log.info(f"Minecraft process started (PID: {process.pid}). Waiting for exit...")
    return_code = await process.wait()
    log.info(f"Minecraft process exited with code {return_code}.")
    return return_code


def _check(return_code: int) -> None:
    if return_code != 0:
        raise LaunchError(f"Game exited with code {return_code}")


def quiet_runner(handle: ProcessHandle) -> None:
    """Runs the game with its output discarded and waits for it to exit."""
    _check(asyncio.run(run_process(handle, asyncio.subprocess.DEVNULL, asyncio.subprocess.DEVNULL)))


def console_runner(handle: ProcessHandle) -> None:
    """Runs the game attached to the launcher's console and waits for it to exit."""
    _check(asyncio.run(run_process(handle, sys.stdout, sys.stderr)))


def log_runner(path: pathlib.Path) -> Runner:
    """Returns a runner that appends the game's output to ``path``."""
    def run(handle: ProcessHandle) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'ab') as log_file:
            _check(asyncio.run(run_process(handle, log_file, asyncio.subprocess.STDOUT)))

    return run


def launch(environment: LaunchEnvironment, runner: Runner, logger: Optional[logging.Logger] = None) -> None:
    """
    Starts the game described by ``environment`` through ``runner``.

    The launcher does not supervise the process; the runner decides how
    output is handled and raises if the game could not be run.
    """
    logger = logger or log
    handle = ProcessHandle(
        args=environment.command(),
        cwd=environment.game_dir,
        env=dict(os.environ),
    )
    logger.debug(f"JVM arguments: {environment.jvm_args}")
    logger.debug(f"Game arguments: {mask_arguments(environment.game_args)}")
    logger.debug(f"Main class: {environment.main_class}, game directory: {environment.game_dir}")
    logger.info("Attempting to launch Minecraft...")
    try:
        environment.game_dir.mkdir(parents=True, exist_ok=True)
        runner(handle)
    except OSError as e:
        raise LaunchError(f"Could not start {handle.args[0]}: {e}") from e
