"""Display port running the kiosk UI as a child process.

Exit and hang signals of the child are turned into DisplayEvents for the
supervisor. Exits caused by ``destroy`` are expected and produce no event.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Final

import psutil

from kiosk_resilience.errors import DisplayError
from kiosk_resilience.types import DisplayEvent, DisplayEventHandler, DisplayEventKind

logger = logging.getLogger(__name__)

DEFAULT_HANG_THRESHOLD: Final[float] = 15.0
DEFAULT_POLL_INTERVAL: Final[float] = 2.0
DEFAULT_TERMINATE_TIMEOUT: Final[float] = 5.0

# psutil statuses in which the UI cannot service input
_HUNG_STATUSES: Final[frozenset[str]] = frozenset({psutil.STATUS_STOPPED, psutil.STATUS_TRACING_STOP})


class SubprocessDisplayPort:
    """Spawns and watches the kiosk UI command.

    A non-zero exit is reported as CRASHED and a clean exit as an
    unauthorized CLOSE_REQUESTED. A child stopped for longer than
    ``hang_threshold`` is reported as UNRESPONSIVE, then RESPONSIVE once it
    runs again.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        fullscreen_args: Sequence[str] = ("--kiosk",),
        env: Mapping[str, str] | None = None,
        hang_threshold: float = DEFAULT_HANG_THRESHOLD,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        terminate_timeout: float = DEFAULT_TERMINATE_TIMEOUT,
    ) -> None:
        if not command:
            msg = "Display command must not be empty"
            raise ValueError(msg)
        self._command: tuple[str, ...] = tuple(command)
        self._fullscreen_args: tuple[str, ...] = tuple(fullscreen_args)
        self._env: dict[str, str] | None = dict(env) if env is not None else None
        self._hang_threshold: float = hang_threshold
        self._poll_interval: float = poll_interval
        self._terminate_timeout: float = terminate_timeout

        self._fullscreen: bool = False
        self._process: asyncio.subprocess.Process | None = None
        self._expected_exit: bool = False
        self._handler: DisplayEventHandler | None = None
        self._watchers: list[asyncio.Task[None]] = []
        self._dispatches: set[asyncio.Future[None]] = set()

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def subscribe(self, handler: DisplayEventHandler) -> None:
        self._handler = handler

    def set_fullscreen(self, enabled: bool) -> None:
        """Select full-screen arguments; takes effect on the next spawn."""
        self._fullscreen = enabled

    async def create(self) -> None:
        """Spawn the UI process.

        Raises:
            DisplayError: If the process is already running or cannot be spawned
        """
        if self._process is not None and self._process.returncode is None:
            raise DisplayError(f"UI process already running (pid {self._process.pid})")

        argv = self._command + (self._fullscreen_args if self._fullscreen else ())
        try:
            self._process = await asyncio.create_subprocess_exec(*argv, env=self._env)
        except OSError as exc:
            raise DisplayError(f"Failed to start UI process {argv[0]}: {exc}") from exc

        self._expected_exit = False
        logger.info("Started UI process %s (pid %d)", argv[0], self._process.pid)
        self._watchers = [
            asyncio.create_task(self._watch_exit(self._process)),
            asyncio.create_task(self._watch_hang(self._process.pid)),
        ]

    async def show(self) -> None:
        """Confirm the UI process is alive.

        Raises:
            DisplayError: If the process was never created or already exited
        """
        process = self._process
        if process is None:
            raise DisplayError("UI process has not been created")
        if process.returncode is not None:
            raise DisplayError(f"UI process exited with code {process.returncode}")
        try:
            alive = psutil.Process(process.pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            alive = False
        if not alive:
            raise DisplayError(f"UI process {process.pid} is not running")

    async def destroy(self) -> None:
        """Stop the UI process without emitting events."""
        process = self._process
        self._expected_exit = True
        for watcher in self._watchers:
            _ = watcher.cancel()
        self._watchers = []

        if process is None or process.returncode is not None:
            self._process = None
            return

        try:
            process.terminate()
            async with asyncio.timeout(self._terminate_timeout):
                _ = await process.wait()
        except ProcessLookupError:
            pass
        except TimeoutError:
            logger.warning("UI process %d ignored SIGTERM, killing it", process.pid)
            process.kill()
            _ = await process.wait()
        logger.info("UI process %d stopped", process.pid)
        self._process = None

    async def _watch_exit(self, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        if self._expected_exit or process is not self._process:
            return
        if returncode == 0:
            logger.warning("UI process %d exited cleanly without authorization", process.pid)
            self._emit(DisplayEvent(DisplayEventKind.CLOSE_REQUESTED, detail="process exited"))
        else:
            logger.error("UI process %d crashed with exit code %d", process.pid, returncode)
            self._emit(DisplayEvent(DisplayEventKind.CRASHED, detail=f"exit code {returncode}"))

    async def _watch_hang(self, pid: int) -> None:
        loop = asyncio.get_running_loop()
        stopped_since: float | None = None
        reported = False

        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                status = psutil.Process(pid).status()
            except (psutil.NoSuchProcess, psutil.ZombieProcess):
                return
            except psutil.AccessDenied as exc:
                logger.debug("Cannot inspect UI process %d: %s", pid, exc)
                continue

            if status in _HUNG_STATUSES:
                if stopped_since is None:
                    stopped_since = loop.time()
                if not reported and loop.time() - stopped_since >= self._hang_threshold:
                    reported = True
                    logger.warning("UI process %d unresponsive for %.0fs", pid, self._hang_threshold)
                    self._emit(DisplayEvent(DisplayEventKind.UNRESPONSIVE, detail=f"status {status}"))
                continue

            stopped_since = None
            if reported:
                reported = False
                self._emit(DisplayEvent(DisplayEventKind.RESPONSIVE))

    def _emit(self, event: DisplayEvent) -> None:
        if self._handler is None:
            logger.warning("Dropping %s event: no subscriber", event.kind.name)
            return
        # Handlers may destroy this port and cancel its watchers
        task = asyncio.ensure_future(self._handler(event))
        self._dispatches.add(task)
        task.add_done_callback(self._dispatches.discard)
