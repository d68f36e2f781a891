"""Process supervisor keeping exactly one kiosk window alive.

Unauthorized close requests, crashes and confirmed hangs become rate-limited
restarts. Each attempt is counted against the restart policy before the
restart delay begins, so an event arriving during the delay is still counted.
Exceeding the budget halts automation until an administrator intervenes. An
admin-authorized shutdown bypasses the state machine entirely.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Final

from kiosk_resilience.core.feeds.manager import FeedManager
from kiosk_resilience.core.retry.engine import RetryEngine
from kiosk_resilience.core.supervisor.restart_policy import RestartPolicy
from kiosk_resilience.core.supervisor.state_machine import StateMachine, SupervisorState
from kiosk_resilience.errors import RestartLimitExceededError
from kiosk_resilience.types import (
    DisplayEvent,
    DisplayEventKind,
    DisplayPort,
    ErrorSeverity,
    HardwareCleanup,
    Heartbeat,
    InputInterceptor,
    Notification,
    OperatorNotifier,
    RestartState,
    Scheduler,
    TimerHandle,
    Urgency,
)

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL: Final[float] = 30.0
DEFAULT_CLEANUP_TIMEOUT: Final[float] = 10.0

_INACTIVE_STATES: Final[frozenset[SupervisorState]] = frozenset(
    {SupervisorState.HALTED_LIMIT_EXCEEDED, SupervisorState.SHUTDOWN}
)


@dataclass(slots=True, frozen=True)
class SupervisorStatus:
    """Read-only snapshot of the supervisor."""

    state: SupervisorState
    attempt_count: int
    max_restarts: int
    last_restart_at: float | None
    window_start: float | None
    restart_pending: bool
    history: tuple[SupervisorState, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "state": self.state.name,
            "attempt_count": self.attempt_count,
            "max_restarts": self.max_restarts,
            "last_restart_at": self.last_restart_at,
            "window_start": self.window_start,
            "restart_pending": self.restart_pending,
            "history": [state.name for state in self.history],
        }


class ProcessSupervisor:
    """Owns the kiosk window lifecycle and its restart policy."""

    def __init__(
        self,
        display: DisplayPort,
        notifier: OperatorNotifier,
        scheduler: Scheduler,
        *,
        policy: RestartPolicy | None = None,
        cleanup: HardwareCleanup | None = None,
        input_interceptor: InputInterceptor | None = None,
        heartbeat: Heartbeat | None = None,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        cleanup_timeout: float = DEFAULT_CLEANUP_TIMEOUT,
        feed_manager: FeedManager | None = None,
        retry_engine: RetryEngine | None = None,
    ) -> None:
        """Initialize the supervisor and subscribe to display events.

        Args:
            display: Kiosk window port, owned exclusively by the supervisor
            notifier: Operator sink for hang warnings and the halt dialog
            scheduler: Timer source for restart delays and heartbeats
            policy: Restart delay and cap
            cleanup: Hardware cleanup hook awaited before an admin exit
            input_interceptor: Global shortcut suppression
            heartbeat: Liveness signal armed while running
            heartbeat_interval: Seconds between heartbeats
            cleanup_timeout: Upper bound for the hardware cleanup hook
            feed_manager: Armed on start and stopped on shutdown
            retry_engine: Armed on start and stopped on shutdown
        """
        self._display: DisplayPort = display
        self._notifier: OperatorNotifier = notifier
        self._scheduler: Scheduler = scheduler
        self._policy: RestartPolicy = policy or RestartPolicy()
        self._cleanup: HardwareCleanup | None = cleanup
        self._input_interceptor: InputInterceptor | None = input_interceptor
        self._heartbeat: Heartbeat | None = heartbeat
        self._heartbeat_interval: float = heartbeat_interval
        self._cleanup_timeout: float = cleanup_timeout
        self._feed_manager: FeedManager | None = feed_manager
        self._retry_engine: RetryEngine | None = retry_engine

        self._machine: StateMachine = StateMachine.for_supervisor()
        self.restart_state: RestartState = RestartState()
        self._restart_timer: TimerHandle | None = None
        self._heartbeat_timer: TimerHandle | None = None
        self._input_armed: bool = False
        self._started: bool = False
        self._shutting_down: bool = False
        self._closed: asyncio.Event = asyncio.Event()

        self._display.subscribe(self.handle_event)

    @property
    def state(self) -> SupervisorState:
        return self._machine.current_state

    @property
    def policy(self) -> RestartPolicy:
        return self._policy

    @property
    def restart_pending(self) -> bool:
        return self._restart_timer is not None and not self._restart_timer.cancelled

    @property
    def feed_manager(self) -> FeedManager | None:
        return self._feed_manager

    @property
    def retry_engine(self) -> RetryEngine | None:
        return self._retry_engine

    async def start(self) -> None:
        """Show the kiosk window and arm the steady-state machinery."""
        if self._started:
            logger.debug("Supervisor already started")
            return
        self._started = True

        try:
            await self._bring_up()
        except Exception as exc:
            logger.error("Initial kiosk display failed: %s", exc)
            if self._shutting_down:
                await self._discard_late_window()
                return
            await self._schedule_restart(f"initial display failed: {exc}")
        else:
            if self._shutting_down:
                await self._discard_late_window()
                return
            self._enter_running()
            logger.info("Kiosk window running")

        if self._retry_engine is not None:
            self._retry_engine.start()
        if self._feed_manager is not None:
            await self._feed_manager.start()

    async def handle_event(self, event: DisplayEvent) -> None:
        """Sink for crash, hang and close events from the display port."""
        if event.kind is DisplayEventKind.CLOSE_REQUESTED and event.authorized:
            logger.info("Admin-authorized close requested")
            await self.admin_shutdown()
            return

        if self._shutting_down or self.state in _INACTIVE_STATES:
            logger.info("Ignoring %s event in state %s", event.kind.name, self.state.name)
            return

        if event.kind is DisplayEventKind.CLOSE_REQUESTED:
            logger.warning("Intercepted unauthorized close request")
            await self._schedule_restart("close requested")
        elif event.kind is DisplayEventKind.CRASHED:
            logger.error("Kiosk process crashed: %s", event.detail or "no detail")
            await self._schedule_restart(f"crashed ({event.detail})" if event.detail else "crashed")
        elif event.kind is DisplayEventKind.UNRESPONSIVE:
            logger.warning("Kiosk window unresponsive, warning operator before restart")
            await self._notify(
                Notification(
                    title="System notice",
                    body="The application is not responding.\nIt will restart automatically.",
                    urgency=Urgency.NORMAL,
                )
            )
            # The operator dialog may outlive a shutdown or another restart
            if self._shutting_down or self.state in _INACTIVE_STATES:
                return
            await self._schedule_restart("unresponsive")
        elif event.kind is DisplayEventKind.RESPONSIVE:
            logger.info("Kiosk window responsive again")

    async def admin_shutdown(self) -> None:
        """Admin-authorized exit: disarm everything, clean up, close the window.

        Idempotent; concurrent callers wait for the first shutdown to finish.
        """
        if self._shutting_down:
            await self._closed.wait()
            return
        self._shutting_down = True
        logger.info("Admin shutdown: disarming timers and listeners")

        self._cancel_restart_timer()
        self._disarm_heartbeat()
        if self._feed_manager is not None:
            self._feed_manager.stop()
        if self._retry_engine is not None:
            self._retry_engine.stop()
        self._disarm_input()

        if self._cleanup is not None:
            try:
                async with asyncio.timeout(self._cleanup_timeout):
                    await self._cleanup.cleanup()
            except TimeoutError:
                logger.warning("Hardware cleanup timed out after %.1fs", self._cleanup_timeout)
            except Exception as exc:
                logger.warning("Hardware cleanup failed: %s", exc)

        try:
            self._display.set_fullscreen(False)
            await self._display.destroy()
        except Exception as exc:
            logger.error("Failed to destroy kiosk window: %s", exc)

        _ = self._machine.transition_to(SupervisorState.SHUTDOWN)
        self._closed.set()
        logger.info("Supervisor shut down")

    async def wait_closed(self) -> None:
        """Wait until ``admin_shutdown`` has completed."""
        _ = await self._closed.wait()

    def status(self) -> SupervisorStatus:
        return SupervisorStatus(
            state=self.state,
            attempt_count=self.restart_state.attempt_count,
            max_restarts=self._policy.max_restarts,
            last_restart_at=self.restart_state.last_restart_at,
            window_start=self.restart_state.window_start,
            restart_pending=self.restart_pending,
            history=tuple(self._machine.context.get_state_history()),
        )

    async def _bring_up(self) -> None:
        self._display.set_fullscreen(True)
        await self._display.create()
        await self._display.show()

    async def _discard_late_window(self) -> None:
        """Close a window whose bring-up finished after admin shutdown began."""
        logger.info("Closing kiosk window created during admin shutdown")
        try:
            self._display.set_fullscreen(False)
            await self._display.destroy()
        except Exception as exc:
            logger.error("Failed to destroy late kiosk window: %s", exc)

    def _enter_running(self) -> None:
        _ = self._machine.transition_to(SupervisorState.RUNNING)
        self._policy.mark_running(self.restart_state)
        self._arm_input()
        self._arm_heartbeat()

    async def _schedule_restart(self, reason: str) -> None:
        if not self._policy.register_attempt(self.restart_state, self._scheduler.now()):
            await self._halt(reason)
            return

        self._cancel_restart_timer()
        if self.state is not SupervisorState.RESTART_SCHEDULED:
            self._disarm_heartbeat()
            _ = self._machine.transition_to(SupervisorState.RESTART_SCHEDULED)

        self._restart_timer = self._scheduler.call_later(self._policy.restart_delay, self._perform_restart)
        logger.warning(
            "Restart scheduled in %.0fs (%d/%d): %s",
            self._policy.restart_delay,
            self.restart_state.attempt_count,
            self._policy.max_restarts,
            reason,
        )

    async def _perform_restart(self) -> None:
        self._restart_timer = None
        if self._shutting_down or self.state is not SupervisorState.RESTART_SCHEDULED:
            return

        _ = self._machine.transition_to(SupervisorState.RESTARTING)
        logger.info(
            "Restarting kiosk window (%d/%d)",
            self.restart_state.attempt_count,
            self._policy.max_restarts,
        )

        try:
            await self._display.destroy()
            await self._bring_up()
        except Exception as exc:
            logger.error("Kiosk restart failed: %s", exc)
            if self._shutting_down:
                await self._discard_late_window()
            elif self.state is SupervisorState.RESTARTING:
                await self._schedule_restart(f"restart failed: {exc}")
            return

        if self._shutting_down:
            await self._discard_late_window()
            return
        # A crash during bring-up already moved the machine on
        if self.state is not SupervisorState.RESTARTING:
            return

        self._enter_running()
        logger.info("Kiosk window restored, restart counter reset")

    async def _halt(self, reason: str) -> None:
        self._cancel_restart_timer()
        self._disarm_heartbeat()
        _ = self._machine.transition_to(SupervisorState.HALTED_LIMIT_EXCEEDED)
        # Release the screen and keyboard so the halt dialog reaches a technician
        self._display.set_fullscreen(False)
        self._disarm_input()

        attempts = self.restart_state.attempt_count
        error = RestartLimitExceededError(attempts, self._policy.reset_window)
        logger.critical("%s, halting automatic restarts: %s", error, reason)
        if self._retry_engine is not None:
            _ = self._retry_engine.log_error(error, "supervisor", ErrorSeverity.HIGH)
        await self._notify(
            Notification(
                title="System error",
                body=(
                    "The application keeps failing.\n"
                    "Please contact your system administrator.\n\n"
                    f"Restart count: {attempts}"
                ),
                urgency=Urgency.CRITICAL,
            )
        )

    async def _notify(self, notification: Notification) -> None:
        try:
            await self._notifier.notify(notification)
        except Exception as exc:
            logger.error("Operator notification failed: %s", exc)

    def _arm_input(self) -> None:
        if self._input_interceptor is not None and not self._input_armed:
            self._input_interceptor.arm()
            self._input_armed = True

    def _disarm_input(self) -> None:
        if self._input_interceptor is not None and self._input_armed:
            self._input_interceptor.disarm()
            self._input_armed = False

    def _arm_heartbeat(self) -> None:
        if self._heartbeat is None or self._heartbeat_timer is not None:
            return
        self._heartbeat_timer = self._scheduler.call_every(self._heartbeat_interval, self._beat)

    def _disarm_heartbeat(self) -> None:
        if self._heartbeat_timer is not None:
            self._heartbeat_timer.cancel()
            self._heartbeat_timer = None

    def _cancel_restart_timer(self) -> None:
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None

    async def _beat(self) -> None:
        if self._heartbeat is None:
            return
        status: dict[str, object] = {
            "state": self.state.name,
            "attempt_count": self.restart_state.attempt_count,
        }
        if self._feed_manager is not None:
            status["feed"] = self._feed_manager.current_feed.name
        if self._retry_engine is not None:
            status["pending_retries"] = len(self._retry_engine.pending_operations())
        await self._heartbeat.beat(status)
