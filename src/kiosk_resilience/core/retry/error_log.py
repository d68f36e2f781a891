"""Structured failure log with severity-driven escalation.

Entries are append-only; ``resolve`` is the only mutation. CRITICAL entries
raise an operator notification and every entry is mirrored to the remote
collector. Both side effects run in background tasks and never reach the
caller that recorded the error.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from collections import Counter
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Final, cast

from kiosk_resilience.types import (
    ErrorCollector,
    ErrorLogEntry,
    ErrorSeverity,
    ErrorStatistics,
    Notification,
    OperatorNotifier,
    Urgency,
)

logger = logging.getLogger(__name__)

DEFAULT_RETENTION: Final[timedelta] = timedelta(days=7)
RECENT_ERRORS_LIMIT: Final[int] = 10
DEFAULT_PERSIST_DELAY: Final[float] = 1.0

_LOG_LEVELS: Final[dict[ErrorSeverity, int]] = {
    ErrorSeverity.LOW: logging.INFO,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_entry_id() -> str:
    return str(uuid.uuid4())


class ErrorLogStore:
    """Best-effort JSON persistence for error log entries.

    The file is replaced atomically, so a crash mid-write leaves the previous
    snapshot intact. Read and write failures are logged and swallowed; the
    in-memory log is authoritative.
    """

    storage_path: Path

    def __init__(self, storage_path: Path) -> None:
        self.storage_path = storage_path

    def save(self, entries: list[ErrorLogEntry]) -> None:
        tmp_path = self.storage_path.with_suffix(f"{self.storage_path.suffix}.tmp")
        try:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump([entry.to_dict() for entry in entries], f, indent=2)
            os.replace(tmp_path, self.storage_path)
        except OSError as exc:
            logger.warning("Failed to persist error log to %s: %s", self.storage_path, exc)

    def load(self) -> list[ErrorLogEntry]:
        try:
            if not self.storage_path.exists():
                return []
            with open(self.storage_path, encoding="utf-8") as f:
                raw = cast(object, json.load(f))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to load error log from %s: %s", self.storage_path, exc)
            return []

        if not isinstance(raw, list):
            logger.warning("Ignoring malformed error log file %s", self.storage_path)
            return []

        entries: list[ErrorLogEntry] = []
        for item in cast(list[object], raw):
            if not isinstance(item, dict):
                continue
            try:
                entries.append(ErrorLogEntry.from_dict(cast(dict[str, object], item)))
            except (KeyError, ValueError) as exc:
                logger.warning("Skipping unreadable error log entry: %s", exc)
        return entries


class ErrorLog:
    """Append-only store of ErrorLogEntry records."""

    def __init__(
        self,
        *,
        notifier: OperatorNotifier | None = None,
        collector: ErrorCollector | None = None,
        store: ErrorLogStore | None = None,
        retention: timedelta = DEFAULT_RETENTION,
        persist_delay: float = DEFAULT_PERSIST_DELAY,
        time_source: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_entry_id,
    ) -> None:
        """Initialize the error log.

        Args:
            notifier: Operator sink for CRITICAL entries
            collector: Remote collector receiving every entry
            store: Optional local persistence, loaded immediately
            retention: Age after which resolved, non-critical entries are pruned
            persist_delay: Coalescing window for store writes while a loop runs
            time_source: Wall clock used for entry timestamps and pruning
            id_factory: Entry identifier generator
        """
        self._notifier: OperatorNotifier | None = notifier
        self._collector: ErrorCollector | None = collector
        self._store: ErrorLogStore | None = store
        self._retention: timedelta = retention
        self._persist_delay: float = persist_delay
        self._time_source: Callable[[], datetime] = time_source
        self._id_factory: Callable[[], str] = id_factory
        self._pending: set[asyncio.Task[None]] = set()
        self._flush_handle: asyncio.TimerHandle | None = None

        self._entries: list[ErrorLogEntry] = store.load() if store is not None else []

    @property
    def entries(self) -> tuple[ErrorLogEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def record(
        self,
        error: BaseException,
        context: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
    ) -> ErrorLogEntry:
        """Append an entry for ``error`` and start its side effects.

        Never raises because of notification, mirroring or persistence
        failures.

        Args:
            error: Failure being recorded
            context: Free-text key shared with retry queue records
            severity: Entry severity

        Returns:
            The recorded entry
        """
        entry = ErrorLogEntry(
            id=self._id_factory(),
            timestamp=self._time_source(),
            context=context,
            severity=severity,
            error_message=str(error) or type(error).__name__,
            error_type=type(error).__name__,
        )
        self._entries.append(entry)

        logger.log(
            _LOG_LEVELS[severity],
            "[%s] %s: %s",
            severity.name,
            context,
            entry.error_message,
            extra={"error_id": entry.id, "error_context": context, "severity": severity.name},
        )

        self._persist()

        if severity is ErrorSeverity.CRITICAL and self._notifier is not None:
            self._spawn(self._report_critical(entry))

        if self._collector is not None:
            self._spawn(self._mirror(entry))

        return entry

    def get(self, entry_id: str) -> ErrorLogEntry | None:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def resolve(self, entry_id: str) -> bool:
        """Mark an entry resolved.

        Returns:
            True if the entry exists
        """
        entry = self.get(entry_id)
        if entry is None:
            return False
        entry.resolved = True
        self._persist()
        return True

    def statistics(self, pending_retries: int = 0) -> ErrorStatistics:
        """Aggregate counts by severity and context plus recent unresolved entries."""
        by_severity = Counter(entry.severity.name for entry in self._entries)
        by_context = Counter(entry.context for entry in self._entries)
        unresolved = sorted(
            (entry for entry in self._entries if not entry.resolved),
            key=lambda entry: entry.timestamp,
            reverse=True,
        )
        return ErrorStatistics(
            total_errors=len(self._entries),
            errors_by_severity=dict(by_severity),
            errors_by_context=dict(by_context),
            resolved_errors=sum(1 for entry in self._entries if entry.resolved),
            recent_errors=tuple(unresolved[:RECENT_ERRORS_LIMIT]),
            pending_retries=pending_retries,
        )

    def prune(self) -> int:
        """Drop entries past retention unless CRITICAL or unresolved.

        Returns:
            Number of entries removed
        """
        cutoff = self._time_source() - self._retention
        kept = [
            entry
            for entry in self._entries
            if entry.timestamp > cutoff or entry.severity is ErrorSeverity.CRITICAL or not entry.resolved
        ]
        removed = len(self._entries) - len(kept)
        self._entries = kept

        if removed:
            logger.info("Pruned %d error log entries older than %s", removed, self._retention)
        self._persist()
        return removed

    async def wait_pending(self) -> None:
        """Wait for outstanding notification and mirroring tasks, then persist."""
        while self._pending:
            _ = await asyncio.gather(*self._pending, return_exceptions=True)
        self.flush()

    def flush(self) -> None:
        """Write a pending store update now."""
        if self._flush_handle is None:
            return
        self._flush_handle.cancel()
        self._flush_handle = None
        if self._store is not None:
            self._store.save(self._entries)

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._store.save(self._entries)
            return
        # Coalesce bursts of changes into one write off the recording call
        if self._flush_handle is None:
            self._flush_handle = loop.call_later(self._persist_delay, self.flush)

    def _spawn(self, coro: Coroutine[object, object, None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop; skipping background error reporting")
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _report_critical(self, entry: ErrorLogEntry) -> None:
        if self._notifier is None:
            return
        notification = Notification(
            title="Critical error",
            body=f"{entry.context}: {entry.error_message}",
            urgency=Urgency.CRITICAL,
        )
        try:
            await self._notifier.notify(notification)
        except Exception as exc:
            logger.warning("Failed to report critical error %s: %s", entry.id, exc)

    async def _mirror(self, entry: ErrorLogEntry) -> None:
        if self._collector is None:
            return
        try:
            await self._collector.submit(entry)
        except Exception as exc:
            logger.warning("Failed to mirror error %s to collector: %s", entry.id, exc)
