"""Unit tests for the structured error log."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import timedelta
from pathlib import Path

import pytest

from kiosk_resilience.core.retry import ErrorLog, ErrorLogStore
from kiosk_resilience.types import ErrorLogEntry, ErrorSeverity, Urgency
from tests.fixtures.resilience_mocks import FrozenClock, RecordingCollector, RecordingNotifier


@pytest.mark.unit
class TestRecord:
    """Test cases for appending entries."""

    async def test_record_builds_entry(self, error_log: ErrorLog, clock: FrozenClock) -> None:
        entry = error_log.record(ConnectionError("connect ECONNREFUSED"), "feed_check")

        assert entry.context == "feed_check"
        assert entry.severity is ErrorSeverity.MEDIUM
        assert entry.error_message == "connect ECONNREFUSED"
        assert entry.error_type == "ConnectionError"
        assert entry.timestamp == clock.current
        assert entry.resolved is False
        assert error_log.entries == (entry,)

    async def test_empty_message_falls_back_to_type_name(self, error_log: ErrorLog) -> None:
        entry = error_log.record(TimeoutError(), "payment")

        assert entry.error_message == "TimeoutError"

    async def test_log_level_follows_severity(
        self, error_log: ErrorLog, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="kiosk_resilience.core.retry.error_log"):
            _ = error_log.record(RuntimeError("low"), "ui", ErrorSeverity.LOW)
            _ = error_log.record(RuntimeError("high"), "ui", ErrorSeverity.HIGH)

        levels = [record.levelno for record in caplog.records]
        assert levels == [logging.INFO, logging.ERROR]

    async def test_critical_entry_notifies_operator(
        self, error_log: ErrorLog, notifier: RecordingNotifier
    ) -> None:
        _ = error_log.record(RuntimeError("printer offline"), "printer", ErrorSeverity.CRITICAL)
        await error_log.wait_pending()

        assert len(notifier.notifications) == 1
        notification = notifier.notifications[0]
        assert notification.urgency is Urgency.CRITICAL
        assert notification.body == "printer: printer offline"

    @pytest.mark.parametrize("severity", [ErrorSeverity.LOW, ErrorSeverity.MEDIUM, ErrorSeverity.HIGH])
    async def test_non_critical_entry_does_not_notify(
        self, error_log: ErrorLog, notifier: RecordingNotifier, severity: ErrorSeverity
    ) -> None:
        _ = error_log.record(RuntimeError("boom"), "ui", severity)
        await error_log.wait_pending()

        assert notifier.notifications == []

    async def test_every_entry_is_mirrored(self, error_log: ErrorLog, collector: RecordingCollector) -> None:
        first = error_log.record(RuntimeError("one"), "ui", ErrorSeverity.LOW)
        second = error_log.record(RuntimeError("two"), "ui", ErrorSeverity.CRITICAL)
        await error_log.wait_pending()

        assert collector.entries == [first, second]

    async def test_side_effect_failures_never_reach_caller(self, clock: FrozenClock) -> None:
        error_log = ErrorLog(
            notifier=RecordingNotifier(fail=True),
            collector=RecordingCollector(fail=True),
            time_source=clock,
        )

        entry = error_log.record(RuntimeError("boom"), "ui", ErrorSeverity.CRITICAL)
        await error_log.wait_pending()

        assert error_log.get(entry.id) is entry

    def test_record_without_event_loop(self, notifier: RecordingNotifier, clock: FrozenClock) -> None:
        error_log = ErrorLog(notifier=notifier, time_source=clock)

        entry = error_log.record(RuntimeError("boom"), "startup", ErrorSeverity.CRITICAL)

        assert len(error_log) == 1
        assert entry.severity is ErrorSeverity.CRITICAL
        assert notifier.notifications == []


@pytest.mark.unit
class TestResolveAndStatistics:
    async def test_resolve(self, error_log: ErrorLog) -> None:
        entry = error_log.record(RuntimeError("boom"), "ui")

        assert error_log.resolve(entry.id) is True
        assert entry.resolved is True
        assert error_log.resolve("missing") is False

    async def test_statistics(self, error_log: ErrorLog, clock: FrozenClock) -> None:
        first = error_log.record(RuntimeError("a"), "payment", ErrorSeverity.HIGH)
        clock.current += timedelta(seconds=1)
        second = error_log.record(RuntimeError("b"), "payment", ErrorSeverity.LOW)
        clock.current += timedelta(seconds=1)
        third = error_log.record(RuntimeError("c"), "network", ErrorSeverity.HIGH)
        _ = error_log.resolve(second.id)

        stats = error_log.statistics(pending_retries=2)

        assert stats.total_errors == 3
        assert stats.errors_by_severity == {"HIGH": 2, "LOW": 1}
        assert stats.errors_by_context == {"payment": 2, "network": 1}
        assert stats.resolved_errors == 1
        assert stats.recent_errors == (third, first)
        assert stats.pending_retries == 2

    async def test_recent_errors_are_limited(self, error_log: ErrorLog, clock: FrozenClock) -> None:
        for index in range(15):
            clock.current += timedelta(seconds=1)
            _ = error_log.record(RuntimeError(f"e{index}"), "ui", ErrorSeverity.LOW)

        recent = error_log.statistics().recent_errors

        assert len(recent) == 10
        assert recent[0].error_message == "e14"


@pytest.mark.unit
class TestPrune:
    """Test cases for retention pruning."""

    async def test_prune_rules(self, error_log: ErrorLog, clock: FrozenClock) -> None:
        old_resolved = error_log.record(RuntimeError("old resolved"), "ui", ErrorSeverity.HIGH)
        old_unresolved = error_log.record(RuntimeError("old open"), "ui", ErrorSeverity.HIGH)
        old_critical = error_log.record(RuntimeError("old critical"), "ui", ErrorSeverity.CRITICAL)
        _ = error_log.resolve(old_resolved.id)
        _ = error_log.resolve(old_critical.id)

        clock.current += timedelta(days=8)
        recent = error_log.record(RuntimeError("recent"), "ui", ErrorSeverity.LOW)
        _ = error_log.resolve(recent.id)

        removed = error_log.prune()

        assert removed == 1
        assert error_log.entries == (old_unresolved, old_critical, recent)

    async def test_entries_within_retention_survive(self, error_log: ErrorLog, clock: FrozenClock) -> None:
        entry = error_log.record(RuntimeError("boom"), "ui", ErrorSeverity.LOW)
        _ = error_log.resolve(entry.id)
        clock.current += timedelta(days=6)

        assert error_log.prune() == 0
        assert len(error_log) == 1


@pytest.mark.unit
class TestErrorLogStore:
    def test_entries_survive_restart(self, tmp_path: Path, clock: FrozenClock) -> None:
        store = ErrorLogStore(tmp_path / "state" / "errors.json")
        first = ErrorLog(store=store, time_source=clock)
        entry = first.record(RuntimeError("boom"), "payment", ErrorSeverity.HIGH)
        _ = first.resolve(entry.id)

        reloaded = ErrorLog(store=ErrorLogStore(tmp_path / "state" / "errors.json"), time_source=clock)

        assert reloaded.entries == (entry,)
        assert reloaded.entries[0].resolved is True

    def test_missing_file_loads_empty(self, tmp_path: Path) -> None:
        assert ErrorLogStore(tmp_path / "absent.json").load() == []

    @pytest.mark.parametrize("content", ["{not json", json.dumps({"id": "x"})])
    def test_malformed_file_loads_empty(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "errors.json"
        _ = path.write_text(content, encoding="utf-8")

        assert ErrorLogStore(path).load() == []

    def test_unreadable_entries_are_skipped(self, tmp_path: Path, clock: FrozenClock) -> None:
        good = ErrorLogEntry(
            id="err-1",
            timestamp=clock.current,
            context="ui",
            severity=ErrorSeverity.LOW,
            error_message="boom",
        )
        path = tmp_path / "errors.json"
        _ = path.write_text(
            json.dumps([good.to_dict(), {"id": "err-2"}, "garbage", {**good.to_dict(), "severity": "SEVERE"}]),
            encoding="utf-8",
        )

        assert ErrorLogStore(path).load() == [good]

    def test_write_failure_is_swallowed(self, tmp_path: Path, clock: FrozenClock) -> None:
        blocker = tmp_path / "not-a-dir"
        _ = blocker.write_text("", encoding="utf-8")
        error_log = ErrorLog(store=ErrorLogStore(blocker / "errors.json"), time_source=clock)

        entry = error_log.record(RuntimeError("boom"), "ui")

        assert error_log.entries == (entry,)

    def test_failed_replace_keeps_previous_snapshot(
        self, tmp_path: Path, clock: FrozenClock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "errors.json"
        error_log = ErrorLog(store=ErrorLogStore(path), time_source=clock)
        first = error_log.record(RuntimeError("first"), "ui")

        def fail_replace(src: object, dst: object) -> None:
            raise OSError("disk full")

        monkeypatch.setattr("kiosk_resilience.core.retry.error_log.os.replace", fail_replace)
        _ = error_log.record(RuntimeError("second"), "ui")

        assert ErrorLogStore(path).load() == [first]

    def test_save_leaves_no_temporary_file(self, tmp_path: Path, clock: FrozenClock) -> None:
        error_log = ErrorLog(store=ErrorLogStore(tmp_path / "errors.json"), time_source=clock)

        _ = error_log.record(RuntimeError("boom"), "ui")

        assert [p.name for p in tmp_path.iterdir()] == ["errors.json"]


class CountingStore(ErrorLogStore):
    def __init__(self, storage_path: Path) -> None:
        super().__init__(storage_path)
        self.saves: int = 0

    def save(self, entries: list[ErrorLogEntry]) -> None:
        self.saves += 1
        super().save(entries)


@pytest.mark.unit
class TestDebouncedPersistence:
    """Test cases for coalesced store writes inside the event loop."""

    async def test_burst_of_records_is_written_once(self, tmp_path: Path, clock: FrozenClock) -> None:
        store = CountingStore(tmp_path / "errors.json")
        error_log = ErrorLog(store=store, time_source=clock, persist_delay=0.01)

        for index in range(5):
            _ = error_log.record(RuntimeError(f"boom {index}"), "ui")
        assert store.saves == 0

        await asyncio.sleep(0.05)

        assert store.saves == 1
        assert len(store.load()) == 5

    async def test_wait_pending_flushes_immediately(self, tmp_path: Path, clock: FrozenClock) -> None:
        store = CountingStore(tmp_path / "errors.json")
        error_log = ErrorLog(store=store, time_source=clock, persist_delay=60.0)
        entry = error_log.record(RuntimeError("boom"), "ui")
        _ = error_log.resolve(entry.id)

        await error_log.wait_pending()

        assert store.saves == 1
        assert store.load() == [entry]

    async def test_flush_without_changes_writes_nothing(self, tmp_path: Path, clock: FrozenClock) -> None:
        store = CountingStore(tmp_path / "errors.json")
        error_log = ErrorLog(store=store, time_source=clock)

        error_log.flush()

        assert store.saves == 0
