"""Unit tests for AuditLog and call_with_retries."""

import asyncio
import logging

import pytest

from command_engine import constants
from command_engine.audit import AuditLog, call_with_retries
from command_engine.exceptions import AuditSinkError
from command_engine.models import AuditEntry, ExecutionStatus
from command_engine.stores import InMemoryAuditSink
from tests.conftest import FlakyAuditSink


def make_entry(tenant_id: str = "guild-1", status: ExecutionStatus = ExecutionStatus.SUCCESS) -> AuditEntry:
    return AuditEntry(tenant_id=tenant_id, command_id="cmd", author_id="user", status=status)


class TrimCountingSink(InMemoryAuditSink):
    def __init__(self) -> None:
        super().__init__()
        self.trims: list[tuple[str, int]] = []

    async def trim(self, tenant_id: str, keep: int) -> int:
        self.trims.append((tenant_id, keep))
        return await super().trim(tenant_id, keep)


# ============================================================================
# call_with_retries
# ============================================================================


class TestCallWithRetries:
    async def test_returns_value(self) -> None:
        async def op() -> int:
            return 42

        assert await call_with_retries(op, timeout=1.0) == 42

    async def test_retries_transient_errors(self) -> None:
        calls = 0

        async def op() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise AuditSinkError("blip")
            return "ok"

        assert await call_with_retries(op, timeout=1.0, attempts=3) == "ok"
        assert calls == 3

    async def test_reraises_after_attempts(self) -> None:
        calls = 0

        async def op() -> None:
            nonlocal calls
            calls += 1
            raise AuditSinkError("down")

        with pytest.raises(AuditSinkError):
            await call_with_retries(op, timeout=1.0, attempts=2)
        assert calls == 2

    async def test_other_errors_not_retried(self) -> None:
        calls = 0

        async def op() -> None:
            nonlocal calls
            calls += 1
            raise KeyError("permanent")

        with pytest.raises(KeyError):
            await call_with_retries(op, timeout=1.0)
        assert calls == 1

    async def test_per_attempt_timeout(self) -> None:
        calls = 0

        async def op() -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(5)
            return "second try"

        assert await call_with_retries(op, timeout=0.1) == "second try"
        assert calls == 2

    async def test_retry_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        calls = 0

        async def op() -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise AuditSinkError("blip")

        with caplog.at_level(logging.WARNING, logger="command_engine"):
            await call_with_retries(op, timeout=1.0)
        assert any(record.levelno == logging.WARNING for record in caplog.records)


# ============================================================================
# AuditLog
# ============================================================================


class TestAuditLog:
    async def test_record(self) -> None:
        sink = InMemoryAuditSink()
        log = AuditLog(sink)
        assert await log.record(make_entry()) is True
        assert len(sink.entries("guild-1")) == 1

    async def test_flaky_sink_recovers(self) -> None:
        sink = FlakyAuditSink(fail_times=2)
        log = AuditLog(sink)
        assert await log.record(make_entry()) is True
        assert sink.attempts == 3
        assert log.failures == 0

    async def test_failure_never_raises(self, caplog: pytest.LogCaptureFixture) -> None:
        sink = FlakyAuditSink(fail_times=100)
        log = AuditLog(sink)

        with caplog.at_level(logging.ERROR, logger="command_engine"):
            assert await log.record(make_entry(status=ExecutionStatus.TIMEOUT)) is False

        assert log.failures == 1
        [record] = [r for r in caplog.records if r.getMessage() == "Audit write failed"]
        # The lost entry is preserved on the diagnostic channel
        assert record.audit["status"] == "timeout"  # type: ignore[attr-defined]

    async def test_slow_sink_times_out(self) -> None:
        class HangingSink(InMemoryAuditSink):
            async def append(self, entry: AuditEntry) -> None:
                await asyncio.sleep(10)

        log = AuditLog(HangingSink(), timeout=0.05)
        assert await log.record(make_entry()) is False

    async def test_without_sink_logs(self, caplog: pytest.LogCaptureFixture) -> None:
        log = AuditLog(None)
        with caplog.at_level(logging.INFO, logger="command_engine"):
            assert await log.record(make_entry()) is True
        [record] = [r for r in caplog.records if r.getMessage() == "Audit"]
        assert record.audit["command_id"] == "cmd"  # type: ignore[attr-defined]

    async def test_trim_cadence(self) -> None:
        sink = TrimCountingSink()
        log = AuditLog(sink, retention=3, trim_every=5)

        for _ in range(12):
            await log.record(make_entry())
        await log.record(make_entry(tenant_id="guild-2"))

        assert sink.trims == [("guild-1", 3), ("guild-1", 3)]
        # 10 appends were trimmed to 3 at the second trim, then 2 more arrived
        assert len(sink.entries("guild-1")) == 5
        assert len(sink.entries("guild-2")) == 1

    async def test_trim_failure_does_not_fail_record(self) -> None:
        class BrokenTrimSink(InMemoryAuditSink):
            async def trim(self, tenant_id: str, keep: int) -> int:
                raise AuditSinkError("trim unsupported")

        log = AuditLog(BrokenTrimSink(), trim_every=1)
        assert await log.record(make_entry()) is True

    def test_default_retention(self) -> None:
        assert constants.DEFAULT_AUDIT_RETENTION == 10_000
