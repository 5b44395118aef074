"""Per-(author, command) cooldown limiter.

State is a bounded in-memory map from (author_id, command_id) to the last
successful fire time. It is not persisted: a restart resets all cooldowns.
An evicted entry is equivalent to "never fired", so eviction never loses
correctness.

Concurrency: all mutations happen under a threading.Lock with no await
points, so the limiter is safe from multiple event loops or worker threads.
reserve() performs the allow check and marks the key in flight atomically;
a second message for the same key cannot pass until the first reservation
is committed or released.

Times are milliseconds on a caller-supplied monotonic clock.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from uuid import uuid4

from command_engine._logging import get_logger
from command_engine.constants import DEFAULT_COOLDOWN_GRACE_WINDOWS, DEFAULT_COOLDOWN_MAX_ENTRIES
from command_engine.models import CooldownDecision

logger = get_logger(__name__)

CooldownKey = tuple[str, str]


@dataclass
class _CooldownEntry:
    last_fire_ms: float | None = None
    cooldown_ms: int = 0
    pending: str | None = None  # reservation_id while a run is being admitted
    touched_ms: float = 0.0


@dataclass(frozen=True)
class CooldownReservation:
    """Admission ticket returned by reserve(); commit or release exactly once."""

    author_id: str
    command_id: str
    cooldown_ms: int
    issued_at_ms: float
    reservation_id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def key(self) -> CooldownKey:
        return (self.author_id, self.command_id)


class CooldownLimiter:
    """Synchronized cooldown bookkeeping with size-bounded eviction."""

    def __init__(
        self,
        max_entries: int = DEFAULT_COOLDOWN_MAX_ENTRIES,
        grace_windows: int = DEFAULT_COOLDOWN_GRACE_WINDOWS,
    ) -> None:
        self._max_entries = max_entries
        self._grace_windows = grace_windows
        self._entries: OrderedDict[CooldownKey, _CooldownEntry] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def allow(self, author_id: str, command_id: str, cooldown_ms: int, now_ms: float) -> CooldownDecision:
        """Read-only check: may this author fire this command now?"""
        with self._lock:
            return self._decide(self._entries.get((author_id, command_id)), cooldown_ms, now_ms)

    def commit(self, author_id: str, command_id: str, now_ms: float, cooldown_ms: int = 0) -> None:
        """Record a fire for (author, command) at now_ms."""
        with self._lock:
            entry = self._entries.get((author_id, command_id))
            if entry is None:
                entry = _CooldownEntry()
                self._insert((author_id, command_id), entry)
            entry.last_fire_ms = now_ms
            entry.cooldown_ms = cooldown_ms
            entry.pending = None
            entry.touched_ms = now_ms
            self._entries.move_to_end((author_id, command_id))

    def reserve(
        self,
        author_id: str,
        command_id: str,
        cooldown_ms: int,
        now_ms: float,
    ) -> tuple[CooldownDecision, CooldownReservation | None]:
        """Atomically check the cooldown and mark the key in flight.

        Returns:
            (decision, reservation). The reservation is None when denied.
        """
        key = (author_id, command_id)
        if cooldown_ms <= 0:
            # Unlimited command: nothing to track, concurrent runs are fine
            return CooldownDecision(allowed=True), CooldownReservation(
                author_id=author_id, command_id=command_id, cooldown_ms=0, issued_at_ms=now_ms
            )
        with self._lock:
            entry = self._entries.get(key)
            decision = self._decide(entry, cooldown_ms, now_ms)
            if not decision.allowed:
                return decision, None

            reservation = CooldownReservation(
                author_id=author_id,
                command_id=command_id,
                cooldown_ms=cooldown_ms,
                issued_at_ms=now_ms,
            )
            if entry is None:
                entry = _CooldownEntry()
                self._insert(key, entry)
            entry.pending = reservation.reservation_id
            entry.cooldown_ms = cooldown_ms
            entry.touched_ms = now_ms
            self._entries.move_to_end(key)
            return decision, reservation

    def commit_reservation(self, reservation: CooldownReservation) -> None:
        """Turn a reservation into a recorded fire at its issue time."""
        if reservation.cooldown_ms <= 0:
            return
        with self._lock:
            entry = self._entries.get(reservation.key)
            if entry is None:
                # Evicted while in flight; record the fire anyway
                entry = _CooldownEntry()
                self._insert(reservation.key, entry)
            elif entry.pending not in (None, reservation.reservation_id):
                logger.debug(
                    "Cooldown reservation superseded",
                    extra={"command_id": reservation.command_id, "reservation_id": reservation.reservation_id},
                )
                return
            entry.last_fire_ms = reservation.issued_at_ms
            entry.cooldown_ms = reservation.cooldown_ms
            entry.pending = None
            entry.touched_ms = reservation.issued_at_ms

    def release(self, reservation: CooldownReservation) -> None:
        """Drop a reservation without recording a fire (idempotent)."""
        with self._lock:
            entry = self._entries.get(reservation.key)
            if entry is None or entry.pending != reservation.reservation_id:
                return
            entry.pending = None
            if entry.last_fire_ms is None:
                del self._entries[reservation.key]

    def prune(self, now_ms: float) -> int:
        """Evict entries idle for longer than grace_windows cooldown windows.

        Returns:
            Number of evicted entries
        """
        with self._lock:
            stale = [
                key
                for key, entry in self._entries.items()
                if entry.pending is None and now_ms - entry.touched_ms >= entry.cooldown_ms * self._grace_windows
            ]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug("Cooldown entries evicted", extra={"evicted": len(stale), "remaining": len(self._entries)})
        return len(stale)

    def clear(self) -> None:
        """Forget every cooldown (equivalent to a restart)."""
        with self._lock:
            self._entries.clear()

    @staticmethod
    def _decide(entry: _CooldownEntry | None, cooldown_ms: int, now_ms: float) -> CooldownDecision:
        if entry is None or cooldown_ms <= 0:
            return CooldownDecision(allowed=True)
        if entry.pending is not None:
            return CooldownDecision(allowed=False, retry_after_ms=max(cooldown_ms, 1))
        if entry.last_fire_ms is None:
            return CooldownDecision(allowed=True)
        elapsed = now_ms - entry.last_fire_ms
        if elapsed < cooldown_ms:
            return CooldownDecision(allowed=False, retry_after_ms=int(cooldown_ms - elapsed))
        return CooldownDecision(allowed=True)

    def _insert(self, key: CooldownKey, entry: _CooldownEntry) -> None:
        """Insert under lock, evicting least recently touched idle entries past the bound."""
        self._entries[key] = entry
        while len(self._entries) > self._max_entries:
            victim = next((k for k, e in self._entries.items() if e.pending is None and k != key), None)
            if victim is None:
                break  # everything else is in flight
            del self._entries[victim]
