"""Audit log writer and bounded-retry delivery for external sinks.

Audit writes are fire-and-forget from the coordinator's perspective but are
never dropped silently: a write that still fails after the bounded retries is
logged at ERROR with the full entry.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import TYPE_CHECKING, Any

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from command_engine import constants
from command_engine._logging import get_logger
from command_engine.exceptions import TransientError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from command_engine.interfaces import AuditSink
    from command_engine.models import AuditEntry

logger = get_logger(__name__)


async def call_with_retries(
    operation: Callable[[], Awaitable[Any]],
    *,
    timeout: float,
    attempts: int = constants.SINK_RETRY_ATTEMPTS,
) -> Any:
    """Await operation() with a per-attempt timeout, retrying transient failures.

    Only TransientError and TimeoutError are retried; anything else
    propagates on the first occurrence.

    Raises:
        The last exception once attempts are exhausted
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_random_exponential(
            min=constants.SINK_RETRY_MIN_SECONDS,
            max=constants.SINK_RETRY_MAX_SECONDS,
        ),
        retry=retry_if_exception_type((TransientError, TimeoutError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            async with asyncio.timeout(timeout):
                return await operation()
    # Unreachable: AsyncRetrying either returns or raises
    raise AssertionError("Unreachable: AsyncRetrying exhausted without exception")


class AuditLog:
    """Appends audit entries and periodically asks the sink to trim.

    Every `trim_every` appends for a tenant, a trim request keeps the newest
    `retention` entries for that tenant.
    """

    def __init__(
        self,
        sink: AuditSink | None,
        *,
        timeout: float = constants.DEFAULT_SINK_TIMEOUT_SECONDS,
        retention: int = constants.DEFAULT_AUDIT_RETENTION,
        trim_every: int = constants.AUDIT_TRIM_EVERY,
    ) -> None:
        self._sink = sink
        self._timeout = timeout
        self._retention = retention
        self._trim_every = trim_every
        self._appends: Counter[str] = Counter()
        self.failures = 0

    async def record(self, entry: AuditEntry) -> bool:
        """Append one entry. Never raises.

        Returns:
            True if the sink accepted the entry
        """
        if self._sink is None:
            logger.info("Audit", extra={"audit": entry.model_dump(mode="json")})
            return True

        sink = self._sink
        try:
            await call_with_retries(lambda: sink.append(entry), timeout=self._timeout)
        except Exception as e:
            self.failures += 1
            logger.error(
                "Audit write failed",
                extra={
                    "audit": entry.model_dump(mode="json"),
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return False

        self._appends[entry.tenant_id] += 1
        if self._appends[entry.tenant_id] % self._trim_every == 0:
            await self._trim(entry.tenant_id)
        return True

    async def _trim(self, tenant_id: str) -> None:
        sink = self._sink
        if sink is None:
            return
        try:
            removed = await call_with_retries(lambda: sink.trim(tenant_id, self._retention), timeout=self._timeout)
        except Exception as e:
            logger.error(
                "Audit trim failed",
                extra={"tenant_id": tenant_id, "error": str(e), "error_type": type(e).__name__},
            )
            return
        if removed:
            logger.debug("Audit trimmed", extra={"tenant_id": tenant_id, "removed": removed})
