"""Execution coordinator: one inbound message in, at most one reply out.

Per message:
    Received -> Matched            (no match: nothing recorded)
    Matched -> RateChecked         (RATE_LIMITED)
    RateChecked -> Validated       (SECURITY_REJECTED)
    Validated -> Executed          (SUCCESS | SCRIPT_ERROR | TIMEOUT | RUNTIME_UNAVAILABLE)

Every terminal state after a match appends exactly one audit entry and
issues at most one reply. The pipeline up to and including the script run
is bounded by the per-message deadline; audit and reply delivery run after
it with their own timeouts and bounded retries.

Example:
    ```python
    from command_engine import ExecutionCoordinator, InMemoryCommandRegistry, InboundMessage

    async with ExecutionCoordinator(registry=registry, reply_sink=gateway) as engine:
        outcome = await engine.handle_message(
            InboundMessage(tenant_id="g1", author_id="u1", channel_id="c1", text="!ping")
        )
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Self

from command_engine import constants
from command_engine._logging import get_logger
from command_engine.audit import AuditLog, call_with_retries
from command_engine.config import EngineConfig
from command_engine.cooldown import CooldownLimiter
from command_engine.interfaces import PrefixProvider
from command_engine.matcher import match_command
from command_engine.models import (
    AuditEntry,
    ExecutionOutcome,
    ExecutionRequest,
    ExecutionResult,
    ExecutionStatus,
    Language,
)
from command_engine.runtimes.pool import RuntimePool
from command_engine.settings import Settings
from command_engine.subprocess_utils import log_task_exception
from command_engine.validator import CodeValidator

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from command_engine.cooldown import CooldownReservation
    from command_engine.interfaces import AuditSink, CommandRegistry, ReplySink
    from command_engine.models import Command, InboundMessage

logger = get_logger(__name__)

LANGUAGE_DISPLAY_NAMES: dict[Language, str] = {
    Language.JAVASCRIPT: "JavaScript",
    Language.PYTHON: "Python",
    Language.GO: "Go",
}


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class _PipelineState:
    """What the pipeline reached before finishing or hitting the deadline."""

    command: Command | None = None
    reservation: CooldownReservation | None = None
    retry_after_ms: int = 0


class ExecutionCoordinator:
    """Matches, rate-limits, validates and runs custom commands.

    Collaborators not passed in are built from config (and Settings for the
    runtime pool). Safe to call handle_message concurrently; the cooldown
    limiter is the only shared mutable state and is synchronized.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        registry: CommandRegistry,
        reply_sink: ReplySink | None = None,
        audit_sink: AuditSink | None = None,
        runtimes: RuntimePool | None = None,
        validator: CodeValidator | None = None,
        cooldowns: CooldownLimiter | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        """
        Args:
            config: Engine limits (defaults to EngineConfig())
            registry: Tenant command store
            reply_sink: Chat reply channel (None = replies are only returned)
            audit_sink: Audit store (None = entries go to the log)
            runtimes: Runtime pool (defaults to the JavaScript/Python/Go pool)
            validator: Code validator (defaults to the bundled denylist)
            cooldowns: Cooldown limiter
            settings: Host settings used to build the default runtime pool
            clock: Monotonic clock in milliseconds, used for cooldowns
        """
        self.config = config or EngineConfig()
        self.registry = registry
        self.reply_sink = reply_sink
        self.runtimes = runtimes or RuntimePool.from_settings(settings or Settings(), self.config)
        self.validator = validator or CodeValidator(max_code_bytes=self.config.max_code_bytes)
        self.cooldowns = cooldowns or CooldownLimiter(
            max_entries=self.config.cooldown_max_entries,
            grace_windows=self.config.cooldown_grace_windows,
        )
        self.audit = AuditLog(
            audit_sink,
            timeout=self.config.audit_timeout_seconds,
            retention=self.config.audit_retention_per_tenant,
        )
        self._clock = clock
        self._enabled = True
        self._tasks: set[asyncio.Task[ExecutionOutcome | None]] = set()
        self._sweeper: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background cooldown sweeper. Idempotent."""
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_cooldowns_loop(), name="cooldown-sweeper")
            self._sweeper.add_done_callback(log_task_exception)

    async def stop(self) -> None:
        """Stop the sweeper and wait for dispatched messages to finish.

        Safe to call multiple times.
        """
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        if self._tasks:
            logger.info("Waiting for in-flight messages", extra={"count": len(self._tasks)})
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self, _exc_type: type[BaseException] | None, _exc_val: BaseException | None, _exc_tb: object
    ) -> None:
        await self.stop()

    async def _sweep_cooldowns_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cooldown_sweep_interval_seconds)
            self.cooldowns.prune(self._clock())

    # ------------------------------------------------------------------
    # Kill switch
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True
        logger.info("Command execution enabled")

    def disable(self) -> None:
        """Ignore every message until enable() is called.

        Executions already running are not interrupted.
        """
        self._enabled = False
        logger.warning("Command execution disabled")

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    def dispatch(self, message: InboundMessage) -> asyncio.Task[ExecutionOutcome | None]:
        """Handle a message in the background (gateway event handlers)."""
        task = asyncio.create_task(self.handle_message(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(log_task_exception)
        return task

    async def handle_message(self, message: InboundMessage) -> ExecutionOutcome | None:
        """Run the full pipeline for one message.

        Returns:
            The outcome, or None when no command matched (or the message was
            ignored). Never raises for pipeline failures: an unexpected error
            after matching is logged and audited as RUNTIME_UNAVAILABLE.
        """
        if not self._enabled:
            logger.debug("Engine disabled, message ignored", extra={"tenant_id": message.tenant_id})
            return None
        if message.author_is_bot:
            return None

        started = time.monotonic()
        state = _PipelineState()
        deadline = self.config.message_deadline()
        try:
            async with asyncio.timeout(deadline):
                result = await self._run_pipeline(message, state)
        except TimeoutError:
            if state.command is None:
                logger.warning(
                    "Message deadline exceeded before matching",
                    extra={"tenant_id": message.tenant_id, "deadline": deadline},
                )
                return None
            result = ExecutionResult(
                status=ExecutionStatus.TIMEOUT,
                error_summary=f"Message deadline of {deadline:g}s exceeded",
                duration_ms=int((time.monotonic() - started) * 1000),
            )
        except Exception as e:
            logger.exception(
                "Command pipeline failed",
                extra={
                    "tenant_id": message.tenant_id,
                    "command_id": state.command.id if state.command else None,
                    "error_type": type(e).__name__,
                },
            )
            if state.command is None:
                return None
            result = ExecutionResult(
                status=ExecutionStatus.RUNTIME_UNAVAILABLE,
                error_summary=f"Internal error: {type(e).__name__}",
                duration_ms=int((time.monotonic() - started) * 1000),
            )
        finally:
            # No-op once committed; frees the cooldown slot on every other path
            if state.reservation is not None:
                self.cooldowns.release(state.reservation)

        if state.command is None or result is None:
            return None
        return await self._finish(message, state.command, result, retry_after_ms=state.retry_after_ms)

    async def _run_pipeline(self, message: InboundMessage, state: _PipelineState) -> ExecutionResult | None:
        commands, tenant_prefix = await self._read_registry(message.tenant_id)

        command = match_command(
            message.text,
            message.author_roles,
            message.channel_id,
            commands,
            tenant_prefix=tenant_prefix,
            default_prefix=self.config.default_prefix,
            case_insensitive=self.config.case_insensitive,
        )
        if command is None:
            return None
        state.command = command
        log_extra = {"tenant_id": message.tenant_id, "command_id": command.id, "author_id": message.author_id}

        # Matched -> RateChecked
        decision, reservation = self.cooldowns.reserve(
            message.author_id, command.id, command.cooldown_ms, self._clock()
        )
        if not decision.allowed:
            state.retry_after_ms = decision.retry_after_ms
            logger.debug("Rate limited", extra={**log_extra, "retry_after_ms": decision.retry_after_ms})
            return ExecutionResult(
                status=ExecutionStatus.RATE_LIMITED,
                error_summary=f"Cooldown active for {decision.retry_after_ms}ms",
            )
        state.reservation = reservation

        # RateChecked -> Validated
        validation = self.validator.validate(command.language, command.code)
        if not validation.ok:
            logger.warning("Code rejected", extra={**log_extra, "category": validation.category})
            return ExecutionResult(
                status=ExecutionStatus.SECURITY_REJECTED,
                error_summary=f"Rejected by validator: {validation.category}",
            )

        language = Language.parse(command.language)
        if language is None or language not in self.runtimes.languages:
            logger.error("Unsupported language", extra={**log_extra, "language": command.language})
            return ExecutionResult(
                status=ExecutionStatus.RUNTIME_UNAVAILABLE,
                error_summary=f"Unsupported language: {command.language}",
            )

        # Validated -> Executed: the attempt counts against the cooldown from here on
        if reservation is not None:
            self.cooldowns.commit_reservation(reservation)

        request = ExecutionRequest(
            command=command,
            author_id=message.author_id,
            author_roles=message.author_roles,
            channel_id=message.channel_id,
            message_text=message.text,
            message_id=message.message_id,
        )
        return await self.runtimes.execute(
            language,
            command.code,
            request.bindings(),
            self.config.timeout_for(language),
        )

    async def _read_registry(self, tenant_id: str) -> tuple[Sequence[Command], str | None]:
        """Commands and tenant prefix; an unreachable registry reads as empty."""
        try:
            async with asyncio.timeout(self.config.registry_timeout_seconds):
                commands = await self.registry.get_commands(tenant_id)
                prefix = None
                if isinstance(self.registry, PrefixProvider):
                    prefix = await self.registry.get_prefix(tenant_id)
        except Exception as e:
            logger.warning(
                "Command registry unavailable, treating as no match",
                extra={"tenant_id": tenant_id, "error": str(e), "error_type": type(e).__name__},
            )
            return (), None
        return commands, prefix

    async def _finish(
        self,
        message: InboundMessage,
        command: Command,
        result: ExecutionResult,
        *,
        retry_after_ms: int = 0,
    ) -> ExecutionOutcome:
        """Audit and reply for a terminal state."""
        self._log_result(message, command, result)
        reply = self.format_reply(command, result, retry_after_ms=retry_after_ms)
        entry = AuditEntry(
            tenant_id=message.tenant_id,
            command_id=command.id,
            author_id=message.author_id,
            status=result.status,
            error_summary=result.error_summary,
            duration_ms=result.duration_ms,
            timestamp=result.timestamp,
        )

        async def deliver() -> bool:
            return await self._send_reply(message.channel_id, reply) if reply else False

        audited, delivered = await asyncio.gather(self.audit.record(entry), deliver())
        return ExecutionOutcome(
            command_id=command.id,
            result=result,
            reply=reply,
            delivered=delivered,
            audited=audited,
        )

    async def _send_reply(self, channel_id: str, text: str) -> bool:
        sink = self.reply_sink
        if sink is None:
            return False
        try:
            await call_with_retries(
                lambda: sink.send_reply(channel_id, text),
                timeout=self.config.reply_timeout_seconds,
            )
        except Exception as e:
            logger.error(
                "Reply delivery failed",
                extra={"channel_id": channel_id, "error": str(e), "error_type": type(e).__name__},
            )
            return False
        return True

    @staticmethod
    def _log_result(message: InboundMessage, command: Command, result: ExecutionResult) -> None:
        extra = {
            "tenant_id": message.tenant_id,
            "command_id": command.id,
            "author_id": message.author_id,
            "status": result.status.value,
            "duration_ms": result.duration_ms,
        }
        match result.status:
            case ExecutionStatus.RUNTIME_UNAVAILABLE:
                logger.error("Runtime unavailable", extra={**extra, "error": result.error_summary})
            case ExecutionStatus.TIMEOUT:
                logger.warning("Command timed out", extra=extra)
            case ExecutionStatus.RATE_LIMITED:
                logger.debug("Command rate limited", extra=extra)
            case _:
                logger.info("Command executed", extra=extra)

    # ------------------------------------------------------------------
    # Replies
    # ------------------------------------------------------------------

    def format_reply(self, command: Command, result: ExecutionResult, *, retry_after_ms: int = 0) -> str | None:
        """User-visible reply for a result, or None when there is nothing to say.

        Never includes denylist details, host paths or stack traces.
        """
        match result.status:
            case ExecutionStatus.SUCCESS:
                text = result.output.strip()
                if not text:
                    return None
                return self._bound_reply(text, truncated=result.truncated)
            case ExecutionStatus.SCRIPT_ERROR:
                excerpt = (result.error_summary or "the script raised an error").strip()
                return self._bound_reply(constants.REPLY_SCRIPT_ERROR.format(excerpt=excerpt))
            case ExecutionStatus.SECURITY_REJECTED:
                return constants.REPLY_SECURITY_REJECTED
            case ExecutionStatus.TIMEOUT:
                return constants.REPLY_TIMEOUT
            case ExecutionStatus.RATE_LIMITED:
                return constants.REPLY_RATE_LIMITED.format(seconds=max(retry_after_ms, 100) / 1000)
            case ExecutionStatus.RUNTIME_UNAVAILABLE:
                language = Language.parse(command.language)
                label = LANGUAGE_DISPLAY_NAMES.get(language, command.language) if language else command.language
                return constants.REPLY_RUNTIME_UNAVAILABLE.format(language=label)

    def _bound_reply(self, text: str, *, truncated: bool = False) -> str:
        limit = self.config.max_reply_chars
        notice = constants.TRUNCATION_NOTICE
        if not truncated and len(text) <= limit:
            return text
        return text[: max(limit - len(notice), 0)] + notice
