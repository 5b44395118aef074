"""command-engine: run tenant-authored chat commands as untrusted scripts.

Matches inbound chat messages against each tenant's registered commands,
applies per-(user, command) cooldowns, rejects denylisted code, and runs the
script in a bounded interpreter subprocess (JavaScript, Python or Go).

Quick Start:
    ```python
    from command_engine import Command, ExecutionCoordinator, InboundMessage, InMemoryCommandRegistry

    registry = InMemoryCommandRegistry([
        Command(id="1", tenant_id="g1", trigger="ping", language="python", code="reply('pong')"),
    ])
    async with ExecutionCoordinator(registry=registry, reply_sink=gateway) as engine:
        outcome = await engine.handle_message(
            InboundMessage(tenant_id="g1", author_id="u1", channel_id="c1", text="!ping")
        )
        print(outcome.reply)  # "pong"
    ```

With Configuration:
    ```python
    from command_engine import EngineConfig, Language

    config = EngineConfig(
        execution_timeout_seconds=2.0,
        language_timeouts={Language.GO: 10.0},  # go run includes compile time
    )
    ```

Isolation layers:
    1. Static denylist per language (defense in depth only)
    2. Restricted runner: bound capabilities only (reply, message, author, ...)
    3. Separate interpreter process per run: scrubbed env, rlimits, own session
    4. Hard wall-clock timeout with process-tree kill
    5. Optional OS-level wrapper (COMMAND_ENGINE_SANDBOX_WRAPPER, e.g. nsjail)

Requirements:
    - Python 3.12+
    - node / go on PATH for JavaScript / Go commands
"""

from command_engine.audit import AuditLog
from command_engine.config import EngineConfig
from command_engine.cooldown import CooldownLimiter, CooldownReservation
from command_engine.coordinator import ExecutionCoordinator
from command_engine.exceptions import (
    AuditSinkError,
    EngineError,
    PermanentError,
    RegistryUnavailableError,
    ReplySinkError,
    RuntimeUnavailableError,
    TransientError,
    UnsupportedLanguageError,
)
from command_engine.interfaces import AuditSink, CommandRegistry, PrefixProvider, ReplySink
from command_engine.matcher import match_command
from command_engine.models import (
    AuditEntry,
    Command,
    CooldownDecision,
    ExecutionOutcome,
    ExecutionRequest,
    ExecutionResult,
    ExecutionStatus,
    InboundMessage,
    Language,
    MatchMode,
    ValidationResult,
)
from command_engine.runtimes import RuntimePool, SandboxRuntime
from command_engine.settings import Settings
from command_engine.stores import (
    CachedCommandRegistry,
    InMemoryAuditSink,
    InMemoryCommandRegistry,
    JsonFileCommandRegistry,
)
from command_engine.validator import CodeValidator

__all__ = [
    "AuditEntry",
    "AuditLog",
    "AuditSink",
    "AuditSinkError",
    "CachedCommandRegistry",
    "CodeValidator",
    "Command",
    "CommandRegistry",
    "CooldownDecision",
    "CooldownLimiter",
    "CooldownReservation",
    "EngineConfig",
    "EngineError",
    "ExecutionCoordinator",
    "ExecutionOutcome",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionStatus",
    "InMemoryAuditSink",
    "InMemoryCommandRegistry",
    "InboundMessage",
    "JsonFileCommandRegistry",
    "Language",
    "MatchMode",
    "PermanentError",
    "PrefixProvider",
    "RegistryUnavailableError",
    "ReplySink",
    "ReplySinkError",
    "RuntimePool",
    "RuntimeUnavailableError",
    "SandboxRuntime",
    "Settings",
    "TransientError",
    "UnsupportedLanguageError",
    "ValidationResult",
    "match_command",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("command-engine")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
