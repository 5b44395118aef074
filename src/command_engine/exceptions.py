"""Exception hierarchy for command-engine.

All exceptions inherit from EngineError. None of them escape the
ExecutionCoordinator: every failure on the message path becomes a structured
ExecutionResult or a log record.

Hierarchy:
    EngineError (base)
    ├── TransientError (retryable marker base)
    │   ├── RegistryUnavailableError  ← command store unreachable
    │   ├── AuditSinkError            ← audit store write failed
    │   └── ReplySinkError            ← chat reply could not be sent
    └── PermanentError (non-retryable marker base)
        ├── RuntimeUnavailableError   ← interpreter missing / spawn failed
        └── UnsupportedLanguageError  ← no runtime registered for language
"""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base exception for all engine errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class TransientError(EngineError):
    """Base for errors that may succeed on retry (store hiccups, network blips)."""


class PermanentError(EngineError):
    """Base for errors that will not succeed on retry."""


class RegistryUnavailableError(TransientError):
    """Command registry could not be read.

    The coordinator treats this as "no command matched" for the message.
    """


class AuditSinkError(TransientError):
    """Audit store rejected or failed a write or trim request."""


class ReplySinkError(TransientError):
    """Reply could not be delivered to the chat channel."""


class RuntimeUnavailableError(PermanentError):
    """Interpreter binary could not be invoked.

    Raised when the binary is missing, not executable, or the process could
    not be spawned. Never fatal to the engine: runtimes convert it into a
    RUNTIME_UNAVAILABLE result.

    Attributes:
        binary: Interpreter the runtime tried to start
    """

    def __init__(self, message: str, binary: str, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx.setdefault("binary", binary)
        super().__init__(message, ctx)
        self.binary = binary


class UnsupportedLanguageError(PermanentError):
    """No runtime is registered for the requested language."""
