"""Data models for command-engine."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Language(str, Enum):
    """Supported scripting languages."""

    JAVASCRIPT = "javascript"
    PYTHON = "python"
    GO = "go"

    @classmethod
    def parse(cls, value: str) -> Language | None:
        """Resolve a stored language label, including legacy aliases.

        Returns None for anything that is not a supported language so the
        caller can report the runtime as unavailable.
        """
        return _LANGUAGE_ALIASES.get(value.strip().lower())


_LANGUAGE_ALIASES: dict[str, Language] = {
    "javascript": Language.JAVASCRIPT,
    "js": Language.JAVASCRIPT,
    "node": Language.JAVASCRIPT,
    "python": Language.PYTHON,
    "py": Language.PYTHON,
    "python3": Language.PYTHON,
    "go": Language.GO,
    "golang": Language.GO,
}


class MatchMode(str, Enum):
    """How a command trigger is compared against message text."""

    PREFIX_COMMAND = "prefix"
    EXACT_MATCH = "exact"
    STARTS_WITH = "starts_with"

    @classmethod
    def _missing_(cls, value: object) -> MatchMode | None:
        # Labels stored by the dashboard's command builder
        if isinstance(value, str):
            return _MATCH_MODE_LABELS.get(value.strip().lower())
        return None


_MATCH_MODE_LABELS: dict[str, MatchMode] = {
    "command (prefix)": MatchMode.PREFIX_COMMAND,
    "prefixcommand": MatchMode.PREFIX_COMMAND,
    "exact match": MatchMode.EXACT_MATCH,
    "exactmatch": MatchMode.EXACT_MATCH,
    "starts with": MatchMode.STARTS_WITH,
    "startswith": MatchMode.STARTS_WITH,
}


class Command(BaseModel):
    """A tenant-owned trigger definition, read-only from the engine's side."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Opaque unique identifier")
    tenant_id: str = Field(min_length=1, description="Owning guild identifier")
    trigger: str = Field(min_length=1, description="Text matched against incoming messages")
    match_mode: MatchMode = Field(default=MatchMode.PREFIX_COMMAND)
    prefix: str | None = Field(default=None, description="Prefix for PREFIX_COMMAND (tenant prefix if None)")
    language: str = Field(description="Runtime identifier, kept verbatim so unknown values can be reported")
    code: str = Field(description="Script source")
    cooldown_ms: int = Field(default=0, ge=0, le=60_000, description="Per-(user, command) cooldown")
    role_restriction: frozenset[str] = Field(default_factory=frozenset)
    channel_restriction: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("trigger")
    @classmethod
    def validate_trigger(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Trigger cannot be blank")
        return v


class InboundMessage(BaseModel):
    """One chat message as delivered by the gateway."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    author_id: str
    author_roles: frozenset[str] = Field(default_factory=frozenset)
    channel_id: str
    text: str
    author_is_bot: bool = False
    message_id: str | None = None


class ExecutionRequest(BaseModel):
    """A matched-and-permitted trigger, owned by the coordinator for one run."""

    model_config = ConfigDict(frozen=True)

    command: Command
    author_id: str
    author_roles: frozenset[str] = Field(default_factory=frozenset)
    channel_id: str
    message_text: str
    message_id: str | None = None
    issued_at: datetime = Field(default_factory=_utcnow)

    def bindings(self) -> dict[str, object]:
        """Read-only metadata exposed to the script."""
        return {
            "message": {"id": self.message_id, "content": self.message_text},
            "author": {"id": self.author_id, "roles": sorted(self.author_roles)},
            "channel": {"id": self.channel_id},
            "guild": {"id": self.command.tenant_id},
            "command": {"id": self.command.id, "trigger": self.command.trigger},
        }


class ExecutionStatus(str, Enum):
    """Terminal state of one execution attempt."""

    SUCCESS = "success"
    SCRIPT_ERROR = "script_error"
    SECURITY_REJECTED = "security_rejected"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    RUNTIME_UNAVAILABLE = "runtime_unavailable"


class ExecutionResult(BaseModel):
    """Outcome of a single execution attempt."""

    status: ExecutionStatus
    output: str = Field(default="", description="Captured stdout (truncated at the output ceiling)")
    truncated: bool = Field(default=False, description="Output exceeded the ceiling")
    error_summary: str | None = Field(default=None, description="Bounded, operator-facing failure detail")
    exit_code: int | None = Field(default=None, description="Interpreter exit code, if it ran")
    duration_ms: int = Field(default=0, ge=0)
    timestamp: datetime = Field(default_factory=_utcnow)


class AuditEntry(BaseModel):
    """Append-only record of one execution attempt."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    tenant_id: str
    command_id: str
    author_id: str
    status: ExecutionStatus
    error_summary: str | None = None
    duration_ms: int = 0
    timestamp: datetime = Field(default_factory=_utcnow)


class ValidationResult(BaseModel):
    """Outcome of static code validation."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    reason: str | None = None
    category: str | None = Field(default=None, description="Denylist category (operator-facing only)")


class CooldownDecision(BaseModel):
    """Rate limiter answer for one (author, command) pair."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    retry_after_ms: int = 0


class ExecutionOutcome(BaseModel):
    """What the coordinator did with one inbound message."""

    command_id: str
    result: ExecutionResult
    reply: str | None = Field(default=None, description="User-visible reply text, if the result carries any")
    delivered: bool = Field(default=False, description="Reply sink accepted the reply")
    audited: bool = Field(default=False, description="Audit sink accepted the entry")
