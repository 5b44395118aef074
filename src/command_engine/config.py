"""Engine configuration for command-engine.

EngineConfig carries every limit the execution pipeline enforces: timeouts,
size ceilings, cooldown bookkeeping bounds, audit retention.

Example:
    ```python
    from command_engine import EngineConfig, ExecutionCoordinator

    config = EngineConfig(
        execution_timeout_seconds=2.0,
        max_code_bytes=4000,
    )
    async with ExecutionCoordinator(config, registry=registry, reply_sink=sink) as engine:
        await engine.handle_message(message)
    ```
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from command_engine import constants
from command_engine.models import Language


class EngineConfig(BaseModel):
    """Configuration for ExecutionCoordinator.

    All fields have defaults suitable for a single bot process. Production
    deployments mostly tune execution_timeout_seconds and
    max_concurrent_executions based on host capacity.

    Attributes:
        execution_timeout_seconds: Hard wall-clock limit per script run.
        language_timeouts: Per-language overrides (Go includes compile time).
        message_deadline_seconds: Overall deadline for one message (registry
            read + validation + run). None derives it from the run timeout.
        max_code_bytes: Validator's code size bound, independent of the
            registry's own limit.
        max_output_bytes: Captured stdout ceiling.
        case_insensitive: Case-fold message text and triggers before matching.
        default_prefix: Prefix used when neither command nor tenant sets one.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    # Execution
    execution_timeout_seconds: float = Field(
        default=constants.DEFAULT_TIMEOUT_SECONDS,
        ge=constants.MIN_TIMEOUT_SECONDS,
        le=constants.MAX_TIMEOUT_SECONDS,
        description="Hard wall-clock timeout per script run",
    )
    language_timeouts: dict[Language, float] = Field(
        default_factory=dict,
        description="Per-language timeout overrides in seconds",
    )
    message_deadline_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Overall per-message deadline (None = timeout + margin)",
    )
    max_concurrent_executions: int = Field(
        default=constants.DEFAULT_MAX_CONCURRENT_EXECUTIONS,
        ge=1,
        le=256,
        description="Maximum interpreter processes alive at once",
    )
    memory_limit_mb: int = Field(
        default=constants.DEFAULT_MEMORY_LIMIT_MB,
        ge=32,
        le=4096,
        description="Address-space limit for interpreters that tolerate it",
    )

    # Limits
    max_code_bytes: int = Field(
        default=constants.DEFAULT_MAX_CODE_BYTES,
        ge=1,
        le=constants.MAX_CODE_BYTES_CEILING,
        description="Maximum code size in UTF-8 bytes",
    )
    max_output_bytes: int = Field(
        default=constants.DEFAULT_MAX_OUTPUT_BYTES,
        ge=256,
        le=1_000_000,
        description="Captured stdout ceiling in bytes",
    )
    max_error_excerpt_chars: int = Field(
        default=constants.DEFAULT_ERROR_EXCERPT_CHARS,
        ge=16,
        le=4000,
        description="Maximum characters of a script error surfaced to users",
    )
    max_reply_chars: int = Field(
        default=constants.DEFAULT_MAX_REPLY_CHARS,
        ge=16,
        le=100_000,
        description="Maximum reply length",
    )

    # Matching
    case_insensitive: bool = Field(default=True, description="Case-fold text and triggers before matching")
    default_prefix: str = Field(default=constants.DEFAULT_PREFIX, min_length=1, max_length=16)

    # External collaborators
    registry_timeout_seconds: float = Field(default=constants.DEFAULT_REGISTRY_TIMEOUT_SECONDS, gt=0, le=60)
    audit_timeout_seconds: float = Field(default=constants.DEFAULT_SINK_TIMEOUT_SECONDS, gt=0, le=60)
    reply_timeout_seconds: float = Field(default=constants.DEFAULT_SINK_TIMEOUT_SECONDS, gt=0, le=60)

    # Cooldowns
    cooldown_max_entries: int = Field(default=constants.DEFAULT_COOLDOWN_MAX_ENTRIES, ge=1)
    cooldown_grace_windows: int = Field(default=constants.DEFAULT_COOLDOWN_GRACE_WINDOWS, ge=1, le=100)
    cooldown_sweep_interval_seconds: float = Field(
        default=constants.DEFAULT_COOLDOWN_SWEEP_INTERVAL_SECONDS,
        gt=0,
        description="Background sweep interval for idle cooldown entries",
    )

    # Audit
    audit_retention_per_tenant: int = Field(default=constants.DEFAULT_AUDIT_RETENTION, ge=1)

    @field_validator("language_timeouts")
    @classmethod
    def validate_language_timeouts(cls, v: dict[Language, float]) -> dict[Language, float]:
        for language, timeout in v.items():
            if not constants.MIN_TIMEOUT_SECONDS <= timeout <= constants.MAX_TIMEOUT_SECONDS:
                raise ValueError(
                    f"Timeout for {language.value} must be between "
                    f"{constants.MIN_TIMEOUT_SECONDS} and {constants.MAX_TIMEOUT_SECONDS} seconds"
                )
        return v

    def timeout_for(self, language: Language) -> float:
        """Script timeout for a language, honoring overrides."""
        return self.language_timeouts.get(language, self.execution_timeout_seconds)

    def message_deadline(self, language: Language | None = None) -> float:
        """Overall deadline for one message."""
        if self.message_deadline_seconds is not None:
            return self.message_deadline_seconds
        timeout = self.timeout_for(language) if language is not None else self.max_timeout()
        return timeout + constants.MESSAGE_DEADLINE_MARGIN_SECONDS

    def max_timeout(self) -> float:
        """Largest script timeout across all languages."""
        return max([self.execution_timeout_seconds, *self.language_timeouts.values()])
