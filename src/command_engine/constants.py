"""Constants for command-engine configuration and limits."""

from typing import Final

# ============================================================================
# Execution Timeouts
# ============================================================================

DEFAULT_TIMEOUT_SECONDS: Final[float] = 3.0
"""Default wall-clock timeout for one script run."""

MIN_TIMEOUT_SECONDS: Final[float] = 0.1
"""Minimum configurable script timeout."""

MAX_TIMEOUT_SECONDS: Final[float] = 30.0
"""Maximum configurable script timeout."""

MESSAGE_DEADLINE_MARGIN_SECONDS: Final[float] = 2.0
"""Added to the script timeout to form the per-message deadline.
Covers registry read, validation, scratch file setup and process reaping."""

KILL_REAP_TIMEOUT_SECONDS: Final[float] = 2.0
"""How long to wait for a killed process tree to be reaped."""

DEFAULT_REGISTRY_TIMEOUT_SECONDS: Final[float] = 2.0
"""Timeout for one command registry read."""

DEFAULT_SINK_TIMEOUT_SECONDS: Final[float] = 2.0
"""Timeout for one audit or reply sink call."""

SINK_RETRY_ATTEMPTS: Final[int] = 3
"""Bounded retry attempts for transient audit/reply sink failures."""

SINK_RETRY_MIN_SECONDS: Final[float] = 0.05
"""Minimum backoff between sink retries."""

SINK_RETRY_MAX_SECONDS: Final[float] = 0.5
"""Maximum backoff between sink retries."""

# ============================================================================
# Code and Output Limits
# ============================================================================

DEFAULT_MAX_CODE_BYTES: Final[int] = 5000
"""Maximum UTF-8 size of command code accepted by the validator."""

MAX_CODE_BYTES_CEILING: Final[int] = 100_000
"""Upper bound for the configurable code size."""

DEFAULT_MAX_OUTPUT_BYTES: Final[int] = 10_000
"""Maximum captured stdout per run."""

MAX_STDERR_BYTES: Final[int] = 16_000
"""Maximum captured stderr per run (only an excerpt is ever surfaced)."""

DEFAULT_ERROR_EXCERPT_CHARS: Final[int] = 300
"""Maximum characters of a script error shown to users and stored in audit."""

DEFAULT_MAX_REPLY_CHARS: Final[int] = 2000
"""Maximum reply length (chat platform message limit)."""

READ_CHUNK_BYTES: Final[int] = 4096
"""Chunk size for incremental output capture."""

TRUNCATION_NOTICE: Final[str] = "\n... (output truncated)"
"""Appended to user-visible output that hit the ceiling."""

SCRIPT_PATH_PLACEHOLDER: Final[str] = "<script>"
"""Replaces scratch paths in error excerpts."""

# ============================================================================
# Process Limits
# ============================================================================

DEFAULT_MEMORY_LIMIT_MB: Final[int] = 256
"""Address-space limit for interpreters that tolerate RLIMIT_AS."""

CPU_LIMIT_SLACK_SECONDS: Final[int] = 1
"""RLIMIT_CPU = ceil(timeout) + slack; wall-clock kill remains authoritative."""

DEFAULT_MAX_CONCURRENT_EXECUTIONS: Final[int] = 8
"""Maximum interpreter processes alive at once."""

SCRATCH_DIR_PREFIX: Final[str] = "cmdexec-"
"""Prefix for per-invocation scratch directories."""

SANDBOX_PATH: Final[str] = "/usr/local/bin:/usr/bin:/bin"
"""PATH given to interpreter processes (environment is otherwise scrubbed)."""

# ============================================================================
# Matching and Cooldowns
# ============================================================================

DEFAULT_PREFIX: Final[str] = "!"
"""Prefix used when neither the command nor the tenant sets one."""

MAX_COOLDOWN_MS: Final[int] = 60_000
"""Upper bound for Command.cooldown_ms."""

DEFAULT_COOLDOWN_MAX_ENTRIES: Final[int] = 100_000
"""Bound on tracked (author, command) pairs; oldest entries are evicted first."""

DEFAULT_COOLDOWN_GRACE_WINDOWS: Final[int] = 3
"""Entries idle for this many cooldown windows are evicted by the sweeper."""

DEFAULT_COOLDOWN_SWEEP_INTERVAL_SECONDS: Final[float] = 60.0
"""Background cooldown sweep interval."""

# ============================================================================
# Audit
# ============================================================================

DEFAULT_AUDIT_RETENTION: Final[int] = 10_000
"""Audit entries kept per tenant."""

AUDIT_TRIM_EVERY: Final[int] = 100
"""Issue a retention trim request every N appends per tenant."""

# ============================================================================
# User-facing replies
# ============================================================================

REPLY_RATE_LIMITED: Final[str] = "This command is on cooldown. Try again in {seconds:.1f}s."
REPLY_SECURITY_REJECTED: Final[str] = "This command was blocked by the safety checks and did not run."
REPLY_TIMEOUT: Final[str] = "This command took too long to run and was stopped."
REPLY_RUNTIME_UNAVAILABLE: Final[str] = "{language} commands are temporarily unavailable."
REPLY_SCRIPT_ERROR: Final[str] = "This command failed: {excerpt}"
