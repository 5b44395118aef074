"""Shared pytest fixtures and test doubles for command-engine tests."""

import asyncio
import logging
import shutil
import sys
from collections.abc import AsyncGenerator, Callable, Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest

from command_engine._logging import LIBRARY_LOGGER_NAME
from command_engine.config import EngineConfig
from command_engine.coordinator import ExecutionCoordinator
from command_engine.exceptions import AuditSinkError, RegistryUnavailableError, ReplySinkError
from command_engine.models import AuditEntry, Command, ExecutionResult, ExecutionStatus, InboundMessage, Language
from command_engine.platform_utils import HostOS, detect_host_os
from command_engine.runtimes.base import SandboxRuntime
from command_engine.runtimes.pool import RuntimePool
from command_engine.runtimes.python import PythonRuntime
from command_engine.settings import Settings
from command_engine.stores import InMemoryAuditSink, InMemoryCommandRegistry

# ============================================================================
# Shared Skip Markers
# ============================================================================

skip_unless_node = pytest.mark.skipif(
    shutil.which("node") is None,
    reason="Requires node on PATH",
)

skip_unless_go = pytest.mark.skipif(
    shutil.which("go") is None,
    reason="Requires go on PATH",
)

# Process groups, rlimits and killpg
skip_unless_posix = pytest.mark.skipif(
    detect_host_os() == HostOS.UNKNOWN,
    reason="This test requires Linux or macOS",
)

# ============================================================================
# Test Doubles
# ============================================================================


class FakeClock:
    """Controllable millisecond clock for cooldown tests."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self.now_ms = start_ms

    def __call__(self) -> float:
        return self.now_ms

    def set(self, now_ms: float) -> None:
        self.now_ms = now_ms

    def advance(self, ms: float) -> None:
        self.now_ms += ms


class RecordingReplySink:
    """Reply sink that records replies and can fail the first N sends."""

    def __init__(self, fail_times: int = 0, error: Exception | None = None) -> None:
        self.replies: list[tuple[str, str]] = []
        self.attempts = 0
        self._fail_times = fail_times
        self._error = error or ReplySinkError("gateway unavailable")

    async def send_reply(self, channel_id: str, text: str) -> None:
        self.attempts += 1
        if self.attempts <= self._fail_times:
            raise self._error
        self.replies.append((channel_id, text))


class FlakyAuditSink(InMemoryAuditSink):
    """In-memory audit sink whose first N appends fail."""

    def __init__(self, fail_times: int = 0, error: Exception | None = None) -> None:
        super().__init__()
        self.attempts = 0
        self._fail_times = fail_times
        self._error = error or AuditSinkError("audit store unavailable")

    async def append(self, entry: AuditEntry) -> None:
        self.attempts += 1
        if self.attempts <= self._fail_times:
            raise self._error
        await super().append(entry)


class FailingRegistry:
    """Registry whose store is always unreachable."""

    def __init__(self) -> None:
        self.calls = 0

    async def get_commands(self, tenant_id: str) -> Sequence[Command]:
        self.calls += 1
        raise RegistryUnavailableError("kv store unreachable", context={"tenant_id": tenant_id})


class SlowRegistry(InMemoryCommandRegistry):
    """In-memory registry that answers after a delay."""

    def __init__(self, delay: float, commands: Sequence[Command] = ()) -> None:
        super().__init__(commands)
        self.delay = delay

    async def get_commands(self, tenant_id: str) -> Sequence[Command]:
        await asyncio.sleep(self.delay)
        return await super().get_commands(tenant_id)


class RecordingRuntime(SandboxRuntime):
    """Runtime double: records calls and returns a canned result after a delay."""

    language = Language.PYTHON

    def __init__(self, result: ExecutionResult | None = None, delay: float = 0.0) -> None:
        self.calls: list[tuple[str, Mapping[str, Any], float]] = []
        self.result = result or ExecutionResult(status=ExecutionStatus.SUCCESS, output="ok\n")
        self.delay = delay

    async def execute(self, code: str, bindings: Mapping[str, Any], timeout: float) -> ExecutionResult:
        self.calls.append((code, bindings, timeout))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result

    async def probe(self) -> bool:
        return True


class RecordingJavaScriptRuntime(RecordingRuntime):
    language = Language.JAVASCRIPT


# ============================================================================
# Factories
# ============================================================================


def make_command(**overrides: Any) -> Command:
    """Command with test defaults: `!ping` in Python replying "pong"."""
    fields: dict[str, Any] = {
        "id": "cmd-ping",
        "tenant_id": "guild-1",
        "trigger": "ping",
        "prefix": "!",
        "language": "python",
        "code": "reply('pong')",
        "cooldown_ms": 0,
    }
    fields.update(overrides)
    return Command(**fields)


def make_message(text: str = "!ping", **overrides: Any) -> InboundMessage:
    fields: dict[str, Any] = {
        "tenant_id": "guild-1",
        "author_id": "user-1",
        "channel_id": "chan-1",
        "text": text,
    }
    fields.update(overrides)
    return InboundMessage(**fields)


@pytest.fixture(autouse=True)
def _restore_library_logger() -> Iterator[None]:
    """CLI invocations call configure_logging(); undo its global level/handlers after each test."""
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    level, handlers = lib_logger.level, list(lib_logger.handlers)
    try:
        yield
    finally:
        for handler in list(lib_logger.handlers):
            if handler not in handlers:
                lib_logger.removeHandler(handler)
                handler.close()
        lib_logger.setLevel(level)


# ============================================================================
# Common Paths and Config Fixtures
# ============================================================================


@pytest.fixture
def scratch_root(tmp_path: Path) -> Path:
    """Per-test scratch parent so leaked files are easy to detect."""
    return tmp_path / "scratch"


@pytest.fixture
def settings(tmp_path: Path, scratch_root: Path) -> Settings:
    """Settings pointing the Python runtime at the test interpreter."""
    return Settings(
        python_bin=sys.executable,
        scratch_dir=scratch_root,
        go_cache_dir=tmp_path / "go-build",
    )


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(execution_timeout_seconds=5.0)


@pytest.fixture
def python_runtime(scratch_root: Path) -> PythonRuntime:
    return PythonRuntime(sys.executable, scratch_root=scratch_root)


@pytest.fixture
def runtime_pool(settings: Settings, config: EngineConfig) -> RuntimePool:
    return RuntimePool.from_settings(settings, config)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> InMemoryCommandRegistry:
    return InMemoryCommandRegistry()


@pytest.fixture
def reply_sink() -> RecordingReplySink:
    return RecordingReplySink()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def make_engine(
    config: EngineConfig,
    registry: InMemoryCommandRegistry,
    reply_sink: RecordingReplySink,
    audit_sink: InMemoryAuditSink,
    runtime_pool: RuntimePool,
    clock: FakeClock,
) -> Callable[..., ExecutionCoordinator]:
    """Build a coordinator from the shared fixtures, overriding any collaborator.

    Usage:
        engine = make_engine(runtimes=RuntimePool([RecordingRuntime()], 4))
    """

    def build(**overrides: Any) -> ExecutionCoordinator:
        kwargs: dict[str, Any] = {
            "config": config,
            "registry": registry,
            "reply_sink": reply_sink,
            "audit_sink": audit_sink,
            "runtimes": runtime_pool,
            "clock": clock,
        }
        kwargs.update(overrides)
        return ExecutionCoordinator(**kwargs)

    return build


@pytest.fixture
async def engine(make_engine: Callable[..., ExecutionCoordinator]) -> AsyncGenerator[ExecutionCoordinator, None]:
    """Started coordinator running real interpreters.

    Usage:
        async def test_something(engine: ExecutionCoordinator, registry) -> None:
            registry.add(make_command())
            outcome = await engine.handle_message(make_message())
    """
    async with make_engine() as coordinator:
        yield coordinator
