"""Interpreter-subprocess runtime shared by every language.

Each execution:
1. Creates an owner-only scratch directory and writes the script into it
2. Spawns the interpreter in its own session with a scrubbed environment,
   rlimits, and an optional OS-level confinement wrapper
3. Sends bindings as JSON on stdin and drains stdout/stderr concurrently,
   keeping at most a fixed number of bytes
4. Enforces a hard wall-clock timeout
5. Kills the whole process tree and removes the scratch directory on every
   exit path, including cancellation by the caller
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import math
import shutil
import signal
import subprocess
import time
from abc import abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar
from uuid import uuid4

from command_engine._logging import get_logger
from command_engine.constants import (
    CPU_LIMIT_SLACK_SECONDS,
    DEFAULT_ERROR_EXCERPT_CHARS,
    DEFAULT_MAX_OUTPUT_BYTES,
    DEFAULT_MEMORY_LIMIT_MB,
    MAX_STDERR_BYTES,
    SANDBOX_PATH,
    SCRIPT_PATH_PLACEHOLDER,
)
from command_engine.exceptions import RuntimeUnavailableError
from command_engine.models import ExecutionResult, ExecutionStatus
from command_engine.platform_utils import HostOS, ProcessWrapper, detect_host_os
from command_engine.resource_cleanup import cleanup_process, cleanup_scratch_dir, create_scratch_dir, write_script
from command_engine.runtimes.base import SandboxRuntime
from command_engine.subprocess_utils import CapturedStream, communicate_capped

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

logger = get_logger(__name__)

RUNNER_SCRIPTS_DIR = Path(__file__).parent / "scripts"


def _rlimit_preexec(
    cpu_seconds: int,
    address_space_bytes: int | None,
    file_size_bytes: int | None,
) -> Callable[[], None] | None:
    """Build a preexec_fn applying rlimits in the child before exec.

    Limits the platform refuses are skipped; the wall-clock kill stays
    authoritative either way.
    """
    if detect_host_os() == HostOS.UNKNOWN:
        return None

    import resource  # noqa: PLC0415 - POSIX only

    limits: list[tuple[int, int, int]] = [
        (resource.RLIMIT_CORE, 0, 0),
        # Soft limit raises SIGXCPU, hard limit one second later is SIGKILL
        (resource.RLIMIT_CPU, cpu_seconds, cpu_seconds + 1),
    ]
    if address_space_bytes is not None:
        limits.append((resource.RLIMIT_AS, address_space_bytes, address_space_bytes))
    if file_size_bytes is not None:
        limits.append((resource.RLIMIT_FSIZE, file_size_bytes, file_size_bytes))

    def apply() -> None:
        for which, soft, hard in limits:
            with contextlib.suppress(ValueError, OSError):
                resource.setrlimit(which, (soft, hard))

    return apply


class SubprocessRuntime(SandboxRuntime):
    """Runs scripts by spawning an interpreter per invocation.

    Subclasses provide the script filename, the interpreter arguments and
    any extra environment. Class-level switches choose which rlimits the
    interpreter can live with.
    """

    source_filename: ClassVar[str]
    process_name: ClassVar[str]
    limit_address_space: ClassVar[bool] = False
    limit_file_size: ClassVar[bool] = False
    # Exit code the runner uses when its own in-process deadline fires
    timeout_exit_code: ClassVar[int | None] = None

    def __init__(
        self,
        binary: str,
        *,
        scratch_root: Path | None = None,
        sandbox_wrapper: Sequence[str] = (),
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        max_error_excerpt_chars: int = DEFAULT_ERROR_EXCERPT_CHARS,
        memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB,
    ) -> None:
        self.binary = binary
        self.scratch_root = scratch_root
        self.sandbox_wrapper = list(sandbox_wrapper)
        self.max_output_bytes = max_output_bytes
        self.max_error_excerpt_chars = max_error_excerpt_chars
        self.memory_limit_mb = memory_limit_mb

    def __repr__(self) -> str:
        return f"{type(self).__name__}(binary={self.binary!r})"

    @abstractmethod
    def build_args(self, script_path: Path, scratch_dir: Path, timeout: float) -> list[str]:
        """Interpreter arguments (everything after the binary)."""

    def build_env(self, scratch_dir: Path) -> dict[str, str]:
        """Scrubbed environment: nothing is inherited from the host."""
        return {
            "PATH": SANDBOX_PATH,
            "HOME": str(scratch_dir),
            "TMPDIR": str(scratch_dir),
            "LANG": "C.UTF-8",
            "LC_ALL": "C.UTF-8",
        }

    def filter_stderr_lines(self, lines: list[str]) -> list[str]:
        """Drop interpreter noise from stderr before building the excerpt."""
        return lines

    async def probe(self) -> bool:
        return await asyncio.to_thread(shutil.which, self.binary) is not None

    async def execute(self, code: str, bindings: Mapping[str, Any], timeout: float) -> ExecutionResult:
        execution_id = uuid4().hex[:12]
        started = time.monotonic()

        binary = await asyncio.to_thread(shutil.which, self.binary)
        if binary is None:
            logger.warning(
                "Interpreter not found",
                extra={"language": self.language.value, "binary": self.binary},
            )
            return self._result(
                ExecutionStatus.RUNTIME_UNAVAILABLE,
                started,
                error_summary=f"{self.process_name} interpreter not found",
            )

        scratch_dir: Path | None = None
        proc: ProcessWrapper | None = None
        try:
            try:
                scratch_dir = await create_scratch_dir(self.scratch_root)
                script_path = scratch_dir / self.source_filename
                await write_script(script_path, code)
                proc = await self._spawn(binary, script_path, scratch_dir, timeout)
            except (RuntimeUnavailableError, OSError) as e:
                logger.warning(
                    "Runtime unavailable",
                    extra={"language": self.language.value, "execution_id": execution_id, "error": str(e)},
                )
                return self._result(
                    ExecutionStatus.RUNTIME_UNAVAILABLE,
                    started,
                    error_summary=e.message if isinstance(e, RuntimeUnavailableError) else "Scratch space unavailable",
                )

            logger.debug(
                "Script started",
                extra={"language": self.language.value, "execution_id": execution_id, "pid": proc.pid},
            )
            payload = json.dumps(dict(bindings), default=str).encode("utf-8")

            try:
                async with asyncio.timeout(timeout):
                    stdout, stderr = await communicate_capped(
                        proc,
                        payload,
                        stdout_limit=self.max_output_bytes,
                        stderr_limit=MAX_STDERR_BYTES,
                    )
                    exit_code = await proc.wait()
            except TimeoutError:
                logger.info(
                    "Script timed out",
                    extra={"language": self.language.value, "execution_id": execution_id, "timeout": timeout},
                )
                return self._result(ExecutionStatus.TIMEOUT, started, error_summary=f"Execution exceeded {timeout:g}s")

            return self._classify(exit_code, stdout, stderr, scratch_dir, started)

        finally:
            await cleanup_process(proc, self.process_name, execution_id)
            await cleanup_scratch_dir(scratch_dir, execution_id)

    async def _spawn(self, binary: str, script_path: Path, scratch_dir: Path, timeout: float) -> ProcessWrapper:
        argv = [*self.sandbox_wrapper, binary, *self.build_args(script_path, scratch_dir, timeout)]
        memory_bytes = self.memory_limit_mb * 1024 * 1024
        preexec = _rlimit_preexec(
            cpu_seconds=math.ceil(timeout) + CPU_LIMIT_SLACK_SECONDS,
            address_space_bytes=memory_bytes if self.limit_address_space else None,
            file_size_bytes=0 if self.limit_file_size else None,
        )
        try:
            async_proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=scratch_dir,
                env=self.build_env(scratch_dir),
                start_new_session=True,
                preexec_fn=preexec,  # noqa: PLW1509
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise RuntimeUnavailableError(
                f"Could not start {self.process_name}: {getattr(e, 'strerror', None) or e}",
                binary=binary,
                context={"argv0": argv[0]},
            ) from e
        return ProcessWrapper(async_proc)

    def _classify(
        self,
        exit_code: int,
        stdout: CapturedStream,
        stderr: CapturedStream,
        scratch_dir: Path,
        started: float,
    ) -> ExecutionResult:
        output = stdout.data.decode("utf-8", errors="replace")

        if exit_code == 0:
            return self._result(
                ExecutionStatus.SUCCESS,
                started,
                output=output,
                truncated=stdout.truncated,
                exit_code=0,
            )

        sigxcpu = getattr(signal, "SIGXCPU", None)
        if (sigxcpu is not None and exit_code == -sigxcpu) or exit_code == self.timeout_exit_code:
            return self._result(
                ExecutionStatus.TIMEOUT,
                started,
                output=output,
                truncated=stdout.truncated,
                error_summary="Execution time limit exceeded",
                exit_code=exit_code,
            )

        if exit_code < 0:
            try:
                summary = f"Terminated by {signal.Signals(-exit_code).name}"
            except ValueError:
                summary = f"Terminated by signal {-exit_code}"
        else:
            summary = self._excerpt(stderr, scratch_dir) or f"Exited with status {exit_code}"

        return self._result(
            ExecutionStatus.SCRIPT_ERROR,
            started,
            output=output,
            truncated=stdout.truncated,
            error_summary=summary,
            exit_code=exit_code,
        )

    def _excerpt(self, stderr: CapturedStream, scratch_dir: Path) -> str | None:
        """Bounded stderr excerpt with scratch paths replaced."""
        text = stderr.data.decode("utf-8", errors="replace")
        for path in (str(scratch_dir / self.source_filename), f"./{self.source_filename}", str(scratch_dir)):
            text = text.replace(path, SCRIPT_PATH_PLACEHOLDER)

        lines = self.filter_stderr_lines([line.rstrip() for line in text.splitlines() if line.strip()])
        if not lines:
            return None

        excerpt = "\n".join(lines)
        if len(excerpt) > self.max_error_excerpt_chars:
            excerpt = excerpt[: self.max_error_excerpt_chars - 3].rstrip() + "..."
        return excerpt

    @staticmethod
    def _result(status: ExecutionStatus, started: float, **fields: Any) -> ExecutionResult:
        duration_ms = int((time.monotonic() - started) * 1000)
        return ExecutionResult(status=status, duration_ms=duration_ms, **fields)
