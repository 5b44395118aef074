"""Subprocess I/O utilities.

- communicate_capped: feed stdin and drain stdout/stderr concurrently with byte ceilings
- log_task_exception: done-callback that logs background task failures
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import TYPE_CHECKING

from command_engine._logging import get_logger
from command_engine.constants import READ_CHUNK_BYTES

if TYPE_CHECKING:
    from command_engine.platform_utils import ProcessWrapper

logger = get_logger(__name__)


@dataclass
class CapturedStream:
    """Bytes kept from one output stream."""

    data: bytes = b""
    truncated: bool = False
    total_bytes: int = 0


async def read_capped(stream: asyncio.StreamReader | None, limit: int) -> CapturedStream:
    """Read a stream to EOF, keeping at most `limit` bytes.

    Bytes past the ceiling are read and discarded so the child never blocks
    on a full pipe.
    """
    captured = CapturedStream()
    if stream is None:
        return captured

    chunks: list[bytes] = []
    kept = 0
    while chunk := await stream.read(READ_CHUNK_BYTES):
        captured.total_bytes += len(chunk)
        if kept < limit:
            room = limit - kept
            chunks.append(chunk[:room])
            kept += min(room, len(chunk))
        if captured.total_bytes > limit:
            captured.truncated = True
    captured.data = b"".join(chunks)
    return captured


async def communicate_capped(
    process: ProcessWrapper,
    stdin_data: bytes,
    *,
    stdout_limit: int,
    stderr_limit: int,
) -> tuple[CapturedStream, CapturedStream]:
    """Write stdin and drain stdout/stderr concurrently.

    Sequential reads deadlock once the child fills the 64KB buffer of the
    pipe nobody is reading, so all three streams run in one TaskGroup.

    Returns:
        (stdout, stderr) captures
    """

    async def feed_stdin() -> None:
        stdin = process.async_proc.stdin
        if stdin is None:
            return
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            stdin.write(stdin_data)
            await stdin.drain()
        stdin.close()

    async with asyncio.TaskGroup() as tg:
        tg.create_task(feed_stdin())
        stdout_task = tg.create_task(read_capped(process.stdout, stdout_limit))
        stderr_task = tg.create_task(read_capped(process.stderr, stderr_limit))

    return stdout_task.result(), stderr_task.result()


def log_task_exception(task: asyncio.Task[object]) -> None:
    """Log exceptions from background tasks.

    Usage:
        task = asyncio.create_task(some_coroutine())
        task.add_done_callback(log_task_exception)
    """
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background task failed",
            extra={"task_name": task.get_name()},
            exc_info=exc,
        )
