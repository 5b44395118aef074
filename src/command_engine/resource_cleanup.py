"""Resource cleanup utilities for script executions.

Cleanup operations log errors but never raise: they run in finally blocks on
every exit path (success, script error, timeout, cancellation).
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path

import aiofiles
import aiofiles.os

from command_engine._logging import get_logger
from command_engine.constants import KILL_REAP_TIMEOUT_SECONDS, SCRATCH_DIR_PREFIX
from command_engine.platform_utils import ProcessWrapper

logger = get_logger(__name__)


async def create_scratch_dir(root: Path | None = None) -> Path:
    """Create a uniquely named, owner-only (0700) scratch directory.

    Args:
        root: Parent directory (None = system temp directory)
    """
    if root is not None:
        await aiofiles.os.makedirs(root, exist_ok=True)
    path = await asyncio.to_thread(tempfile.mkdtemp, prefix=SCRATCH_DIR_PREFIX, dir=root)
    return Path(path)


async def write_script(path: Path, code: str) -> None:
    """Write script source with owner-only (0600) permissions."""
    fd = await asyncio.to_thread(os.open, path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    async with aiofiles.open(fd, "w", encoding="utf-8") as f:
        await f.write(code)


async def cleanup_process(
    proc: ProcessWrapper | None,
    name: str,
    context_id: str,
    kill_timeout: float = KILL_REAP_TIMEOUT_SECONDS,
) -> bool:
    """Kill a script process tree and reap it.

    Always kills: even a process that exited may have left descendants in
    its process group.

    Args:
        proc: ProcessWrapper to kill (None safe - returns immediately)
        name: Process name for logging (e.g., "python", "node")
        context_id: Context for logging (execution id)
        kill_timeout: Seconds to wait for the reap after SIGKILL

    Returns:
        True if process cleaned successfully, False if issues occurred
    """
    if proc is None:
        return True

    try:
        was_running = proc.returncode is None
        await proc.kill_tree()

        try:
            await proc.wait_with_timeout(timeout=kill_timeout)
        except TimeoutError:
            logger.error(
                f"{name} didn't exit after SIGKILL within timeout",
                extra={"context_id": context_id, "kill_timeout": kill_timeout, "pid": proc.pid},
            )

            async def reap() -> None:
                try:
                    await proc.wait()
                except Exception:  # noqa: BLE001
                    logger.debug(f"{name} reap failed", extra={"context_id": context_id}, exc_info=True)

            _ = asyncio.create_task(reap())  # noqa: RUF006
            return False

        if was_running:
            logger.debug(
                f"{name} killed",
                extra={"context_id": context_id, "returncode": proc.returncode},
            )
        return True

    except ProcessLookupError:
        return True

    except Exception as e:
        logger.error(
            f"{name} cleanup error",
            extra={"context_id": context_id, "error": str(e), "error_type": type(e).__name__},
            exc_info=True,
        )
        return False


async def cleanup_file(
    file_path: Path | None,
    context_id: str,
    description: str = "file",
) -> bool:
    """Delete a file. Silently succeeds if it doesn't exist.

    Returns:
        True if file cleaned successfully, False if issues occurred
    """
    if file_path is None:
        return True

    try:
        await aiofiles.os.remove(file_path)
        return True

    except FileNotFoundError:
        return True

    except OSError as e:
        logger.error(
            f"{description} OS error during deletion",
            extra={"context_id": context_id, "path": str(file_path), "error": str(e), "error_type": type(e).__name__},
        )
        return False


async def cleanup_scratch_dir(dir_path: Path | None, context_id: str) -> bool:
    """Remove a scratch directory and everything in it.

    Symlinks are unlinked, never followed.

    Returns:
        True if the directory is gone, False if anything was left behind
    """
    if dir_path is None:
        return True

    try:
        ok = True
        for name in await aiofiles.os.listdir(dir_path):
            child = dir_path / name
            if await aiofiles.os.path.isdir(child) and not await aiofiles.os.path.islink(child):
                ok = await cleanup_scratch_dir(child, context_id) and ok
            else:
                ok = await cleanup_file(child, context_id, description="scratch file") and ok
        await aiofiles.os.rmdir(dir_path)
        return ok

    except FileNotFoundError:
        return True

    except OSError as e:
        logger.error(
            "Scratch directory removal error",
            extra={"context_id": context_id, "path": str(dir_path), "error": str(e), "error_type": type(e).__name__},
        )
        return False
