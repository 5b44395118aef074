"""Cross-platform OS detection and process utilities.

Uses psutil's built-in OS detection constants for platform identification.
Provides a PID-reuse safe process wrapper that can kill a whole process tree.
"""

import asyncio
import contextlib
import os
import signal
import sys
from enum import Enum, auto
from functools import cache
from pathlib import Path

import psutil


class HostOS(Enum):
    """Supported host operating systems."""

    LINUX = auto()
    """Linux (production, rlimits and process groups available)."""

    MACOS = auto()
    """macOS (development)."""

    UNKNOWN = auto()
    """Unsupported or unrecognized OS."""


@cache
def detect_host_os() -> HostOS:
    """Detect current host operating system using psutil constants."""
    if psutil.LINUX:
        return HostOS.LINUX
    if psutil.MACOS:
        return HostOS.MACOS
    return HostOS.UNKNOWN


def get_cache_dir() -> Path:
    """Per-user cache directory for command-engine.

    - Env: COMMAND_ENGINE_CACHE_DIR
    - Linux: $XDG_CACHE_HOME/command-engine or ~/.cache/command-engine
    - macOS: ~/Library/Caches/command-engine
    """
    if env_path := os.environ.get("COMMAND_ENGINE_CACHE_DIR"):
        return Path(env_path)
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Caches" / "command-engine"
    xdg = os.environ.get("XDG_CACHE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".cache"
    return base / "command-engine"


class ProcessWrapper:
    """PID-reuse safe process wrapper using psutil.

    Wraps asyncio.subprocess.Process with psutil.Process so the process and
    every descendant it spawned can be killed without signalling a recycled PID.
    """

    def __init__(self, async_proc: asyncio.subprocess.Process) -> None:
        self.async_proc = async_proc
        self.psutil_proc: psutil.Process | None = None

        if async_proc.pid:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                self.psutil_proc = psutil.Process(async_proc.pid)

    @property
    def pid(self) -> int | None:
        """Process ID."""
        return self.async_proc.pid

    @property
    def returncode(self) -> int | None:
        """Process return code (None if still running)."""
        return self.async_proc.returncode

    @property
    def stdout(self):
        """Process stdout stream."""
        return self.async_proc.stdout

    @property
    def stderr(self):
        """Process stderr stream."""
        return self.async_proc.stderr

    async def wait(self) -> int:
        """Wait for process to complete."""
        return await self.async_proc.wait()

    async def wait_with_timeout(self, timeout: float) -> int:
        """Wait for process exit with a timeout.

        Raises:
            TimeoutError: If the process doesn't exit within timeout
        """
        return await asyncio.wait_for(self.wait(), timeout=timeout)

    async def is_running(self) -> bool:
        """Check if process is still running (PID-reuse safe)."""
        if not self.psutil_proc:
            return self.async_proc.returncode is None
        try:
            return await asyncio.to_thread(self.psutil_proc.is_running)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    async def descendants(self) -> list[psutil.Process]:
        """Snapshot of child processes (recursive)."""
        if not self.psutil_proc:
            return []
        try:
            return await asyncio.to_thread(self.psutil_proc.children, True)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return []

    def owns_process_group(self) -> bool:
        """Whether killpg(pid) can only reach this process's own group.

        Until the leader is reaped its PID pins the group ID, and while any
        member is alive the kernel will not hand that ID out again. Once the
        leader is reaped, a live process leading a group with the same ID is
        a recycled PID.
        """
        if self.async_proc.returncode is None or not self.pid:
            return True
        try:
            return os.getpgid(self.pid) != self.pid
        except ProcessLookupError:
            return True

    async def kill_tree(self) -> None:
        """SIGKILL the process, its process group, and every descendant.

        Scripts run in their own session, so the process group covers children
        that were reparented; the psutil walk covers children that escaped
        the group with setsid().
        """
        children = await self.descendants()

        if self.pid and detect_host_os() != HostOS.UNKNOWN and self.owns_process_group():
            with contextlib.suppress(ProcessLookupError, PermissionError):
                os.killpg(self.pid, signal.SIGKILL)

        for child in children:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                await asyncio.to_thread(child.kill)

        if self.async_proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self.async_proc.kill()
