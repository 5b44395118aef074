"""Registry and audit store implementations.

- InMemoryCommandRegistry: mutable in-process registry (tests, embedding)
- JsonFileCommandRegistry: operator-maintained JSON file, reloaded on change
- CachedCommandRegistry: TTL cache over any registry, serves the last good
  snapshot when the backing store fails
- InMemoryAuditSink: per-tenant bounded audit log
"""

from __future__ import annotations

import asyncio
import json
import time
from collections import defaultdict, deque
from typing import TYPE_CHECKING

import aiofiles
import aiofiles.os
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from command_engine._logging import get_logger
from command_engine.exceptions import RegistryUnavailableError
from command_engine.interfaces import PrefixProvider
from command_engine.models import AuditEntry, Command

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence
    from pathlib import Path

    from command_engine.interfaces import CommandRegistry

logger = get_logger(__name__)


class InMemoryCommandRegistry:
    """Registry backed by a dict of tenant -> ordered commands."""

    def __init__(self, commands: Iterable[Command] = (), prefixes: dict[str, str] | None = None) -> None:
        self._commands: dict[str, list[Command]] = defaultdict(list)
        self._prefixes: dict[str, str] = dict(prefixes or {})
        for command in commands:
            self.add(command)

    def add(self, command: Command) -> None:
        """Add or replace a command, keeping its original position on replace."""
        tenant = self._commands[command.tenant_id]
        for i, existing in enumerate(tenant):
            if existing.id == command.id:
                tenant[i] = command
                return
        tenant.append(command)

    def remove(self, tenant_id: str, command_id: str) -> bool:
        tenant = self._commands.get(tenant_id, [])
        before = len(tenant)
        tenant[:] = [c for c in tenant if c.id != command_id]
        return len(tenant) != before

    def set_prefix(self, tenant_id: str, prefix: str | None) -> None:
        if prefix is None:
            self._prefixes.pop(tenant_id, None)
        else:
            self._prefixes[tenant_id] = prefix

    async def get_commands(self, tenant_id: str) -> Sequence[Command]:
        return tuple(self._commands.get(tenant_id, ()))

    async def get_prefix(self, tenant_id: str) -> str | None:
        return self._prefixes.get(tenant_id)


class CommandFile(BaseModel):
    """On-disk layout read by JsonFileCommandRegistry."""

    prefixes: dict[str, str] = Field(default_factory=dict)
    commands: list[Command] = Field(default_factory=list)


_COMMAND_LIST = TypeAdapter(list[Command])


class JsonFileCommandRegistry:
    """Registry read from a JSON file, reparsed whenever its mtime changes.

    Accepts either {"prefixes": {...}, "commands": [...]} or a bare list of
    commands.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._mtime_ns: int | None = None
        self._snapshot = InMemoryCommandRegistry()
        self._lock = asyncio.Lock()

    @staticmethod
    def parse(raw: str) -> CommandFile:
        """Parse file contents (raises ValueError on bad JSON or schema)."""
        data = json.loads(raw)
        if isinstance(data, list):
            return CommandFile(commands=_COMMAND_LIST.validate_python(data))
        return CommandFile.model_validate(data)

    async def _refresh(self) -> InMemoryCommandRegistry:
        async with self._lock:
            try:
                stat = await aiofiles.os.stat(self._path)
                if stat.st_mtime_ns != self._mtime_ns:
                    async with aiofiles.open(self._path, encoding="utf-8") as f:
                        parsed = self.parse(await f.read())
                    self._snapshot = InMemoryCommandRegistry(parsed.commands, parsed.prefixes)
                    self._mtime_ns = stat.st_mtime_ns
                    logger.info(
                        "Command file loaded",
                        extra={"path": str(self._path), "commands": len(parsed.commands)},
                    )
            except (OSError, ValueError, ValidationError) as e:
                raise RegistryUnavailableError(
                    f"Cannot read command file: {e}",
                    context={"path": str(self._path)},
                ) from e
            return self._snapshot

    async def get_commands(self, tenant_id: str) -> Sequence[Command]:
        return await (await self._refresh()).get_commands(tenant_id)

    async def get_prefix(self, tenant_id: str) -> str | None:
        return await (await self._refresh()).get_prefix(tenant_id)


class CachedCommandRegistry:
    """Bounded-staleness cache in front of another registry.

    A tenant's commands are fetched at most once per ttl_seconds. When a
    refresh fails and an older snapshot exists, the snapshot is served and
    the failure is logged; without a snapshot the error propagates.
    """

    def __init__(
        self,
        inner: CommandRegistry,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._inner = inner
        self._ttl = ttl_seconds
        self._clock = clock
        self._commands: dict[str, tuple[float, Sequence[Command]]] = {}
        self._prefixes: dict[str, tuple[float, str | None]] = {}

    def invalidate(self, tenant_id: str | None = None) -> None:
        """Drop cached entries for one tenant (or all)."""
        if tenant_id is None:
            self._commands.clear()
            self._prefixes.clear()
        else:
            self._commands.pop(tenant_id, None)
            self._prefixes.pop(tenant_id, None)

    async def get_commands(self, tenant_id: str) -> Sequence[Command]:
        now = self._clock()
        cached = self._commands.get(tenant_id)
        if cached is not None and now - cached[0] < self._ttl:
            return cached[1]
        try:
            commands = tuple(await self._inner.get_commands(tenant_id))
        except Exception as e:
            if cached is None:
                raise
            logger.warning(
                "Registry refresh failed, serving stale commands",
                extra={"tenant_id": tenant_id, "age_seconds": round(now - cached[0], 1), "error": str(e)},
            )
            return cached[1]
        self._commands[tenant_id] = (now, commands)
        return commands

    async def get_prefix(self, tenant_id: str) -> str | None:
        if not isinstance(self._inner, PrefixProvider):
            return None
        now = self._clock()
        cached = self._prefixes.get(tenant_id)
        if cached is not None and now - cached[0] < self._ttl:
            return cached[1]
        try:
            prefix = await self._inner.get_prefix(tenant_id)
        except Exception as e:
            if cached is None:
                raise
            logger.warning(
                "Prefix refresh failed, serving stale prefix",
                extra={"tenant_id": tenant_id, "error": str(e)},
            )
            return cached[1]
        self._prefixes[tenant_id] = (now, prefix)
        return prefix


class InMemoryAuditSink:
    """Audit store keeping the newest `retention` entries per tenant."""

    def __init__(self, retention: int | None = None) -> None:
        self._retention = retention
        self._entries: dict[str, deque[AuditEntry]] = defaultdict(lambda: deque(maxlen=self._retention))

    async def append(self, entry: AuditEntry) -> None:
        self._entries[entry.tenant_id].append(entry)

    async def trim(self, tenant_id: str, keep: int) -> int:
        entries = self._entries.get(tenant_id)
        if entries is None:
            return 0
        removed = 0
        while len(entries) > keep:
            entries.popleft()
            removed += 1
        return removed

    def entries(self, tenant_id: str | None = None) -> list[AuditEntry]:
        """Entries oldest first, for one tenant or all tenants."""
        if tenant_id is not None:
            return list(self._entries.get(tenant_id, ()))
        return [entry for tenant in self._entries.values() for entry in tenant]
