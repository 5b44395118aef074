"""Collaborator interfaces the engine consumes.

Uses structural typing (Protocol): stores, gateways and test doubles only
need matching async methods, no base class.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from command_engine.models import AuditEntry, Command


@runtime_checkable
class CommandRegistry(Protocol):
    """Read side of the tenant command store."""

    async def get_commands(self, tenant_id: str) -> Sequence[Command]:
        """Commands for a tenant, in the order the matcher should scan them.

        May be stale by a bounded amount. Raises RegistryUnavailableError
        (or any exception) when the store cannot be read.
        """
        ...


@runtime_checkable
class PrefixProvider(Protocol):
    """Optional registry extension: tenant-level command prefix."""

    async def get_prefix(self, tenant_id: str) -> str | None:
        """Tenant prefix, or None to use the engine default."""
        ...


@runtime_checkable
class ReplySink(Protocol):
    """Outgoing chat replies."""

    async def send_reply(self, channel_id: str, text: str) -> None:
        """Deliver text to a channel. Raises ReplySinkError on failure."""
        ...


@runtime_checkable
class AuditSink(Protocol):
    """Append-only audit store."""

    async def append(self, entry: AuditEntry) -> None:
        """Persist one entry. Raises AuditSinkError on failure."""
        ...

    async def trim(self, tenant_id: str, keep: int) -> int:
        """Drop the oldest entries beyond `keep` for a tenant.

        Returns:
            Number of entries removed
        """
        ...
