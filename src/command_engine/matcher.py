"""Trigger matching for inbound chat messages.

Pure functions: no I/O, no state. Commands are evaluated in registry
iteration order and the first one whose trigger matches and whose role and
channel restrictions admit the message wins. Ties are not resolved by
specificity.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from command_engine.constants import DEFAULT_PREFIX
from command_engine.models import Command, MatchMode

if TYPE_CHECKING:
    from collections.abc import Iterable


def normalize(text: str, *, case_insensitive: bool) -> str:
    """Apply the tenant's text convention before comparison."""
    return text.casefold() if case_insensitive else text


def trigger_matches(
    command: Command,
    text: str,
    *,
    tenant_prefix: str | None = None,
    default_prefix: str = DEFAULT_PREFIX,
    case_insensitive: bool = True,
) -> bool:
    """Check the textual trigger only (restrictions are not applied).

    Args:
        command: Candidate command
        text: Raw message text
        tenant_prefix: Tenant-wide prefix, used when the command has none
        default_prefix: Fallback when neither command nor tenant sets one
        case_insensitive: Case-fold text, trigger and prefix before comparing
    """
    content = normalize(text, case_insensitive=case_insensitive)
    trigger = normalize(command.trigger, case_insensitive=case_insensitive)

    match command.match_mode:
        case MatchMode.PREFIX_COMMAND:
            prefix = command.prefix or tenant_prefix or default_prefix
            return content.startswith(normalize(prefix, case_insensitive=case_insensitive) + trigger)
        case MatchMode.EXACT_MATCH:
            return content == trigger
        case MatchMode.STARTS_WITH:
            return content.startswith(trigger)
    return False


def restrictions_allow(command: Command, author_roles: Iterable[str], channel_id: str) -> bool:
    """Check role and channel allow-lists (empty list = unrestricted)."""
    if command.role_restriction and command.role_restriction.isdisjoint(author_roles):
        return False
    return not (command.channel_restriction and channel_id not in command.channel_restriction)


def match_command(
    text: str,
    author_roles: Iterable[str],
    channel_id: str,
    commands: Iterable[Command],
    *,
    tenant_prefix: str | None = None,
    default_prefix: str = DEFAULT_PREFIX,
    case_insensitive: bool = True,
) -> Command | None:
    """Return the first command that fires for this message, if any.

    A candidate whose trigger matches but whose restrictions exclude the
    author or channel is skipped and scanning continues.

    Example:
        >>> ping = Command(id="1", tenant_id="g", trigger="ping", language="python", code="reply('pong')")
        >>> match_command("!ping", [], "c1", [ping]).id
        '1'
        >>> match_command("ping", [], "c1", [ping]) is None
        True
    """
    roles = frozenset(author_roles)
    for command in commands:
        if not trigger_matches(
            command,
            text,
            tenant_prefix=tenant_prefix,
            default_prefix=default_prefix,
            case_insensitive=case_insensitive,
        ):
            continue
        if not restrictions_allow(command, roles, channel_id):
            continue
        return command
    return None
