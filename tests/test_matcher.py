"""Unit tests for trigger matching.

Covers the single-match property (first match wins), every match mode,
tenant/default prefixes, and role/channel restrictions.
"""

import pytest

from command_engine.matcher import match_command, normalize, restrictions_allow, trigger_matches
from command_engine.models import MatchMode
from tests.conftest import make_command

# ============================================================================
# Match Modes
# ============================================================================


class TestMatchModes:
    def test_prefix_command(self) -> None:
        command = make_command(trigger="ping", match_mode=MatchMode.PREFIX_COMMAND, prefix="!")
        assert trigger_matches(command, "!ping")
        assert trigger_matches(command, "!ping extra args")
        assert not trigger_matches(command, "ping")
        assert not trigger_matches(command, "?ping")
        assert not trigger_matches(command, " !ping")

    def test_exact_match(self) -> None:
        """Scenario C: "help me" does not match, "help" does."""
        command = make_command(trigger="help", match_mode=MatchMode.EXACT_MATCH)
        assert not trigger_matches(command, "help me")
        assert trigger_matches(command, "help")
        # Prefix is irrelevant outside PREFIX_COMMAND
        assert not trigger_matches(command, "!help")

    def test_starts_with(self) -> None:
        command = make_command(trigger="good morning", match_mode=MatchMode.STARTS_WITH)
        assert trigger_matches(command, "good morning everyone")
        assert trigger_matches(command, "good morning")
        assert not trigger_matches(command, "a good morning")

    def test_case_insensitive_by_default(self) -> None:
        command = make_command(trigger="Ping")
        assert trigger_matches(command, "!PING")
        assert trigger_matches(command, "!ping")

    def test_case_sensitive(self) -> None:
        command = make_command(trigger="Ping", match_mode=MatchMode.EXACT_MATCH)
        assert not trigger_matches(command, "ping", case_insensitive=False)
        assert trigger_matches(command, "Ping", case_insensitive=False)

    def test_casefold_handles_non_ascii(self) -> None:
        command = make_command(trigger="straße", match_mode=MatchMode.EXACT_MATCH)
        assert trigger_matches(command, "STRASSE")

    def test_normalize(self) -> None:
        assert normalize("HeLLo", case_insensitive=True) == "hello"
        assert normalize("HeLLo", case_insensitive=False) == "HeLLo"


class TestPrefixResolution:
    def test_command_prefix_wins(self) -> None:
        command = make_command(prefix="$")
        assert trigger_matches(command, "$ping", tenant_prefix="?")
        assert not trigger_matches(command, "?ping", tenant_prefix="?")

    def test_tenant_prefix_used_when_command_has_none(self) -> None:
        command = make_command(prefix=None)
        assert trigger_matches(command, "?ping", tenant_prefix="?")
        assert not trigger_matches(command, "!ping", tenant_prefix="?")

    def test_default_prefix_last(self) -> None:
        command = make_command(prefix=None)
        assert trigger_matches(command, "!ping")
        assert trigger_matches(command, ">>ping", default_prefix=">>")

    def test_multi_character_prefix(self) -> None:
        command = make_command(prefix="bot.")
        assert trigger_matches(command, "bot.ping")
        assert not trigger_matches(command, "bot ping")


# ============================================================================
# Restrictions
# ============================================================================


class TestRestrictions:
    def test_unrestricted(self) -> None:
        assert restrictions_allow(make_command(), [], "any")

    def test_role_restriction(self) -> None:
        command = make_command(role_restriction=["mod", "admin"])
        assert restrictions_allow(command, ["member", "mod"], "c1")
        assert not restrictions_allow(command, ["member"], "c1")
        assert not restrictions_allow(command, [], "c1")

    def test_channel_restriction(self) -> None:
        command = make_command(channel_restriction=["bots"])
        assert restrictions_allow(command, [], "bots")
        assert not restrictions_allow(command, [], "general")

    def test_both_restrictions_required(self) -> None:
        command = make_command(role_restriction=["mod"], channel_restriction=["bots"])
        assert restrictions_allow(command, ["mod"], "bots")
        assert not restrictions_allow(command, ["mod"], "general")
        assert not restrictions_allow(command, ["member"], "bots")


# ============================================================================
# match_command
# ============================================================================


class TestMatchCommand:
    def test_no_commands(self) -> None:
        assert match_command("!ping", [], "c1", []) is None

    def test_no_match(self) -> None:
        assert match_command("hello", [], "c1", [make_command()]) is None

    def test_first_match_wins(self) -> None:
        """Ties are broken by registry order, not by specificity."""
        short = make_command(id="short", trigger="p")
        long = make_command(id="long", trigger="ping")
        assert match_command("!ping", [], "c1", [short, long]).id == "short"  # type: ignore[union-attr]
        assert match_command("!ping", [], "c1", [long, short]).id == "long"  # type: ignore[union-attr]

    def test_restricted_candidate_skipped_and_scan_continues(self) -> None:
        restricted = make_command(id="mods-only", role_restriction=["mod"])
        fallback = make_command(id="everyone")
        matched = match_command("!ping", ["member"], "c1", [restricted, fallback])
        assert matched is not None
        assert matched.id == "everyone"

    def test_role_restriction_never_fires_without_role(self) -> None:
        """P6: a role-restricted command never fires for an author lacking all roles."""
        command = make_command(role_restriction=["mod", "admin"])
        for roles in ([], ["member"], ["moderator"], ["MOD"]):
            assert match_command("!ping", roles, "c1", [command]) is None
        assert match_command("!ping", ["admin"], "c1", [command]) is command

    @pytest.mark.parametrize(
        "text",
        ["!ping", "!pingpong", "ping", "help", "help me", "hello world", "!PING", ""],
    )
    def test_at_most_one_command(self, text: str) -> None:
        """P1: the matcher returns a single Command or None for any message."""
        commands = [
            make_command(id="a", trigger="ping"),
            make_command(id="b", trigger="ping"),
            make_command(id="c", trigger="help", match_mode=MatchMode.EXACT_MATCH),
            make_command(id="d", trigger="help", match_mode=MatchMode.STARTS_WITH),
            make_command(id="e", trigger="hello", match_mode=MatchMode.STARTS_WITH),
        ]
        matched = match_command(text, [], "c1", commands)
        assert matched is None or matched in commands

    def test_accepts_generator(self) -> None:
        commands = (make_command(id=str(i), trigger=f"cmd{i}") for i in range(3))
        matched = match_command("!cmd2", [], "c1", commands)
        assert matched is not None
        assert matched.id == "2"
