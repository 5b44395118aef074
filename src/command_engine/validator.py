"""Static code validation before execution.

Denylist catalog is bundled with the package (catalogs/denylist.json) and
loaded once per validator. The denylist is a defense-in-depth heuristic:
string obfuscation defeats it, so it is always paired with the runtime's
hard time and output bounds and whatever OS-level confinement the host
adds through Settings.sandbox_wrapper.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from command_engine._logging import get_logger
from command_engine.constants import DEFAULT_MAX_CODE_BYTES
from command_engine.models import Language, ValidationResult

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = get_logger(__name__)

COMMON_RULES_KEY = "common"


@dataclass(frozen=True)
class DenyRule:
    """One denylisted pattern and the category reported to operators."""

    category: str
    pattern: re.Pattern[str]


class CodeValidator:
    """Rejects oversized code and code containing denylisted constructs.

    Rules are checked in catalog order: common rules first, then the
    language's own rules. The first hit wins and its category is reported.
    The rejection reason returned to callers never includes the pattern.
    """

    def __init__(
        self,
        max_code_bytes: int = DEFAULT_MAX_CODE_BYTES,
        denylist_path: Path | None = None,
        extra_rules: Mapping[str, Iterable[tuple[str, str]]] | None = None,
    ):
        """Initialize validator with the bundled denylist catalog.

        Args:
            max_code_bytes: Maximum UTF-8 size of code.
            denylist_path: Path to a JSON catalog, defaults to the bundled
                catalogs/denylist.json.
            extra_rules: Additional (category, regex) pairs keyed by language
                value or "common".
        """
        self._max_code_bytes = max_code_bytes
        path = denylist_path or Path(__file__).parent / "catalogs" / "denylist.json"
        self._rules = self._load_rules(path)

        for key, pairs in (extra_rules or {}).items():
            self._rules.setdefault(key, []).extend(
                DenyRule(category=category, pattern=re.compile(pattern, re.MULTILINE)) for category, pattern in pairs
            )

    @staticmethod
    def _load_rules(path: Path) -> dict[str, list[DenyRule]]:
        """Load and compile denylist rules from a JSON catalog."""
        with path.open() as f:
            catalog: dict[str, list[dict[str, str]]] = json.load(f)
        return {
            key: [
                DenyRule(category=rule["category"], pattern=re.compile(rule["pattern"], re.MULTILINE)) for rule in rules
            ]
            for key, rules in catalog.items()
        }

    @property
    def max_code_bytes(self) -> int:
        return self._max_code_bytes

    def rules_for(self, language: Language | None) -> list[DenyRule]:
        """Rules applied to a language (common rules only when unknown)."""
        rules = list(self._rules.get(COMMON_RULES_KEY, []))
        if language is not None:
            rules.extend(self._rules.get(language.value, []))
        return rules

    def validate(self, language: str | Language, code: str) -> ValidationResult:
        """Validate code for a language.

        Args:
            language: Language enum or the command's stored label.
            code: Script source

        Returns:
            ValidationResult with ok=False, a user-safe reason and an
            operator-facing category on rejection.
        """
        resolved = language if isinstance(language, Language) else Language.parse(language)

        if not code.strip():
            return ValidationResult(ok=False, reason="Code cannot be empty", category="empty")

        if "\x00" in code:
            return ValidationResult(ok=False, reason="Code contains invalid characters", category="invalid_characters")

        try:
            size = len(code.encode("utf-8"))
        except UnicodeEncodeError:
            return ValidationResult(ok=False, reason="Code contains invalid characters", category="invalid_characters")
        if size > self._max_code_bytes:
            return ValidationResult(
                ok=False,
                reason=f"Code is too large ({size} bytes, max {self._max_code_bytes})",
                category="size_limit",
            )

        for rule in self.rules_for(resolved):
            if rule.pattern.search(code):
                logger.debug(
                    "Denylisted construct found",
                    extra={"language": str(language), "category": rule.category},
                )
                return ValidationResult(ok=False, reason="Code uses a disallowed feature", category=rule.category)

        return ValidationResult(ok=True)
