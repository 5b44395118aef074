"""Runtime registry keyed by language, with a global concurrency bound."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from command_engine._logging import get_logger
from command_engine.exceptions import UnsupportedLanguageError
from command_engine.models import Language
from command_engine.runtimes.go import GoRuntime
from command_engine.runtimes.javascript import JavaScriptRuntime
from command_engine.runtimes.python import PythonRuntime

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from command_engine.config import EngineConfig
    from command_engine.models import ExecutionResult
    from command_engine.runtimes.base import SandboxRuntime
    from command_engine.settings import Settings

logger = get_logger(__name__)


class RuntimePool:
    """Maps languages to runtimes and caps concurrent interpreter processes.

    Waiting for a free slot counts against the caller's message deadline,
    never against the script's own timeout.
    """

    def __init__(self, runtimes: Iterable[SandboxRuntime], max_concurrent: int) -> None:
        self._runtimes: dict[Language, SandboxRuntime] = {runtime.language: runtime for runtime in runtimes}
        self._max_concurrent = max_concurrent
        self._slots = asyncio.Semaphore(max_concurrent)
        self._active = 0

    @classmethod
    def from_settings(cls, settings: Settings, config: EngineConfig) -> RuntimePool:
        """Build the standard JavaScript/Python/Go pool."""
        common: dict[str, Any] = {
            "scratch_root": settings.scratch_dir,
            "sandbox_wrapper": settings.sandbox_wrapper,
            "max_output_bytes": config.max_output_bytes,
            "max_error_excerpt_chars": config.max_error_excerpt_chars,
            "memory_limit_mb": config.memory_limit_mb,
        }
        return cls(
            [
                JavaScriptRuntime(settings.node_bin, **common),
                PythonRuntime(settings.python_bin, **common),
                GoRuntime(settings.go_bin, cache_dir=settings.go_cache_dir, **common),
            ],
            max_concurrent=config.max_concurrent_executions,
        )

    @property
    def languages(self) -> frozenset[Language]:
        return frozenset(self._runtimes)

    @property
    def active(self) -> int:
        """Executions currently holding a slot."""
        return self._active

    def get(self, language: Language) -> SandboxRuntime:
        """Runtime for a language.

        Raises:
            UnsupportedLanguageError: No runtime registered for the language
        """
        try:
            return self._runtimes[language]
        except KeyError:
            raise UnsupportedLanguageError(
                f"No runtime registered for {language.value}",
                context={"language": language.value},
            ) from None

    async def execute(
        self,
        language: Language,
        code: str,
        bindings: Mapping[str, Any],
        timeout: float,
    ) -> ExecutionResult:
        """Run code on the language's runtime once a slot is free."""
        runtime = self.get(language)
        async with self._slots:
            self._active += 1
            try:
                return await runtime.execute(code, bindings, timeout)
            finally:
                self._active -= 1

    async def probe(self) -> dict[Language, bool]:
        """Check interpreter availability for every registered language."""
        languages = list(self._runtimes)
        results = await asyncio.gather(*(self._runtimes[lang].probe() for lang in languages))
        availability = dict(zip(languages, results, strict=True))
        missing = [lang.value for lang, ok in availability.items() if not ok]
        if missing:
            logger.warning("Interpreters missing", extra={"languages": missing})
        return availability
