"""Sandbox runtime interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from collections.abc import Mapping

    from command_engine.models import ExecutionResult, Language


class SandboxRuntime(ABC):
    """Runs untrusted script source for one language.

    Implementations must:
    - never raise for script-level problems (syntax errors, exceptions,
      timeouts, missing interpreter); those become an ExecutionResult
    - stop the script and every process it spawned by the deadline
    - delete every temporary artifact on all exit paths, including when the
      calling task is cancelled
    """

    language: ClassVar[Language]

    @abstractmethod
    async def execute(self, code: str, bindings: Mapping[str, Any], timeout: float) -> ExecutionResult:
        """Run code with read-only bindings under a hard wall-clock timeout.

        Args:
            code: Script source (already validated)
            bindings: JSON-serializable message/author/channel/guild metadata
            timeout: Seconds before the script is killed

        Returns:
            ExecutionResult with SUCCESS, SCRIPT_ERROR, TIMEOUT or
            RUNTIME_UNAVAILABLE status
        """

    @abstractmethod
    async def probe(self) -> bool:
        """Check whether the interpreter can be found on this host."""
