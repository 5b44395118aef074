"""JavaScript runtime: Node.js running the script inside a fresh V8 context."""

from __future__ import annotations

from typing import TYPE_CHECKING

from command_engine.models import Language
from command_engine.runtimes.subprocess_runtime import RUNNER_SCRIPTS_DIR, SubprocessRuntime

if TYPE_CHECKING:
    from pathlib import Path

# Exit code javascript_runner.js uses when the vm timeout fires first
RUNNER_TIMEOUT_EXIT_CODE = 124


class JavaScriptRuntime(SubprocessRuntime):
    """Runs scripts through javascript_runner.js.

    The runner evaluates the script with vm in a context that has no
    require, process or timers, and with string/wasm code generation
    disabled. V8 reserves far more address space than it uses, so memory is
    bounded with --max-old-space-size instead of RLIMIT_AS.
    """

    language = Language.JAVASCRIPT
    source_filename = "script.js"
    process_name = "node"
    timeout_exit_code = RUNNER_TIMEOUT_EXIT_CODE

    def build_args(self, script_path: Path, scratch_dir: Path, timeout: float) -> list[str]:
        return [
            f"--max-old-space-size={self.memory_limit_mb}",
            "--disallow-code-generation-from-strings",
            str(RUNNER_SCRIPTS_DIR / "javascript_runner.js"),
            str(script_path),
            str(int(timeout * 1000)),
        ]
