"""Python runtime: CPython in isolated mode behind a restricted-builtins runner."""

from __future__ import annotations

from typing import TYPE_CHECKING

from command_engine.models import Language
from command_engine.runtimes.subprocess_runtime import RUNNER_SCRIPTS_DIR, SubprocessRuntime

if TYPE_CHECKING:
    from pathlib import Path


class PythonRuntime(SubprocessRuntime):
    """Runs scripts with `python -I -S -B python_runner.py <script>`.

    -I ignores PYTHON* variables and the user site, -S skips site imports,
    -B never writes bytecode. The runner executes the script with an
    allowlisted builtins namespace and a handful of importable modules.
    """

    language = Language.PYTHON
    source_filename = "script.py"
    process_name = "python"
    limit_address_space = True
    limit_file_size = True

    def build_args(self, script_path: Path, scratch_dir: Path, timeout: float) -> list[str]:
        return ["-I", "-S", "-B", str(RUNNER_SCRIPTS_DIR / "python_runner.py"), str(script_path)]

    def build_env(self, scratch_dir: Path) -> dict[str, str]:
        env = super().build_env(scratch_dir)
        env["PYTHONIOENCODING"] = "utf-8"
        env["PYTHONDONTWRITEBYTECODE"] = "1"
        return env
