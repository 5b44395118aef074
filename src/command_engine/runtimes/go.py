"""Go runtime: `go run` on a complete main package.

Scripts are full programs (package main with func main). Bindings arrive as
a JSON document on stdin and replies are written to stdout. The timeout
covers compilation, so Go usually needs a larger per-language timeout
(EngineConfig.language_timeouts).
"""

from __future__ import annotations

import re
from pathlib import Path

from command_engine.models import Language
from command_engine.runtimes.subprocess_runtime import SubprocessRuntime

_GO_NOISE = re.compile(r"^(?:# command-line-arguments|exit status \d+)$")


class GoRuntime(SubprocessRuntime):
    """Compiles and runs one main.go per invocation.

    The build cache is shared across invocations (cache_dir) so repeated
    runs of the same command skip most of the compile. Everything else the
    toolchain writes lands in the scratch directory.
    """

    language = Language.GO
    source_filename = "main.go"
    process_name = "go"

    def __init__(self, binary: str, *, cache_dir: Path, **kwargs) -> None:
        super().__init__(binary, **kwargs)
        self.cache_dir = cache_dir

    def build_args(self, script_path: Path, scratch_dir: Path, timeout: float) -> list[str]:
        return ["run", str(script_path)]

    def build_env(self, scratch_dir: Path) -> dict[str, str]:
        env = super().build_env(scratch_dir)
        env.update(
            {
                "GOCACHE": str(self.cache_dir),
                "GOPATH": str(scratch_dir / "gopath"),
                "GOTMPDIR": str(scratch_dir),
                "GOFLAGS": "-buildvcs=false",
                "GOTOOLCHAIN": "local",
                "GOPROXY": "off",
                "GOWORK": "off",
                "CGO_ENABLED": "0",
            }
        )
        return env

    def filter_stderr_lines(self, lines: list[str]) -> list[str]:
        return [line for line in lines if not _GO_NOISE.match(line)]
