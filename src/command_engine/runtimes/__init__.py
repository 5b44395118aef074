"""Sandbox runtimes, one per supported language."""

from command_engine.runtimes.base import SandboxRuntime
from command_engine.runtimes.go import GoRuntime
from command_engine.runtimes.javascript import JavaScriptRuntime
from command_engine.runtimes.pool import RuntimePool
from command_engine.runtimes.python import PythonRuntime
from command_engine.runtimes.subprocess_runtime import SubprocessRuntime

__all__ = [
    "GoRuntime",
    "JavaScriptRuntime",
    "PythonRuntime",
    "RuntimePool",
    "SandboxRuntime",
    "SubprocessRuntime",
]
