"""Runs one custom command script with an allowlisted builtins namespace.

Usage: python -I -S -B python_runner.py <script_path>

Bindings (message, author, channel, guild, command) arrive as one JSON
document on stdin and are exposed read-only. Anything written with reply()
or print() goes to stdout and becomes the reply. A failing script prints a
single "ErrorType: message (line N)" line on stderr and exits 1.
"""

from __future__ import annotations

import builtins
import json
import sys
import types

SCRIPT_FILENAME = "<script>"

SAFE_BUILTINS = (
    "abs",
    "all",
    "any",
    "ascii",
    "bin",
    "bool",
    "bytes",
    "callable",
    "chr",
    "complex",
    "dict",
    "divmod",
    "enumerate",
    "filter",
    "float",
    "format",
    "frozenset",
    "hash",
    "hex",
    "int",
    "isinstance",
    "issubclass",
    "iter",
    "len",
    "list",
    "map",
    "max",
    "min",
    "next",
    "object",
    "oct",
    "ord",
    "pow",
    "print",
    "range",
    "repr",
    "reversed",
    "round",
    "set",
    "slice",
    "sorted",
    "str",
    "sum",
    "super",
    "tuple",
    "zip",
    "__build_class__",
    "ArithmeticError",
    "AssertionError",
    "AttributeError",
    "Exception",
    "IndexError",
    "KeyError",
    "LookupError",
    "NameError",
    "NotImplementedError",
    "OverflowError",
    "RuntimeError",
    "StopIteration",
    "TypeError",
    "ValueError",
    "ZeroDivisionError",
)

ALLOWED_MODULES = frozenset(
    {
        "collections",
        "datetime",
        "functools",
        "itertools",
        "json",
        "math",
        "random",
        "re",
        "statistics",
        "string",
        "textwrap",
    }
)

_module_views: dict[str, types.SimpleNamespace] = {}

# Names removed from this module before the script runs. The script's frame
# chain leads back here, so nothing in these globals may reach the host.
_HOST_NAMES = ("builtins", "json", "sys", "types", "_public_view", "_freeze", "_load_views")


def _public_view(module: types.ModuleType) -> types.SimpleNamespace:
    """Public, non-module attributes of an allowlisted module."""
    names = getattr(module, "__all__", None) or [n for n in dir(module) if not n.startswith("_")]
    attrs = {}
    for attr in names:
        value = getattr(module, attr, None)
        if value is not None and not isinstance(value, types.ModuleType):
            attrs[attr] = value
    return types.SimpleNamespace(**attrs)


def _load_views() -> None:
    # Imported up front so the import hook never needs the real __import__
    for name in sorted(ALLOWED_MODULES):
        _module_views[name] = _public_view(builtins.__import__(name))


def _limited_import(name, globals=None, locals=None, fromlist=(), level=0):  # noqa: A002
    if level != 0 or name not in _module_views:
        raise ImportError(f"import of '{name}' is not allowed")
    return _module_views[name]


def _freeze(value):
    if isinstance(value, dict):
        return types.MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


def reply(*parts, sep=" "):
    """Append a line to the command's reply."""
    print(*parts, sep=sep)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, SyntaxError):
        return f"SyntaxError: {exc.msg} (line {exc.lineno})"
    line = None
    tb = exc.__traceback__
    while tb is not None:
        if tb.tb_frame.f_code.co_filename == SCRIPT_FILENAME:
            line = tb.tb_lineno
        tb = tb.tb_next
    detail = f"{type(exc).__name__}: {exc}"
    return f"{detail} (line {line})" if line is not None else detail


def _scrub_globals(safe_builtins: dict) -> None:
    module_globals = globals()
    for name in _HOST_NAMES:
        module_globals.pop(name, None)
    module_globals["__builtins__"] = safe_builtins


def main() -> int:
    script_path = sys.argv[1]
    with open(script_path, encoding="utf-8") as f:
        source = f.read()

    raw = sys.stdin.read()
    bindings = json.loads(raw) if raw.strip() else {}
    flush = sys.stdout.flush
    report = sys.stderr.write

    _load_views()
    safe_builtins = {name: getattr(builtins, name) for name in SAFE_BUILTINS}
    safe_builtins["__import__"] = _limited_import

    namespace = {
        "__builtins__": safe_builtins,
        "__name__": "__command__",
        "reply": reply,
    }
    for key in ("message", "author", "channel", "guild", "command"):
        namespace[key] = _freeze(bindings.get(key))

    try:
        code = compile(source, SCRIPT_FILENAME, "exec")
    except SyntaxError as exc:
        report(_describe(exc) + "\n")
        return 1

    del source, raw, bindings, f
    _scrub_globals(safe_builtins)
    try:
        exec(code, namespace)  # noqa: S102
    except Exception as exc:  # noqa: BLE001
        flush()
        report(_describe(exc) + "\n")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
