"""Command-line interface for command-engine.

Operator and developer tooling around the library:

Usage:
    command-engine run -l python "reply('pong')"          # Validate + run a snippet
    command-engine run script.js                           # Run a file
    command-engine simulate commands.json '!ping'          # Full pipeline
    command-engine probe                                   # Interpreter availability
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

import click

from command_engine import __version__
from command_engine._logging import configure_logging
from command_engine.config import EngineConfig
from command_engine.constants import DEFAULT_TIMEOUT_SECONDS, MAX_TIMEOUT_SECONDS, MIN_TIMEOUT_SECONDS
from command_engine.coordinator import ExecutionCoordinator
from command_engine.models import ExecutionResult, ExecutionStatus, InboundMessage, Language
from command_engine.runtimes.pool import RuntimePool
from command_engine.settings import Settings
from command_engine.stores import InMemoryAuditSink, JsonFileCommandRegistry
from command_engine.validator import CodeValidator

if TYPE_CHECKING:
    from command_engine.models import ExecutionOutcome

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_SCRIPT_ERROR = 1
EXIT_CLI_ERROR = 2
EXIT_NO_MATCH = 3
EXIT_TIMEOUT = 124  # Matches `timeout` command
EXIT_RUNTIME_UNAVAILABLE = 125
EXIT_REJECTED = 126

STATUS_EXIT_CODES: dict[ExecutionStatus, int] = {
    ExecutionStatus.SUCCESS: EXIT_SUCCESS,
    ExecutionStatus.SCRIPT_ERROR: EXIT_SCRIPT_ERROR,
    ExecutionStatus.SECURITY_REJECTED: EXIT_REJECTED,
    ExecutionStatus.TIMEOUT: EXIT_TIMEOUT,
    ExecutionStatus.RATE_LIMITED: EXIT_SUCCESS,
    ExecutionStatus.RUNTIME_UNAVAILABLE: EXIT_RUNTIME_UNAVAILABLE,
}

# File extension to language mapping
EXTENSION_MAP: dict[str, Language] = {
    ".py": Language.PYTHON,
    ".js": Language.JAVASCRIPT,
    ".mjs": Language.JAVASCRIPT,
    ".go": Language.GO,
}

LANGUAGE_CHOICES = [language.value for language in Language]


def detect_language(source: str | None) -> Language | None:
    """Auto-detect language from a file extension."""
    if not source or source == "-":
        return None
    return EXTENSION_MAP.get(Path(source).suffix.lower())


def read_source(source: str | None, inline_code: str | None) -> str:
    """Resolve code from -c, stdin ("-"), a file path, or inline SOURCE.

    Raises:
        click.UsageError: No code or empty code
    """
    if inline_code:
        code = inline_code
    elif source == "-":
        if sys.stdin.isatty():
            raise click.UsageError("No input provided. Pipe code to stdin or use -c flag.")
        code = sys.stdin.read()
    elif source:
        path = Path(source)
        code = path.read_text(encoding="utf-8") if path.is_file() else source
    else:
        raise click.UsageError("No code provided. Provide SOURCE argument or use -c flag.")

    if not code.strip():
        raise click.UsageError("Empty code provided.")
    return code


def format_error(title: str, message: str, suggestions: list[str] | None = None) -> str:
    """Format an error message following What -> Why -> Fix."""
    lines = [
        click.style(f"Error: {title}", fg="red", bold=True),
        "",
        f"  {message}",
    ]
    if suggestions:
        lines.extend(["", "  Suggestions:"])
        lines.extend(f"    • {suggestion}" for suggestion in suggestions)
    return "\n".join(lines)


def echo_result(result: ExecutionResult, *, json_output: bool, quiet: bool) -> None:
    """Print a runtime result: output on stdout, diagnostics on stderr."""
    if json_output:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        return

    if result.output:
        click.echo(result.output, nl=not result.output.endswith("\n"))
    if result.truncated:
        click.echo(click.style("(output truncated)", fg="yellow"), err=True)

    match result.status:
        case ExecutionStatus.SCRIPT_ERROR:
            click.echo(format_error("Script error", result.error_summary or "the script failed"), err=True)
        case ExecutionStatus.TIMEOUT:
            click.echo(
                format_error(
                    "Execution timed out",
                    result.error_summary or "the script did not finish in time",
                    ["Increase timeout with -t/--timeout", "Check for infinite loops in your code"],
                ),
                err=True,
            )
        case ExecutionStatus.RUNTIME_UNAVAILABLE:
            click.echo(
                format_error(
                    "Runtime unavailable",
                    result.error_summary or "the interpreter could not be started",
                    ["Run `command-engine probe` to see which interpreters are installed"],
                ),
                err=True,
            )
        case _:
            if not quiet and sys.stdout.isatty():
                click.echo(click.style(f"✓ Done in {result.duration_ms}ms", fg="green", dim=True), err=True)


def echo_outcome(outcome: ExecutionOutcome, *, json_output: bool) -> None:
    if json_output:
        click.echo(json.dumps(outcome.model_dump(mode="json"), indent=2))
        return
    status = outcome.result.status.value
    click.echo(click.style(f"[{outcome.command_id}] {status} ({outcome.result.duration_ms}ms)", dim=True), err=True)
    if outcome.reply:
        click.echo(outcome.reply)


async def run_snippet(code: str, language: Language, timeout: float, message: str) -> ExecutionResult:
    """Validate and execute a snippet outside the message pipeline."""
    config = EngineConfig(execution_timeout_seconds=timeout, max_concurrent_executions=1)
    validation = CodeValidator(max_code_bytes=config.max_code_bytes).validate(language, code)
    if not validation.ok:
        return ExecutionResult(
            status=ExecutionStatus.SECURITY_REJECTED,
            error_summary=f"{validation.reason} ({validation.category})",
        )
    pool = RuntimePool.from_settings(Settings(), config)
    bindings = {
        "message": {"id": None, "content": message},
        "author": {"id": "cli", "roles": []},
        "channel": {"id": "cli"},
        "guild": {"id": "cli"},
        "command": {"id": "cli", "trigger": ""},
    }
    return await pool.execute(language, code, bindings, timeout)


async def simulate_messages(
    commands_file: Path,
    message: InboundMessage,
    repeat: int,
) -> list[ExecutionOutcome | None]:
    registry = JsonFileCommandRegistry(commands_file)
    async with ExecutionCoordinator(registry=registry, audit_sink=InMemoryAuditSink()) as engine:
        return [await engine.handle_message(message) for _ in range(repeat)]


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-v", "--verbose", is_flag=True, help="Show debug logs")
@click.option("-q", "--quiet", is_flag=True, help="Only show errors")
@click.version_option(__version__, "-V", "--version", prog_name="command-engine")
@click.pass_context
def main(ctx: click.Context, verbose: bool, quiet: bool) -> None:
    """Run untrusted custom-command scripts the way the chat bot does."""
    configure_logging(level="DEBUG" if verbose else "WARNING", quiet=quiet)
    ctx.obj = {"quiet": quiet}


@main.command()
@click.argument("source", required=False)
@click.option(
    "-l",
    "--language",
    type=click.Choice(LANGUAGE_CHOICES, case_sensitive=False),
    help="Script language (auto-detected from file extension)",
)
@click.option("-c", "--code", "inline_code", help="Code to execute (alternative to SOURCE)")
@click.option(
    "-t",
    "--timeout",
    type=click.FloatRange(MIN_TIMEOUT_SECONDS, MAX_TIMEOUT_SECONDS),
    default=DEFAULT_TIMEOUT_SECONDS,
    show_default=True,
    help="Timeout in seconds",
)
@click.option("-m", "--message", default="", help="Message text exposed to the script")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def run(
    ctx: click.Context,
    source: str | None,
    language: str | None,
    inline_code: str | None,
    timeout: float,
    message: str,
    json_output: bool,
) -> NoReturn:
    """Validate and run a script.

    SOURCE can be inline code, a file path, or "-" for stdin. Language is
    auto-detected from the file extension and defaults to Python.

    Examples:

    \b
      command-engine run "reply('pong')"
      command-engine run -l javascript "reply(message.content)" -m hello
      command-engine run main.go -t 10
    """
    code = read_source(source, inline_code)
    resolved = Language(language.lower()) if language else (detect_language(source) or Language.PYTHON)

    result = asyncio.run(run_snippet(code, resolved, timeout, message))
    if result.status == ExecutionStatus.SECURITY_REJECTED and not json_output:
        click.echo(format_error("Code rejected", result.error_summary or "disallowed construct"), err=True)
    else:
        echo_result(result, json_output=json_output, quiet=ctx.obj["quiet"])
    sys.exit(STATUS_EXIT_CODES[result.status])


@main.command()
@click.argument("commands_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("text")
@click.option("--tenant", default="local", show_default=True, help="Tenant (guild) id")
@click.option("--author", default="user", show_default=True, help="Author id")
@click.option("--channel", default="general", show_default=True, help="Channel id")
@click.option("-r", "--role", "roles", multiple=True, help="Author role (repeatable)")
@click.option(
    "-n", "--repeat", type=click.IntRange(1, 100), default=1, show_default=True, help="Send the message N times"
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def simulate(
    commands_file: Path,
    text: str,
    tenant: str,
    author: str,
    channel: str,
    roles: tuple[str, ...],
    repeat: int,
    json_output: bool,
) -> NoReturn:
    """Feed a message through the full pipeline against COMMANDS_FILE.

    COMMANDS_FILE is JSON: {"prefixes": {...}, "commands": [...]} or a bare
    list of commands.
    """
    message = InboundMessage(
        tenant_id=tenant,
        author_id=author,
        author_roles=frozenset(roles),
        channel_id=channel,
        text=text,
    )
    outcomes = asyncio.run(simulate_messages(commands_file, message, repeat))

    exit_code = EXIT_SUCCESS
    for outcome in outcomes:
        if outcome is None:
            click.echo(click.style("No command matched", fg="yellow"), err=True)
            exit_code = EXIT_NO_MATCH
            continue
        echo_outcome(outcome, json_output=json_output)
        exit_code = STATUS_EXIT_CODES[outcome.result.status]
    sys.exit(exit_code)


@main.command()
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def probe(json_output: bool) -> NoReturn:
    """Report which language interpreters are installed."""
    settings = Settings()
    availability = asyncio.run(RuntimePool.from_settings(settings, EngineConfig()).probe())

    if json_output:
        click.echo(json.dumps({language.value: ok for language, ok in availability.items()}, indent=2))
    else:
        binaries = {
            Language.JAVASCRIPT: settings.node_bin,
            Language.PYTHON: settings.python_bin,
            Language.GO: settings.go_bin,
        }
        for language, ok in availability.items():
            mark = click.style("✓", fg="green") if ok else click.style("✗", fg="red")
            click.echo(f"{mark} {language.value:<11} {binaries[language]}")

    sys.exit(EXIT_SUCCESS if all(availability.values()) else EXIT_RUNTIME_UNAVAILABLE)


if __name__ == "__main__":
    main()
