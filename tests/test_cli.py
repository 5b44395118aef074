"""Tests for the command-engine CLI.

Uses click's CliRunner with the test interpreter configured through
COMMAND_ENGINE_PYTHON_BIN.
"""

import json
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from command_engine.cli import (
    EXIT_NO_MATCH,
    EXIT_REJECTED,
    EXIT_RUNTIME_UNAVAILABLE,
    EXIT_SCRIPT_ERROR,
    EXIT_SUCCESS,
    EXIT_TIMEOUT,
    detect_language,
    main,
)
from command_engine.models import Language


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def cli_env(tmp_path: Path) -> dict[str, str]:
    return {
        "COMMAND_ENGINE_PYTHON_BIN": sys.executable,
        "COMMAND_ENGINE_SCRATCH_DIR": str(tmp_path / "scratch"),
        "COMMAND_ENGINE_GO_CACHE_DIR": str(tmp_path / "go-build"),
    }


@pytest.fixture
def commands_file(tmp_path: Path) -> Path:
    path = tmp_path / "commands.json"
    path.write_text(
        json.dumps(
            {
                "prefixes": {"local": "!"},
                "commands": [
                    {
                        "id": "ping",
                        "tenant_id": "local",
                        "trigger": "ping",
                        "language": "python",
                        "code": "reply('pong', author['id'])",
                        "cooldown_ms": 5000,
                    },
                    {
                        "id": "mods",
                        "tenant_id": "local",
                        "trigger": "ban",
                        "language": "python",
                        "code": "reply('banned')",
                        "role_restriction": ["mod"],
                    },
                ],
            }
        )
    )
    return path


# ============================================================================
# Helpers
# ============================================================================


class TestDetectLanguage:
    @pytest.mark.parametrize(
        ("source", "expected"),
        [
            ("script.py", Language.PYTHON),
            ("bot.JS", Language.JAVASCRIPT),
            ("main.go", Language.GO),
            ("notes.txt", None),
            ("-", None),
            (None, None),
        ],
    )
    def test_detect(self, source: str | None, expected: Language | None) -> None:
        assert detect_language(source) == expected


# ============================================================================
# run
# ============================================================================


class TestRun:
    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "command-engine" in result.output

    def test_inline_code(self, runner: CliRunner, cli_env: dict[str, str]) -> None:
        result = runner.invoke(main, ["-q", "run", "-l", "python", "-c", "reply('pong')"], env=cli_env)
        assert result.exit_code == EXIT_SUCCESS, result.output
        assert "pong" in result.output

    def test_message_binding(self, runner: CliRunner, cli_env: dict[str, str]) -> None:
        result = runner.invoke(
            main, ["-q", "run", "-c", "reply(message['content'].upper())", "-m", "hello"], env=cli_env
        )
        assert result.exit_code == EXIT_SUCCESS, result.output
        assert "HELLO" in result.output

    def test_file_source(self, runner: CliRunner, cli_env: dict[str, str], tmp_path: Path) -> None:
        script = tmp_path / "hello.py"
        script.write_text("reply('from file')\n")
        result = runner.invoke(main, ["-q", "run", str(script)], env=cli_env)
        assert result.exit_code == EXIT_SUCCESS, result.output
        assert "from file" in result.output

    def test_stdin_source(self, runner: CliRunner, cli_env: dict[str, str]) -> None:
        result = runner.invoke(main, ["-q", "run", "-"], input="reply('piped')\n", env=cli_env)
        assert result.exit_code == EXIT_SUCCESS, result.output
        assert "piped" in result.output

    def test_rejected(self, runner: CliRunner, cli_env: dict[str, str]) -> None:
        result = runner.invoke(main, ["-q", "run", "-c", "import subprocess"], env=cli_env)
        assert result.exit_code == EXIT_REJECTED
        assert "Code rejected" in result.output

    def test_script_error(self, runner: CliRunner, cli_env: dict[str, str]) -> None:
        result = runner.invoke(main, ["-q", "run", "-c", "reply(1 / 0)"], env=cli_env)
        assert result.exit_code == EXIT_SCRIPT_ERROR
        assert "ZeroDivisionError" in result.output

    def test_timeout(self, runner: CliRunner, cli_env: dict[str, str]) -> None:
        result = runner.invoke(main, ["-q", "run", "-t", "0.5", "-c", "while True:\n    pass\n"], env=cli_env)
        assert result.exit_code == EXIT_TIMEOUT

    def test_json_output(self, runner: CliRunner, cli_env: dict[str, str]) -> None:
        result = runner.invoke(main, ["-q", "run", "--json", "-c", "reply('pong')"], env=cli_env)
        assert result.exit_code == EXIT_SUCCESS
        payload = json.loads(result.output)
        assert payload["status"] == "success"
        assert payload["output"] == "pong\n"

    def test_missing_interpreter(self, runner: CliRunner, cli_env: dict[str, str]) -> None:
        env = {**cli_env, "COMMAND_ENGINE_PYTHON_BIN": "no-such-python-xyz"}
        result = runner.invoke(main, ["-q", "run", "-c", "reply('x')"], env=env)
        assert result.exit_code == EXIT_RUNTIME_UNAVAILABLE
        assert "Runtime unavailable" in result.output

    def test_no_code(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["run"])
        assert result.exit_code == 2
        assert "No code provided" in result.output

    def test_invalid_timeout(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["run", "-t", "999", "-c", "reply(1)"])
        assert result.exit_code == 2


# ============================================================================
# simulate
# ============================================================================


class TestSimulate:
    def test_match(self, runner: CliRunner, cli_env: dict[str, str], commands_file: Path) -> None:
        result = runner.invoke(main, ["-q", "simulate", str(commands_file), "!ping", "--author", "alice"], env=cli_env)
        assert result.exit_code == EXIT_SUCCESS, result.output
        assert "pong alice" in result.output

    def test_no_match(self, runner: CliRunner, cli_env: dict[str, str], commands_file: Path) -> None:
        result = runner.invoke(main, ["-q", "simulate", str(commands_file), "hello"], env=cli_env)
        assert result.exit_code == EXIT_NO_MATCH
        assert "No command matched" in result.output

    def test_role_restriction(self, runner: CliRunner, cli_env: dict[str, str], commands_file: Path) -> None:
        denied = runner.invoke(main, ["-q", "simulate", str(commands_file), "!ban"], env=cli_env)
        assert denied.exit_code == EXIT_NO_MATCH

        allowed = runner.invoke(main, ["-q", "simulate", str(commands_file), "!ban", "-r", "mod"], env=cli_env)
        assert allowed.exit_code == EXIT_SUCCESS, allowed.output
        assert "banned" in allowed.output

    def test_repeat_hits_cooldown(self, runner: CliRunner, cli_env: dict[str, str], commands_file: Path) -> None:
        result = runner.invoke(main, ["-q", "simulate", str(commands_file), "!ping", "-n", "2", "--json"], env=cli_env)
        assert result.exit_code == EXIT_SUCCESS, result.output
        assert '"rate_limited"' in result.output

    def test_missing_file(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(main, ["simulate", str(tmp_path / "nope.json"), "!ping"])
        assert result.exit_code == 2


# ============================================================================
# probe
# ============================================================================


class TestProbe:
    def test_json(self, runner: CliRunner, cli_env: dict[str, str]) -> None:
        env = {**cli_env, "COMMAND_ENGINE_NODE_BIN": "no-such-node-xyz"}
        result = runner.invoke(main, ["-q", "probe", "--json"], env=env)
        assert result.exit_code == EXIT_RUNTIME_UNAVAILABLE
        availability = json.loads(result.output)
        assert availability["python"] is True
        assert availability["javascript"] is False

    def test_table(self, runner: CliRunner, cli_env: dict[str, str]) -> None:
        result = runner.invoke(main, ["-q", "probe"], env=cli_env)
        assert "python" in result.output
        assert sys.executable in result.output
