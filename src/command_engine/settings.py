"""Runtime configuration from environment variables."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from command_engine.platform_utils import get_cache_dir


class Settings(BaseSettings):
    """Host-level settings from environment variables.

    All settings can be overridden via environment variables with the
    COMMAND_ENGINE_ prefix.
    Example: COMMAND_ENGINE_NODE_BIN=/opt/node/bin/node
    """

    model_config = SettingsConfigDict(
        env_prefix="COMMAND_ENGINE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Interpreters (resolved through PATH when not absolute)
    node_bin: str = "node"
    python_bin: str = "python3"
    go_bin: str = "go"

    # Scratch files - None uses the system temp directory
    scratch_dir: Path | None = None
    go_cache_dir: Path = Field(default_factory=lambda: get_cache_dir() / "go-build")

    # OS-level confinement prepended to every interpreter argv,
    # e.g. ["nsjail", "--quiet", "--"] or ["firejail", "--quiet", "--net=none"].
    # JSON list in the environment: COMMAND_ENGINE_SANDBOX_WRAPPER='["firejail","--quiet"]'
    sandbox_wrapper: list[str] = Field(default_factory=list)
