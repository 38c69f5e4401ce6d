"""Configuration management."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_APP_NAME = "chat-tui"


def _default_state_dir() -> Path:
    """Return the per-user cache root ($XDG_CACHE_HOME or ~/.cache)."""
    xdg_cache = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache:
        return Path(xdg_cache)
    return Path.home() / ".cache"


class Config(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="CHAT_TUI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = Field(
        default=DEFAULT_APP_NAME,
        description="Application name, used to locate the trust file and history",
    )
    engine: str | None = Field(
        default=None,
        description="Engine factory as 'module:callable'",
    )

    # Trust
    trusted_repo_prefixes: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Origins trusted without asking (path-segment prefix match)",
    )
    system_tool_prefix: str = Field(
        default="#!sys.",
        description="Instruction prefix that marks a built-in system tool",
    )
    raw_tool_prefix: str = Field(
        default="#!",
        description="Instruction prefix whose output is shown boxed and unformatted",
    )
    exec_always_scope_directory: bool = Field(
        default=False,
        description="Also match the working directory for 'always' exec rules",
    )

    # Run options forwarded to the engine
    disable_cache: bool = False
    credential_overrides: Annotated[list[str], NoDecode] = Field(default_factory=list)
    input: str = ""
    cache_dir: Path | None = None
    sub_tool: str = ""
    chat_state: str = ""
    save_chat_state_file: Path | None = None
    workspace: Path | None = None
    user_start_conversation: bool | None = None
    location: str = ""

    # Session output
    event_log: Path | None = Field(
        default=None,
        description="Append one JSON record per non-progress event to this file",
    )
    load_message: str = Field(
        default="",
        description="Printed when the engine has produced no event after a second",
    )
    paint_interval: float = Field(
        default=0.2,
        gt=0,
        description="Seconds between background repaints",
    )
    state_dir: Path = Field(
        default_factory=_default_state_dir,
        description="Cache root holding per-application state",
    )

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_backup_count: int = 7

    @field_validator("trusted_repo_prefixes", "credential_overrides", mode="before")
    @classmethod
    def parse_string_list(cls, v: str | list[str]) -> list[str]:
        """Parse a list setting given as a JSON array or a comma-separated string."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return [str(p) for p in parsed]
            except json.JSONDecodeError:
                pass
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    @property
    def app_state_dir(self) -> Path:
        """Directory holding this application's persisted state."""
        return self.state_dir / self.app_name

    @property
    def trust_file(self) -> Path:
        """Path of the persisted trusted-origin map."""
        return self.app_state_dir / "authorized.json"

    @property
    def history_dir(self) -> Path:
        """Directory holding per-tool line-editing history."""
        return self.app_state_dir


_config: Config | None = None


def get_config() -> Config:
    """
    Return the global settings instance.

    Returns:
        settings instance
    """
    global _config
    if _config is None:
        _config = Config()
    return _config
