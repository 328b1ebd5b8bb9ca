"""Configuration management using Pydantic settings with optional file persistence."""

import json
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Paths ---

APP_NAME = "recipe-replay"


def get_config_dir() -> Path:
    """Get the configuration directory (e.g. ~/.config/recipe-replay)."""
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home() / ".config")).expanduser()
    else:
        base = Path("~/.config").expanduser()

    return base / APP_NAME


def get_default_downloads_dir() -> Path:
    """Get the default directory for files downloaded during replay."""
    base = Path("~/Downloads").expanduser()
    if not base.exists():
        base = Path.home()

    return base / "recipe-replay"


CONFIG_FILE = get_config_dir() / "config.json"


def load_config_file(path: Path | None = None) -> dict[str, Any]:
    """Load settings from the JSON config file if it exists."""
    path = path or CONFIG_FILE
    if not path.exists():
        return {}

    try:
        text = path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        data = json.loads(text)
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def save_config_file(config_data: dict[str, Any], path: Path | None = None) -> Path:
    """Save settings to the JSON config file."""
    path = path or CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config_data, indent=2), encoding="utf-8")
    return path


class BrowserSettings(BaseSettings):
    """Browser configuration."""

    model_config = SettingsConfigDict(env_prefix="RECIPE_REPLAY_BROWSER_")

    headless: bool = Field(default=True)
    heal_headless: bool = Field(default=False, description="Headless mode when healing is enabled (manual re-capture needs a window)")
    channel: Optional[str] = Field(default=None, description="Playwright browser channel (e.g. chrome, msedge)")


class RunnerSettings(BaseSettings):
    """Step execution timeouts and limits."""

    model_config = SettingsConfigDict(env_prefix="RECIPE_REPLAY_RUNNER_")

    http_timeout: float = Field(default=5.0, description="Per-request timeout for HTTP steps in seconds")
    selector_timeout_ms: int = Field(default=1200, description="Per-candidate timeout when trying selectors")
    guard_text_timeout_ms: int = Field(default=1200)
    guard_heal_text_timeout_ms: int = Field(default=5000, description="Longer wait given to a text guard while healing")
    effect_text_timeout_ms: int = Field(default=2000)
    settle_timeout_ms: int = Field(default=3000, description="Best-effort wait for the page to settle after an action")
    download_max_attempts: int = Field(default=1000, description="Maximum filename suffixes tried before a download fails")


class LLMSettings(BaseSettings):
    """Local LLM command used for selector rediscovery and prompted variables."""

    model_config = SettingsConfigDict(env_prefix="RECIPE_REPLAY_LLM_")

    command: str = Field(default="claude", description="Executable invoked as `<command> -p <prompt>`")
    max_html_chars: int = Field(default=30_000)


class StoreSettings(BaseSettings):
    """Storage locations."""

    model_config = SettingsConfigDict(env_prefix="RECIPE_REPLAY_STORE_")

    recipes_dir: Optional[str] = Field(default=None, description="Directory containing recipe YAML files")
    downloads_dir: Optional[str] = Field(default=None, description="Directory for downloaded files")
    secrets_dir: Optional[str] = Field(default=None, description="Directory for the private secret store")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="RECIPE_REPLAY_LOGGING_")

    level: str = Field(default="INFO")
    json_output: bool = Field(default=False, description="Render structured logs as JSON")


class AppSettings(BaseSettings):
    """Root application settings.

    Priority: Environment Variables > Config File > Defaults
    """

    model_config = SettingsConfigDict(env_prefix="RECIPE_REPLAY_", extra="ignore")

    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    runner: RunnerSettings = Field(default_factory=RunnerSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def save(self, path: Path | None = None) -> Path:
        """Save current configuration to file."""
        data = self.model_dump(mode="json", exclude_none=True)
        return save_config_file(data, path)

    def get_recipes_dir(self) -> Path:
        if self.store.recipes_dir:
            return Path(self.store.recipes_dir).expanduser()
        return get_config_dir() / "recipes"

    def get_downloads_dir(self) -> Path:
        if self.store.downloads_dir:
            return Path(self.store.downloads_dir).expanduser()
        return get_default_downloads_dir()

    def get_secrets_dir(self) -> Path:
        if self.store.secrets_dir:
            return Path(self.store.secrets_dir).expanduser()
        return get_config_dir() / "secrets"


def _load_settings() -> AppSettings:
    """Load settings with file config as base, env vars overlay."""
    file_data = load_config_file()
    # Env vars are read by each nested settings class; file values only fill gaps.
    merged: dict[str, Any] = {}
    for section, model_cls in (
        ("browser", BrowserSettings),
        ("runner", RunnerSettings),
        ("llm", LLMSettings),
        ("store", StoreSettings),
        ("logging", LoggingSettings),
    ):
        section_data = file_data.get(section)
        if isinstance(section_data, dict):
            env_model = model_cls()
            overrides = {key: value for key, value in section_data.items() if key not in env_model.model_fields_set}
            merged[section] = model_cls(**{**env_model.model_dump(exclude_unset=True), **overrides})
    return AppSettings(**merged)


settings = _load_settings()
