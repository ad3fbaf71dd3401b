from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from gapwise.domain.constants import (
    CRITICAL_THRESHOLD,
    DEFAULT_COVERAGE_THRESHOLD,
    DEFAULT_DAILY_ITEMS,
    DEFAULT_DAILY_MINUTES,
    DEFAULT_DESIRED_RETENTION,
    DEFAULT_REVIEW_SHARE,
    DEFAULT_TOP_GAPS,
    STRONG_THRESHOLD,
    WEAK_THRESHOLD,
)

CONFIG_FILES = [
    Path.home() / ".config/gapwise/config.toml",
    Path.home() / ".gapwise.toml",
]


class AppConfig(BaseSettings):
    """
    Configuration model for gapwise.
    Supports loading from:
    1. Environment variables (GAPWISE_*)
    2. Config file (~/.config/gapwise/config.toml)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="GAPWISE_",
        extra="ignore",
    )

    # Storage
    backend: Literal["sqlite", "memory"] = "sqlite"
    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".local/share/gapwise/gapwise.db"
    )

    # Scheduling
    desired_retention: float = DEFAULT_DESIRED_RETENTION

    # Mastery thresholds
    critical_threshold: float = CRITICAL_THRESHOLD
    weak_threshold: float = WEAK_THRESHOLD
    strong_threshold: float = STRONG_THRESHOLD

    # Daily plan
    daily_item_budget: int = Field(default=DEFAULT_DAILY_ITEMS, ge=0)
    daily_time_budget_minutes: float = Field(default=DEFAULT_DAILY_MINUTES, ge=0)
    review_share: float = DEFAULT_REVIEW_SHARE
    coverage_threshold: int = Field(default=DEFAULT_COVERAGE_THRESHOLD, ge=1)
    top_gaps_limit: int = Field(default=DEFAULT_TOP_GAPS, ge=0)

    verbose: int = 1

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # First existing file wins; init (CLI) overrides env, env overrides the file.
        toml_file = next((f for f in CONFIG_FILES if f.exists()), None)

        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("database_path", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path:
        return Path(v).expanduser()

    @field_validator("desired_retention")
    @classmethod
    def check_retention(cls, v: float) -> float:
        if not 0.0 < v < 1.0:
            raise ValueError("desired_retention must be strictly between 0 and 1")
        return v

    @field_validator("review_share")
    @classmethod
    def check_review_share(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("review_share must be between 0 and 1")
        return v

    @model_validator(mode="after")
    def check_thresholds(self) -> "AppConfig":
        if not (
            0.0 <= self.critical_threshold <= self.weak_threshold <= self.strong_threshold <= 100.0
        ):
            raise ValueError("Thresholds must satisfy 0 <= critical <= weak <= strong <= 100")
        return self


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/gapwise/config.toml (if exists)
    3. Environment variables (GAPWISE_*)
    4. cli_overrides (passed from Typer)
    """
    # Typer passes None for options the user did not set.
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
