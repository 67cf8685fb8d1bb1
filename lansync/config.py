import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

_CONFIG_PATH = os.getenv("LANSYNC_CONFIG", "config.toml")
_ENV_PATH = os.getenv("LANSYNC_ENV", ".env")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LANSYNC_",
        env_nested_delimiter="__",
        toml_file=_CONFIG_PATH,
        env_file=_ENV_PATH,
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 3000

    storage_path: Path = Field(default=Path("storage"))
    temp_path: Path = Field(default=Path("temp"))
    static_path: Path = Field(default=Path("public"))
    logs_dir: Path = Field(default=Path("logs"))

    max_file_size: int = 10 * 1024 * 1024 * 1024  # 10GB per file or chunk
    session_ttl_seconds: int = 24 * 60 * 60
    cleanup_interval_seconds: int = 60 * 60

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Source order: init args > OS env > .env > config.toml > secrets
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


settings = Settings()
