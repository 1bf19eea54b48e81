from pathlib import Path
from typing import Literal

from dotenv import set_key
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "ZETTEL_"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, env_file=".env", extra="ignore")

    # Notes and rules
    originals_dir: Path = Path("originals")
    rules_file: Path = Path("rules.yml")
    links_dir: Path = Path(".")

    # Dictionary backends
    backend: Literal["flat", "sqlite", "mirrored"] = "flat"
    dictionary_file: Path = Path("dictionary.yml")
    database_path: Path = Path("zettelkasten.db")
    backup_dir: Path = Path("backups")
    lock_retries: int = 5
    lock_backoff_seconds: float = 0.1
    busy_timeout_seconds: float = 5.0

    # Keyword suggestions
    suggestion_endpoint: str = "https://api.openai.com/v1/responses"
    suggestion_api_key: str = ""
    suggestion_model: str = "gpt-4o-mini"
    suggestion_temperature: float = Field(default=0.2, ge=0.0, le=1.0)
    suggestion_max_output_tokens: int = 256
    suggestion_timeout_seconds: float = 30.0
    default_confidence: float = Field(default=0.95, ge=0.0, le=1.0)

    # API basic auth
    auth_username: str = "admin"
    auth_password: str = ""

    log_file: Path = Path("zettelkasten.log")
    log_level: str = "INFO"  # Can be DEBUG, INFO, WARNING, ERROR, CRITICAL
    debug: bool = False

    def save(self, filepath: str | Path = ".env") -> Path:
        """Persist every setting to a dotenv file so the next run picks them up.

        Args:
            filepath: dotenv file to create or update in place

        Returns:
            Path of the written file
        """
        path = Path(filepath)
        path.touch(exist_ok=True)
        for name, value in self.model_dump().items():
            set_key(str(path), f"{ENV_PREFIX}{name.upper()}", str(value), quote_mode="never")
        return path

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level
