from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    # Database; when unset the service runs on in-memory stores
    database_url: str | None = Field(default=None, alias="DATABASE_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    # Development mode flag - enables SQL echo and verbose startup logs
    development_mode: bool = Field(default=False, alias="DEVELOPMENT_MODE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def sqlalchemy_database_url(self) -> str | None:
        """Return the SQLAlchemy URL, or None when persistence is in-memory."""
        if self.database_url and self.database_url.strip():
            return self.database_url.strip()
        return None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def is_development_mode() -> bool:
    """Returns True only if DEVELOPMENT_MODE=true is set."""
    return bool(get_settings().development_mode)
