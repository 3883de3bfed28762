"""Application configuration pulled from environment variables via pydantic."""
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="velopass/config")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:115.0) Gecko/20100101 Firefox/115.0"
)


class Settings(BaseSettings):
    """Environment-driven configuration for the membership advisor."""
    model_config = SettingsConfigDict(env_prefix="VELOPASS_", extra="ignore")

    fetch_timeout_seconds: float = Field(default=20.0, gt=0)
    user_agent: str = DEFAULT_USER_AGENT
    passage_min_chars: int = Field(default=25, ge=1)
    passage_max_chars: int = 600
    retrieval_top_k: int = Field(default=4, ge=1)
    default_membership_weeks: int = Field(default=4, ge=1)
    upload_dir: str = "uploads"
    max_upload_bytes: int = 25 * 1024 * 1024
    api_key: str | None = None
    log_level: str = "INFO"

    @field_validator("log_level", mode="after")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        """Normalize level names so 'debug' and 'DEBUG' behave the same."""
        return v.strip().upper()

    @model_validator(mode="after")
    def check_passage_bounds(self) -> "Settings":
        """Reject inverted passage length bounds."""
        if self.passage_min_chars > self.passage_max_chars:
            raise ValueError("passage_min_chars must not exceed passage_max_chars")
        return self


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4)}")
