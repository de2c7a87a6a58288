"""Application settings loaded from the environment."""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """TaskPulse settings.

    Values come from environment variables or a .env file, prefixed with
    TASKPULSE_ (e.g., TASKPULSE_DATABASE_URL).
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKPULSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(
        default="sqlite:///./taskpulse.db",
        description="SQLAlchemy database URL (postgresql+psycopg2://... in production)",
    )
    sql_echo: bool = Field(default=False, description="Echo SQL statements to the log")

    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Origins allowed by the CORS middleware",
    )
    log_level: str = Field(default="INFO", description="Root log level")
    api_host: str = Field(default="0.0.0.0", description="Bind address for the API server")
    api_port: int = Field(default=8000, description="Port for the API server")

    # Q&A assistant (OpenAI-compatible chat completion endpoint)
    llm_api_key: str = Field(default="", description="API key for the chat completion service")
    llm_base_url: str = Field(
        default="https://api.groq.com/openai/v1",
        description="Base URL of the chat completion service",
    )
    llm_model: str = Field(default="llama-3.1-8b-instant", description="Model used by the assistant")
    llm_timeout_seconds: float = Field(default=30.0, description="HTTP timeout for assistant calls")


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
