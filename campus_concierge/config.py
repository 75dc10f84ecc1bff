"""Configuration management for the Campus Concierge."""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BUNDLED_DATA_DIR = Path(__file__).parent / "data"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Generative fallback provider: "openai" (any OpenAI-compatible endpoint) or "ollama"
    llm_provider: str = Field(default="openai")

    # OpenAI Configuration
    openai_api_key: Optional[str] = Field(default=None)
    openai_base_url: Optional[str] = Field(default=None)
    openai_chat_model: str = Field(default="gpt-4o-mini")

    # Ollama Configuration
    ollama_url: str = Field(default="http://localhost:11434")
    ollama_model: str = Field(default="llama3.1:8b")

    # Fallback behaviour
    allow_llm_fallback: bool = Field(default=True)
    fallback_temperature: float = Field(default=0.2)
    fallback_max_tokens: int = Field(default=800)
    # Deadline applied by the HTTP boundary, the engine itself never times out
    fallback_timeout_seconds: Optional[float] = Field(default=30.0)

    # Data Paths (defaults point at the datasets shipped inside the package)
    knowledge_base_path: Path = Field(default=BUNDLED_DATA_DIR / "campus_data.json")
    eval_set_path: Path = Field(default=BUNDLED_DATA_DIR / "student_support_eval_set.yaml")

    # Logging
    log_level: str = Field(default="INFO")

    def resolve_path(self, path: Path) -> Path:
        """Resolve a configured path; relative paths are taken from the working directory."""
        path = Path(path).expanduser()
        if path.is_absolute():
            return path
        return Path.cwd() / path


# Global settings instance
settings = Settings()
