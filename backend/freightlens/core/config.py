"""Application configuration using pydantic-settings."""
from functools import lru_cache
from pathlib import Path
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        case_sensitive=False,
    )

    # Reasoning service (OpenAI-compatible chat completions with tools)
    openai_api_key: str = ""
    openai_base_url: str | None = None
    reasoning_model: str = "gpt-4o-mini"
    reasoning_temperature: float = 0.1
    reasoning_timeout_seconds: float = 45.0

    # Application
    log_level: str = "INFO"
    shipments_db_path: str = "./data/shipments.db"
    default_tenant_id: str = "demo"
    # Optional file whose contents replace the built-in investigator prompt.
    system_prompt_path: str = ""

    # Reasoning trace truncation
    reasoning_max_chars: int = 500
    tool_result_preview_chars: int = 400

    def resolved_openai_api_key(self) -> str | None:
        """
        Resolve API key for OpenAI-compatible clients.

        Local endpoints (e.g. Ollama) often do not require a real key, but the
        OpenAI SDK still expects a non-empty value.
        """
        key = (self.openai_api_key or "").strip()
        if key and key != "sk-your-key-here":
            return key
        if self._is_local_base_url():
            return "local-dev"
        return None

    def _is_local_base_url(self) -> bool:
        if not self.openai_base_url:
            return False
        try:
            host = (urlparse(self.openai_base_url).hostname or "").lower()
        except ValueError:
            return False
        return host in {"localhost", "127.0.0.1", "::1"} or host.endswith(".local")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
