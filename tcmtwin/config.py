from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider


class Settings(BaseSettings):
    """Application configuration, read from TCMTWIN_* variables and .env."""

    model_config = SettingsConfigDict(
        env_prefix="TCMTWIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Model endpoint (any OpenAI-compatible server, Ollama by default)
    llm_model: str = Field(
        default="qwen3:8b",
        validation_alias=AliasChoices("TCMTWIN_LLM_MODEL", "OLLAMA_MODEL"),
    )
    llm_base_url: str = Field(
        default="http://localhost:11434/v1",
        validation_alias=AliasChoices("TCMTWIN_LLM_BASE_URL", "OLLAMA_HOST"),
    )
    llm_api_key: SecretStr = Field(default=SecretStr("ollama"))
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)

    # Batch ceilings per extraction round
    max_disease_classifications: int = Field(default=15, ge=1)
    max_symptom_mappings: int = Field(default=10, ge=1)
    max_master_thoughts: int = Field(default=10, ge=1)
    max_rounds: int = Field(default=20, ge=1)

    # Documents
    max_document_bytes: int = Field(default=15 * 1024 * 1024, ge=1)

    response_language: str = "简体中文"
    data_dir: Path = Path("./tcmtwin_data")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


settings = Settings()

model = OpenAIChatModel(
    settings.llm_model,
    provider=OpenAIProvider(
        base_url=settings.llm_base_url,
        api_key=settings.llm_api_key.get_secret_value(),
    ),
)
