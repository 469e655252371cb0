"""
Centralized configuration for the lead qualification engine.

All settings are loaded from environment variables via .env file.
Field names map to upper-case environment variables (LLM_PROVIDER, ...).
"""

from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # LLM provider selection
    llm_provider: str = Field(default="openai")  # openai | bedrock
    llm_timeout_seconds: float = Field(default=20.0)

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None)
    openai_llm_model: str = Field(default="gpt-4o-mini")

    # AWS / Bedrock
    aws_region: str = Field(default="us-east-1")
    bedrock_llm_model_id: str = Field(default="us.anthropic.claude-sonnet-4-20250514-v1:0")

    # Conversation engine
    agent_config_path: Optional[str] = Field(default=None)
    turn_timeout_seconds: float = Field(default=60.0)
    turn_window_size: int = Field(default=20)

    # Qualification
    inactivity_disqualify_days: int = Field(default=30)
    inactivity_risk_days: int = Field(default=14)

    # Handoff to the scheduling collaborator
    handoff_webhook_url: Optional[str] = Field(default=None)
    handoff_api_key: Optional[str] = Field(default=None)
    handoff_max_retries: int = Field(default=3)
    handoff_queue_limit: int = Field(default=500)
    handoff_delivered_limit: int = Field(default=1000)
    handoff_drain_interval_seconds: float = Field(default=60.0)

    # Database (in-memory state store when unset)
    database_url: Optional[str] = Field(default=None)

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_title: str = Field(default="Lead Qualification Engine API")
    api_version: str = Field(default="1.0.0")
    cors_origins: str = Field(default="*")

    # Logging
    log_level: str = Field(default="INFO")
    debug: bool = Field(default=False)

    @property
    def is_bedrock(self) -> bool:
        return self.llm_provider.lower() == "bedrock"

    @property
    def is_openai(self) -> bool:
        return self.llm_provider.lower() == "openai"

    @property
    def llm_model_id(self) -> str:
        if self.is_bedrock:
            return self.bedrock_llm_model_id
        return self.openai_llm_model

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
