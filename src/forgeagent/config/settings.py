"""
Configuration system built on Pydantic Settings.

Every section can be overridden from the environment using the `FORGE_` prefix and
`__` as the nested delimiter, e.g. `FORGE_MODEL__API_KEY` or `FORGE_BUDGET__DAILY_LIMIT_TOKENS`.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _validate_url(v: str) -> str:
    if not v.startswith(("http://", "https://")):
        raise ValueError("base_url must start with http:// or https://")
    return v.rstrip("/")


class ModelServiceConfig(BaseModel):
    """Hosted language-model service endpoint."""

    base_url: str = Field("https://api.anthropic.com/v1", description="Messages API base URL")
    api_key: str | None = Field(None, description="API key sent as x-api-key")
    api_version: str = Field("2023-06-01", description="anthropic-version header value")
    timeout: float = Field(300.0, gt=0, description="Request timeout in seconds")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return _validate_url(v)


class GitHubConfig(BaseModel):
    """Source-control provider (GitHub REST API)."""

    token: str | None = Field(None)
    owner: str = Field("axori")
    repo: str = Field("axori-platform")
    base_url: str = Field("https://api.github.com")
    api_version: str = Field("2022-11-28")
    timeout: float = Field(30.0, gt=0)
    max_retries: int = Field(3, ge=1)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return _validate_url(v)


class BudgetConfig(BaseModel):
    """Defaults for lazily created daily budget records."""

    daily_limit_tokens: int = Field(500_000, ge=0)
    daily_limit_cents: int = Field(500, ge=0)


class OrchestratorConfig(BaseModel):
    """Tool-use loop and execution lifecycle settings."""

    max_iterations: int = Field(50, gt=0)
    checkpoint_interval: int = Field(5, gt=0)
    default_branch: str = Field("main")
    lock_horizon_minutes: int = Field(30, gt=0)


class ToolsConfig(BaseModel):
    """Agent tool behaviour."""

    command_workdir: Path | None = Field(
        None, description="Checkout used by run_command; commands are not executed when unset"
    )
    command_timeout: float = Field(120.0, gt=0)
    max_output_chars: int = Field(20_000, gt=0)
    query_limit: int = Field(20, gt=0)


class ObservabilityConfig(BaseModel):
    enable_tracing: bool = Field(True)
    log_level: str = Field("INFO")
    otlp_endpoint: str | None = Field(None)
    service_name: str = Field("forgeagent")
    service_version: str = Field("0.1.0")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()


class APIConfig(BaseModel):
    host: str = Field("0.0.0.0")
    port: int = Field(8000, gt=0, le=65535)
    reload: bool = Field(False)
    workers: int = Field(1, gt=0)
    enable_docs: bool = Field(True)


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="FORGE_", env_nested_delimiter="__", case_sensitive=False, extra="ignore"
    )

    model: ModelServiceConfig = Field(default_factory=ModelServiceConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    api: APIConfig = Field(default_factory=APIConfig)

    environment: str = Field(
        "development", description="Environment: development, staging, production"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
