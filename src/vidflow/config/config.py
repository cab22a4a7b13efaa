# src/vidflow/config/config.py
"""Configuration system for VidFlow."""

from __future__ import annotations

import os
from collections.abc import Mapping
from decimal import Decimal
from pathlib import Path
from typing import Any, Self

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


def _env(name: str) -> dict[str, Any]:
    """Name the environment variable that overrides a field."""
    return {"env": name}


class EnvSection(BaseModel):
    """Config section whose fields may be overridden from the environment."""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Self:
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra
            env_name = extra.get("env") if isinstance(extra, dict) else None
            if isinstance(env_name, str) and env_name in environ:
                values[name] = environ[env_name]
        return cls(**values)


class DatabaseConfig(EnvSection):
    """Database configuration settings."""

    database_url: str = Field(default="", json_schema_extra=_env("DATABASE_URL"))
    postgres_user: str = Field(default="vidflow", json_schema_extra=_env("POSTGRES_USER"))
    postgres_password: str = Field(
        default="vidflow_password", json_schema_extra=_env("POSTGRES_PASSWORD")
    )
    postgres_db: str = Field(default="vidflow", json_schema_extra=_env("POSTGRES_DB"))
    postgres_host: str = Field(default="localhost", json_schema_extra=_env("POSTGRES_HOST"))
    postgres_port: str = Field(default="5432", json_schema_extra=_env("POSTGRES_PORT"))
    echo: bool = Field(default=False, json_schema_extra=_env("DATABASE_ECHO"))

    @property
    def postgres_url(self) -> str:
        """Generate PostgreSQL connection URL with psycopg driver."""
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}@"
            f"{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def url(self) -> str:
        """Explicit ``DATABASE_URL`` wins over the assembled Postgres URL."""
        return self.database_url or self.postgres_url


class ProviderPricing(BaseModel):
    """Per-token prices for one LLM provider, in USD."""

    cost_per_input_token: Decimal
    cost_per_output_token: Decimal


def _default_pricing() -> dict[str, ProviderPricing]:
    return {
        "openai": ProviderPricing(
            cost_per_input_token=Decimal("0.0000025"),
            cost_per_output_token=Decimal("0.00001"),
        ),
        "anthropic": ProviderPricing(
            cost_per_input_token=Decimal("0.000003"),
            cost_per_output_token=Decimal("0.000015"),
        ),
        "gemini": ProviderPricing(
            cost_per_input_token=Decimal("0.00000125"),
            cost_per_output_token=Decimal("0.000005"),
        ),
        "mock": ProviderPricing(
            cost_per_input_token=Decimal("0"),
            cost_per_output_token=Decimal("0"),
        ),
    }


class LLMConfig(EnvSection):
    """LLM provider configuration."""

    provider: str = Field(default="openai", json_schema_extra=_env("LLM_PROVIDER"))
    model: str = Field(default="openai/gpt-4o-mini", json_schema_extra=_env("LLM_MODEL"))
    api_base: str = Field(default="", json_schema_extra=_env("OPENAI_API_BASE"))
    api_key: str = Field(default="", json_schema_extra=_env("OPENAI_API_KEY"))
    temperature: float = Field(default=0.7, json_schema_extra=_env("TEMPERATURE"))
    max_tokens: int = Field(default=2000, json_schema_extra=_env("LLM_MAX_TOKENS"))
    # Tokens added to each role's output budget when estimating cost up front.
    prompt_overhead_tokens: int = Field(
        default=1000, json_schema_extra=_env("LLM_PROMPT_OVERHEAD_TOKENS")
    )
    pricing: dict[str, ProviderPricing] = Field(default_factory=_default_pricing)

    def pricing_for(self, provider: str) -> ProviderPricing:
        """Return prices for ``provider``, falling back to the default provider."""
        return self.pricing.get(provider) or self.pricing[self.provider]


class RoleOverride(BaseModel):
    """Per-role model settings loaded from the roles file."""

    provider: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


class AgentModelConfig(EnvSection):
    """Agent model configuration."""

    roles_file: str = Field(default="", json_schema_extra=_env("VIDFLOW_ROLES_FILE"))
    overrides: dict[str, RoleOverride] = Field(default_factory=dict)


class PipelineConfig(EnvSection):
    """Agent pipeline configuration."""

    lock_ttl_seconds: float = Field(default=300.0, json_schema_extra=_env("PIPELINE_LOCK_TTL"))
    edit_lock_ttl_seconds: float = Field(
        default=30.0, json_schema_extra=_env("SCENE_EDIT_LOCK_TTL")
    )
    resume_completed_roles: bool = Field(
        default=True, json_schema_extra=_env("PIPELINE_RESUME_COMPLETED_ROLES")
    )


class WorkerConfig(EnvSection):
    """Worker configuration settings."""

    worker_idle: float = Field(default=0.5, json_schema_extra=_env("WORKER_IDLE"))
    worker_id: str = Field(default="", json_schema_extra=_env("WORKER_ID"))
    max_attempts: int = Field(default=3, json_schema_extra=_env("JOB_MAX_ATTEMPTS"))
    retry_delays: tuple[int, ...] = Field(
        default=(30, 60, 120), json_schema_extra=_env("JOB_RETRY_DELAYS")
    )
    retry_business_failures: bool = Field(
        default=False, json_schema_extra=_env("JOB_RETRY_BUSINESS_FAILURES")
    )
    lease_seconds: float = Field(default=900.0, json_schema_extra=_env("JOB_LEASE_SECONDS"))

    @field_validator("retry_delays", mode="before")
    @classmethod
    def _split_delays(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(int(part) for part in value.split(",") if part.strip())
        return value


class ConcurrencyConfig(EnvSection):
    """Concurrency and parallel processing configuration."""

    queue_workers: int = Field(default=3, json_schema_extra=_env("QUEUE_WORKERS"))


class SystemConfig(EnvSection):
    """System configuration settings."""

    log_level: str = Field(default="INFO", json_schema_extra=_env("VIDFLOW_LOG_LEVEL"))
    log_format: str = Field(default="", json_schema_extra=_env("VIDFLOW_LOG_FORMAT"))
    port: int = Field(default=8000, json_schema_extra=_env("PORT"))


def load_role_overrides(path: str | Path) -> dict[str, RoleOverride]:
    """Parse a YAML roles file.

    The file maps role names to overrides, optionally nested under ``roles``::

        roles:
          writer: {model: openai/gpt-4o, temperature: 0.8}
          producer: {provider: anthropic, max_tokens: 800}
    """
    with open(path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Roles file {path} must contain a mapping")
    roles = data.get("roles", data)
    return {
        str(name).lower(): RoleOverride.model_validate(value or {})
        for name, value in roles.items()
    }


class VidflowConfig(BaseModel):
    """Main configuration class."""

    database: DatabaseConfig = DatabaseConfig()
    llm: LLMConfig = LLMConfig()
    agents: AgentModelConfig = AgentModelConfig()
    pipeline: PipelineConfig = PipelineConfig()
    worker: WorkerConfig = WorkerConfig()
    concurrency: ConcurrencyConfig = ConcurrencyConfig()
    system: SystemConfig = SystemConfig()

    @classmethod
    def load(cls, environ: Mapping[str, str] | None = None) -> VidflowConfig:
        """Load configuration from environment variables."""
        agents = AgentModelConfig.from_env(environ)
        if agents.roles_file:
            agents.overrides = load_role_overrides(agents.roles_file)
        return cls(
            database=DatabaseConfig.from_env(environ),
            llm=LLMConfig.from_env(environ),
            agents=agents,
            pipeline=PipelineConfig.from_env(environ),
            worker=WorkerConfig.from_env(environ),
            concurrency=ConcurrencyConfig.from_env(environ),
            system=SystemConfig.from_env(environ),
        )


load_dotenv()

# Global configuration instance
config = VidflowConfig.load()
