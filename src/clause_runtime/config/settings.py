"""Configuration and settings management using pydantic-settings."""
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_prefix="CLAUSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core service settings
    env: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Log level")

    # Compilation
    target: str = Field(
        default="python",
        description="Default compile target for new logic managers",
    )

    # Sandbox
    sandbox: Literal["isolated", "direct"] = Field(
        default="isolated",
        description="Evaluator used by the engine (isolated or direct)",
    )
    sandbox_timeout_s: float = Field(
        default=1.0,
        description="Wall-clock budget for one clause execution in seconds",
    )

    # Runtime model classes
    default_state_class: str = Field(
        default="org.accordproject.runtime.State",
        description="Class of the canonical empty contract state",
    )
    options_class: str = Field(
        default="org.accordproject.ergo.options.Options",
        description="Class of the options record passed to contract logic",
    )

    @field_validator("sandbox_timeout_s")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate that the sandbox budget is positive."""
        if v <= 0:
            raise ValueError("sandbox_timeout_s must be positive")
        return v


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None
