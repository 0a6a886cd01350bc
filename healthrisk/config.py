"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Bundled knowledge unless a file override is configured
"""

import logging
import os
from functools import lru_cache
from typing import Literal, cast

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from .env file
load_dotenv()

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class KnowledgeConfig(BaseModel):
    """Knowledge file overrides. None means the bundled defaults are used."""

    allergen_taxonomy_path: str | None = Field(
        default=None, description="JSON file overriding the bundled allergen taxonomy"
    )
    functional_registry_path: str | None = Field(
        default=None, description="JSON file overriding the bundled functional class registry"
    )


class StackingConfig(BaseModel):
    """Functional stacking detection settings."""

    window_hours: float = Field(
        default=48.0, gt=0.0, description="Look-back window for checks, in hours"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(default="INFO", description="Logging level")
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Component configs
    knowledge: KnowledgeConfig = Field(default_factory=KnowledgeConfig)
    stacking: StackingConfig = Field(default_factory=StackingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> LogLevel:
        v = val.strip().upper()
        return cast(
            LogLevel, v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO"
        )

    def _optional_path(name: str) -> str | None:
        val = os.getenv(name)
        return val.strip() if val and val.strip() else None

    # Detect environment
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    knowledge_config = KnowledgeConfig(
        allergen_taxonomy_path=_optional_path("ALLERGEN_TAXONOMY_PATH"),
        functional_registry_path=_optional_path("FUNCTIONAL_REGISTRY_PATH"),
    )

    stacking_config = StackingConfig(
        window_hours=float(os.getenv("STACKING_WINDOW_HOURS", "48")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        knowledge=knowledge_config,
        stacking=stacking_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def configure_logging(config: AppConfig | None = None) -> None:
    """Route structlog through stdlib logging with the configured level and renderer."""
    config = config or get_config()
    level = getattr(logging, config.logging.level)
    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger().setLevel(level)

    renderer = (
        structlog.dev.ConsoleRenderer()
        if config.logging.format == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Configuration validation and helpers
def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"✅ Configuration loaded for {config.environment} environment")

        if config.knowledge.allergen_taxonomy_path:
            print(f"✅ Allergen taxonomy override: {config.knowledge.allergen_taxonomy_path}")

        if config.knowledge.functional_registry_path:
            print(f"✅ Functional registry override: {config.knowledge.functional_registry_path}")

    except Exception as e:
        print(f"❌ Configuration validation failed: {e}")
        raise


# Development helpers
def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\n🔧 CONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")
    print(f"Log Format: {config.logging.format}")

    print("\n📚 KNOWLEDGE CONFIGURATION")
    print(f"Allergen Taxonomy: {config.knowledge.allergen_taxonomy_path or 'bundled default'}")
    print(f"Functional Registry: {config.knowledge.functional_registry_path or 'bundled default'}")

    print("\n💊 STACKING CONFIGURATION")
    print(f"Window: {config.stacking.window_hours}h")


if __name__ == "__main__":
    # Test configuration loading
    validate_config()
    print_config_summary()
