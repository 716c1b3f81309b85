"""Configuration loader for the Pustakam book generator."""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Environment variable holding the API key for each provider id
PROVIDER_KEY_ENV_VARS: dict[str, str] = {
    "cerebras": "CEREBRAS_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "xai": "XAI_API_KEY",
    "groq": "GROQ_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "cohere": "COHERE_API_KEY",
    "longcat": "LONGCAT_API_KEY",
}


class AppInfo(BaseModel):
    """Application metadata."""

    name: str = "Pustakam"
    version: str = "1.0.0"
    language: str = "en"


class GenerationConfig(BaseModel):
    """Book generation pipeline configuration."""

    request_timeout_seconds: float = 360.0
    temperature: float = 0.7
    max_output_tokens: int = 8192

    roadmap_max_attempts: int = 2
    roadmap_retry_delay_seconds: float = 2.0
    min_roadmap_modules: int = 10

    module_max_attempts: int = 5
    retry_delays_seconds: list[float] = Field(
        default_factory=lambda: [30.0, 40.0, 50.0, 60.0, 70.0]
    )
    rate_limit_delay_seconds: float = 60.0
    retry_jitter_seconds: float = 1.0
    inter_module_delay_seconds: float = 1.0
    min_module_words: int = 150

    # Context carried from earlier modules into each module prompt
    context_modules: int = 2
    context_chars: int = 300

    enrich_final_book: bool = False


class RateLimitConfig(BaseModel):
    """Client-side request throttling per provider."""

    enabled: bool = True
    window_seconds: float = 60.0
    default_requests_per_minute: int = 10
    requests_per_minute: dict[str, int] = Field(
        default_factory=lambda: {
            "google": 15,
            "mistral": 10,
            "groq": 30,
            "cerebras": 20,
        }
    )
    default_cooldown_seconds: float = 60.0


class StorageConfig(BaseModel):
    """Storage paths configuration."""

    sqlite_path: str = "./db/pustakam.db"
    exports_dir: str = "./exports"


class ExportConfig(BaseModel):
    """PDF export configuration."""

    code_block_max_lines: int = 40
    page_size: str = "A4"
    body_font_path: str | None = None
    mono_font_path: str | None = None


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"


class AppConfig(BaseModel):
    """Root application configuration."""

    app: AppInfo = Field(default_factory=AppInfo)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # API keys loaded from environment, keyed by provider id
    provider_api_keys: dict[str, str] = Field(default_factory=dict)


def load_config(config_path: str | Path = "config.yaml") -> AppConfig:
    """Load configuration from YAML file and environment variables.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Fully populated AppConfig instance.
    """
    load_dotenv()

    yaml_data: dict = {}
    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            yaml_data = yaml.safe_load(f) or {}

    config = AppConfig(**yaml_data)

    # Override API keys from environment
    for provider, env_var in PROVIDER_KEY_ENV_VARS.items():
        value = os.getenv(env_var)
        if value:
            config.provider_api_keys[provider] = value

    return config
