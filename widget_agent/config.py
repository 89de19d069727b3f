"""
Agent Configuration
===================
Centralized configuration management with validation.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional, Literal
from pydantic import BaseModel, Field, field_validator, ConfigDict
from dotenv import load_dotenv

load_dotenv()


class LLMConfig(BaseModel):
    """Configuration for the text-completion providers."""
    primary_provider: Literal["anthropic", "openai", "ollama"] = "anthropic"

    fallback_models: dict[str, str] = {
        "anthropic": "claude-sonnet-4-5",
        "openai": "gpt-4o",
        "ollama": "llama3.2",
    }
    ollama_base_url: str = "http://localhost:11434"

    temperature: float = 0.0
    timeout: int = 60
    # Characters of each source file included in a repair prompt
    max_file_context_chars: int = 2000


class BuildConfig(BaseModel):
    """Configuration for the generate → build → repair loop."""
    max_attempts: int = 3
    work_folder: str = Field(
        default_factory=lambda: os.getenv(
            "WIDGET_AGENT_WORK_FOLDER",
            str(Path(tempfile.gettempdir()) / "mendix-widgets"),
        )
    )
    npm_command: str = "npm"
    install_dependencies: bool = True
    build_timeout: int = 300
    install_timeout: int = 600

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v):
        if v < 1:
            raise ValueError("max_attempts must be at least 1")
        return v


class NucleusConfig(BaseModel):
    """Configuration for the adaptive fix-pattern store."""
    patterns_path: Optional[str] = Field(
        default_factory=lambda: os.getenv("WIDGET_AGENT_PATTERNS_PATH")
    )
    # Patterns below this confidence are never auto-applied
    acceptance_threshold: float = 0.7
    # Keyword overlap above which learn() updates instead of appending
    similarity_threshold: float = 0.7
    learned_confidence: float = 0.7

    @field_validator("acceptance_threshold", "similarity_threshold", "learned_confidence")
    @classmethod
    def validate_unit_interval(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError("value must be between 0 and 1")
        return v


class KnowledgeConfig(BaseModel):
    """Configuration for the secondary knowledge cache."""
    knowledge_dir: Optional[str] = Field(
        default_factory=lambda: os.getenv("WIDGET_AGENT_KNOWLEDGE_DIR")
    )
    max_search_results: int = 5


class ObservabilityConfig(BaseModel):
    """Configuration for logging."""
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"
    logs_dir: str = "logs"
    file_logging: bool = False


class ProductionConfig(BaseModel):
    """Configuration for resilience around external calls."""
    circuit_breaker_enabled: bool = True
    failure_threshold: int = 5
    recovery_timeout: int = 60
    max_retries: int = 3
    retry_backoff_factor: float = 2.0
    retry_jitter: bool = True


class AgentConfig(BaseModel):
    """Complete widget agent configuration."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    anthropic_api_key: Optional[str] = Field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY"))
    openai_api_key: Optional[str] = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))

    llm: LLMConfig = Field(default_factory=LLMConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)
    nucleus: NucleusConfig = Field(default_factory=NucleusConfig)
    knowledge: KnowledgeConfig = Field(default_factory=KnowledgeConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    production: ProductionConfig = Field(default_factory=ProductionConfig)


# Singleton
_config: Optional[AgentConfig] = None


def get_config() -> AgentConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AgentConfig()
    return _config


def reload_config() -> AgentConfig:
    """Reload configuration from environment."""
    global _config
    load_dotenv(override=True)
    _config = AgentConfig()
    return _config
