"""LLM and loop configuration."""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ModelProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    OLLAMA = "ollama"
    GROQ = "groq"

    @classmethod
    def from_env(cls) -> "ModelProvider":
        """Detect provider from environment."""
        explicit = os.getenv("LLM_PROVIDER", "").lower()
        if explicit == "ollama":
            return cls.OLLAMA
        if explicit == "openai":
            return cls.OPENAI
        if explicit == "groq":
            return cls.GROQ
        if os.getenv("OPENAI_API_KEY"):
            return cls.OPENAI
        if os.getenv("GROQ_API_KEY"):
            return cls.GROQ
        return cls.OLLAMA


# Default models per provider
DEFAULT_MODELS = {
    ModelProvider.OPENAI: "gpt-4o",
    ModelProvider.OLLAMA: "qwen2.5-coder:14b",
    ModelProvider.GROQ: "llama-3.3-70b-versatile",
}

MODEL_ENV_VARS = {
    ModelProvider.OPENAI: "OPENAI_MODEL",
    ModelProvider.OLLAMA: "OLLAMA_MODEL",
    ModelProvider.GROQ: "GROQ_MODEL",
}

DEFAULT_GROQ_BASE_URL = "https://api.groq.com/openai/v1"

# Loop defaults
DEFAULT_LANGUAGE = "mermaid"
DEFAULT_MAX_VALIDATION_RETRIES = 4
DEFAULT_MAX_TOOL_ROUNDS = 10
DEFAULT_VALIDATION_TIMEOUT = 30.0


@dataclass
class ModelConfig:
    """Configuration for a model."""
    provider: ModelProvider
    model: str

    @property
    def full_name(self) -> str:
        """Get the full model string for pydantic-ai."""
        return f"{self.provider.value}:{self.model}"

    def __str__(self) -> str:
        return f"{self.provider.value}/{self.model}"


@dataclass
class LoopConfig:
    """Bounds and conventions for one conversation loop."""
    language: str = DEFAULT_LANGUAGE
    max_validation_retries: int = DEFAULT_MAX_VALIDATION_RETRIES
    max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS
    validation_timeout: float = DEFAULT_VALIDATION_TIMEOUT
    mmdc_path: str = "mmdc"


def get_model_config(provider: Optional[ModelProvider] = None) -> ModelConfig:
    """Get the model configuration."""
    if provider is None:
        provider = ModelProvider.from_env()

    model = os.getenv(MODEL_ENV_VARS[provider], DEFAULT_MODELS[provider])
    return ModelConfig(provider=provider, model=model)


def _ensure_ollama_env():
    """Ensure OLLAMA_BASE_URL is set correctly for pydantic-ai.

    Pydantic-ai requires OLLAMA_BASE_URL with /v1 suffix.
    """
    if not os.getenv("OLLAMA_BASE_URL"):
        os.environ["OLLAMA_BASE_URL"] = "http://localhost:11434/v1"
    elif not os.getenv("OLLAMA_BASE_URL", "").endswith("/v1"):
        base = os.getenv("OLLAMA_BASE_URL", "").rstrip("/")
        os.environ["OLLAMA_BASE_URL"] = f"{base}/v1"


def get_model_name(provider: Optional[ModelProvider] = None) -> str:
    """Get the model string for pydantic-ai.

    For Ollama, ensures OLLAMA_BASE_URL is set with /v1 suffix.
    """
    config = get_model_config(provider)

    if config.provider == ModelProvider.OLLAMA:
        _ensure_ollama_env()

    return config.full_name


def get_ollama_base_url() -> str:
    """Get Ollama base URL."""
    base = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    if not base.endswith("/v1"):
        base = base.rstrip("/") + "/v1"
    return base


def get_groq_base_url() -> str:
    """Get the OpenAI-compatible Groq endpoint."""
    return os.getenv("GROQ_BASE_URL", DEFAULT_GROQ_BASE_URL).rstrip("/")


def get_groq_api_key() -> Optional[str]:
    return os.getenv("GROQ_API_KEY") or None


def get_iterate_provider() -> Optional[ModelProvider]:
    """Provider override for 'iterate' requests, if any."""
    value = os.getenv("ITERATE_PROVIDER", "").lower()
    if not value:
        return None
    try:
        return ModelProvider(value)
    except ValueError:
        raise ValueError(
            f"ITERATE_PROVIDER must be one of {[p.value for p in ModelProvider]}, got '{value}'"
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{raw}'")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def get_loop_config() -> LoopConfig:
    """Build the loop configuration from environment."""
    return LoopConfig(
        language=os.getenv("DIAGRAM_LANGUAGE", DEFAULT_LANGUAGE),
        max_validation_retries=_env_int("MAX_VALIDATION_RETRIES", DEFAULT_MAX_VALIDATION_RETRIES),
        max_tool_rounds=_env_int("MAX_TOOL_ROUNDS", DEFAULT_MAX_TOOL_ROUNDS),
        validation_timeout=_env_float("VALIDATION_TIMEOUT", DEFAULT_VALIDATION_TIMEOUT),
        mmdc_path=os.getenv("MMDC_PATH", "mmdc"),
    )


def configure_logging(level: Optional[str] = None):
    """Set up root logging for command-line use."""
    level = (level or os.getenv("DIAGRAM_LOG_LEVEL", "WARNING")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def get_current_config() -> dict:
    """Get current configuration as a dictionary."""
    provider = ModelProvider.from_env()
    model_config = get_model_config(provider)
    loop = get_loop_config()

    config = {
        "provider": provider.value,
        "model": model_config.model,
        "model_full": model_config.full_name,
        "language": loop.language,
        "max_validation_retries": loop.max_validation_retries,
        "max_tool_rounds": loop.max_tool_rounds,
        "validation_timeout": loop.validation_timeout,
        "mmdc_path": loop.mmdc_path,
    }

    if provider == ModelProvider.OPENAI:
        config["api_key_set"] = bool(os.getenv("OPENAI_API_KEY"))
    elif provider == ModelProvider.GROQ:
        config["api_key_set"] = bool(get_groq_api_key())
        config["groq_url"] = get_groq_base_url()
    else:
        config["ollama_url"] = get_ollama_base_url()

    return config


def print_config():
    """Print current configuration."""
    config = get_current_config()
    print(f"Provider: {config['provider']}")
    print(f"Model: {config['model_full']}")
    if config["provider"] in ("openai", "groq"):
        print(f"API Key: {'Set' if config.get('api_key_set') else 'NOT SET'}")
    if config["provider"] == "groq":
        print(f"Groq URL: {config.get('groq_url')}")
    if config["provider"] == "ollama":
        print(f"Ollama URL: {config.get('ollama_url')}")
    print(f"Diagram language: {config['language']}")
    print(f"Retries: {config['max_validation_retries']}, tool rounds: {config['max_tool_rounds']}")
    print(f"Validation timeout: {config['validation_timeout']:g}s (renderer: {config['mmdc_path']})")
