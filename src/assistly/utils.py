"""
Utility functions for the Assistly knowledge assistant.

This module provides:
- Environment variable loading with typed defaults
- Logging configuration with structured JSON output
- Timing utilities for performance measurement
- Input sanitization for safe logging
"""

import os
import re
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from dotenv import load_dotenv
from loguru import logger


class AssistlyError(Exception):
    """Base class for errors raised by the knowledge assistant."""
    pass


class ConfigurationError(AssistlyError):
    """Raised when required configuration is missing or invalid."""
    pass


# Optional environment variables with defaults. Type conversion follows the
# type of the default value.
DEFAULT_SETTINGS: Dict[str, Any] = {
    # Embedding model
    "EMBEDDING_MODEL": "sentence-transformers/all-MiniLM-L6-v2",
    "EMBEDDING_DIMENSION": 384,
    "EMBEDDING_TIMEOUT": 10.0,

    # Chunking
    "CHUNK_SIZE": 500,
    "CHUNK_OVERLAP": 50,

    # Retrieval and tiered selection
    "RETRIEVAL_TOP_K": 15,
    "VECTOR_SEARCH_TIMEOUT": 10.0,
    "TIER_A_THRESHOLD": 0.4,
    "TIER_A_LIMIT": 7,
    "TIER_B_THRESHOLD": 0.3,
    "TIER_B_MIN": 3,
    "TIER_B_MAX": 5,
    "FALLBACK_LIMIT": 3,

    # Context and answer bounds
    "MAX_CONTEXT_LENGTH": 6000,
    "MIN_ANSWER_LENGTH": 40,
    "MAX_ANSWER_LENGTH": 500,

    # Text completion service (OpenAI-compatible)
    "GENERATION_MODEL": "llama-3.3-70b-versatile",
    "COMPLETION_BASE_URL": "https://api.groq.com/openai/v1",
    "COMPLETION_API_KEY": "",
    "REQUEST_TIMEOUT_SECONDS": 30.0,

    # Vector search service
    "PINECONE_API_KEY": "",
    "PINECONE_INDEX_NAME": "assistly-knowledge",
}


def setup_logging(level: str = "INFO") -> None:
    """
    Configure structured JSON logging with Loguru.
    """
    # Remove default handler
    logger.remove()

    logger.add(
        sys.stdout,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}",
        level=level,
        serialize=True
    )

    logger.info("Logging configuration complete")


def _coerce(var: str, value: Any, default: Any) -> Any:
    """Convert an environment string to the type of its default."""
    if isinstance(default, bool):
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid value for {var}: {value}, using default: {default}")
            return default
    if isinstance(default, float):
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid value for {var}: {value}, using default: {default}")
            return default
    return value


def load_and_validate_env() -> Dict[str, Any]:
    """
    Load environment variables and apply typed defaults.

    No variable is required at load time; the clients that need credentials
    raise ConfigurationError themselves when they are constructed.

    Returns:
        Dict[str, Any]: Configuration dictionary with validated values
    """
    load_dotenv()

    config: Dict[str, Any] = {}
    for var, default in DEFAULT_SETTINGS.items():
        raw = os.getenv(var)
        config[var] = default if raw is None else _coerce(var, raw, default)

    if config["CHUNK_OVERLAP"] >= config["CHUNK_SIZE"]:
        raise ConfigurationError(
            f"CHUNK_OVERLAP ({config['CHUNK_OVERLAP']}) must be smaller than "
            f"CHUNK_SIZE ({config['CHUNK_SIZE']})"
        )
    if config["TIER_B_MIN"] > config["TIER_B_MAX"]:
        raise ConfigurationError("TIER_B_MIN must not exceed TIER_B_MAX")

    logger.info("Environment configuration loaded and validated")
    return config


def require(config: Dict[str, Any], var: str) -> str:
    """Return a non-empty configuration value or raise ConfigurationError."""
    value = config.get(var)
    if not value:
        raise ConfigurationError(f"Required environment variable {var} is not set")
    return value


def sanitize_for_logging(text: str, max_length: int = 200) -> str:
    """
    Sanitize user input for safe logging by removing/masking sensitive information.

    Args:
        text: Input text to sanitize
        max_length: Maximum length of sanitized text

    Returns:
        str: Sanitized text safe for logging
    """
    if not text:
        return ""

    sensitive_patterns = [
        r'sk-[a-zA-Z0-9]+',  # API keys starting with sk-
        r'gsk_[a-zA-Z0-9]+',  # Groq keys
        r'Bearer\s+[a-zA-Z0-9]+',  # Bearer tokens
        r'\b[A-Za-z0-9]{20,}\b'  # Long alphanumeric strings (potential tokens)
    ]

    sanitized = text
    for pattern in sensitive_patterns:
        sanitized = re.sub(pattern, '[REDACTED]', sanitized, flags=re.IGNORECASE)

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."

    return sanitized


class Timer:
    """Context manager for timing operations."""

    def __init__(self, operation_name: str = "operation"):
        self.operation_name = operation_name
        self.start_time = None
        self.end_time = None

    def __enter__(self):
        self.start_time = datetime.now(timezone.utc)
        logger.debug(f"Starting {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = datetime.now(timezone.utc)
        duration_ms = (self.end_time - self.start_time).total_seconds() * 1000

        if exc_type is None:
            logger.info(f"Completed {self.operation_name}", duration_ms=duration_ms)
        else:
            logger.error(f"Failed {self.operation_name}", duration_ms=duration_ms, error=str(exc_val))

    @property
    def duration_ms(self) -> float:
        """Get duration in milliseconds."""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds() * 1000
        return 0.0


def get_current_timestamp() -> str:
    """
    Get current timestamp in ISO format with UTC timezone.
    """
    return datetime.now(timezone.utc).isoformat()


# Global configuration instance
_config: Optional[Dict[str, Any]] = None


def get_config() -> Dict[str, Any]:
    """
    Get the global configuration, loading it if not already loaded.

    Returns:
        Dict[str, Any]: Configuration dictionary
    """
    global _config
    if _config is None:
        _config = load_and_validate_env()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() reloads it."""
    global _config
    _config = None


def initialize_app():
    """
    Initialize the application with logging and configuration.
    Call this at app startup.
    """
    setup_logging()
    config = get_config()

    logger.info(
        "Application initialization complete",
        models={
            "embedding": config["EMBEDDING_MODEL"],
            "generation": config["GENERATION_MODEL"],
        },
        retrieval_settings={
            "top_k": config["RETRIEVAL_TOP_K"],
            "tier_a_threshold": config["TIER_A_THRESHOLD"],
            "tier_b_threshold": config["TIER_B_THRESHOLD"],
            "max_context_length": config["MAX_CONTEXT_LENGTH"],
        }
    )
