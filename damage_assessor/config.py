"""
Runtime settings for the assessment service.

Defaults are layered: built-in values, then per-environment overrides
(``APP_ENV``), then individual environment variables.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

MB = 1024 * 1024

ENVIRONMENTS = ("development", "staging", "production")

_ENVIRONMENT_OVERRIDES: Dict[str, Dict[str, Any]] = {
    "development": {"debug": True, "log_level": "DEBUG", "enable_caching": False},
    "staging": {"debug": True, "log_level": "INFO", "enable_caching": True},
    "production": {"debug": False, "log_level": "WARNING", "enable_caching": True},
}


class ConfigError(ValueError):
    """Raised when the effective configuration is inconsistent."""

    def __init__(self, errors: List[str]) -> None:
        super().__init__(f"Invalid configuration: {', '.join(errors)}")
        self.errors = errors


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, errors: List[str]) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        errors.append(f"{name} must be an integer, got {raw!r}")
        return default


def _env_float(name: str, default: float, errors: List[str]) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        errors.append(f"{name} must be a number, got {raw!r}")
        return default


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    app_name: str = "Smart Damage Assessment"
    version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Per-stage AI deadline and the standalone knowledge-search deadline.
    stage_timeout_ms: int = 30000
    knowledge_search_timeout_ms: int = 30000
    retry_max_attempts: int = 3
    retry_backoff_ms: int = 1000

    allowed_types: Tuple[str, ...] = ("image/jpeg", "image/png", "image/webp")
    max_file_size: int = 50 * MB
    max_decoded_size: int = 100 * MB
    max_dimension: int = 8192
    max_query_length: int = 1000

    enable_signature_validation: bool = True
    enable_structure_validation: bool = True
    enable_sanitization: bool = True

    ai_provider: str = "mock"
    ollama_host: str = "http://localhost:11434"
    rag_url: str = "http://localhost:8080"
    vision_model: str = "llava:7b"
    language_model: str = "llama3.2:3b"
    rag_dataset: str = "auto-inspect-rag"
    enable_autorag: bool = True
    confidence_threshold: float = 0.7
    provider_timeout_s: float = 60.0

    enable_caching: bool = False
    cache_backend: str = "memory"
    cache_ttl_ms: int = 300000
    cache_sweep_every: int = 50
    redis_url: str = "redis://localhost:6379/0"

    cors_origins: Tuple[str, ...] = ("*",)
    rate_limit_enabled: bool = True
    api_rate_limit: int = 100
    api_rate_window_s: int = 15 * 60
    ai_rate_limit: int = 20
    ai_rate_window_s: int = 5 * 60

    @classmethod
    def from_env(cls, environment: Optional[str] = None) -> "Settings":
        env_name = (environment or os.getenv("APP_ENV") or "development").strip().lower()
        base = cls(environment=env_name)
        overrides = _ENVIRONMENT_OVERRIDES.get(env_name, {})
        if overrides:
            base = replace(base, **overrides)

        errors: List[str] = []
        settings = replace(
            base,
            debug=_env_bool("APP_DEBUG_MODE", base.debug),
            log_level=os.getenv("LOG_LEVEL", base.log_level).upper(),
            stage_timeout_ms=_env_int("API_TIMEOUT_AI_PROCESSING", base.stage_timeout_ms, errors),
            knowledge_search_timeout_ms=_env_int("API_TIMEOUT_KNOWLEDGE_SEARCH", base.knowledge_search_timeout_ms, errors),
            retry_max_attempts=_env_int("API_RETRY_MAX_ATTEMPTS", base.retry_max_attempts, errors),
            retry_backoff_ms=_env_int("API_RETRY_BACKOFF_MS", base.retry_backoff_ms, errors),
            allowed_types=_env_list("ALLOWED_IMAGE_TYPES", base.allowed_types),
            max_file_size=_env_int("MAX_FILE_SIZE", base.max_file_size, errors),
            max_decoded_size=_env_int("MAX_DECODED_SIZE", base.max_decoded_size, errors),
            max_dimension=_env_int("MAX_IMAGE_DIMENSION", base.max_dimension, errors),
            max_query_length=_env_int("MAX_QUERY_LENGTH", base.max_query_length, errors),
            ai_provider=os.getenv("AI_PROVIDER", base.ai_provider).strip().lower(),
            ollama_host=os.getenv("OLLAMA_HOST", base.ollama_host),
            rag_url=os.getenv("RAG_URL", base.rag_url),
            vision_model=os.getenv("VISION_MODEL", base.vision_model),
            language_model=os.getenv("LANGUAGE_MODEL", base.language_model),
            rag_dataset=os.getenv("AUTORAG_DATASET", base.rag_dataset),
            enable_autorag=_env_bool("ENABLE_AUTORAG", base.enable_autorag),
            confidence_threshold=_env_float("CONFIDENCE_THRESHOLD", base.confidence_threshold, errors),
            provider_timeout_s=_env_float("PROVIDER_TIMEOUT", base.provider_timeout_s, errors),
            enable_caching=_env_bool("ENABLE_CACHING", base.enable_caching),
            cache_backend=os.getenv("CACHE_BACKEND", base.cache_backend).strip().lower(),
            cache_ttl_ms=_env_int("CACHE_TTL_MS", base.cache_ttl_ms, errors),
            redis_url=os.getenv("REDIS_URL", base.redis_url),
            cors_origins=_env_list("CORS_ORIGINS", base.cors_origins),
            rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", base.rate_limit_enabled),
        )
        try:
            settings.validate()
        except ConfigError as exc:
            errors.extend(exc.errors)
        if errors:
            raise ConfigError(errors)
        return settings

    def validate(self) -> None:
        errors: List[str] = []
        if self.environment not in ENVIRONMENTS:
            errors.append(f"Unknown environment '{self.environment}'")
        if self.stage_timeout_ms < 1000:
            errors.append("AI stage timeout must be at least 1000ms")
        if self.knowledge_search_timeout_ms < 1000:
            errors.append("Knowledge search timeout must be at least 1000ms")
        if self.max_file_size < MB:
            errors.append("Max file size must be at least 1MB")
        if self.max_dimension < 100:
            errors.append("Max dimensions must be at least 100px")
        if not self.allowed_types:
            errors.append("At least one image type must be allowed")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            errors.append("Confidence threshold must be between 0 and 1")
        if self.cache_ttl_ms < 1000:
            errors.append("Cache TTL must be at least 1000ms")
        if self.cache_backend not in {"memory", "redis"}:
            errors.append(f"Unsupported cache backend '{self.cache_backend}'")
        if self.ai_provider not in {"mock", "http"}:
            errors.append(f"Unsupported AI provider '{self.ai_provider}'")
        if errors:
            raise ConfigError(errors)

    def public_view(self) -> Dict[str, Any]:
        """Subset of settings that is safe to expose through /api/stats."""

        data = asdict(self)
        keys = (
            "app_name",
            "version",
            "environment",
            "stage_timeout_ms",
            "knowledge_search_timeout_ms",
            "retry_max_attempts",
            "retry_backoff_ms",
            "allowed_types",
            "max_file_size",
            "max_decoded_size",
            "max_dimension",
            "ai_provider",
            "enable_autorag",
            "enable_caching",
            "cache_backend",
            "cache_ttl_ms",
        )
        view = {key: data[key] for key in keys}
        view["allowed_types"] = list(self.allowed_types)
        return view
