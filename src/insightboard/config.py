"""Configuration helpers for the Insightboard service."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import TYPE_CHECKING, Final

from dotenv import load_dotenv

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .gateway import GatewayConfig
    from .observability import MetricsRecorder
    from .validation import ValidationOptions

load_dotenv()

_DEFAULT_OLLAMA_URL: Final[str] = "http://localhost:11434/api"
_DEFAULT_OLLAMA_MODEL: Final[str] = "llama3.2:latest"
_DEFAULT_TEMPERATURE: Final[float] = 0.7
_DEFAULT_TIMEOUT_MS: Final[int] = 30_000
_DEFAULT_LANGUAGE: Final[str] = "ru"
_DEFAULT_MIN_LENGTH: Final[int] = 3
_DEFAULT_MAX_LENGTH: Final[int] = 10_000
_DEFAULT_QUEUE_MAX_CONCURRENT: Final[int] = 1
_DEFAULT_QUEUE_PROGRESS_INTERVAL: Final[float] = 1.0
_DEFAULT_QUEUE_MAX_HISTORY: Final[int] = 64
_DEFAULT_DATA_DIR: Final[str] = "data"
_DEFAULT_NAMESPACE: Final[str] = "insightboard"


def _env_optional_bool(name: str) -> bool | None:
    """Read an optional boolean environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    msg = f"Environment variable {name} must be a boolean value (true/false)."
    raise ValueError(msg)


def _env_optional_int(name: str) -> int | None:
    """Read an optional integer environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _env_optional_float(name: str) -> float | None:
    """Read an optional float environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


def _env_int(name: str, default: int) -> int:
    value = _env_optional_int(name)
    return default if value is None else value


def _env_float(name: str, default: float) -> float:
    """Read a float environment variable with a fallback (preserving zero)."""

    value = _env_optional_float(name)
    return default if value is None else value


def _env_bool(name: str, default: bool) -> bool:
    value = _env_optional_bool(name)
    if value is None:
        return default
    return value


@dataclass(slots=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    ollama_base_url: str = _DEFAULT_OLLAMA_URL
    ollama_api_key: str | None = None
    ollama_model: str = _DEFAULT_OLLAMA_MODEL
    ollama_temperature: float = _DEFAULT_TEMPERATURE
    request_timeout_ms: int = _DEFAULT_TIMEOUT_MS
    use_mock_data: bool = False
    analysis_language: str = _DEFAULT_LANGUAGE
    analysis_min_length: int = _DEFAULT_MIN_LENGTH
    analysis_max_length: int = _DEFAULT_MAX_LENGTH
    queue_max_concurrent: int = _DEFAULT_QUEUE_MAX_CONCURRENT
    queue_progress_interval: float = _DEFAULT_QUEUE_PROGRESS_INTERVAL
    queue_max_history: int = _DEFAULT_QUEUE_MAX_HISTORY
    data_dir: str = _DEFAULT_DATA_DIR
    observability_metrics_enabled: bool = True
    observability_namespace: str = _DEFAULT_NAMESPACE
    observability_prometheus_enabled: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings by reading environment variables."""

        return cls(
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", _DEFAULT_OLLAMA_URL),
            ollama_api_key=os.getenv("OLLAMA_API_KEY") or None,
            ollama_model=os.getenv("OLLAMA_MODEL", _DEFAULT_OLLAMA_MODEL),
            ollama_temperature=_env_float("OLLAMA_TEMPERATURE", _DEFAULT_TEMPERATURE),
            request_timeout_ms=max(1, _env_int("AI_TIMEOUT_MS", _DEFAULT_TIMEOUT_MS)),
            use_mock_data=_env_bool("AI_USE_MOCK_DATA", False),
            analysis_language=os.getenv("ANALYSIS_LANGUAGE", _DEFAULT_LANGUAGE),
            analysis_min_length=max(0, _env_int("ANALYSIS_MIN_LENGTH", _DEFAULT_MIN_LENGTH)),
            analysis_max_length=max(1, _env_int("ANALYSIS_MAX_LENGTH", _DEFAULT_MAX_LENGTH)),
            queue_max_concurrent=max(1, _env_int("QUEUE_MAX_CONCURRENT", _DEFAULT_QUEUE_MAX_CONCURRENT)),
            queue_progress_interval=max(
                0.01,
                _env_float("QUEUE_PROGRESS_INTERVAL", _DEFAULT_QUEUE_PROGRESS_INTERVAL),
            ),
            queue_max_history=max(1, _env_int("QUEUE_MAX_HISTORY", _DEFAULT_QUEUE_MAX_HISTORY)),
            data_dir=os.getenv("DATA_DIR", _DEFAULT_DATA_DIR),
            observability_metrics_enabled=_env_bool("OBSERVABILITY_METRICS_ENABLED", True),
            observability_namespace=os.getenv("OBSERVABILITY_NAMESPACE", _DEFAULT_NAMESPACE),
            observability_prometheus_enabled=_env_bool("OBSERVABILITY_PROMETHEUS_ENABLED", False),
        )

    def gateway_config(self) -> "GatewayConfig":
        """Build the upstream gateway configuration."""

        from .gateway import GatewayConfig

        return GatewayConfig(
            base_url=self.ollama_base_url,
            api_key=self.ollama_api_key,
            timeout_ms=self.request_timeout_ms,
            use_mock_data=self.use_mock_data,
        )

    def validation_options(self) -> "ValidationOptions":
        from .validation import ValidationOptions

        return ValidationOptions(
            min_length=self.analysis_min_length,
            max_length=self.analysis_max_length,
        )

    def build_metrics_recorder(self) -> "MetricsRecorder":
        """Instantiate the configured metrics recorder."""

        from .observability import MetricsRecorder

        return MetricsRecorder(
            enabled=self.observability_metrics_enabled,
            namespace=self.observability_namespace,
            prometheus_enabled=self.observability_prometheus_enabled,
        )

    def board_store_path(self) -> Path:
        """Return the directory where saved insight boards are stored."""

        return Path(self.data_dir).resolve() / "boards"

    def conversation_store_path(self) -> Path:
        """Return the directory holding chat and dialogue histories."""

        return Path(self.data_dir).resolve() / "conversations"


__all__ = ["Settings"]
