import os
from datetime import timedelta
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # DeepSeek API Configuration
    deepseek_api_key: str = Field(default="", alias="DEEPSEEK_API_KEY")
    deepseek_base_url: str = Field(
        default="https://api.deepseek.com", alias="DEEPSEEK_BASE_URL"
    )
    deepseek_model: str = Field(default="deepseek-chat", alias="DEEPSEEK_MODEL")
    request_timeout_ms: int = Field(default=30000, alias="REQUEST_TIMEOUT_MS")
    stream_timeout_ms: int = Field(default=60000, alias="STREAM_TIMEOUT_MS")

    # Logging Configuration
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_service: str = Field(default="deepseek-ai", alias="LOG_SERVICE")
    log_include_stack_trace: bool = Field(default=True, alias="LOG_INCLUDE_STACK_TRACE")

    # Cache Configuration
    cache_backend: Literal["memory", "redis"] = Field(
        default="memory", alias="CACHE_BACKEND"
    )
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    cache_max_size: int = Field(default=500, alias="CACHE_MAX_SIZE")
    cache_key_prefix: str = Field(default="aiguard:", alias="CACHE_KEY_PREFIX")
    cache_single_flight: bool = Field(default=False, alias="CACHE_SINGLE_FLIGHT")

    # Retry Configuration
    retry_max_retries: int = Field(default=3, ge=0, alias="RETRY_MAX_RETRIES")
    retry_initial_delay_ms: int = Field(default=1000, ge=0, alias="RETRY_INITIAL_DELAY_MS")
    retry_max_delay_ms: int = Field(default=30000, ge=0, alias="RETRY_MAX_DELAY_MS")
    retry_jitter_factor: float = Field(default=0.2, ge=0, le=1, alias="RETRY_JITTER_FACTOR")

    # Circuit Breaker Configuration
    circuit_failure_threshold: int = Field(default=5, ge=1, alias="CIRCUIT_FAILURE_THRESHOLD")
    circuit_failure_window_ms: int = Field(default=60000, alias="CIRCUIT_FAILURE_WINDOW_MS")
    circuit_reset_timeout_ms: int = Field(default=30000, alias="CIRCUIT_RESET_TIMEOUT_MS")
    circuit_half_open_max_requests: int = Field(
        default=3, ge=1, alias="CIRCUIT_HALF_OPEN_MAX_REQUESTS"
    )

    @property
    def api_key_available(self) -> bool:
        return bool(self.deepseek_api_key)

    def retry_config(self):
        """Build the retry policy configuration from these settings."""
        from aiguard.services.retry import RetryConfig

        return RetryConfig(
            max_retries=self.retry_max_retries,
            initial_delay_ms=self.retry_initial_delay_ms,
            max_delay_ms=self.retry_max_delay_ms,
            jitter_factor=self.retry_jitter_factor,
        )

    def circuit_breaker_config(self):
        """Build the circuit breaker configuration from these settings."""
        from aiguard.services.circuit_breaker import CircuitBreakerConfig

        return CircuitBreakerConfig(
            failure_threshold=self.circuit_failure_threshold,
            failure_window=timedelta(milliseconds=self.circuit_failure_window_ms),
            reset_timeout=timedelta(milliseconds=self.circuit_reset_timeout_ms),
            half_open_max_requests=self.circuit_half_open_max_requests,
        )


def load_settings() -> Settings:
    """Read settings from the process environment (after .env is loaded)."""
    return Settings.model_validate(dict(os.environ))


global_settings = load_settings()
