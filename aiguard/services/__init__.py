"""
Service layer infrastructure - resilience patterns for AI API calls.

Provides:
- Error taxonomy driving retry and circuit breaker decisions
- Logger: structured, correlation-scoped, secret-redacting logging
- with_retry: exponential backoff with jitter
- CircuitBreaker: Prevents cascading failures
- with_reliability / ReliabilityFacade: circuit breaker around retry
- ResponseCache: get-or-generate caching over a pluggable CacheStore
"""

from aiguard.services.errors import (
    AIError,
    APIError,
    AuthenticationError,
    CircuitOpenError,
    ErrorKind,
    InvalidGenerationError,
    MaxRetriesExceededError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ResponseParsingError,
    ServiceUnavailableError,
    ValidationError,
    is_breaker_failure,
    is_retryable_error,
    root_cause,
    user_message_for,
)
from aiguard.services.logger import (
    CorrelatedLogger,
    Logger,
    LoggerConfig,
    LogLevel,
    LogRecord,
    ai_logger,
    generate_correlation_id,
)
from aiguard.services.retry import (
    RetryAttempt,
    RetryConfig,
    calculate_backoff_delay,
    with_retry,
)
from aiguard.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from aiguard.services.reliability import ReliabilityFacade, with_reliability
from aiguard.services.stores import (
    CacheEntry,
    CacheStore,
    MemoryCacheStore,
    RedisCacheStore,
    create_cache_store,
)
from aiguard.services.cache import (
    CacheResult,
    CacheTTL,
    ResponseCache,
    create_response_cache,
    determine_cache_ttl,
    generate_cache_key,
    should_cache_request,
)
from aiguard.services.deduplicator import RequestDeduplicator

__all__ = [
    # Errors
    "AIError",
    "APIError",
    "AuthenticationError",
    "CircuitOpenError",
    "ErrorKind",
    "InvalidGenerationError",
    "MaxRetriesExceededError",
    "NetworkError",
    "RateLimitError",
    "RequestTimeoutError",
    "ResponseParsingError",
    "ServiceUnavailableError",
    "ValidationError",
    "is_breaker_failure",
    "is_retryable_error",
    "root_cause",
    "user_message_for",
    # Logging
    "CorrelatedLogger",
    "Logger",
    "LoggerConfig",
    "LogLevel",
    "LogRecord",
    "ai_logger",
    "generate_correlation_id",
    # Retry
    "RetryAttempt",
    "RetryConfig",
    "calculate_backoff_delay",
    "with_retry",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Reliability
    "ReliabilityFacade",
    "with_reliability",
    # Cache
    "CacheEntry",
    "CacheStore",
    "MemoryCacheStore",
    "RedisCacheStore",
    "create_cache_store",
    "CacheResult",
    "CacheTTL",
    "ResponseCache",
    "create_response_cache",
    "determine_cache_ttl",
    "generate_cache_key",
    "should_cache_request",
    # Deduplicator
    "RequestDeduplicator",
]
