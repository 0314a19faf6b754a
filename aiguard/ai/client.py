"""
DeepSeekClient - chat completions behind the reliability and caching layer.

Combines:
- Transport-boundary classification of HTTP and httpx failures into the error taxonomy
- with_reliability (circuit breaker around retry) for every non-streaming call
- ResponseCache for deterministic, cacheable requests
- Correlation-scoped logging for every logical request
"""

import json
from typing import Any, AsyncIterator, Callable, Literal

import httpx
from pydantic import BaseModel, Field

from aiguard.services.cache import (
    ResponseCache,
    create_response_cache,
    determine_cache_ttl,
    generate_cache_key,
    should_cache_request,
)
from aiguard.services.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from aiguard.services.errors import (
    AIError,
    APIError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ResponseParsingError,
    ServiceUnavailableError,
    ValidationError,
    root_cause,
    user_message_for,
)
from aiguard.services.logger import (
    CorrelatedLogger,
    Logger,
    ai_logger,
    generate_correlation_id,
)
from aiguard.services.reliability import ReliabilityFacade
from aiguard.services.retry import RetryConfig
from aiguard.settings import Settings, global_settings

SERVICE_NAME = "DeepSeek API"
COMPLETIONS_PATH = "/v1/chat/completions"
MAX_INPUT_LENGTH = 8000

DEFAULT_SYSTEM_PROMPT = (
    "You are an AI assistant specialized in blockchain and smart contract "
    "development. When asked about contract deployment, always use the "
    "application's built-in deployment capabilities and never suggest external "
    "tools like Remix IDE."
)

API_KEY_MISSING_MESSAGE = (
    "I apologize, but the AI service is currently unavailable due to missing API "
    "credentials. Please contact the administrator to set up the DeepSeek API key."
)


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatOptions(BaseModel):
    """Per-call overrides for a completion request."""

    model: str | None = None
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = 2000
    timeout_ms: int | None = None


class ChatRequest(BaseModel):
    model: str
    messages: list[ChatMessage]
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool = False

    def payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


def validate_and_sanitize_input(
    text: Any,
    correlation_id: str | None = None,
    logger: Logger | None = None,
) -> str:
    """Reject empty or non-string input; truncate overly long input."""
    if not text or not isinstance(text, str):
        raise ValidationError(
            "Input must be a non-empty string", correlation_id=correlation_id
        )

    if len(text) > MAX_INPUT_LENGTH:
        (logger or ai_logger).warn(
            "Input exceeds maximum length and will be truncated",
            {"original_length": len(text), "max_length": MAX_INPUT_LENGTH},
            correlation_id,
        )
        return text[:MAX_INPUT_LENGTH]

    return text


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds > 0 else None


class DeepSeekClient:
    """
    Async DeepSeek chat-completion client.

    Usage:
        async with DeepSeekClient() as client:
            answer = await client.generate_response("What is an ERC20 token?")

            async for chunk in client.stream_response("Explain gas fees"):
                print(chunk, end="")
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        circuit_breaker: CircuitBreaker | None = None,
        cache: ResponseCache | None = None,
        retry_config: RetryConfig | None = None,
        logger: Logger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or global_settings
        self._logger = logger or ai_logger

        if circuit_breaker is None:
            registry = CircuitBreakerRegistry(
                self.settings.circuit_breaker_config(), logger=self._logger
            )
            circuit_breaker = registry.get(SERVICE_NAME)
        self.circuit_breaker = circuit_breaker

        self._owns_cache = cache is None
        self.cache = cache or create_response_cache(self.settings, self._logger)

        self._reliability = ReliabilityFacade(
            self.circuit_breaker,
            retry_config or self.settings.retry_config(),
            self._logger,
        )
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    @property
    def logger(self) -> Logger:
        return self._logger

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.settings.deepseek_base_url,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.settings.deepseek_api_key}",
                },
                timeout=httpx.Timeout(self.settings.request_timeout_ms / 1000),
                transport=self._transport,
            )
        return self._http_client

    # Public API

    async def generate_response(
        self,
        prompt: str,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        options: ChatOptions | None = None,
    ) -> str:
        """
        Generate a response, returning a user-facing message on failure.

        Never raises taxonomy errors; they are logged and mapped through
        user_message_for().
        """
        options = options or ChatOptions()
        correlation_id = generate_correlation_id()
        log = self._logger.with_correlation_id(correlation_id)

        log.info(
            "Generating AI response",
            {
                "prompt_length": len(prompt or ""),
                "system_prompt_length": len(system_prompt or ""),
                "options": options.model_dump(exclude_none=True),
            },
        )

        if not self.settings.api_key_available:
            log.error("Cannot generate AI response: DeepSeek API key is not configured")
            return API_KEY_MISSING_MESSAGE

        try:
            return await self.complete(prompt, system_prompt, options, correlation_id)
        except AIError as e:
            log.error(
                f"AI generation failed: {e.message}",
                {"error_kind": root_cause(e).kind.value},
                e,
            )
            return user_message_for(e)

    async def complete(
        self,
        prompt: str,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        options: ChatOptions | None = None,
        correlation_id: str | None = None,
        validate: Callable[[str], None] | None = None,
    ) -> str:
        """
        Generate a response, raising taxonomy errors on failure.

        Cacheable requests go through ResponseCache.get_cached_or_generate;
        the HTTP call itself always runs under the reliability facade.
        `validate` may raise (typically InvalidGenerationError) to reject the
        content; rejected content is never cached.
        """
        options = options or ChatOptions()
        correlation_id = correlation_id or generate_correlation_id()
        log = self._logger.with_correlation_id(correlation_id)

        prompt = validate_and_sanitize_input(prompt, correlation_id, self._logger)
        system_prompt = validate_and_sanitize_input(
            system_prompt, correlation_id, self._logger
        )

        request = ChatRequest(
            model=options.model or self.settings.deepseek_model,
            messages=[
                ChatMessage(role="system", content=system_prompt),
                ChatMessage(role="user", content=prompt),
            ],
            temperature=options.temperature,
            max_tokens=options.max_tokens,
        )
        timeout_ms = options.timeout_ms or self.settings.request_timeout_ms

        async def call_api() -> str:
            response = await self._reliability.execute(
                lambda: self._post_completion(request, timeout_ms, correlation_id),
                correlation_id=correlation_id,
            )
            content = self._parse_completion(response, correlation_id)
            if validate is not None:
                validate(content)
            log.debug(
                "Successfully generated AI response",
                {"response_length": len(content), "cached": False},
            )
            return content

        cache_params = {
            "prompt": prompt,
            "system_prompt": system_prompt,
            "temperature": request.temperature,
            "model": request.model,
        }
        if not should_cache_request(cache_params):
            return await call_api()

        cache_key = generate_cache_key(
            {**cache_params, "max_tokens": request.max_tokens}
        )
        cache_ttl = determine_cache_ttl(
            {
                "is_system_prompt": len(prompt) < len(system_prompt),
                "messages": len(request.messages),
            }
        )
        log.debug(
            "Using cache for AI response",
            {"entry_hash": cache_key[:8] + "...", "ttl_s": cache_ttl.total_seconds()},
        )
        return await self.cache.get_cached_or_generate(cache_key, call_api, cache_ttl)

    async def stream_response(
        self,
        prompt: str,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> AsyncIterator[str]:
        """
        Stream content chunks as they arrive.

        Streaming is neither retried nor cached. On failure the user-facing
        message is yielded as the final chunk.
        """
        correlation_id = generate_correlation_id()
        log = self._logger.with_correlation_id(correlation_id)

        log.info(
            "Starting AI response stream",
            {
                "prompt_length": len(prompt or ""),
                "system_prompt_length": len(system_prompt or ""),
            },
        )

        if not self.settings.api_key_available:
            log.error("Cannot stream AI response: DeepSeek API key is not configured")
            yield API_KEY_MISSING_MESSAGE
            return

        try:
            prompt = validate_and_sanitize_input(prompt, correlation_id, self._logger)
            system_prompt = validate_and_sanitize_input(
                system_prompt, correlation_id, self._logger
            )
            request = ChatRequest(
                model=self.settings.deepseek_model,
                messages=[
                    ChatMessage(role="system", content=system_prompt),
                    ChatMessage(role="user", content=prompt),
                ],
                temperature=0.7,
                stream=True,
            )

            chunk_count = 0
            response_length = 0
            async for content in self._stream_completion(
                request, self.settings.stream_timeout_ms, correlation_id, log
            ):
                chunk_count += 1
                response_length += len(content)
                if chunk_count % 50 == 0:
                    log.debug(
                        "Stream progress",
                        {"chunk_count": chunk_count, "response_length": response_length},
                    )
                yield content

            log.info(
                "Stream completed successfully",
                {"total_chunks": chunk_count, "response_length": response_length},
            )
        except AIError as e:
            log.error(
                f"AI streaming failed: {e.message}",
                {"error_kind": e.kind.value},
                e,
            )
            yield user_message_for(e)

    # Transport boundary

    async def _post_completion(
        self,
        request: ChatRequest,
        timeout_ms: int,
        correlation_id: str,
    ) -> httpx.Response:
        """POST one completion request; every failure leaves as a taxonomy error."""
        self._require_api_key(correlation_id)
        client = await self._get_http_client()

        self._logger.debug(
            f"Making API request to {COMPLETIONS_PATH}",
            {
                "model": request.model,
                "temperature": request.temperature,
                "max_tokens": request.max_tokens,
                "stream": request.stream,
                "message_count": len(request.messages),
            },
            correlation_id,
        )

        try:
            response = await client.post(
                COMPLETIONS_PATH, json=request.payload(), timeout=timeout_ms / 1000
            )
        except httpx.HTTPError as e:
            raise self._error_for_exception(e, timeout_ms, correlation_id) from e

        if response.is_error:
            raise self._error_for_status(response, timeout_ms, correlation_id)
        return response

    async def _stream_completion(
        self,
        request: ChatRequest,
        timeout_ms: int,
        correlation_id: str,
        log: CorrelatedLogger,
    ) -> AsyncIterator[str]:
        self._require_api_key(correlation_id)
        client = await self._get_http_client()

        try:
            async with client.stream(
                "POST",
                COMPLETIONS_PATH,
                json=request.payload(),
                timeout=timeout_ms / 1000,
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise self._error_for_status(response, timeout_ms, correlation_id)

                async for line in response.aiter_lines():
                    content = self._parse_stream_line(line, log)
                    if content:
                        yield content
        except httpx.HTTPError as e:
            raise self._error_for_exception(e, timeout_ms, correlation_id) from e

    def _require_api_key(self, correlation_id: str) -> None:
        if not self.settings.api_key_available:
            raise AuthenticationError(
                "DeepSeek API key is not configured. "
                "Please set the DEEPSEEK_API_KEY environment variable.",
                correlation_id=correlation_id,
            )

    def _error_for_exception(
        self, error: httpx.HTTPError, timeout_ms: int, correlation_id: str
    ) -> AIError:
        if isinstance(error, httpx.TimeoutException):
            return RequestTimeoutError(
                f"Request timed out after {timeout_ms}ms",
                timeout_ms,
                correlation_id=correlation_id,
                cause=error,
            )
        if isinstance(error, httpx.TransportError):
            return NetworkError(
                f"Network error: {error}", correlation_id=correlation_id, cause=error
            )
        return APIError(
            f"API request failed: {error}", correlation_id=correlation_id, cause=error
        )

    def _error_for_status(
        self, response: httpx.Response, timeout_ms: int, correlation_id: str
    ) -> AIError:
        status = response.status_code
        message = response.reason_phrase
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            message = data["error"].get("message") or message

        self._logger.error(
            f"API request failed with status {status}",
            {
                "status": status,
                "status_text": response.reason_phrase,
                "error_message": message,
            },
            correlation_id,
        )

        if status == 401:
            return AuthenticationError(
                f"Authentication failed: {message}", correlation_id=correlation_id
            )
        if status == 429:
            return RateLimitError(
                f"Rate limit exceeded: {message}",
                retry_after_seconds=_parse_retry_after(
                    response.headers.get("retry-after")
                ),
                correlation_id=correlation_id,
            )
        if status == 400:
            return ValidationError(
                f"Invalid request: {message}", correlation_id=correlation_id
            )
        if status == 408:
            return RequestTimeoutError(
                f"Request timeout: {message}", timeout_ms, correlation_id=correlation_id
            )
        if status == 503:
            return ServiceUnavailableError(
                f"Service unavailable: {message}", correlation_id=correlation_id
            )
        if status >= 500:
            return APIError(
                f"Server error: {message}",
                correlation_id=correlation_id,
                status_code=status,
                retryable=True,
            )
        return APIError(
            f"API error: {message}", correlation_id=correlation_id, status_code=status
        )

    # Parsing

    def _parse_completion(self, response: httpx.Response, correlation_id: str) -> str:
        try:
            data = response.json()
        except ValueError as e:
            raise ResponseParsingError(
                "Failed to parse API response",
                response.text,
                correlation_id=correlation_id,
                cause=e,
            ) from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ResponseParsingError(
                "Invalid API response format",
                data,
                correlation_id=correlation_id,
                cause=e,
            ) from e

        if not isinstance(content, str):
            raise ResponseParsingError(
                "Invalid API response format", data, correlation_id=correlation_id
            )
        return content

    def _parse_stream_line(self, line: str, log: CorrelatedLogger) -> str | None:
        """Extract delta content from one server-sent-events line."""
        line = line.strip()
        if not line.startswith("data: "):
            return None

        payload = line[len("data: "):]
        if payload == "[DONE]":
            return None

        try:
            data = json.loads(payload)
            return data["choices"][0].get("delta", {}).get("content") or None
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            log.warn(
                "Error parsing streaming response chunk", {"chunk": payload[:200]}, e
            )
            return None

    # Lifecycle and status

    async def close(self) -> None:
        """Close the HTTP client and any store this client created."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

        if self._owns_cache and hasattr(self.cache.store, "close"):
            await self.cache.store.close()

        self._logger.debug("DeepSeekClient closed")

    async def __aenter__(self) -> "DeepSeekClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def get_health_status(self) -> dict[str, Any]:
        """Get health status of the protected dependency and the cache."""
        return {
            "circuit_breaker": self.circuit_breaker.get_status(),
            "cache": self.cache.get_stats().to_dict(),
        }
