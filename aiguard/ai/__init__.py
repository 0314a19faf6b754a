"""
AI client module
DeepSeek chat completions on top of the reliability and caching services
"""

from aiguard.ai.client import (
    DEFAULT_SYSTEM_PROMPT,
    ChatMessage,
    ChatOptions,
    DeepSeekClient,
    validate_and_sanitize_input,
)

__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    "ChatMessage",
    "ChatOptions",
    "DeepSeekClient",
    "validate_and_sanitize_input",
]
