"""
PPMatch - Completion Service
============================

The external complete(prompt) -> text service, used for capability
narratives. Calls go through a bounded semaphore, a circuit breaker and
retry with backoff; every failure surfaces as CompletionError.

Usage:
    completer = AnthropicCompleter(CompletionConfig.from_env())
    text = await completer.complete(prompt)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from ppmatch.core.config import CompletionConfig
from ppmatch.shared.exceptions import CompletionError, RateLimitError
from ppmatch.utils.circuit_breaker import CircuitBreaker, RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)

# Global circuit breaker for Claude API
claude_breaker = CircuitBreaker(
    name="claude",
    failure_threshold=5,
    success_threshold=2,
    reset_timeout=60.0,
)

NARRATIVE_SYSTEM_PROMPT = (
    "You write concise capability statements for government proposals. "
    "Use only the facts provided. Two to three sentences, no bullet points."
)


class TextCompleter(ABC):
    """Abstract interface for the complete(prompt) service."""

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """Return generated text for a prompt."""
        pass


class AnthropicCompleter(TextCompleter):
    """Claude via the Anthropic messages API."""

    def __init__(self, config: Optional[CompletionConfig] = None):
        try:
            import anthropic
        except ImportError:
            raise ImportError("anthropic package required: pip install anthropic")

        self.config = config or CompletionConfig()
        self._anthropic = anthropic
        self._client = anthropic.AsyncAnthropic(api_key=self.config.api_key or None)
        self._semaphore = asyncio.Semaphore(self.config.max_concurrency)
        self._retry_config = RetryConfig(
            max_attempts=self.config.max_attempts,
            timeout=self.config.timeout_seconds,
        )

    async def complete(self, prompt: str) -> str:
        async with self._semaphore:
            try:
                return await retry_with_backoff(
                    lambda: self._generate(prompt),
                    self._retry_config,
                )
            except CompletionError:
                raise
            except Exception as e:
                logger.error(f"Claude API error: {e}")
                raise CompletionError(f"Completion failed: {e}") from e

    async def _generate(self, prompt: str) -> str:
        async with claude_breaker:
            try:
                response = await self._client.messages.create(
                    model=self.config.model,
                    max_tokens=self.config.max_tokens,
                    temperature=self.config.temperature,
                    system=NARRATIVE_SYSTEM_PROMPT,
                    messages=[{"role": "user", "content": prompt}],
                )
            except self._anthropic.RateLimitError as e:
                raise RateLimitError(f"Claude rate limit: {e}") from e
        return response.content[0].text.strip()
