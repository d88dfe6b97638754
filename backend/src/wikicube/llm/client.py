# backend/src/wikicube/llm/client.py
"""LiteLLM-based client for text generation and embeddings."""

import json
import logging
import time
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from pathlib import Path

from litellm import acompletion, aembedding
from litellm.exceptions import (
    APIConnectionError,
    APIError,
    AuthenticationError,
    RateLimitError,
)

from wikicube.config import ConfigError, load_settings
from wikicube.constants import (
    DEFAULT_TEMPERATURE,
    EMBEDDING_DIMENSIONS,
    EMBEDDING_MODEL,
    JSON_TEMPERATURE,
    MAX_TOKENS,
)

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Base exception for LLM client errors."""

    pass


class LLMConnectionError(LLMError):
    """Raised when unable to connect to the LLM provider."""

    pass


class LLMAuthenticationError(LLMError):
    """Raised when authentication with the LLM provider fails."""

    pass


class LLMRateLimitError(LLMError):
    """Raised when rate limited by the LLM provider."""

    pass


def _translate_error(e: Exception) -> LLMError:
    """Map a LiteLLM exception onto the client's error hierarchy."""
    if isinstance(e, AuthenticationError):
        return LLMAuthenticationError(f"Authentication failed: {e}")
    if isinstance(e, RateLimitError):
        return LLMRateLimitError(f"Rate limit exceeded: {e}")
    if isinstance(e, APIConnectionError):
        return LLMConnectionError(f"Connection failed: {e}")
    return LLMError(f"LLM API error: {e}")


_LITELLM_ERRORS = (AuthenticationError, RateLimitError, APIConnectionError, APIError)


class LLMClient:
    """Unified LLM client supporting multiple providers via LiteLLM."""

    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str | None = None,
        endpoint: str | None = None,
        log_path: Path | None = None,
        embedding_model: str = EMBEDDING_MODEL,
        embedding_dimensions: int | None = EMBEDDING_DIMENSIONS,
        embedding_api_key: str | None = None,
    ):
        """Initialize LLM client.

        Args:
            provider: LLM provider (openai, anthropic, google, ollama).
            model: Model name.
            api_key: Optional API key (uses env var if not provided).
            endpoint: Optional custom endpoint (for Ollama).
            log_path: Optional path to JSONL log file for query logging.
            embedding_model: Model used by embed().
            embedding_dimensions: Requested vector size, or None for the
                model's native size.
            embedding_api_key: Optional API key for the embedding provider.
        """
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint
        self.log_path = log_path
        self.embedding_model = embedding_model
        self.embedding_dimensions = embedding_dimensions
        self.embedding_api_key = embedding_api_key

    def _log_query(
        self,
        request: dict,
        response: str | None,
        duration_ms: int,
        error: str | None,
    ) -> None:
        """Append a query record to the JSONL log file.

        Args:
            request: Request fields worth keeping (prompts, sampling settings).
            response: Response text (None if error).
            duration_ms: Request duration in milliseconds.
            error: Error message (None if success).
        """
        if not self.log_path:
            return

        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "provider": self.provider,
            "model": self.model,
            "request": request,
            "response": response,
            "duration_ms": duration_ms,
            "error": error,
        }

        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            # Query logging must never break generation
            logger.warning(f"Could not write LLM query log {self.log_path}: {e}")

    def _get_model_string(self) -> str:
        """Get LiteLLM model string.

        Returns:
            Model string in provider/model format.
        """
        if self.provider == "openai":
            return self.model
        return f"{self.provider}/{self.model}"

    def _resolve_sampling(
        self, temperature: float | None, max_tokens: int | None
    ) -> tuple[float, int]:
        if temperature is not None and max_tokens is not None:
            return temperature, max_tokens
        try:
            settings = load_settings()
            default_temperature = settings.llm.default_temperature
            default_max_tokens = settings.llm.max_tokens
        except (OSError, ConfigError):
            default_temperature = DEFAULT_TEMPERATURE
            default_max_tokens = MAX_TOKENS
        return (
            default_temperature if temperature is None else temperature,
            default_max_tokens if max_tokens is None else max_tokens,
        )

    def _completion_kwargs(
        self,
        prompt: str,
        system_prompt: str | None,
        temperature: float,
        max_tokens: int,
        history: list[dict[str, str]] | None = None,
    ) -> dict:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(history or [])
        messages.append({"role": "user", "content": prompt})

        kwargs = {
            "model": self._get_model_string(),
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.endpoint and self.provider == "ollama":
            kwargs["api_base"] = self.endpoint
        return kwargs

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Generate completion from prompt.

        Args:
            prompt: User prompt.
            system_prompt: Optional system prompt.
            temperature: Sampling temperature.
            max_tokens: Maximum response tokens.

        Returns:
            Generated text response.

        Raises:
            LLMError: Or one of its subclasses, when the provider call fails.
        """
        temperature, max_tokens = self._resolve_sampling(temperature, max_tokens)
        kwargs = self._completion_kwargs(prompt, system_prompt, temperature, max_tokens)
        request = {
            "system_prompt": system_prompt,
            "prompt": prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        start_time = time.perf_counter()
        try:
            response = await acompletion(**kwargs)
        except _LITELLM_ERRORS as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            self._log_query(request, response=None, duration_ms=duration_ms, error=str(e))
            raise _translate_error(e) from e

        result: str = str(response.choices[0].message.content or "")
        duration_ms = int((time.perf_counter() - start_time) * 1000)
        self._log_query(request, response=result, duration_ms=duration_ms, error=None)
        return result

    async def generate_stream(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        history: list[dict[str, str]] | None = None,
    ) -> AsyncGenerator[str, None]:
        """Generate completion with streaming tokens.

        Args:
            prompt: User prompt.
            system_prompt: Optional system prompt.
            temperature: Sampling temperature.
            max_tokens: Maximum response tokens.
            history: Earlier turns as {"role", "content"} dicts, placed
                between the system prompt and the prompt.

        Yields:
            Individual tokens as they are generated.
        """
        temperature, max_tokens = self._resolve_sampling(temperature, max_tokens)
        kwargs = self._completion_kwargs(prompt, system_prompt, temperature, max_tokens, history)
        kwargs["stream"] = True
        request = {
            "system_prompt": system_prompt,
            "prompt": prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": True,
            "history_turns": len(history or []),
        }

        start_time = time.perf_counter()
        accumulated_tokens: list[str] = []
        error_msg: str | None = None

        try:
            response = await acompletion(**kwargs)
            async for chunk in response:
                content = chunk.choices[0].delta.content
                if content:
                    accumulated_tokens.append(content)
                    yield content
        except _LITELLM_ERRORS as e:
            error_msg = str(e)
            raise _translate_error(e) from e
        finally:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            self._log_query(
                request,
                response="".join(accumulated_tokens) if accumulated_tokens else None,
                duration_ms=duration_ms,
                error=error_msg,
            )

    async def generate_with_json(
        self,
        prompt: str,
        system_prompt: str | None = None,
    ) -> str:
        """Generate completion expecting JSON response.

        Args:
            prompt: User prompt.
            system_prompt: Optional system prompt.

        Returns:
            Generated JSON string (unvalidated).
        """
        try:
            json_temperature = load_settings().llm.json_temperature
        except (OSError, ConfigError):
            json_temperature = JSON_TEMPERATURE
        full_system = (system_prompt or "") + "\n\nRespond with valid JSON only."
        return await self.generate(
            prompt,
            system_prompt=full_system.strip(),
            temperature=json_temperature,
        )

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts in one provider call.

        Args:
            texts: Texts to embed.

        Returns:
            One vector per text, in input order.

        Raises:
            LLMError: Or one of its subclasses, when the provider call fails.
        """
        if not texts:
            return []

        kwargs: dict = {"model": self.embedding_model, "input": texts}
        if self.embedding_dimensions:
            kwargs["dimensions"] = self.embedding_dimensions
        if self.embedding_api_key:
            kwargs["api_key"] = self.embedding_api_key

        start_time = time.perf_counter()
        try:
            response = await aembedding(**kwargs)
        except _LITELLM_ERRORS as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            self._log_query(
                {"embedding_model": self.embedding_model, "inputs": len(texts)},
                response=None,
                duration_ms=duration_ms,
                error=str(e),
            )
            raise _translate_error(e) from e

        # Providers may return items out of order; "index" is authoritative
        items = sorted(response.data, key=lambda item: _field(item, "index"))
        return [list(_field(item, "embedding")) for item in items]


def _field(item, name: str):
    """Read a field from a LiteLLM embedding item (dict or object)."""
    if isinstance(item, dict):
        return item[name]
    return getattr(item, name)
