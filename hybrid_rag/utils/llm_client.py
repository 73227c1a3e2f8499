"""Language-model client factory and chat adapter.

This module provides a centralized way to create LLM clients (OpenAI,
Anthropic) and a small ``generate_text(messages)`` adapter that the extraction
layer depends on, so the provider, credentials and timeouts live in one place.
"""

import os
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from loguru import logger
from openai import OpenAI

from hybrid_rag.utils.config import LLMConfig

ChatMessage = Dict[str, str]


@runtime_checkable
class LanguageModel(Protocol):
    """Anything that turns a list of ``{role, content}`` messages into text."""

    def generate_text(self, messages: List[ChatMessage]) -> str: ...


def create_openai_client(
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
    max_retries: int = 2,
    **kwargs: Any,
) -> OpenAI:
    """Create and configure an OpenAI client.

    Args:
        api_key: The API key. If None, falls back to OPENAI_API_KEY.
        base_url: The base URL. If None, falls back to OPENAI_BASE_URL.
        timeout: Request timeout in seconds.
        max_retries: Number of retries.
        **kwargs: Additional arguments to pass to the OpenAI constructor.

    Returns:
        Configured OpenAI client.
    """
    final_api_key = api_key or os.getenv("OPENAI_API_KEY")
    final_base_url = base_url or os.getenv("OPENAI_BASE_URL")

    masked_key = (
        f"{final_api_key[:4]}...{final_api_key[-4:]}"
        if final_api_key and len(final_api_key) > 8
        else "None"
    )
    logger.debug(
        f"Creating OpenAI client: base_url={final_base_url}, "
        f"api_key={masked_key}, timeout={timeout}"
    )

    return OpenAI(
        api_key=final_api_key,
        base_url=final_base_url,
        timeout=timeout,
        max_retries=max_retries,
        **kwargs,
    )


class ChatLanguageModel:
    """Provider-switching chat client with retries and exponential backoff."""

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        *,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self.config = config or LLMConfig()
        self._sleep = sleep_fn or time.sleep
        self._client: Any = None

        logger.info(
            "Initialized ChatLanguageModel",
            provider=self.config.provider,
            model=self.config.model,
        )

    def generate_text(self, messages: List[ChatMessage]) -> str:
        """Send ``messages`` to the configured provider and return the reply text.

        Raises:
            ValueError: If no messages are given or the provider is unsupported
            Exception: The last provider error once all retries are exhausted
        """
        if not messages:
            raise ValueError("At least one message is required")

        attempts = max(1, self.config.retry_attempts)
        last_error: Exception | None = None

        logger.debug(f"Calling LLM using {self.config.provider}: {self.config.model}")

        for attempt in range(1, attempts + 1):
            try:
                if self.config.provider == "openai":
                    return self._call_openai(messages)
                if self.config.provider == "anthropic":
                    return self._call_anthropic(messages)
                raise ValueError(f"Unsupported LLM provider: {self.config.provider}")
            except ValueError:
                raise
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                logger.warning(
                    "LLM request failed",
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(exc),
                )
                if attempt >= attempts:
                    break
                backoff = min(2 ** (attempt - 1), 8)
                self._sleep(backoff)

        if last_error:
            raise last_error
        raise RuntimeError("LLM request failed for unknown reasons")

    def _call_openai(self, messages: List[ChatMessage]) -> str:
        if self._client is None:
            self._client = create_openai_client(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
            )

        response = self._client.chat.completions.create(
            model=self.config.model,
            messages=messages,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            timeout=self.config.timeout,
        )

        content = response.choices[0].message.content
        if isinstance(content, list):
            parts = []
            for item in content:
                if isinstance(item, dict):
                    parts.append(str(item.get("text", "")))
                else:
                    parts.append(str(item))
            return "\n".join(parts).strip()
        return str(content or "")

    def _call_anthropic(self, messages: List[ChatMessage]) -> str:
        import anthropic

        if self._client is None:
            client_kwargs: Dict[str, Any] = {}
            if self.config.base_url:
                client_kwargs["base_url"] = self.config.base_url
            if self.config.api_key:
                client_kwargs["api_key"] = self.config.api_key
            self._client = anthropic.Anthropic(**client_kwargs)

        # Anthropic takes the system prompt separately from the turn list
        system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        turns = [m for m in messages if m.get("role") != "system"]

        message = self._client.messages.create(
            model=self.config.model,
            timeout=self.config.timeout,
            system=system,
            messages=turns,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
        )
        parts = []
        for block in message.content:
            if getattr(block, "type", None) == "text":
                parts.append(getattr(block, "text", ""))
        return "\n".join(parts).strip()
