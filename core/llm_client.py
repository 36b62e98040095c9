# ============================================================
# DBSage - Database AI Assistant
# core/llm_client.py - OpenAI-compatible Chat Streaming
# ============================================================
#
# The only place that talks to the LLM endpoint. Any base URL that
# speaks the chat-completions protocol works (OpenAI, Azure gateways,
# local proxies); configure it with OPENAI_BASE_URL.
# ════════════════════════════════════════════════════════════

from typing import Optional, List, Dict, Any, Iterator

import httpx
from openai import OpenAI, APIError, APIConnectionError, APIStatusError
from loguru import logger

from config import OpenAIConfig
from core.errors import TransportError


class LLMClient:
    """Thin wrapper yielding raw chat-completion chunks."""

    def __init__(self, settings: OpenAIConfig, client: Optional[OpenAI] = None):
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def model(self) -> str:
        return self._settings.model

    @staticmethod
    def _build_client(settings: OpenAIConfig) -> OpenAI:
        timeout = httpx.Timeout(settings.turn_timeout) if settings.turn_timeout else None
        kwargs: Dict[str, Any] = {"api_key": settings.api_key, "base_url": settings.base_url}
        if timeout is not None:
            kwargs["timeout"] = timeout
        return OpenAI(**kwargs)

    def stream_chat(self, messages: List[Dict[str, Any]], tools: Optional[List[Dict[str, Any]]] = None) -> Iterator[Any]:
        """
        Open a streaming completion and yield its chunks.
        Failures while opening or reading surface as TransportError.
        """
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": messages,
            "stream": True,
        }
        if tools:
            payload["tools"] = tools
        if self._settings.temperature is not None:
            payload["temperature"] = self._settings.temperature

        logger.debug(f"Opening chat stream: model={self._settings.model} messages={len(messages)}")
        try:
            stream = self._client.chat.completions.create(**payload)
            for chunk in stream:
                yield chunk
        except APIStatusError as e:
            logger.error(f"LLM request rejected ({e.status_code}): {e.message}")
            raise TransportError(f"LLM request failed ({e.status_code}): {e.message}") from e
        except APIConnectionError as e:
            logger.error(f"LLM connection failed: {e}")
            raise TransportError(f"Could not reach the LLM endpoint: {e}") from e
        except APIError as e:
            logger.error(f"LLM stream error: {e}")
            raise TransportError(f"LLM stream failed: {e}") from e
        except httpx.HTTPError as e:
            logger.error(f"LLM transport error: {e}")
            raise TransportError(f"LLM transport error: {e}") from e
