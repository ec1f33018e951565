"""
OpenAI chat-completion provider.

Speaks the public /v1/chat/completions contract, so it also works against
any OpenAI-compatible server (llama.cpp, vLLM, LocalAI, Ollama, ...) by
pointing base_url at it.

reference: https://platform.openai.com/docs/api-reference/chat/create
"""

from __future__ import annotations

import json
import logging
import time

import httpx

from chatrelay.config import ChatConfig, OpenAIConfig
from chatrelay.errors import SchemaError, TransportError, UpstreamStatusError
from chatrelay.models import ChatMessage, ChatMode
from chatrelay.providers.base import BaseProvider, Completion
from chatrelay.storage.base import KVStore

logger = logging.getLogger(__name__)

# Config field → wire field. Omitted from the payload when unset.
_SAMPLING_PARAMS = (
    "temperature",
    "max_tokens",
    "top_p",
    "frequency_penalty",
    "presence_penalty",
)


class OpenAIProvider(BaseProvider):
    """Provider for OpenAI and OpenAI-compatible endpoints."""

    mode = ChatMode.OPENAI

    def __init__(
        self,
        config: OpenAIConfig,
        store: KVStore,
        chat_config: ChatConfig | None = None,
    ):
        chat_config = chat_config or ChatConfig()
        super().__init__(
            store,
            namespace=chat_config.namespace,
            system=config.system,
            max_history_depth=chat_config.max_history_depth,
            store_replies=chat_config.store_replies,
        )
        self.config = config
        self.url = config.base_url.rstrip("/")

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def build_payload(self, messages: list[ChatMessage]) -> dict:
        """Translate messages + config into the chat-completion request body."""
        body: dict = {
            "model": self.config.model,
            "messages": [m.to_openai_format() for m in messages],
        }
        for name in _SAMPLING_PARAMS:
            value = getattr(self.config, name)
            if value is not None:
                body[name] = value
        return body

    @staticmethod
    def parse_response(data) -> Completion:
        """
        Normalize a chat-completion object.
        The first choice wins; a choice without content reads as "".
        """
        if not isinstance(data, dict):
            raise SchemaError("Response is not a JSON object")
        choices = data.get("choices")
        if not isinstance(choices, list):
            raise SchemaError("Response has no 'choices' array")
        if not choices:
            raise SchemaError("Response returned zero choices")

        choice = choices[0]
        if not isinstance(choice, dict):
            raise SchemaError("First choice is not an object")
        message = choice.get("message") or {}
        if not isinstance(message, dict):
            raise SchemaError("Choice 'message' is not an object")
        content = message.get("content")
        if content is None:
            content = ""
        elif not isinstance(content, str):
            raise SchemaError(f"Choice content is {type(content).__name__}, expected a string")

        message_id = data.get("id")
        return Completion(
            content=content,
            message_id=message_id if isinstance(message_id, str) and message_id else None,
            raw=data,
        )

    async def complete(self, messages: list[ChatMessage]) -> Completion:
        body = self.build_payload(messages)
        logger.debug("openai request: %s", json.dumps(body, ensure_ascii=False))

        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                resp = await client.post(
                    f"{self.url}/v1/chat/completions",
                    json=body,
                    headers=self._headers(),
                )
        except httpx.TimeoutException as e:
            latency = (time.monotonic() - t0) * 1000
            logger.warning("OpenAI request timed out after %.0fms", latency)
            raise TransportError(f"Timeout after {self.config.timeout}s") from e
        except httpx.HTTPError as e:
            logger.warning("OpenAI request failed: %s", e)
            raise TransportError(str(e)) from e

        latency = (time.monotonic() - t0) * 1000
        if resp.status_code >= 400:
            logger.warning(
                "OpenAI returned HTTP %d after %.0fms", resp.status_code, latency,
            )
            raise UpstreamStatusError(resp.status_code, resp.text[:200])

        try:
            data = resp.json()
        except ValueError as e:
            raise SchemaError(f"Response is not valid JSON: {e}") from e

        logger.debug("openai response (%.0fms): %s", latency, json.dumps(data, ensure_ascii=False))
        return self.parse_response(data)
