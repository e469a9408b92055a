from typing import AsyncIterator

from loguru import logger

from core.errors import StreamError
from llm.base import BaseLLM


class ClaudeProvider(BaseLLM):
    """Anthropic Claude provider with streaming support."""

    DEFAULT_MODEL = "claude-haiku-4-5-20251001"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 150,
        temperature: float = 0.7,
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = None

    def _ensure_client(self):
        if self._client is None:
            from anthropic import AsyncAnthropic
            self._client = AsyncAnthropic(api_key=self.api_key)

    @staticmethod
    def split_system(messages: list[dict]) -> tuple[str, list[dict]]:
        """Separate the system message from the conversation turns."""
        system_msg = ""
        conversation = []
        for msg in messages:
            if msg["role"] == "system":
                system_msg = msg["content"]
            else:
                conversation.append(msg)
        return system_msg, conversation

    async def stream(self, messages: list[dict]) -> AsyncIterator[str]:
        """Stream tokens from Claude API."""
        if not self.api_key:
            logger.error("Claude API key not configured.")
            raise StreamError("Claude API key not configured")

        self._ensure_client()
        system_msg, conversation = self.split_system(messages)

        try:
            async with self._client.messages.stream(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system_msg,
                messages=conversation,
            ) as stream:
                async for text in stream.text_stream:
                    yield text

        except Exception as e:
            logger.error("Claude streaming error: {}", e)
            raise StreamError(str(e)) from e
