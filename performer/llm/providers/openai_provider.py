from typing import AsyncIterator, Optional

from loguru import logger

from core.errors import StreamError
from llm.base import BaseLLM


class OpenAIProvider(BaseLLM):
    """OpenAI (or OpenAI-compatible) chat provider with streaming support."""

    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: Optional[str] = None,
        max_tokens: int = 150,
        temperature: float = 0.7,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = None

    def _ensure_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)

    async def stream(self, messages: list[dict]) -> AsyncIterator[str]:
        """Stream tokens from the chat completions API."""
        if not self.api_key:
            logger.error("OpenAI API key not configured.")
            raise StreamError("OpenAI API key not configured")

        self._ensure_client()

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                stream=True,
            )

            async for chunk in response:
                delta = chunk.choices[0].delta if chunk.choices else None
                if delta and delta.content:
                    yield delta.content

        except Exception as e:
            logger.error("OpenAI streaming error: {}", e)
            raise StreamError(str(e)) from e
