from abc import ABC, abstractmethod
from typing import AsyncIterator

from loguru import logger

from core.config import ConfigManager
from llm.prompts import build_system_prompt


class BaseLLM(ABC):
    """Abstract base class for completion providers."""

    @abstractmethod
    async def stream(self, messages: list[dict]) -> AsyncIterator[str]:
        """Stream tokens from the LLM.

        Args:
            messages: List of message dicts with "role" and "content" keys.

        Yields:
            Token strings one at a time.

        Raises:
            StreamError: on a missing key or any transport/API failure.
        """
        ...


class LLMRouter:
    """Routes completion requests to the provider selected in config."""

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager
        self._providers: dict[str, BaseLLM] = {}

    def _create_provider(self, name: str, api_key: str) -> BaseLLM:
        llm = self.config_manager.config.llm
        if name == "claude":
            from llm.providers.claude_provider import ClaudeProvider
            return ClaudeProvider(
                api_key=api_key,
                model=llm.model or ClaudeProvider.DEFAULT_MODEL,
                max_tokens=llm.max_tokens,
                temperature=llm.temperature,
            )

        from llm.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(
            api_key=api_key,
            model=llm.model or OpenAIProvider.DEFAULT_MODEL,
            base_url=llm.base_url or None,
            max_tokens=llm.max_tokens,
            temperature=llm.temperature,
        )

    def get_provider(self) -> BaseLLM:
        """Get or create the active provider.

        Re-reads the API key from config each time so that key updates
        take effect without restart.
        """
        name = self.config_manager.config.llm.provider
        current_key = self.config_manager.api_key_for(name)

        cached = self._providers.get(name)
        if cached is not None and getattr(cached, "api_key", None) == current_key:
            return cached

        self._providers[name] = self._create_provider(name, current_key)
        logger.info("Completion provider '{}' initialized.", name)
        return self._providers[name]

    def build_messages(
        self,
        history: list[dict],
        sounds: list[str] | None = None,
        autonomous: bool = False,
        username: str = "",
        user_history: list[dict] | None = None,
    ) -> list[dict]:
        """Build the message list: system prompt followed by the conversation window.

        Args:
            history: Prior {"role": "user"/"assistant", "content": ...} turns,
                     already ending with the turn being answered.
            sounds: Names of the sound effects the model may trigger.
            autonomous: True when the performer talks without being prompted.
            username: Who is being answered, for per-user context.
            user_history: That user's recent stored messages, oldest first.

        Returns:
            Full message list ready for the provider.
        """
        system_prompt = build_system_prompt(
            persona=self.config_manager.persona_prompt(),
            sounds=sounds,
            autonomous=autonomous,
            username=username,
            user_history=user_history,
        )
        return [{"role": "system", "content": system_prompt}, *history]
