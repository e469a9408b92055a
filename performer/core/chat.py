import time
from typing import Union

from loguru import logger

from core.config import ConfigManager
from core.intents import DirectMediaIntent, IntentClassifier, NoIntent, SongIntent
from core.responder import SYSTEM_USER, Responder
from core.state import Admission, ChatRequest, PerformerState

HELP_TEXT = (
    "I'm an AI assistant for this stream. You can chat with me normally "
    "or use commands like !hello, !help or !sing <song>."
)
AUTOTALK_ON = "Auto-talk feature enabled. I will speak on my own occasionally."
AUTOTALK_OFF = "Auto-talk feature disabled. I will only speak when spoken to."


class ChatRouter:
    """Entry point for chat events: admission, commands, song intents, replies."""

    def __init__(
        self,
        state: PerformerState,
        config_manager: ConfigManager,
        responder: Responder,
        songs,
        autotalk,
        classifier: IntentClassifier | None = None,
    ):
        self.state = state
        self.config_manager = config_manager
        self.responder = responder
        self.songs = songs
        self.autotalk = autotalk
        self.classifier = classifier or IntentClassifier()

    async def handle_message(self, username: str, text: str, is_moderator: bool = False) -> str:
        """Handle one chat message. Returns what happened, for logging and the API."""
        text = text.strip()
        logger.info("{}: {}", username, text)
        self.state.last_chat_activity_at = time.monotonic()

        if self.state.try_admit(ChatRequest(text=text, username=username)) is Admission.QUEUED:
            return "queued"

        intent = self.classifier.parse_direct_command(text)
        if intent is None:
            intent = self.classifier.classify(text)
        if not isinstance(intent, NoIntent):
            await self._sing(intent, username)
            return "song"

        if text.startswith("!"):
            command = text.split()[0].lower()
            handled = await self._command(command, text, username, is_moderator)
            if handled:
                return "command"

        await self.responder.respond(text, username)
        return "reply"

    async def _sing(self, intent: Union[SongIntent, DirectMediaIntent], username: str) -> None:
        if isinstance(intent, DirectMediaIntent):
            self.responder.events.subtitle(f"{username} requested a YouTube video")
            prompt = "I've been asked to play a video from YouTube. Give a reluctant response about having to do this."
            failed_prefix = "I tried to play that YouTube video but it didn't work."
        else:
            self.responder.events.subtitle(f"{username} requested a song: {intent.display_name}")
            prompt = (
                f'I\'ve been asked to sing "{intent.display_name}". '
                "Give a reluctant response about having to sing this."
            )
            failed_prefix = f'I tried to sing "{intent.display_name}" but it didn\'t work.'

        logger.info("Song request from {}: {}", username, intent)
        await self.responder.respond(prompt, SYSTEM_USER)

        result = await self.songs.request_song(intent, username)
        if not result.success:
            self.responder.events.subtitle("Song request failed")
            await self.responder.respond(f"{failed_prefix} {result.error}", SYSTEM_USER)

    def _can_moderate(self, username: str, is_moderator: bool) -> bool:
        return is_moderator or self.config_manager.is_owner(username)

    async def _command(self, command: str, text: str, username: str, is_moderator: bool) -> bool:
        if command == "!hello":
            await self.responder.say_verbatim(f"Hello, {username}!")
            return True

        if command == "!help":
            await self.responder.say_verbatim(HELP_TEXT)
            return True

        if command == "!autotalk":
            if not self._can_moderate(username, is_moderator):
                await self.responder.say_verbatim(
                    f"Sorry {username}, only moderators can control the auto-talk feature."
                )
                return True
            parts = text.split()
            param = parts[1].lower() if len(parts) > 1 else ""
            if param == "on":
                enabled = True
            elif param == "off":
                enabled = False
            else:
                enabled = not self.state.autotalk.enabled
            self.autotalk.set_enabled(enabled)
            self.config_manager.update_nested("autotalk", enabled=enabled)
            await self.responder.say_verbatim(AUTOTALK_ON if enabled else AUTOTALK_OFF)
            return True

        if command == "!clearqueue":
            if not self._can_moderate(username, is_moderator):
                await self.responder.say_verbatim(
                    f"Sorry {username}, only moderators can clear the message queue."
                )
                return True
            removed = self.state.clear_queue()
            await self.responder.say_verbatim(f"Message queue cleared. {removed} messages removed.")
            return True

        # Unknown commands are answered like normal chat
        return False
