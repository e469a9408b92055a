import asyncio
from contextlib import contextmanager
from typing import TYPE_CHECKING, Optional

from loguru import logger

from core.config import ConfigManager
from core.errors import EmptyCompletion, SpeechSynthesisFailed, StreamError
from core.intents import SongIntent
from core.state import Admission, ChatRequest, PerformerState, RequestKind
from core.tasks import TaskRunner
from llm.directives import DirectiveExtractor, SongCall

if TYPE_CHECKING:
    from core.song_pipeline import SongPipeline

SYSTEM_USER = "System"
USER_HISTORY_LIMIT = 5
ERROR_LINE = "Sorry chat, something is wrong with my AI right now. Give me a second!"
AUDIO_ERROR_NOTE = "(Audio playback error. Please see the text response.)"


class Responder:
    """Turns one (username, text) request into a displayed and spoken reply.

    Owns the speaking slot: a reply is admitted through the shared state,
    and every exit path releases the slot, resumes a parked song if one is
    waiting, and otherwise schedules the next queue drain.
    """

    def __init__(
        self,
        state: PerformerState,
        config_manager: ConfigManager,
        llm_router,
        voice,
        sounds,
        store,
        events,
        tasks: TaskRunner,
        directives: Optional[DirectiveExtractor] = None,
    ):
        self.state = state
        self.config_manager = config_manager
        self.llm_router = llm_router
        self.voice = voice
        self.sounds = sounds
        self.store = store
        self.events = events
        self.tasks = tasks
        self.directives = directives or DirectiveExtractor()
        self.songs: Optional["SongPipeline"] = None

    def attach_song_pipeline(self, songs: "SongPipeline") -> None:
        self.songs = songs

    @property
    def timing(self):
        return self.config_manager.config.timing

    @property
    def assistant_name(self) -> str:
        return self.config_manager.config.persona.name

    # ------------------------------------------------------------------
    # Speaking slot
    # ------------------------------------------------------------------

    @contextmanager
    def _speaking_turn(self):
        """Hold an already-admitted speaking slot; release it on every exit."""
        try:
            yield
        finally:
            self._release()

    def _release(self) -> None:
        self.state.end_speaking()
        pending = self.state.pending_song
        if pending is not None and self.songs is not None:
            logger.info('Speaking finished, playing pending song "{}"', pending.title)
            self.tasks.call_later(self.timing.pending_settle, self.songs.play_pending)
        else:
            self.schedule_drain(self.timing.drain_settle)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def respond(
        self, text: str, username: str, kind: RequestKind = RequestKind.CHAT
    ) -> Optional[str]:
        """Generate, display and speak one reply.

        Returns the spoken text, or None when the request was queued, dropped,
        or failed. Never raises.
        """
        request = ChatRequest(text=text, username=username)
        if self.state.admit_response(request, kind) is not Admission.ADMITTED:
            return None

        with self._speaking_turn():
            try:
                reply = await self._generate(request, kind)
                logger.info("Reply to {}: {}", username, reply[:80])
                return reply
            except Exception as e:
                await self._recover(request, e)
                return None

    async def say_verbatim(self, text: str) -> bool:
        """Speak a fixed line (command acknowledgements) in the speaking slot.

        Skips the completion service. Dropped, not queued, when the performer
        is busy. Returns True if the line was spoken.
        """
        request = ChatRequest(text=text, username=SYSTEM_USER)
        if self.state.admit_response(request, RequestKind.AUTONOMOUS) is not Admission.ADMITTED:
            logger.info("Dropped command reply while {}: {}", self.state.activity, text)
            return False

        with self._speaking_turn():
            self.events.subtitle(text)
            await self._speak(text)
        return True

    async def announce(self, text: str) -> None:
        """Speak a line that belongs to a performance the caller already owns.

        Used for the song stage's own lines while ``singing`` is held, so it
        does not claim the speaking slot.
        """
        self.events.subtitle(text)
        self.state.remember("assistant", text)
        await self.store.append({
            "type": "assistant",
            "username": self.assistant_name,
            "content": text,
            "isAnnouncement": True,
        })
        await self._speak(text)

    # ------------------------------------------------------------------
    # Queue draining
    # ------------------------------------------------------------------

    def schedule_drain(self, delay: float) -> None:
        self.tasks.call_later(delay, self.drain_next)

    async def drain_next(self) -> None:
        """Dispatch the head of the queue, if the performer is free."""
        request = self.state.next_queued()
        if request is None:
            return

        logger.info("Processing queued message from {}", request.username)
        try:
            await self.respond(request.text, request.username)
        finally:
            self.state.end_drain()

        if self.state.request_queue:
            self.schedule_drain(self.timing.queue_resume)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def _generate(self, request: ChatRequest, kind: RequestKind) -> str:
        username, text = request.username, request.text
        context_message = f"{username} says: {text}"
        self.state.remember("user", context_message)
        await self.store.append({
            "type": "user",
            "username": username,
            "content": text,
            "fullContext": context_message,
        })

        user_history = await self._history_for(username)
        # Pick up sound files added or removed since the last reply
        self.sounds.load()
        messages = self.llm_router.build_messages(
            history=list(self.state.conversation_window),
            sounds=self.sounds.names,
            autonomous=kind is not RequestKind.CHAT,
            username=username,
            user_history=user_history,
        )

        self.events.subtitle("Thinking...")
        self.events.emit("reset-audio")

        full_text = await self._stream(messages)
        if not full_text.strip():
            raise EmptyCompletion("Empty response from completion service")

        directives = self.directives.extract(full_text)
        clean_text = directives.clean_text
        self.events.subtitle(clean_text)
        self.state.remember("assistant", clean_text)
        await self.store.append({
            "type": "assistant",
            "username": self.assistant_name,
            "content": clean_text,
            "inResponseTo": username,
            "isAutoTalk": kind is not RequestKind.CHAT,
        })

        for call in directives.sound_calls:
            await self.sounds.play(call.sound_name, call.times)

        if directives.song_calls:
            # Only the first song directive in a reply is honoured
            self._launch_song(directives.song_calls[0], username)

        if clean_text.strip():
            await self._speak(clean_text)
        return clean_text

    async def _history_for(self, username: str) -> list[dict]:
        if username == SYSTEM_USER:
            return []
        try:
            return await self.store.query(username, limit=USER_HISTORY_LIMIT)
        except Exception as e:
            logger.warning("Could not load history for {}: {}", username, e)
            return []

    async def _stream(self, messages: list[dict]) -> str:
        provider = self.llm_router.get_provider()
        full_text = ""
        try:
            async for token in provider.stream(messages):
                full_text += token
                self.events.subtitle(full_text)
        except Exception as e:
            await self.store.append({
                "type": "error",
                "content": f"Streaming error: {e}",
                "partialResponse": full_text,
            })
            if isinstance(e, StreamError):
                raise
            raise StreamError(str(e)) from e
        return full_text

    def _launch_song(self, call: SongCall, username: str) -> None:
        if self.songs is None:
            logger.warning('Song directive "{}" ignored: no song pipeline attached', call.query)
            return
        intent = SongIntent(song_name=call.song_name, query=call.query, artist=call.artist or None)
        logger.info("Processing song directive: {}", call.query)
        self.tasks.spawn(self._sing_from_directive(intent, username), name="song-directive")

    async def _sing_from_directive(self, intent: SongIntent, username: str) -> None:
        result = await self.songs.request_song(intent, username)
        if not result.success:
            logger.error("Song directive failed: {}", result.error)
            await self.respond(
                f'I tried to sing "{intent.query}" but it didn\'t work. '
                f"{result.error or 'Could not find the song.'}",
                SYSTEM_USER,
            )

    # ------------------------------------------------------------------
    # Speech
    # ------------------------------------------------------------------

    async def _speak(self, text: str) -> bool:
        """Speak with retries. Degrades to text-only after the last attempt."""
        voice_cfg = self.config_manager.config.voice
        attempts = max(1, voice_cfg.tts_attempts)
        for attempt in range(1, attempts + 1):
            try:
                await self.voice.speak(text)
                return True
            except SpeechSynthesisFailed as e:
                logger.error("TTS attempt {}/{} failed: {}", attempt, attempts, e)
                if attempt < attempts:
                    await asyncio.sleep(voice_cfg.tts_retry_delay)
                else:
                    await self.store.append({
                        "type": "error",
                        "content": f"TTS failed after {attempts} attempts: {e}",
                        "relatedTo": text[:100],
                    })
        self.events.subtitle(f"{text}\n\n{AUDIO_ERROR_NOTE}")
        return False

    async def _recover(self, request: ChatRequest, error: Exception) -> None:
        if isinstance(error, (EmptyCompletion, StreamError)):
            logger.error("Reply to {} failed: {}", request.username, error)
        else:
            logger.exception("Unexpected error replying to {}: {}", request.username, error)

        await self.store.append({
            "type": "error",
            "username": request.username,
            "content": f"{type(error).__name__}: {error}",
        })
        self.events.subtitle(ERROR_LINE)
        try:
            await self._speak(ERROR_LINE)
        except Exception as e:
            logger.error("Could not speak the error line: {}", e)
