import asyncio
import random
import time
from typing import Optional

from loguru import logger

from core.config import ConfigManager
from core.responder import SYSTEM_USER, Responder
from core.state import PerformerState, RequestKind
from core.tasks import TaskRunner

OPENING_STALL_LINES = [
    'I\'m starting to work on that "{title}" song. It\'ll take a minute to get everything just right!',
    'So you want to hear "{title}"? I\'m working on it now. The conversion takes a bit of time...',
    'Getting "{title}" ready for you. This might take a little while, but it should be worth it!',
]

HYPE_CONTEXT = (
    'You\'re excited about playing the song "{title}" soon. '
    "Hype up chat while they wait for the song to process. Keep it brief."
)
REASSURE_CONTEXT = (
    'The song "{title}" is still processing. Reassure chat that it\'s coming soon '
    "and keep them entertained. Be impatient, but hype them up."
)
FRUSTRATED_CONTEXT = (
    'The song "{title}" is taking a while to process. Complain a bit about the wait '
    "but keep chat entertained. You're getting frustrated but trying to keep everyone excited."
)

AUTOTALK_PROMPT = "The AI should start talking on her own about {topic}. Respond with only a single line."


def stall_context(title: str, elapsed: float) -> str:
    """Pick the stall prompt for how long the song has been processing."""
    if elapsed < 30:
        return HYPE_CONTEXT.format(title=title)
    if elapsed < 60:
        return REASSURE_CONTEXT.format(title=title)
    return FRUSTRATED_CONTEXT.format(title=title)


class StallCommentator:
    """Fills dead air while a song converts.

    The pending timer handle lives in ``state.stall_timer`` so whichever
    stage resolves the song can cancel it.
    """

    def __init__(
        self,
        state: PerformerState,
        config_manager: ConfigManager,
        responder: Responder,
        tasks: TaskRunner,
    ):
        self.state = state
        self.config_manager = config_manager
        self.responder = responder
        self.tasks = tasks

    @property
    def timing(self):
        return self.config_manager.config.timing

    def _waiting_on(self, title: str) -> bool:
        return (
            self.state.processing_song
            and self.state.processing_title == title
            and self.state.pending_song is None
        )

    def schedule(self, title: str, delay: float) -> None:
        self.state.cancel_stall_timer()
        self.state.stall_timer = self.tasks.call_later(delay, self.comment, title)
        logger.debug('Next stall line for "{}" in {:.1f}s', title, delay)

    def schedule_opening(self, title: str) -> None:
        delay = random.uniform(self.timing.opening_stall_min, self.timing.opening_stall_max)
        self.state.cancel_stall_timer()
        self.state.stall_timer = self.tasks.call_later(delay, self._open, title)

    async def _open(self, title: str) -> None:
        if not self._waiting_on(title):
            return
        line = random.choice(OPENING_STALL_LINES).format(title=title)
        await self.responder.respond(line, SYSTEM_USER, RequestKind.STALL)
        if self._waiting_on(title):
            self.schedule(title, self.timing.first_stall_delay)

    async def comment(self, title: str) -> None:
        if not self._waiting_on(title):
            logger.debug('Skipping stall line for "{}": song no longer processing', title)
            return

        if self.state.speaking:
            logger.debug('Skipping stall line for "{}": already speaking', title)
        else:
            started = self.state.song_started_at or time.monotonic()
            elapsed = time.monotonic() - started
            logger.info('Sending stall line for "{}" ({:.0f}s into processing)', title, elapsed)
            await self.responder.respond(stall_context(title, elapsed), SYSTEM_USER, RequestKind.STALL)

        if self._waiting_on(title):
            self.schedule(title, random.uniform(self.timing.stall_min, self.timing.stall_max))


class AutoTalker:
    """Idle chatter on a jittered timer."""

    def __init__(
        self,
        state: PerformerState,
        config_manager: ConfigManager,
        responder: Responder,
        stall: StallCommentator,
    ):
        self.state = state
        self.config_manager = config_manager
        self.responder = responder
        self.stall = stall
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="autotalk")
            logger.info("Autotalk loop started (enabled={})", self.state.autotalk.enabled)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def set_enabled(self, enabled: bool) -> None:
        self.state.autotalk.enabled = enabled
        logger.info("Autotalk {}", "enabled" if enabled else "disabled")

    def next_delay(self) -> float:
        settings = self.state.autotalk
        jitter = random.uniform(-settings.variance, settings.variance)
        return max(0.1, settings.base_interval + jitter)

    async def _loop(self) -> None:
        while self.state.is_running:
            delay = self.next_delay()
            logger.debug("Next autotalk check in {:.1f}s", delay)
            await asyncio.sleep(delay)
            try:
                await self.tick()
            except Exception as e:
                logger.exception("Autotalk error: {}", e)

    async def tick(self) -> bool:
        """One autotalk decision. Returns True if a line was attempted."""
        state = self.state
        if not state.autotalk.enabled:
            return False
        if state.singing or state.speaking:
            return False
        if state.processing_song and not state.processing_title:
            return False

        now = time.monotonic()
        if now - state.last_chat_activity_at < state.autotalk.idle_threshold:
            logger.debug("Chat recently active, delaying autotalk")
            return False
        quiet_after = self.config_manager.config.autotalk.quiet_after_speech
        if now - state.last_spoke_at < quiet_after:
            return False

        if state.processing_song and state.processing_title:
            await self.stall.comment(state.processing_title)
            return True

        topic = random.choice(self.config_manager.config.autotalk.topics)
        logger.info("Generating autonomous line about {}", topic)
        await self.responder.respond(
            AUTOTALK_PROMPT.format(topic=topic), SYSTEM_USER, RequestKind.AUTONOMOUS
        )
        return True
