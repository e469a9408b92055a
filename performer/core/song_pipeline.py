"""Song request state machine.

    Searching -> Downloading -> Converting -> Polling -> Ready -> Playing -> Finished

Every non-terminal state can fall into Failed, which speaks an apology,
resets the song flags and schedules a queue drain. When the conversion
service is unreachable the downloaded audio skips Polling and goes
straight to Ready as an unconverted "direct-play" song.
"""

import asyncio
import random
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from core.config import ConfigManager
from core.errors import ConversionJobFailed, ConversionUnavailable, DownloadFailed, MediaNotFound, OutputMissing
from core.intents import DirectMediaIntent, SongIntent
from core.responder import SYSTEM_USER, Responder
from core.state import CurrentSong, PendingSong, PerformerState, ReadySong, RequestKind
from core.tasks import TaskRunner
from media.youtube import MediaResult

OPENING_LINES = [
    'Alright, {username}, you want me to sing "{title}"? I can give it a shot! Let me see if I can find it...',
    '"{title}", huh? Sounds interesting, {username}! Let me get everything ready. This might take a moment!',
    'A song request from {username}! You\'re asking for "{title}"? Okay, okay, I\'ll prepare it. Hope it turns out good!',
]

PROGRESS_LINES = [
    'Still working on "{title}"... It\'s about {percent}% done! Getting there.',
    'Making good progress on "{title}"! Currently at {percent}%. Hope you\'re looking forward to it!',
]

PRE_PLAY_LINE = 'Alright, "{title}" is ready! Here it goes... let me know what you think!'

POST_PLAY_LINES = [
    'That was "{title}"! How was it? I get a bit nervous performing, hehe.',
    'Phew, all done with "{title}"! Hope you enjoyed it! What should I sing next time?',
    'And that\'s "{title}"! Did it sound alright? I practiced a bit!',
]

DIRECT_PLAY_CLOSING = 'Finished playing the original for "{title}" since the conversion API wasn\'t available.'

MAX_PROGRESS_NARRATIONS = 2
NARRATION_STEP = 20


@dataclass
class SongRequestResult:
    success: bool
    job_id: Optional[str] = None
    title: Optional[str] = None
    error: Optional[str] = None
    direct_play: bool = False


class SongPipeline:
    def __init__(
        self,
        state: PerformerState,
        config_manager: ConfigManager,
        responder: Responder,
        media,
        converter,
        player,
        events,
        tasks: TaskRunner,
        stall,
        cache_dir: Path,
    ):
        self.state = state
        self.config_manager = config_manager
        self.responder = responder
        self.media = media
        self.converter = converter
        self.player = player
        self.events = events
        self.tasks = tasks
        self.stall = stall
        self.cache_dir = cache_dir

    @property
    def timing(self):
        return self.config_manager.config.timing

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    async def request_song(
        self, intent: Union[SongIntent, DirectMediaIntent], username: str
    ) -> SongRequestResult:
        """Run a song request up to the start of job polling.

        Polling, playback and their failures continue in a background task.
        Never raises.
        """
        title = intent.display_name
        if not self.state.begin_song(title):
            return await self._reject(username)

        logger.info('Processing song request "{}" from {}', title, username)
        try:
            return await self._prepare(intent, title, username)
        except Exception as e:
            logger.exception('Unexpected error preparing "{}": {}', title, e)
            await self._fail(
                self.state.processing_title or title,
                f'Oh dear, something went really wrong while I was trying to get "{title}" ready, '
                f"{username}. I'm not sure what happened.",
                f"Error: {e}",
            )
            return SongRequestResult(success=False, title=title, error=f"Error processing song: {e}")

    async def _reject(self, username: str) -> SongRequestResult:
        state = self.state
        if state.processing_song:
            doing = f'getting "{state.processing_title or "a song"}" ready'
            busy_with = "processing"
        elif state.pending_song is not None and not state.singing:
            doing = f'getting ready to sing "{state.pending_song.title}"'
            busy_with = "waiting to sing"
        else:
            doing = "singing right now"
            busy_with = "singing"
        logger.info("Song request from {} rejected: already {}", username, busy_with)
        self.events.subtitle("Song request rejected")
        # Queued behind the current song when it cannot be spoken right away
        await self.responder.respond(
            f"Whoa there, {username}! I'm still in the middle of {doing}. "
            "One at a time, please! Let's finish this one first.",
            SYSTEM_USER,
        )
        return SongRequestResult(
            success=False,
            error=f"Cannot play a new song while {busy_with} another song. "
                  "Please wait until the current song is finished.",
        )

    # ------------------------------------------------------------------
    # Searching / Downloading / Converting
    # ------------------------------------------------------------------

    async def _prepare(
        self, intent: Union[SongIntent, DirectMediaIntent], title: str, username: str
    ) -> SongRequestResult:
        # Issued while processing_song is held, so this line waits in the queue
        opening = random.choice(OPENING_LINES).format(username=username, title=title)
        await self.responder.respond(opening, SYSTEM_USER)

        self.events.song_update(title, f'Searching for "{title}"...', 0)
        self.events.subtitle(f'Preparing to sing "{title}"...')

        if isinstance(intent, DirectMediaIntent):
            media = MediaResult(title=title, url=intent.url)
            if intent.use_media_title:
                media.title = await self.media.resolve_title(intent.url) or title
            self.events.song_update(media.title, f'Downloading "{media.title}"...', 10)
        else:
            try:
                media = await self.media.search(intent.query)
            except MediaNotFound as e:
                logger.warning("Search failed: {}", e)
                await self._fail(
                    title,
                    f'I couldn\'t find "{intent.query}" on YouTube, {username}. '
                    "Maybe try a different song or check the spelling?",
                    f'Couldn\'t find "{intent.query}"',
                    subtitle=f"Song not found: {intent.query}",
                )
                return SongRequestResult(
                    success=False, title=title, error=f'Couldn\'t find "{intent.query}" on YouTube.'
                )
            self.events.song_update(media.title, f'Found "{media.title}". Downloading...', 10)

        title = media.title
        self.state.processing_title = title
        self.events.subtitle(f'Downloading "{title}"...')

        try:
            audio_path = await self.media.download(media.url, title)
        except DownloadFailed as e:
            logger.error('Download of "{}" failed: {}', title, e)
            await self._fail(
                title,
                f'I had trouble downloading "{title}", {username}. '
                "The download failed. Maybe the video is unavailable?",
                f"Failed to download: {e}",
                subtitle=f"Download failed: {title}",
            )
            return SongRequestResult(success=False, title=title, error=f'Failed to download "{title}": {e}')

        self.events.subtitle(f'Processing "{title}" with AI voice...')
        self.events.song_update(title, f'Processing "{title}" with AI voice...', 30)
        if intent.transpose is not None:
            logger.info("Using requested transpose value: {} semitones", intent.transpose)

        try:
            job_id = await self.converter.submit(audio_path, intent.transpose)
        except ConversionUnavailable as e:
            logger.warning("{}. Playing downloaded audio directly.", e)
            return await self._direct_play(audio_path, title, username)
        except ConversionJobFailed as e:
            message = f'I ran into an issue trying to prepare "{title}" for singing, {username}. {e}'
            self._discard(audio_path)
            await self._fail(title, message, message, subtitle=f"Conversion failed: {title}")
            return SongRequestResult(success=False, title=title, error=str(e))

        self.events.subtitle(f'Starting conversion of "{title}"...')
        self.events.song_update(title, "Starting conversion...", 40)
        self.tasks.spawn(self._poll(job_id, title, username), name=f"poll-{job_id}")
        return SongRequestResult(success=True, job_id=job_id, title=title)

    async def _direct_play(self, audio_path: Path, title: str, username: str) -> SongRequestResult:
        job_id = f"direct-{int(time.time() * 1000)}"
        cached = self.cache_dir / f"direct-{audio_path.name}"
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._copy, audio_path, cached)

        self.events.song_update(title, f'API unavailable. Playing original audio for "{title}"', 100)
        self.events.subtitle(f'Playing original: "{title}"')
        await self._deliver(ReadySong(job_id=job_id, output_path=cached, direct=True), title, username)
        return SongRequestResult(success=True, job_id=job_id, title=title, direct_play=True)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def _poll(self, job_id: str, title: str, username: str) -> None:
        logger.info('Monitoring conversion job {} ("{}")', job_id, title)
        self.stall.schedule_opening(title)
        last_percent = -1
        last_narrated = 0
        narrations = 0

        try:
            while True:
                status = await self.converter.progress(job_id)
                if status.failed:
                    logger.error("Conversion job {} failed: {}", job_id, status.error or "unknown failure")
                    await self._fail(
                        title,
                        f'Oh no... I couldn\'t finish singing "{title}". Something went wrong. '
                        "Maybe we can try another song?",
                        f"Conversion failed: {status.error or 'unknown error'}",
                    )
                    return

                percent = status.percent
                if percent > last_percent:
                    self.state.processing_progress = percent
                    self.events.song_update(
                        title, status.message or f'Processing "{title}" - {percent}%', percent
                    )
                    last_percent = percent

                if (
                    percent >= last_narrated + NARRATION_STEP
                    and percent < 100
                    and narrations < MAX_PROGRESS_NARRATIONS
                ):
                    line = random.choice(PROGRESS_LINES).format(title=title, percent=percent)
                    self.tasks.spawn(
                        self.responder.respond(line, SYSTEM_USER, RequestKind.STALL),
                        name="progress-narration",
                    )
                    last_narrated = percent
                    narrations += 1

                if status.completed:
                    await self._deliver(
                        ReadySong(job_id=job_id, output_path=Path(status.output_path)), title, username
                    )
                    return

                await asyncio.sleep(self.config_manager.config.song.poll_interval)
        except Exception as e:
            logger.exception("Error monitoring job {}: {}", job_id, e)
            await self._fail(
                title,
                f'I\'m having a bit of trouble with the song "{title}"... My systems are acting up. '
                "Maybe try again in a bit?",
                f"Error: {e}",
            )

    # ------------------------------------------------------------------
    # Ready / Playing
    # ------------------------------------------------------------------

    async def _deliver(self, ready: ReadySong, title: str, username: str) -> None:
        self.state.cancel_stall_timer()
        logger.info('Song "{}" (job {}) is ready for playback', title, ready.job_id)
        if self.state.park_or_claim(PendingSong(result=ready, title=title, username=username)):
            await self._perform(ready, title, username)

    async def play_pending(self) -> None:
        """Resume a song parked while the performer was speaking."""
        pending = self.state.pending_song
        if pending is None:
            return
        if self.state.speaking:
            # The current speech's release will hand it over again
            logger.debug('Still speaking; "{}" stays parked', pending.title)
            return
        await self._perform(pending.result, pending.title, pending.username)

    async def _perform(self, ready: ReadySong, title: str, username: str) -> None:
        self.state.start_singing()
        logger.info('Now singing "{}" for {}', title, username)
        try:
            await self._sing(ready, title)
        except OutputMissing as e:
            logger.error("Output file not found: {}", e)
            await self._fail(
                title,
                f'I thought "{title}" was ready, but I can\'t find the file... How strange.',
                "Output file missing",
            )
            return
        except Exception as e:
            logger.exception('Error during playback of "{}": {}', title, e)
            await self._fail(
                title,
                f'I\'m having a bit of trouble with the song "{title}"... My systems are acting up. '
                "Maybe try again in a bit?",
                f"Error: {e}",
            )
            return

        self.state.reset_song()
        self.events.emit("song-finished", {"title": title})
        self.responder.schedule_drain(self.timing.failure_drain)

    async def _sing(self, ready: ReadySong, title: str) -> None:
        source = ready.output_path
        if not source.exists():
            raise OutputMissing(str(source))

        if ready.direct:
            path = source
        else:
            path = self.cache_dir / f"{ready.job_id}-final{source.suffix or '.mp3'}"
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._copy, source, path)
            logger.info('Copied "{}" to cache: {}', title, path)

        web_path = f"/song-cache/{path.name}"
        self.state.current_song = CurrentSong(title=title, path=web_path)
        payload = {"path": web_path, "title": title}
        if ready.direct:
            payload["direct"] = True
        self.events.emit("play-converted-song", payload)
        self.events.subtitle(f'Now playing: "{title}"')

        if not ready.direct:
            await self.responder.announce(PRE_PLAY_LINE.format(title=title))

        await self.player.play_file(path, timeout=None)
        logger.info('Finished playing "{}"', title)

        if ready.direct:
            closing = DIRECT_PLAY_CLOSING.format(title=title)
        else:
            closing = random.choice(POST_PLAY_LINES).format(title=title)
        await self.responder.announce(closing)

        self.events.subtitle(f'Finished: "{title}"' + (" (Original)" if ready.direct else ""))
        self.events.song_update(title, closing, 100, finished=True)

    # ------------------------------------------------------------------
    # Failed
    # ------------------------------------------------------------------

    async def _fail(self, title: str, message: str, status: str, subtitle: Optional[str] = None) -> None:
        """Absorbing failure state: reset, tell the UI, apologise, drain."""
        self.state.reset_song()
        self.events.subtitle(subtitle or f"Song request failed: {title}")
        self.events.song_update(title, status, 0, error=True)
        await self.responder.respond(message, SYSTEM_USER)
        self.responder.schedule_drain(self.timing.failure_drain)

    @staticmethod
    def _copy(source: Path, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, dest)

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except OSError as e:
            logger.warning("Could not remove {}: {}", path, e)
