"""Shared fixtures: a fully wired performer with in-memory collaborators."""
import asyncio
import time
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Optional

import pytest
import pytest_asyncio

from api.events import EventHub
from audio.sound_effects import SoundBoard
from core.chat import ChatRouter
from core.chatter import AutoTalker, StallCommentator
from core.config import AppConfig, ConfigManager, SongConfig, TimingConfig, VoiceConfig
from core.errors import ConversionJobFailed, ConversionUnavailable, MediaNotFound, SpeechSynthesisFailed
from core.responder import Responder
from core.song_pipeline import SongPipeline
from core.state import PerformerState
from core.tasks import TaskRunner
from llm.base import BaseLLM, LLMRouter
from media.conversion import JobStatus
from media.youtube import MediaResult, safe_filename


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate()`` holds, or fail the test."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class FakeProvider(BaseLLM):
    def __init__(self, replies: Optional[list[str]] = None, default: str = "Hi chat!"):
        self.replies = list(replies or [])
        self.default = default
        self.calls: list[list[dict]] = []
        self.error: Optional[Exception] = None

    async def stream(self, messages):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        reply = self.replies.pop(0) if self.replies else self.default
        half = len(reply) // 2
        for chunk in (reply[:half], reply[half:]):
            await asyncio.sleep(0)
            if chunk:
                yield chunk

    @property
    def prompts(self) -> list[str]:
        """The turn each call was answering."""
        return [call[-1]["content"] for call in self.calls]


class FakeRouter(LLMRouter):
    def __init__(self, config_manager, provider: FakeProvider):
        super().__init__(config_manager)
        self.provider = provider

    def get_provider(self):
        return self.provider


class FakeVoice:
    def __init__(self):
        self.spoken: list[str] = []
        self.failures = 0
        self.gate: Optional[asyncio.Event] = None

    async def speak(self, text: str) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise SpeechSynthesisFailed("synthesis exploded")
        self.spoken.append(text)
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)


class FakePlayer:
    def __init__(self):
        self.played: list[Path] = []
        self.clips = 0

    async def play(self, wav_bytes: bytes) -> None:
        self.clips += 1

    async def play_file(self, path: Path, timeout=None) -> None:
        self.played.append(path)
        await asyncio.sleep(0)


class RecordingEvents(EventHub):
    def __init__(self):
        super().__init__()
        self.log: list[tuple[str, object]] = []

    def emit(self, event, data=None):
        self.log.append((event, data))
        super().emit(event, data)

    def named(self, event: str) -> list:
        return [data for name, data in self.log if name == event]


class FakeStore:
    def __init__(self):
        self.records: list[dict] = []

    async def append(self, record: dict) -> None:
        self.records.append(record)

    async def query(self, username: str, limit: int = 5) -> list[dict]:
        return [r for r in self.records if r.get("username") == username][-limit:]

    def of_type(self, kind: str) -> list[dict]:
        return [r for r in self.records if r.get("type") == kind]


class FakeMedia:
    def __init__(self, downloads_dir: Path):
        self.downloads_dir = downloads_dir
        self.titles: dict[str, str] = {}
        self.not_found: set[str] = set()
        self.download_error: Optional[Exception] = None
        self.resolved_title: Optional[str] = "Resolved Video Title"
        self.searches: list[str] = []
        self.downloads: list[str] = []

    async def search(self, query: str) -> MediaResult:
        self.searches.append(query)
        await asyncio.sleep(0)
        if query in self.not_found:
            raise MediaNotFound(query)
        return MediaResult(title=self.titles.get(query, query), url=f"https://youtu.be/{safe_filename(query)}")

    async def resolve_title(self, url: str) -> Optional[str]:
        return self.resolved_title

    async def download(self, url: str, title: str) -> Path:
        self.downloads.append(url)
        await asyncio.sleep(0)
        if self.download_error is not None:
            raise self.download_error
        self.downloads_dir.mkdir(parents=True, exist_ok=True)
        path = self.downloads_dir / f"{safe_filename(title)}.webm"
        path.write_bytes(b"original audio")
        return path


class FakeConverter:
    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.unavailable = False
        self.submit_error: Optional[str] = None
        self.statuses: list[JobStatus] = []
        self.submitted: list[tuple[Path, Optional[int]]] = []

    async def submit(self, audio_path: Path, transpose: Optional[int] = None) -> str:
        self.submitted.append((audio_path, transpose))
        await asyncio.sleep(0)
        if self.unavailable:
            raise ConversionUnavailable("conversion service is not responding")
        if self.submit_error:
            raise ConversionJobFailed(self.submit_error)
        return "job-1"

    async def progress(self, job_id: str) -> JobStatus:
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        if self.statuses:
            return self.statuses[0]
        return JobStatus(status="processing", percent=0)

    def finish_with(self, *percents: int) -> Path:
        """Report the given progress steps, then completion with a real output file."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        output = self.output_dir / "job-1.mp3"
        output.write_bytes(b"converted audio")
        self.statuses = [JobStatus(status="processing", percent=p) for p in percents]
        self.statuses.append(JobStatus(status="completed", percent=100, output_path=str(output)))
        return output


def fast_config() -> AppConfig:
    return AppConfig(
        timing=TimingConfig(
            drain_settle=0.01,
            queue_resume=0.02,
            pending_settle=0.01,
            failure_drain=0.01,
            sound_repeat_interval=0.0,
            first_stall_delay=30.0,
            stall_min=30.0,
            stall_max=30.0,
            opening_stall_min=30.0,
            opening_stall_max=30.0,
        ),
        song=SongConfig(poll_interval=0.01),
        voice=VoiceConfig(tts_retry_delay=0.0),
    )


@pytest.fixture
def config_manager(tmp_path):
    cm = ConfigManager(tmp_path / "data")
    cm._config = fast_config()
    return cm


@pytest_asyncio.fixture
async def performer(tmp_path, config_manager):
    state = PerformerState()
    tasks = TaskRunner()
    events = RecordingEvents()
    store = FakeStore()
    provider = FakeProvider()
    voice = FakeVoice()
    player = FakePlayer()
    media = FakeMedia(tmp_path / "downloads")
    converter = FakeConverter(tmp_path / "outputs")

    sounds_dir = tmp_path / "sound-effects"
    sounds_dir.mkdir()
    (sounds_dir / "vineboom.mp3").write_bytes(b"boom")
    sounds = SoundBoard(sounds_dir, player, events, repeat_interval=0.0)
    sounds.load()

    responder = Responder(
        state=state,
        config_manager=config_manager,
        llm_router=FakeRouter(config_manager, provider),
        voice=voice,
        sounds=sounds,
        store=store,
        events=events,
        tasks=tasks,
    )
    stall = StallCommentator(state, config_manager, responder, tasks)
    songs = SongPipeline(
        state=state,
        config_manager=config_manager,
        responder=responder,
        media=media,
        converter=converter,
        player=player,
        events=events,
        tasks=tasks,
        stall=stall,
        cache_dir=tmp_path / "song-cache",
    )
    responder.attach_song_pipeline(songs)
    autotalk = AutoTalker(state, config_manager, responder, stall)
    chat = ChatRouter(state, config_manager, responder, songs, autotalk)

    bundle = SimpleNamespace(
        state=state, tasks=tasks, events=events, store=store, provider=provider,
        voice=voice, player=player, media=media, converter=converter, sounds=sounds,
        responder=responder, stall=stall, songs=songs, autotalk=autotalk, chat=chat,
        config_manager=config_manager, cache_dir=tmp_path / "song-cache",
    )
    yield bundle
    await tasks.shutdown()


async def settle(performer, timeout: float = 2.0) -> None:
    """Wait until the performer is idle with an empty queue and no work in flight."""
    state = performer.state
    await wait_for(
        lambda: not state.is_busy and not state.request_queue and performer.tasks.active_count() == 0,
        timeout,
    )
