import asyncio
from pathlib import Path

from loguru import logger

from core.config import ConfigManager
from core.state import AutoTalkSettings, PerformerState
from core.tasks import TaskRunner

# Base directory for the performer package
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
MODELS_DIR = BASE_DIR / "models"
SOUNDS_DIR = BASE_DIR / "sound-effects"
DOWNLOADS_DIR = BASE_DIR / "downloads"
SONG_CACHE_DIR = BASE_DIR / "song-cache"


class Orchestrator:
    """Wires the performer together and runs it until a stop is requested."""

    def __init__(self):
        self.config_manager = ConfigManager(DATA_DIR)
        self.state = PerformerState()
        self.tasks = TaskRunner()

        # Components (initialized in _build_components)
        self.events = None
        self.store = None
        self.sounds = None
        self.responder = None
        self.songs = None
        self.stall = None
        self.autotalk = None
        self.chat = None
        self._tts = None
        self._player = None
        self._converter = None
        self._api_server = None

    async def start(self):
        """Boot sequence: build components, open the store, load the voice, serve."""
        logger.info("=== Performer starting ===")

        config = self.config_manager.config
        self.state.autotalk = AutoTalkSettings(
            enabled=config.autotalk.enabled,
            base_interval=config.autotalk.base_interval,
            variance=config.autotalk.variance,
            idle_threshold=config.autotalk.idle_threshold,
        )

        self._build_components()

        # A store that cannot be opened at all is fatal
        self.store.open()

        await self._tts.load()
        self.sounds.load()

        await self._start_api_server()
        self.autotalk.start()

        logger.info("=== Performer is live ===")
        await self.state.stop_event.wait()

    def _build_components(self):
        from api.events import EventHub
        from audio.audio_player import AudioPlayer
        from audio.sound_effects import SoundBoard
        from audio.tts import TextToSpeech
        from audio.voice import Voice
        from core.chat import ChatRouter
        from core.chatter import AutoTalker, StallCommentator
        from core.responder import Responder
        from core.song_pipeline import SongPipeline
        from llm.base import LLMRouter
        from media.conversion import VoiceConversionClient
        from media.youtube import MediaFinder
        from storage.message_store import MessageStore

        config = self.config_manager.config
        for directory in (DATA_DIR, DOWNLOADS_DIR, SONG_CACHE_DIR):
            directory.mkdir(parents=True, exist_ok=True)

        self.events = EventHub()
        self.store = MessageStore(DATA_DIR / "messages")
        self._player = AudioPlayer()
        self._tts = TextToSpeech(
            model_dir=MODELS_DIR / "tts",
            voice=config.voice.voice,
            sample_rate=config.voice.sample_rate,
        )
        voice = Voice(self._tts, self._player, self.events)
        self.sounds = SoundBoard(
            SOUNDS_DIR, self._player, self.events, repeat_interval=config.timing.sound_repeat_interval
        )
        self._converter = VoiceConversionClient(config.song, BASE_DIR)

        self.responder = Responder(
            state=self.state,
            config_manager=self.config_manager,
            llm_router=LLMRouter(self.config_manager),
            voice=voice,
            sounds=self.sounds,
            store=self.store,
            events=self.events,
            tasks=self.tasks,
        )
        self.stall = StallCommentator(self.state, self.config_manager, self.responder, self.tasks)
        self.songs = SongPipeline(
            state=self.state,
            config_manager=self.config_manager,
            responder=self.responder,
            media=MediaFinder(DOWNLOADS_DIR),
            converter=self._converter,
            player=self._player,
            events=self.events,
            tasks=self.tasks,
            stall=self.stall,
            cache_dir=SONG_CACHE_DIR,
        )
        self.responder.attach_song_pipeline(self.songs)
        self.autotalk = AutoTalker(self.state, self.config_manager, self.responder, self.stall)
        self.chat = ChatRouter(self.state, self.config_manager, self.responder, self.songs, self.autotalk)
        logger.info("Components ready.")

    async def _start_api_server(self):
        """Start the FastAPI server in the background."""
        from api.server import create_app

        app = create_app(self)
        self._api_server = app

        import uvicorn
        server_config = self.config_manager.config.server
        uv_config = uvicorn.Config(
            app, host=server_config.host, port=server_config.port, log_level="warning"
        )
        server = uvicorn.Server(uv_config)
        self.tasks.spawn(server.serve(), name="api-server")
        logger.info("API server started on port {}", server_config.port)

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down...")
        self.state.request_stop()
        self.state.cancel_stall_timer()
        if self.autotalk:
            await self.autotalk.stop()
        if self._player:
            await self._player.stop()
        await self.tasks.shutdown()
        if self._converter:
            await self._converter.close()
        logger.info("Shutdown complete.")


def main():
    """Entry point."""
    import sys
    from loguru import logger as log

    DATA_DIR.mkdir(parents=True, exist_ok=True)
    log.remove()
    log.add(sys.stderr, level="INFO", format="{time:HH:mm:ss} | {level:<7} | {message}")
    log.add(DATA_DIR / "performer.log", rotation="10 MB", retention="7 days", level="DEBUG")

    orchestrator = Orchestrator()

    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(orchestrator.start())
    except KeyboardInterrupt:
        loop.run_until_complete(orchestrator.shutdown())
    finally:
        loop.close()


if __name__ == "__main__":
    main()
