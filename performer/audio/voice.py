import base64
import time

from loguru import logger

from audio.audio_player import AudioPlayer
from audio.tts import TextToSpeech
from api.events import EventHub
from core.errors import SpeechSynthesisFailed


class Voice:
    """Speaks one line: subtitle, synthesis, UI audio mirror, local playback."""

    def __init__(self, tts: TextToSpeech, player: AudioPlayer, events: EventHub):
        self.tts = tts
        self.player = player
        self.events = events

    async def speak(self, text: str) -> None:
        """Speak ``text`` to completion.

        Raises:
            SpeechSynthesisFailed: when synthesis fails or yields no audio.
        """
        self.events.subtitle(text)
        try:
            wav_bytes = await self.tts.synthesize(text)
        except SpeechSynthesisFailed:
            raise
        except Exception as e:
            raise SpeechSynthesisFailed(str(e)) from e
        if not wav_bytes:
            raise SpeechSynthesisFailed("empty synthesis")

        self.events.emit("audio-chunk", {
            "chunk": base64.b64encode(wav_bytes).decode("ascii"),
            "timestamp": int(time.time() * 1000),
        })
        await self.player.play(wav_bytes)
        logger.debug("Spoke {} chars", len(text))
        self.events.emit("audio-finished")
