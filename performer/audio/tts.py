import asyncio
import io
import wave
from pathlib import Path

import numpy as np
from loguru import logger

from core.errors import SpeechSynthesisFailed


class TextToSpeech:
    """Text-to-speech using Piper TTS.

    Synthesis runs in the default executor so the event loop keeps serving
    chat, polling and timers while a line is rendered.
    """

    def __init__(
        self,
        model_dir: Path,
        voice: str = "en_US-amy-medium",
        sample_rate: int = 22050,
    ):
        self.model_dir = model_dir
        self.voice = voice
        self.sample_rate = sample_rate
        self._piper = None

    @property
    def is_loaded(self) -> bool:
        return self._piper is not None

    async def load(self):
        """Load the Piper voice model."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._load_sync)

    def _load_sync(self):
        try:
            from piper import PiperVoice

            model_path = self.model_dir / f"{self.voice}.onnx"
            config_path = self.model_dir / f"{self.voice}.onnx.json"

            if model_path.exists():
                self._piper = PiperVoice.load(str(model_path), config_path=str(config_path))
                self.sample_rate = self._piper.config.sample_rate
                logger.info("Piper TTS loaded: {}", self.voice)
            else:
                logger.warning("Piper voice model not found at {}.", model_path)
        except ImportError:
            logger.warning("piper-tts not installed. TTS will be unavailable.")

    async def synthesize(self, text: str) -> bytes:
        """Synthesize text to WAV audio bytes.

        Raises:
            SpeechSynthesisFailed: if no voice is loaded or nothing was produced.
        """
        if not text or not text.strip():
            return b""

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._synthesize_sync, text)

    def _synthesize_sync(self, text: str) -> bytes:
        if self._piper is None:
            raise SpeechSynthesisFailed("TTS voice not loaded")

        # Each AudioChunk carries float32 samples in [-1, 1]
        all_audio = []
        for chunk in self._piper.synthesize(text):
            audio_int16 = (chunk.audio_float_array * 32767).astype(np.int16)
            all_audio.append(audio_int16)

        if not all_audio:
            raise SpeechSynthesisFailed(f"TTS produced no audio for '{text[:50]}'")

        audio_data = np.concatenate(all_audio)

        wav_buffer = io.BytesIO()
        with wave.open(wav_buffer, "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)  # 16-bit
            wav.setframerate(self.sample_rate)
            wav.writeframes(audio_data.tobytes())

        audio_bytes = wav_buffer.getvalue()
        logger.debug("TTS: synthesized {} bytes for '{}'", len(audio_bytes), text[:50])
        return audio_bytes
