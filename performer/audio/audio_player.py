import asyncio
import subprocess
import tempfile
from pathlib import Path
from typing import Optional

from loguru import logger

SPEECH_TIMEOUT = 30.0


class AudioPlayer:
    """Plays audio on the local output through PipeWire/PulseAudio.

    WAV (speech, wav sound effects) goes through paplay; anything else
    (mp3 songs and effects) goes through ffplay.
    """

    def __init__(self):
        self._current_process: subprocess.Popen | None = None

    async def play(self, wav_bytes: bytes) -> None:
        """Play complete WAV bytes (with header)."""
        if not wav_bytes:
            return

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._play_bytes_sync, wav_bytes)

    def _play_bytes_sync(self, wav_bytes: bytes) -> None:
        with tempfile.NamedTemporaryFile(suffix=".wav", delete=True) as tmp:
            tmp.write(wav_bytes)
            tmp.flush()
            self._run(["paplay", tmp.name], SPEECH_TIMEOUT)

    async def play_file(self, path: Path, timeout: Optional[float] = SPEECH_TIMEOUT) -> None:
        """Play an audio file from disk. ``timeout=None`` waits for the whole file."""
        if not path.exists():
            logger.warning("Audio file not found: {}", path)
            return

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._run, self.command_for(path), timeout)

    @staticmethod
    def command_for(path: Path) -> list[str]:
        if path.suffix.lower() == ".wav":
            return ["paplay", str(path)]
        return ["ffplay", "-nodisp", "-autoexit", "-loglevel", "error", str(path)]

    def _run(self, command: list[str], timeout: Optional[float]) -> None:
        try:
            proc = subprocess.Popen(
                command,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
            self._current_process = proc
            proc.wait(timeout=timeout)
            self._current_process = None
            if proc.returncode != 0 and proc.returncode != -9:
                stderr = proc.stderr.read().decode().strip()
                logger.error("{} error: {}", command[0], stderr)
        except subprocess.TimeoutExpired:
            if self._current_process:
                self._current_process.kill()
                self._current_process = None
            logger.error("Audio playback timed out ({}s)", timeout)
        except FileNotFoundError:
            logger.error("{} not found. Install pulseaudio-utils and ffmpeg.", command[0])

    async def stop(self) -> None:
        """Stop any currently playing audio immediately."""
        proc = self._current_process
        if proc is not None:
            try:
                proc.kill()
                logger.info("Audio playback stopped.")
            except OSError as e:
                logger.debug("Error stopping playback: {}", e)
            self._current_process = None
