import asyncio
from pathlib import Path
from typing import Optional

from loguru import logger

from audio.audio_player import AudioPlayer
from api.events import EventHub

SOUND_EXTENSIONS = {".mp3", ".wav"}
MAX_REPEATS = 10


class SoundBoard:
    """Named sound effects loaded from a directory of audio files."""

    def __init__(
        self,
        sounds_dir: Path,
        player: AudioPlayer,
        events: EventHub,
        repeat_interval: float = 1.5,
    ):
        self.sounds_dir = sounds_dir
        self.player = player
        self.events = events
        self.repeat_interval = repeat_interval
        self._sounds: dict[str, Path] = {}

    @property
    def names(self) -> list[str]:
        return sorted(self._sounds)

    def path_for(self, name: str) -> Optional[Path]:
        return self._sounds.get(name)

    def load(self) -> bool:
        """Rescan the directory. Returns True when the set of names changed."""
        found: dict[str, Path] = {}
        if self.sounds_dir.is_dir():
            for path in sorted(self.sounds_dir.iterdir()):
                if path.is_file() and path.suffix.lower() in SOUND_EXTENSIONS:
                    found[path.stem] = path
        else:
            logger.warning("Sound effects directory {} does not exist", self.sounds_dir)

        changed = set(found) != set(self._sounds)
        self._sounds = found
        if changed:
            logger.info("Loaded {} sound effect(s): {}", len(found), ", ".join(self.names))
            self.events.emit("sound-effects-updated", {"sounds": self.names})
        return changed

    async def play(self, name: str, times: int = 1) -> bool:
        """Play a sound ``times`` times (clamped to 1..10). Returns False if unknown."""
        path = self._sounds.get(name)
        if path is None:
            logger.warning('Sound effect "{}" not found', name)
            return False

        repeats = max(1, min(int(times), MAX_REPEATS))
        logger.info("Playing sound effect: {} ({} times)", name, repeats)
        for i in range(repeats):
            if i > 0:
                await asyncio.sleep(self.repeat_interval)
            await self.player.play_file(path)
            self.events.sound_played(name)
        return True
