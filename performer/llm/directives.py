import re
from dataclasses import dataclass, field

from loguru import logger

SOUND_CALL = re.compile(r"""@sound\s*\(\s*["']([^"']+)["']\s*(?:,\s*["']?(\d+)["']?)?\s*\)""")
SING_CALL = re.compile(r"""@sing\s*\(\s*["']([^"']+)["']\s*(?:,\s*["']?([^"']+)["']?)?\s*\)""")
WHITESPACE = re.compile(r"\s+")


@dataclass
class SoundCall:
    sound_name: str
    times: int = 1


@dataclass
class SongCall:
    song_name: str
    artist: str = ""

    @property
    def query(self) -> str:
        if self.artist:
            return f"{self.song_name} by {self.artist}"
        return self.song_name


@dataclass
class Directives:
    clean_text: str
    sound_calls: list[SoundCall] = field(default_factory=list)
    song_calls: list[SongCall] = field(default_factory=list)


class DirectiveExtractor:
    """Pulls ``@sound(...)`` and ``@sing(...)`` markers out of generated text.

    The markers are removed from the returned ``clean_text`` so they are
    never displayed, stored, or spoken.
    """

    def extract(self, text: str) -> Directives:
        sound_calls = [
            SoundCall(sound_name=m.group(1), times=int(m.group(2) or 1))
            for m in SOUND_CALL.finditer(text)
        ]
        song_calls = [
            SongCall(song_name=m.group(1).strip(), artist=(m.group(2) or "").strip())
            for m in SING_CALL.finditer(text)
        ]

        clean = SING_CALL.sub("", SOUND_CALL.sub("", text))
        clean = WHITESPACE.sub(" ", clean).strip()

        if sound_calls or song_calls:
            logger.debug(
                "Extracted {} sound and {} song directive(s)", len(sound_calls), len(song_calls)
            )
        return Directives(clean_text=clean, sound_calls=sound_calls, song_calls=song_calls)
