"""Song-intent classification for raw chat text.

The orchestration core only sees the tagged result: ``NoIntent``,
``SongIntent`` or ``DirectMediaIntent``. Everything regex-shaped lives here.
"""

import re
from dataclasses import dataclass
from typing import Optional, Union

from loguru import logger

MAX_TRANSPOSE = 12

GENERIC_REQUEST = re.compile(r"^(?:can|could)\s+you\s+(?:sing|play)(?:\s+a|\s+the)?\s+song\??$", re.I)
TRANSPOSE = re.compile(r"transpose[:\s]+([+-]?\d+)", re.I)
YOUTUBE_URL = re.compile(
    r"(?:https?://)?(?:www\.)?"
    r"(?:youtube\.com/(?:watch\?v=|embed/)|youtu\.be/|music\.youtube\.com/(?:watch\?v=))"
    r"([a-zA-Z0-9_-]+)(?:&\S*)?"
)
SOUND_EFFECT_TALK = re.compile(r"\b(?:sound\s*effect|sfx)\b", re.I)
ARTIST_ONLY = re.compile(
    r"\b(?:can\s+you\s+)?(?:sing|play)(?:\s+a)?\s+(?:song|track)(?:\s+by|\s+from)\s+[\"']?([^\"'?]+)[\"']?",
    re.I,
)
SONG_BY_ARTIST = re.compile(
    r"\b(?:sing|cover|perform|play)\s+(?:the\s+song\s+)?[\"']?([^\"']+?)[\"']?(?:\s+by|\s+from)\s+[\"']?([^\"'?]+)[\"']?",
    re.I,
)
SONG_ONLY = [
    re.compile(r"\b(?:sing|cover|perform)\s+(?:the\s+)?(?:song\s+)?[\"']?([^\"']+)[\"']?", re.I),
    re.compile(r"\bplay\s+(?:the\s+)?song\s+[\"']?([^\"']+)[\"']?", re.I),
]
DIRECT_COMMAND = re.compile(r"^!(?:sing|play)\s+(.+)$", re.I)

FILLER_WORDS = {"a", "an", "the", "song"}


@dataclass(frozen=True)
class NoIntent:
    """The message is not a song request."""


NO_INTENT = NoIntent()


@dataclass
class SongIntent:
    song_name: str
    query: str
    artist: Optional[str] = None
    transpose: Optional[int] = None

    @property
    def display_name(self) -> str:
        return self.song_name


@dataclass
class DirectMediaIntent:
    url: str
    video_id: str
    transpose: Optional[int] = None
    use_media_title: bool = True
    display_name: str = "YouTube Video"


Intent = Union[NoIntent, SongIntent, DirectMediaIntent]


def clamp_transpose(value: int) -> int:
    return max(-MAX_TRANSPOSE, min(MAX_TRANSPOSE, value))


def _strip_trailing(text: str) -> str:
    return text.strip().rstrip("?!.,").strip()


class IntentClassifier:
    def find_transpose(self, text: str) -> Optional[int]:
        match = TRANSPOSE.search(text)
        if not match:
            return None
        value = clamp_transpose(int(match.group(1)))
        logger.debug("Transpose of {} semitones requested", value)
        return value

    def find_media_url(self, text: str, transpose: Optional[int] = None) -> Optional[DirectMediaIntent]:
        match = YOUTUBE_URL.search(text)
        if not match:
            return None
        url = match.group(0)
        if not url.startswith("http"):
            url = f"https://{url}"
        return DirectMediaIntent(url=url, video_id=match.group(1), transpose=transpose)

    def classify(self, text: str) -> Intent:
        """Classify one chat message."""
        message = text.strip()
        if GENERIC_REQUEST.match(message):
            return NO_INTENT

        transpose = self.find_transpose(message)

        # A link anywhere in the message wins over any song wording around it.
        media = self.find_media_url(message, transpose)
        if media is not None:
            logger.info("Media link detected: {}", media.url)
            return media

        if SOUND_EFFECT_TALK.search(message):
            return NO_INTENT

        # Keep the transpose instruction out of the song name.
        wording = TRANSPOSE.sub("", message).strip()

        match = ARTIST_ONLY.search(wording)
        if match:
            artist = _strip_trailing(match.group(1))
            if len(artist) > 2 and artist.lower() not in FILLER_WORDS:
                return SongIntent(
                    song_name=f"A song by {artist}",
                    query=f"popular song by {artist}",
                    artist=artist,
                    transpose=transpose,
                )

        match = SONG_BY_ARTIST.search(wording)
        if match:
            song_name = _strip_trailing(match.group(1))
            artist = _strip_trailing(match.group(2))
            if song_name and artist:
                return SongIntent(
                    song_name=song_name,
                    query=f"{song_name} by {artist}",
                    artist=artist,
                    transpose=transpose,
                )

        for pattern in SONG_ONLY:
            match = pattern.search(wording)
            if match:
                song_name = _strip_trailing(match.group(1))
                if len(song_name) > 1 and song_name.lower() not in FILLER_WORDS:
                    return SongIntent(song_name=song_name, query=song_name, transpose=transpose)

        return NO_INTENT

    def parse_direct_command(self, text: str) -> Optional[Intent]:
        """Parse ``!sing <query>`` / ``!play <query>``. Returns None for other text."""
        match = DIRECT_COMMAND.match(text.strip())
        if not match:
            return None
        query = match.group(1).strip()
        transpose = self.find_transpose(query)

        media = self.find_media_url(query, transpose)
        if media is not None:
            return media

        song_name = TRANSPOSE.sub("", query).strip()
        if not song_name:
            return None
        return SongIntent(song_name=song_name, query=song_name, transpose=transpose)
