import asyncio
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yt_dlp
from loguru import logger

from core.errors import DownloadFailed, MediaNotFound


@dataclass
class MediaResult:
    title: str
    url: str


def safe_filename(name: str) -> str:
    """Lowercase, hyphenated file stem with special characters removed."""
    cleaned = re.sub(r"[^\w\s-]", "", name)
    return re.sub(r"\s+", "-", cleaned).strip("-").lower() or "song"


class MediaFinder:
    """YouTube search and audio retrieval through yt-dlp.

    yt-dlp is blocking, so every call runs in the default executor.
    """

    def __init__(self, downloads_dir: Path):
        self.downloads_dir = downloads_dir

    async def search(self, query: str) -> MediaResult:
        """Return the top search result for ``query``.

        Raises:
            MediaNotFound: if the search fails or finds nothing.
        """
        logger.info('Searching YouTube for: "{}"', query)
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, self._search_sync, query)
        if result is None:
            raise MediaNotFound(f'No results for "{query}"')
        logger.info('Found video: "{}" ({})', result.title, result.url)
        return result

    def _search_sync(self, query: str) -> Optional[MediaResult]:
        opts = {"quiet": True, "no_warnings": True, "noplaylist": True, "extract_flat": "in_playlist"}
        try:
            with yt_dlp.YoutubeDL(opts) as ydl:
                info = ydl.extract_info(f"ytsearch1:{query}", download=False)
        except yt_dlp.utils.DownloadError as e:
            logger.error("YouTube search error: {}", e)
            return None

        entries = (info or {}).get("entries") or []
        if not entries:
            return None
        top = entries[0]
        url = top.get("webpage_url") or top.get("url")
        if not url:
            return None
        if not url.startswith("http"):
            url = f"https://www.youtube.com/watch?v={url}"
        return MediaResult(title=top.get("title") or query, url=url)

    async def resolve_title(self, url: str) -> Optional[str]:
        """Best-effort lookup of a video's title. Returns None on failure."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._resolve_title_sync, url)

    def _resolve_title_sync(self, url: str) -> Optional[str]:
        opts = {"quiet": True, "no_warnings": True, "noplaylist": True}
        try:
            with yt_dlp.YoutubeDL(opts) as ydl:
                info = ydl.extract_info(url, download=False)
        except yt_dlp.utils.DownloadError as e:
            logger.warning("Could not resolve title for {}: {}", url, e)
            return None
        return (info or {}).get("title")

    async def download(self, url: str, title: str) -> Path:
        """Download the best audio stream of ``url`` into the downloads directory.

        Raises:
            DownloadFailed: on any yt-dlp failure or an empty/missing output file.
        """
        logger.info("Downloading audio from: {}", url)
        stem = f"{safe_filename(title)}-{int(time.time() * 1000)}"
        loop = asyncio.get_running_loop()
        path = await loop.run_in_executor(None, self._download_sync, url, stem)
        logger.info("Download successful: {} ({} bytes)", path, path.stat().st_size)
        return path

    def _download_sync(self, url: str, stem: str) -> Path:
        self.downloads_dir.mkdir(parents=True, exist_ok=True)
        opts = {
            "format": "bestaudio/best",
            "outtmpl": str(self.downloads_dir / f"{stem}.%(ext)s"),
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "nocheckcertificate": True,
        }
        try:
            with yt_dlp.YoutubeDL(opts) as ydl:
                ydl.download([url])
        except yt_dlp.utils.DownloadError as e:
            self._discard_partials(stem)
            raise DownloadFailed(str(e)) from e

        for path in sorted(self.downloads_dir.glob(f"{stem}.*")):
            if path.suffix == ".part":
                continue
            if path.stat().st_size > 0:
                return path

        self._discard_partials(stem)
        raise DownloadFailed("Downloaded file not found or is empty")

    def _discard_partials(self, stem: str) -> None:
        for path in self.downloads_dir.glob(f"{stem}.*"):
            try:
                path.unlink()
            except OSError as e:
                logger.warning("Could not remove partial download {}: {}", path, e)
