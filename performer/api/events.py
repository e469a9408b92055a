import asyncio
import time
from typing import Any, Optional

from loguru import logger

CLIENT_QUEUE_SIZE = 256


class EventHub:
    """Fan-out of UI events to connected WebSocket clients.

    Every client gets its own bounded queue. ``emit`` never blocks: when a
    slow client's queue is full its oldest event is dropped.
    """

    def __init__(self, queue_size: int = CLIENT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._clients: set[asyncio.Queue] = set()
        self.current_subtitle: str = ""

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._clients.add(queue)
        logger.info("UI client connected ({} total)", len(self._clients))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._clients.discard(queue)
        logger.info("UI client disconnected ({} total)", len(self._clients))

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def emit(self, event: str, data: Optional[Any] = None) -> None:
        message = {"event": event, "data": data}
        for queue in self._clients:
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            queue.put_nowait(message)

    def subtitle(self, text: str) -> None:
        self.current_subtitle = text
        self.emit("subtitle-update", text)

    def sound_played(self, sound_name: str) -> None:
        self.emit("play-sound-effect", {"soundName": sound_name, "timestamp": int(time.time() * 1000)})

    def song_update(
        self,
        title: str,
        status: str,
        progress: int,
        error: bool = False,
        finished: bool = False,
    ) -> None:
        payload: dict[str, Any] = {"title": title, "status": status, "progress": progress}
        if error:
            payload["error"] = True
        if finished:
            payload["finished"] = True
        self.emit("song-update", payload)
