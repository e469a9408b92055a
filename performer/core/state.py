import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from loguru import logger

MAX_CONVERSATION_TURNS = 10


class RequestKind(str, Enum):
    CHAT = "chat"              # Viewer message or pipeline line; queued when blocked
    AUTONOMOUS = "autonomous"  # Idle chatter; dropped when blocked
    STALL = "stall"            # Dead-air filler while a song converts; dropped when blocked


class Admission(str, Enum):
    ADMITTED = "admitted"
    QUEUED = "queued"
    DROPPED = "dropped"


@dataclass
class ChatRequest:
    text: str
    username: str


@dataclass
class AutoTalkSettings:
    enabled: bool = True
    base_interval: float = 5.0
    variance: float = 2.0
    idle_threshold: float = 30.0


@dataclass
class ReadySong:
    """A finished audio asset ready to be performed."""

    job_id: str
    output_path: Path
    direct: bool = False


@dataclass
class PendingSong:
    result: ReadySong
    title: str
    username: str


@dataclass
class CurrentSong:
    title: str
    path: str


@dataclass
class PerformerState:
    """The single shared record of what the performer is doing.

    Every method below is a critical section: it reads and mutates the
    record without awaiting, so on the event loop no other task can
    interleave between the check and the mutation.
    """

    speaking: bool = False
    processing_song: bool = False
    singing: bool = False
    queue_draining: bool = False

    last_spoke_at: float = field(default_factory=time.monotonic)
    last_chat_activity_at: float = field(default_factory=time.monotonic)

    autotalk: AutoTalkSettings = field(default_factory=AutoTalkSettings)

    processing_title: Optional[str] = None
    processing_progress: int = 0
    song_started_at: Optional[float] = None
    current_song: Optional[CurrentSong] = None
    pending_song: Optional[PendingSong] = None
    stall_timer: Optional[asyncio.TimerHandle] = None

    request_queue: deque = field(default_factory=deque)
    conversation_window: list[dict] = field(default_factory=list)

    stop_event: asyncio.Event = field(default_factory=asyncio.Event)

    # ------------------------------------------------------------------
    # Derived flags
    # ------------------------------------------------------------------

    @property
    def song_busy(self) -> bool:
        """A song is being prepared, is parked, or is playing."""
        return self.processing_song or self.singing or self.pending_song is not None

    @property
    def is_busy(self) -> bool:
        return self.speaking or self.queue_draining or self.song_busy

    @property
    def is_running(self) -> bool:
        return not self.stop_event.is_set()

    def request_stop(self) -> None:
        self.stop_event.set()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def try_admit(self, request: ChatRequest) -> Admission:
        """Front door for chat events: queue while busy, otherwise let through."""
        if self.is_busy:
            self.request_queue.append(request)
            logger.info(
                "{}'s message queued (queue length {})", request.username, len(self.request_queue)
            )
            return Admission.QUEUED
        return Admission.ADMITTED

    def admit_response(self, request: ChatRequest, kind: RequestKind) -> Admission:
        """Claim the speaking slot for one reply.

        Stall lines may talk over song preparation but nothing else; every
        other kind waits for the song to be done. Blocked chat requests are
        queued, blocked autonomous and stall requests are dropped.
        """
        if kind is RequestKind.STALL:
            blocked = self.speaking or self.singing or self.pending_song is not None
        else:
            blocked = self.speaking or self.song_busy

        if blocked:
            if kind is RequestKind.CHAT:
                self.request_queue.append(request)
                logger.info(
                    "{}'s message queued because the performer is {}",
                    request.username, self.activity,
                )
                return Admission.QUEUED
            logger.debug("Dropped {} line while {}", kind.value, self.activity)
            return Admission.DROPPED

        self.speaking = True
        self.last_spoke_at = time.monotonic()
        return Admission.ADMITTED

    def end_speaking(self) -> None:
        self.speaking = False

    def next_queued(self) -> Optional[ChatRequest]:
        """Pop the head of the queue and mark a drain in progress.

        Returns None (and changes nothing) while busy or when the queue is empty.
        """
        if self.is_busy or not self.request_queue:
            return None
        self.queue_draining = True
        return self.request_queue.popleft()

    def end_drain(self) -> None:
        self.queue_draining = False

    def clear_queue(self) -> int:
        removed = len(self.request_queue)
        self.request_queue.clear()
        logger.info("Request queue cleared ({} removed)", removed)
        return removed

    # ------------------------------------------------------------------
    # Conversation window
    # ------------------------------------------------------------------

    def remember(self, role: str, content: str) -> None:
        self.conversation_window.append({"role": role, "content": content})
        if len(self.conversation_window) > MAX_CONVERSATION_TURNS:
            self.conversation_window = self.conversation_window[-MAX_CONVERSATION_TURNS:]

    # ------------------------------------------------------------------
    # Song lifecycle
    # ------------------------------------------------------------------

    def begin_song(self, title: str) -> bool:
        """Entry guard for a song request. Only one song at a time."""
        if self.song_busy:
            return False
        self.processing_song = True
        self.song_started_at = time.monotonic()
        self.processing_title = title
        self.processing_progress = 0
        return True

    def park_or_claim(self, pending: PendingSong) -> bool:
        """Ready-state handoff.

        Returns True when the caller may start playback now. While the
        performer is speaking the song is parked instead and False is
        returned; the end of that speech resumes it.
        """
        if not self.speaking:
            return True
        self.pending_song = pending
        self.processing_song = False
        logger.info('Performer is speaking; "{}" will play when speech ends', pending.title)
        return False

    def start_singing(self) -> None:
        self.cancel_stall_timer()
        self.pending_song = None
        self.processing_song = False
        self.singing = True

    def reset_song(self) -> None:
        """Return every song flag to idle. Safe to call more than once."""
        self.cancel_stall_timer()
        self.processing_song = False
        self.singing = False
        self.processing_title = None
        self.processing_progress = 0
        self.song_started_at = None
        self.current_song = None

    def cancel_stall_timer(self) -> None:
        if self.stall_timer is not None:
            self.stall_timer.cancel()
            self.stall_timer = None

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @property
    def activity(self) -> str:
        if self.singing:
            return "singing"
        if self.processing_song:
            return "processing a song"
        if self.pending_song is not None:
            return "waiting to sing"
        if self.speaking:
            return "speaking"
        if self.queue_draining:
            return "working through the queue"
        return "idle"

    def snapshot(self) -> dict:
        return {
            "activity": self.activity,
            "speaking": self.speaking,
            "processing_song": self.processing_song,
            "singing": self.singing,
            "queue_draining": self.queue_draining,
            "queue_length": len(self.request_queue),
            "processing_title": self.processing_title,
            "processing_progress": self.processing_progress,
            "current_song": self.current_song.title if self.current_song else None,
            "pending_song": self.pending_song.title if self.pending_song else None,
            "autotalk_enabled": self.autotalk.enabled,
        }
