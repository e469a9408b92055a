from typing import Optional

from fastapi import APIRouter, Request, status
from pydantic import BaseModel, Field

from core.intents import SongIntent

router = APIRouter()


class ChatMessage(BaseModel):
    username: str = Field(min_length=1)
    text: str = Field(min_length=1)
    is_moderator: bool = False


class SongRequest(BaseModel):
    song_name: str = Field(min_length=1)
    artist: Optional[str] = None
    transpose: Optional[int] = Field(default=None, ge=-12, le=12)


@router.post("/chat", status_code=status.HTTP_202_ACCEPTED)
async def post_chat(body: ChatMessage, request: Request):
    """Inject one chat event, exactly as if it arrived from the chat transport."""
    performer = request.app.state.performer
    state = request.app.state.performer_state
    performer.tasks.spawn(
        performer.chat.handle_message(body.username, body.text, body.is_moderator),
        name=f"chat-{body.username}",
    )
    return {"accepted": True, "busy": state.is_busy, "queue_length": len(state.request_queue)}


@router.post("/songs")
async def post_song(body: SongRequest, request: Request):
    """Request a song directly, bypassing chat classification."""
    performer = request.app.state.performer
    query = f"{body.song_name} by {body.artist}" if body.artist else body.song_name
    intent = SongIntent(
        song_name=body.song_name, query=query, artist=body.artist, transpose=body.transpose
    )
    result = await performer.songs.request_song(intent, "API")
    return {
        "success": result.success,
        "job_id": result.job_id,
        "title": result.title,
        "error": result.error,
        "direct_play": result.direct_play,
    }
