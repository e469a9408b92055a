from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field

router = APIRouter()


class PlaySound(BaseModel):
    sound: str
    times: int = Field(default=1, ge=1, le=10)


@router.get("")
async def list_sounds(request: Request):
    sounds = request.app.state.performer.sounds
    sounds.load()
    return {"sounds": sounds.names}


@router.post("/play", status_code=status.HTTP_202_ACCEPTED)
async def play_sound(body: PlaySound, request: Request):
    performer = request.app.state.performer
    if performer.sounds.path_for(body.sound) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown sound '{body.sound}'.")
    performer.tasks.spawn(performer.sounds.play(body.sound, body.times), name=f"sound-{body.sound}")
    return {"sound": body.sound, "times": body.times}
