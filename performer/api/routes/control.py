from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from api.middleware.auth import require_moderator

router = APIRouter()


class AutoTalkToggle(BaseModel):
    enabled: bool


@router.put("/autotalk")
async def toggle_autotalk(
    body: AutoTalkToggle, request: Request, _=Depends(require_moderator)
):
    """Enable or disable autonomous chatter."""
    request.app.state.performer.autotalk.set_enabled(body.enabled)

    cm = request.app.state.config_manager
    cm.update_nested("autotalk", enabled=body.enabled)

    return {"autotalk_enabled": body.enabled}


@router.delete("/queue")
async def clear_queue(request: Request, _=Depends(require_moderator)):
    """Drop every queued chat message."""
    state = request.app.state.performer_state
    removed = state.clear_queue()
    return {"removed": removed}
