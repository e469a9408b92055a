import asyncio
import time

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger


def create_app(performer) -> FastAPI:
    """Create and configure the FastAPI application around a running performer."""

    app = FastAPI(title="Performer", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store references for route handlers
    app.state.performer = performer
    app.state.config_manager = performer.config_manager
    app.state.performer_state = performer.state

    from api.routes.chat import router as chat_router
    from api.routes.control import router as control_router
    from api.routes.sounds import router as sounds_router

    app.include_router(chat_router, prefix="/api", tags=["chat"])
    app.include_router(control_router, prefix="/api/control", tags=["control"])
    app.include_router(sounds_router, prefix="/api/sound-effects", tags=["sounds"])

    state = performer.state
    events = performer.events

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "performer": state.snapshot(), "ui_clients": events.client_count}

    @app.get("/api/status")
    async def status():
        return state.snapshot()

    @app.websocket("/ws/events")
    async def event_stream(websocket: WebSocket):
        await websocket.accept()
        queue = events.subscribe()

        async def pump():
            for message in connect_messages(performer):
                await websocket.send_json(message)
            while True:
                message = await queue.get()
                await websocket.send_json(message)

        sender = asyncio.create_task(pump())
        try:
            # Incoming frames are ignored; this only watches for the disconnect
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.warning("Event stream closed: {}", e)
        finally:
            sender.cancel()
            events.unsubscribe(queue)

    return app


def connect_messages(performer) -> list[dict]:
    """Catch-up events for a newly connected UI client."""
    state = performer.state
    messages = [{"event": "system-message", "data": {"text": "Connected to performer", "time": int(time.time() * 1000)}}]
    if performer.events.current_subtitle:
        messages.append({"event": "subtitle-update", "data": performer.events.current_subtitle})
    if state.singing and state.current_song:
        messages.append({
            "event": "play-converted-song",
            "data": {"title": state.current_song.title, "path": state.current_song.path},
        })
    if state.processing_song:
        messages.append({
            "event": "song-update",
            "data": {
                "title": state.processing_title or "Processing song...",
                "status": "Processing...",
                "progress": state.processing_progress,
            },
        })
    return messages
