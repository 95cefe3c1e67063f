from fastapi import APIRouter

from lecture_live.api.v1.endpoints import sessions
from lecture_live.api.v1.websocket import live_ws

api_router = APIRouter()
api_router.include_router(sessions.router, tags=["sessions"])
api_router.include_router(live_ws.router, tags=["live"])
