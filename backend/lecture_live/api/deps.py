from functools import lru_cache

from lecture_live.services.live_session_service import LiveSessionRegistry
from lecture_live.services.session_store import SessionStore


@lru_cache()
def get_session_store() -> SessionStore:
    return SessionStore()


@lru_cache()
def get_live_registry() -> LiveSessionRegistry:
    return LiveSessionRegistry(get_session_store())
