"""
Session Persistence

Debounced, migration-aware save of the full lecture aggregate. Errors are logged and
never raised; the in-memory session stays the source of truth.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Optional

from lecture_live.schemas.lecture import LectureSession
from lecture_live.services.image_processing import migrate_slide_images
from lecture_live.services.scheduling import DebouncedTask
from lecture_live.services.session_store import SessionStore

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[], Optional[LectureSession]]
MigrationListener = Callable[[Dict[int, str]], None]


class SessionPersistence:
    def __init__(
        self,
        snapshot_provider: SnapshotProvider,
        store: SessionStore,
        *,
        debounce_seconds: float = 2.0,
        jpeg_quality: int = 80,
        on_migrated: Optional[MigrationListener] = None,
    ) -> None:
        self._snapshot_provider = snapshot_provider
        self._store = store
        self._jpeg_quality = jpeg_quality
        self._on_migrated = on_migrated
        self._lock = asyncio.Lock()
        self._debounce = DebouncedTask(debounce_seconds, self.save_now, name="session_save")
        self.save_count = 0
        self.last_error: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self._debounce.pending

    def notify_changed(self) -> None:
        """(Re)arm the deferred save; only the last call inside the quiet period saves."""
        self._debounce.schedule()

    async def save_now(self) -> bool:
        snapshot = self._snapshot_provider()
        if snapshot is None:
            return False
        async with self._lock:
            try:
                session = snapshot.model_copy(deep=True)
                migration = await asyncio.to_thread(migrate_slide_images, session.slides, self._jpeg_quality)
                if migration.was_modified:
                    for slide in session.slides:
                        converted = migration.converted.get(slide.page_number)
                        if converted:
                            slide.image_data_url = converted
                    logger.info(
                        "slide_images_migrated session_id=%s converted=%s failed=%s",
                        session.id,
                        len(migration.converted),
                        len(migration.failed_pages),
                    )
                await asyncio.to_thread(self._store.update_session, session)
            except Exception as exc:
                self.last_error = str(exc)
                logger.error("session_save_failed session_id=%s err=%s", snapshot.id, exc, exc_info=True)
                return False

        self.save_count += 1
        self.last_error = None
        if migration.was_modified and self._on_migrated is not None:
            try:
                self._on_migrated(dict(migration.converted))
            except Exception:
                logger.debug("slide_migration_listener_failed session_id=%s", snapshot.id, exc_info=True)
        return True

    async def flush(self) -> bool:
        """Unconditional save used on session end and process teardown."""
        self._debounce.cancel()
        await self._debounce.wait()
        return await self.save_now()

    def cancel(self) -> None:
        self._debounce.cancel()
