from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Literal, Optional

logger = logging.getLogger(__name__)

ToastType = Literal["error", "success"]


@dataclass(frozen=True)
class Toast:
    id: int
    message: str
    type: ToastType

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class NotificationCenter:
    """Transient user-visible messages: enqueue, auto-expire, manual dismiss."""

    def __init__(
        self,
        ttl_seconds: float = 5.0,
        on_change: Optional[Callable[[List[Toast]], None]] = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._on_change = on_change
        self._toasts: List[Toast] = []
        self._ids = itertools.count(1)
        self._timers: Dict[int, asyncio.TimerHandle] = {}

    @property
    def toasts(self) -> List[Toast]:
        return list(self._toasts)

    def show(self, message: str, type: ToastType = "error") -> Toast:
        toast = Toast(id=next(self._ids), message=message, type=type)
        self._toasts.append(toast)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None and self.ttl_seconds > 0:
            self._timers[toast.id] = loop.call_later(self.ttl_seconds, self.dismiss, toast.id)
        logger.debug("notification_shown id=%s type=%s", toast.id, type)
        self._emit()
        return toast

    def dismiss(self, toast_id: int) -> bool:
        timer = self._timers.pop(toast_id, None)
        if timer is not None:
            timer.cancel()
        before = len(self._toasts)
        self._toasts = [t for t in self._toasts if t.id != toast_id]
        removed = len(self._toasts) != before
        if removed:
            self._emit()
        return removed

    def clear(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._toasts = []
        self._emit()

    def _emit(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.toasts)
        except Exception:
            logger.debug("notification_listener_failed", exc_info=True)
