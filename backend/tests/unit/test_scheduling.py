import asyncio

import pytest

from lecture_live.services.notifications import NotificationCenter
from lecture_live.services.scheduling import DebouncedTask


@pytest.mark.asyncio
async def test_only_last_schedule_fires() -> None:
    calls = []
    task = DebouncedTask(0.03, lambda: calls.append("fired"))

    for _ in range(4):
        task.schedule()
        await asyncio.sleep(0.005)
    await asyncio.sleep(0.08)

    assert calls == ["fired"]
    assert not task.pending


@pytest.mark.asyncio
async def test_cancel_prevents_fire_and_wait_joins_async_callback() -> None:
    calls = []

    async def slow() -> None:
        await asyncio.sleep(0.02)
        calls.append("done")

    cancelled = DebouncedTask(0.01, slow)
    cancelled.schedule()
    cancelled.cancel()
    await asyncio.sleep(0.03)
    assert calls == []

    task = DebouncedTask(0, slow)
    task.schedule()
    await asyncio.sleep(0.005)
    await task.wait()
    assert calls == ["done"]


@pytest.mark.asyncio
async def test_callback_errors_do_not_escape(caplog) -> None:
    def boom() -> None:
        raise RuntimeError("nope")

    task = DebouncedTask(0, boom, name="boom")
    task.schedule()
    await asyncio.sleep(0.01)

    assert "debounced_callback_failed name=boom" in caplog.text


@pytest.mark.asyncio
async def test_toasts_expire_and_can_be_dismissed() -> None:
    snapshots = []
    center = NotificationCenter(ttl_seconds=0.03, on_change=lambda toasts: snapshots.append(len(toasts)))

    first = center.show("Connection lost")
    second = center.show("Saved", "success")
    assert [t.id for t in center.toasts] == [first.id, second.id]
    assert second.to_dict() == {"id": second.id, "message": "Saved", "type": "success"}

    assert center.dismiss(first.id) is True
    assert center.dismiss(first.id) is False
    await asyncio.sleep(0.06)

    assert center.toasts == []
    assert snapshots == [1, 2, 1, 0]


def test_toasts_without_running_loop_stay_until_cleared() -> None:
    center = NotificationCenter(ttl_seconds=0.01)
    center.show("offline")

    assert len(center.toasts) == 1
    center.clear()
    assert center.toasts == []
