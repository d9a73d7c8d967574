"""Auto-reset timers for momentary trigger events.

A LifeSOS sensor only reports that it *was* triggered; it never reports going
idle again. Each trigger holds the state open for ``AUTO_RESET_INTERVAL``
seconds, then the expiry callback reverts it. A repeated trigger restarts the
window, so there is at most one pending timer per device.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Optional

LOGGER = logging.getLogger("auto_reset")

AUTO_RESET_INTERVAL = 180.0


class AutoResetScheduler:
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None,
                 interval: float = AUTO_RESET_INTERVAL) -> None:
        self._loop = loop
        self.interval = interval
        self._handles: Dict[int, asyncio.TimerHandle] = {}

    def trigger(self, device_id: int, on_expire: Callable[[], None]) -> None:
        self.cancel(device_id)
        loop = self._loop or asyncio.get_running_loop()
        handle = loop.call_later(self.interval, self._expire, device_id, on_expire)
        self._handles[device_id] = handle
        LOGGER.debug("Auto reset for %06x in %ss", device_id, self.interval)

    def _expire(self, device_id: int, on_expire: Callable[[], None]) -> None:
        handle = self._handles.get(device_id)
        try:
            on_expire()
        except Exception:
            LOGGER.exception("Auto reset callback for %06x failed", device_id)
        finally:
            if self._handles.get(device_id) is handle:
                self._handles.pop(device_id, None)

    def cancel(self, device_id: int) -> bool:
        handle = self._handles.pop(device_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    def pending(self, device_id: int) -> bool:
        return device_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)


__all__ = ["AUTO_RESET_INTERVAL", "AutoResetScheduler"]
