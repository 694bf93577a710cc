"""Single-resolution waits used for confirmation and manual take-over."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Generic, Optional, TypeVar

if TYPE_CHECKING:
    from .surface import StatusSurface

T = TypeVar("T")

logger = logging.getLogger(__name__)


class DecisionGate(Generic[T]):
    """A future that an outside party may resolve at most once, from any thread.

    The status surface receives ``resolve`` as its callback. Later calls, such
    as a tap racing a timeout, are ignored and reported by returning False.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future = self._loop.create_future()
        self._lock = threading.Lock()
        self._resolved = False

    @property
    def resolved(self) -> bool:
        return self._resolved

    def resolve(self, value: T) -> bool:
        with self._lock:
            if self._resolved:
                logger.debug("Ignoring duplicate decision: %r", value)
                return False
            self._resolved = True
        self._loop.call_soon_threadsafe(self._deliver, value)
        return True

    def _deliver(self, value: T) -> None:
        if not self._future.done():
            self._future.set_result(value)

    async def wait(self) -> T:
        return await self._future


async def ask_confirmation(surface: "StatusSurface", message: str) -> bool:
    gate: DecisionGate[bool] = DecisionGate()
    surface.show_confirm(message, gate.resolve)
    return bool(await gate.wait())


async def wait_for_take_over(surface: "StatusSurface", message: str) -> None:
    gate: DecisionGate[bool] = DecisionGate()
    surface.show_take_over(message, lambda: gate.resolve(True))
    await gate.wait()


__all__ = ["DecisionGate", "ask_confirmation", "wait_for_take_over"]
