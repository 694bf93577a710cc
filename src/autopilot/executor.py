"""Translate decided actions into device primitives."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol, Tuple

from .gate import wait_for_take_over
from .models import Action, Observation
from .surface import StatusSurface

logger = logging.getLogger(__name__)

NORMALIZED_MAX = 999
DEFAULT_WAIT = 3
DEFAULT_TAKE_OVER_MESSAGE = "Please complete the operation and tap continue"


class DeviceController(Protocol):
    """Blocking device primitives supplied by the host (ADB, accessibility service, ...)."""

    def get_screen_size(self) -> Tuple[int, int]: ...

    def screenshot_with_fallback(self) -> Observation: ...

    def tap(self, x: int, y: int) -> None: ...

    def double_tap(self, x: int, y: int) -> None: ...

    def long_press(self, x: int, y: int) -> None: ...

    def swipe(self, x1: int, y1: int, x2: int, y2: int) -> None: ...

    def type_text(self, text: str) -> None: ...

    def back(self) -> None: ...

    def home(self) -> None: ...

    def enter(self) -> None: ...

    def open_app(self, package_or_name: str) -> None: ...


class PackageResolver(Protocol):
    def find_package(self, name: str) -> Optional[str]: ...


def map_coordinate(value: int, screen_max: int) -> int:
    """Scale a 0-999 coordinate to pixels; values of 1000 and up are pixels already.

    Scaling truncates like integer pixel math and stops at the last pixel index,
    so 999 stays on screen.
    """
    if value < 1000:
        scaled = value * screen_max // NORMALIZED_MAX
        return max(0, min(scaled, screen_max - 1))
    return min(value, screen_max)


class ActionExecutor:
    """Run one action against the device.

    Device calls block, so each one is pushed to a worker thread. Log lines go to
    the ``log`` sink provided by the caller.
    """

    def __init__(
        self,
        device: DeviceController,
        app_index: Optional[PackageResolver] = None,
        surface: Optional[StatusSurface] = None,
        log: Optional[Callable[[str], None]] = None,
        wait_unit_s: float = 1.0,
    ) -> None:
        self.device = device
        self.app_index = app_index
        self.surface = surface
        self._log = log or logger.info
        self.wait_unit_s = wait_unit_s

    async def execute(self, action: Action) -> bool:
        """Dispatch ``action``. Returns False when it was ignored."""
        width, height = await asyncio.to_thread(self.device.get_screen_size)

        if action.type in ("click", "double_tap", "long_press"):
            x, y = map_coordinate(action.x or 0, width), map_coordinate(action.y or 0, height)
            primitive = {
                "click": self.device.tap,
                "double_tap": self.device.double_tap,
                "long_press": self.device.long_press,
            }[action.type]
            self._log(f"{action.type}: ({action.x}, {action.y}) -> ({x}, {y})")
            await asyncio.to_thread(primitive, x, y)
            return True

        if action.type == "swipe":
            x1, y1 = map_coordinate(action.x or 0, width), map_coordinate(action.y or 0, height)
            x2, y2 = map_coordinate(action.x2 or 0, width), map_coordinate(action.y2 or 0, height)
            self._log(f"swipe: ({x1}, {y1}) -> ({x2}, {y2})")
            await asyncio.to_thread(self.device.swipe, x1, y1, x2, y2)
            return True

        if action.type == "type":
            self._log(f"type: {action.text}")
            await asyncio.to_thread(self.device.type_text, action.text or "")
            return True

        if action.type == "system_button":
            button = (action.button or "").strip().lower()
            primitive = {"back": self.device.back, "home": self.device.home, "enter": self.device.enter}.get(button)
            if primitive is None:
                self._log(f"Unknown system button: {action.button}")
                return False
            self._log(f"system_button: {button}")
            await asyncio.to_thread(primitive)
            return True

        if action.type == "open_app":
            return await self._open_app(action.text or "")

        if action.type == "wait":
            seconds = max(1, min(10, action.duration if action.duration is not None else DEFAULT_WAIT))
            self._log(f"wait: {seconds}s")
            await asyncio.sleep(seconds * self.wait_unit_s)
            return True

        if action.type == "take_over":
            message = action.message or DEFAULT_TAKE_OVER_MESSAGE
            self._log(f"take_over: {message}")
            if self.surface is None:
                logger.warning("No status surface for take-over; continuing without waiting")
                return False
            await wait_for_take_over(self.surface, message)
            self._log("User finished manual operation")
            return True

        self._log(f"Unknown action type: {action.type}")
        return False

    async def _open_app(self, name: str) -> bool:
        package = self.app_index.find_package(name) if self.app_index else None
        if package:
            self._log(f"open_app: {name} -> {package}")
            await asyncio.to_thread(self.device.open_app, package)
        else:
            self._log(f"open_app: {name} not in app index, trying it directly")
            await asyncio.to_thread(self.device.open_app, name)
        return True


__all__ = ["ActionExecutor", "DeviceController", "PackageResolver", "map_coordinate"]
