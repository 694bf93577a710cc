from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from autopilot.executor import ActionExecutor, map_coordinate  # noqa: E402
from autopilot.models import Action, Observation  # noqa: E402


class RecordingDevice:
    def __init__(self, size: Tuple[int, int] = (1000, 2000)) -> None:
        self.size = size
        self.calls: List[tuple] = []

    def get_screen_size(self) -> Tuple[int, int]:
        return self.size

    def screenshot_with_fallback(self) -> Observation:
        return Observation(image=Image.new("RGB", self.size))

    def tap(self, x: int, y: int) -> None:
        self.calls.append(("tap", x, y))

    def double_tap(self, x: int, y: int) -> None:
        self.calls.append(("double_tap", x, y))

    def long_press(self, x: int, y: int) -> None:
        self.calls.append(("long_press", x, y))

    def swipe(self, x1: int, y1: int, x2: int, y2: int) -> None:
        self.calls.append(("swipe", x1, y1, x2, y2))

    def type_text(self, text: str) -> None:
        self.calls.append(("type", text))

    def back(self) -> None:
        self.calls.append(("back",))

    def home(self) -> None:
        self.calls.append(("home",))

    def enter(self) -> None:
        self.calls.append(("enter",))

    def open_app(self, package_or_name: str) -> None:
        self.calls.append(("open_app", package_or_name))


class StaticIndex:
    def __init__(self, packages: dict) -> None:
        self.packages = packages

    def find_package(self, name: str) -> Optional[str]:
        return self.packages.get(name)


class AutoSurface:
    def __init__(self) -> None:
        self.take_overs: List[str] = []

    def show(self, message: str) -> None: ...

    def update(self, message: str) -> None: ...

    def hide(self) -> None: ...

    def set_visible(self, visible: bool) -> None: ...

    def show_confirm(self, message: str, on_decision: Callable[[bool], None]) -> None:
        on_decision(True)

    def show_take_over(self, message: str, on_done: Callable[[], None]) -> None:
        self.take_overs.append(message)
        asyncio.get_running_loop().call_later(0.01, on_done)


def test_map_coordinate_examples() -> None:
    assert map_coordinate(500, 1000) == 500
    assert map_coordinate(999, 1000) == 999
    assert map_coordinate(1500, 1000) == 1000
    assert map_coordinate(0, 1080) == 0


def test_map_coordinate_scales_normalized_values() -> None:
    assert map_coordinate(500, 2400) == 1201
    assert map_coordinate(1000, 2400) == 1000
    for value in range(0, 1000, 37):
        assert 0 <= map_coordinate(value, 1080) < 1080


@pytest.mark.asyncio
async def test_tap_actions_use_normalized_coordinates() -> None:
    device = RecordingDevice((1000, 2000))
    executor = ActionExecutor(device)

    await executor.execute(Action(type="click", x=500, y=500))
    await executor.execute(Action(type="long_press", x=1200, y=2500))
    await executor.execute(Action(type="swipe", x=500, y=900, x2=500, y2=100))

    assert device.calls[0] == ("tap", 500, 1001)
    assert device.calls[1] == ("long_press", 1000, 2000)
    assert device.calls[2] == ("swipe", 500, 1801, 500, 200)


@pytest.mark.asyncio
async def test_open_app_prefers_resolved_package() -> None:
    device = RecordingDevice()
    executor = ActionExecutor(device, app_index=StaticIndex({"Calendar": "com.example.calendar"}))

    await executor.execute(Action(type="open_app", text="Calendar"))
    await executor.execute(Action(type="open_app", text="Unknown App"))

    assert device.calls == [("open_app", "com.example.calendar"), ("open_app", "Unknown App")]


@pytest.mark.asyncio
async def test_system_buttons_and_unknown_button() -> None:
    device = RecordingDevice()
    logs: List[str] = []
    executor = ActionExecutor(device, log=logs.append)

    assert await executor.execute(Action(type="system_button", button="Back")) is True
    assert await executor.execute(Action(type="system_button", button="HOME")) is True
    assert await executor.execute(Action(type="system_button", button="menu")) is False

    assert device.calls == [("back",), ("home",)]
    assert any("Unknown system button" in line for line in logs)


@pytest.mark.asyncio
async def test_type_text_passes_literal() -> None:
    device = RecordingDevice()
    await ActionExecutor(device).execute(Action(type="type", text="hello world"))
    assert device.calls == [("type", "hello world")]


@pytest.mark.asyncio
async def test_wait_is_clamped() -> None:
    logs: List[str] = []
    executor = ActionExecutor(RecordingDevice(), log=logs.append, wait_unit_s=0.0)

    await executor.execute(Action(type="wait", duration=30))
    await executor.execute(Action(type="wait", duration=0))
    await executor.execute(Action(type="wait"))

    assert logs == ["wait: 10s", "wait: 1s", "wait: 3s"]


@pytest.mark.asyncio
async def test_take_over_waits_for_surface_signal() -> None:
    device = RecordingDevice()
    surface = AutoSurface()
    executor = ActionExecutor(device, surface=surface)

    handled = await asyncio.wait_for(executor.execute(Action(type="take_over")), timeout=2)

    assert handled is True
    assert surface.take_overs == ["Please complete the operation and tap continue"]
    assert device.calls == []


@pytest.mark.asyncio
async def test_answer_and_invalid_are_not_device_actions() -> None:
    device = RecordingDevice()
    executor = ActionExecutor(device)

    assert await executor.execute(Action(type="answer", text="42")) is False
    assert await executor.execute(Action.invalid()) is False
    assert device.calls == []
