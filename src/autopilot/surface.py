"""Status surface contract and a terminal implementation for command-line hosts."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class StatusSurface(Protocol):
    def show(self, message: str) -> None: ...

    def update(self, message: str) -> None: ...

    def hide(self) -> None: ...

    def set_visible(self, visible: bool) -> None: ...

    def show_confirm(self, message: str, on_decision: Callable[[bool], None]) -> None: ...

    def show_take_over(self, message: str, on_done: Callable[[], None]) -> None: ...


class ConsoleSurface:
    """Print status lines and read confirmations from stdin on a worker thread."""

    def __init__(self, input_fn: Callable[[str], str] = input) -> None:
        self._input = input_fn
        self.visible = False
        self.message = ""

    def show(self, message: str) -> None:
        self.visible = True
        self.update(message)

    def update(self, message: str) -> None:
        self.message = message
        logger.info("[status] %s", message)

    def hide(self) -> None:
        self.visible = False

    def set_visible(self, visible: bool) -> None:
        self.visible = visible

    def show_confirm(self, message: str, on_decision: Callable[[bool], None]) -> None:
        def ask() -> None:
            try:
                reply = self._input(f"{message} [y/N] ")
            except EOFError:
                reply = ""
            on_decision(reply.strip().lower() in {"y", "yes"})

        threading.Thread(target=ask, name="autopilot-confirm", daemon=True).start()

    def show_take_over(self, message: str, on_done: Callable[[], None]) -> None:
        def wait() -> None:
            try:
                self._input(f"{message} Press Enter to continue. ")
            except EOFError:
                pass
            on_done()

        threading.Thread(target=wait, name="autopilot-take-over", daemon=True).start()


__all__ = ["ConsoleSurface", "StatusSurface"]
