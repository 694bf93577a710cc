from __future__ import annotations

import asyncio
import sys
import threading
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from autopilot.gate import DecisionGate  # noqa: E402
from autopilot.surface import ConsoleSurface  # noqa: E402
from autopilot.gate import ask_confirmation  # noqa: E402


@pytest.mark.asyncio
async def test_gate_resolves_once() -> None:
    gate: DecisionGate[bool] = DecisionGate()

    assert gate.resolve(False) is True
    assert gate.resolve(True) is False

    assert await gate.wait() is False
    assert gate.resolved


@pytest.mark.asyncio
async def test_gate_accepts_resolution_from_other_thread() -> None:
    gate: DecisionGate[bool] = DecisionGate()
    worker = threading.Thread(target=gate.resolve, args=(True,))
    worker.start()

    assert await asyncio.wait_for(gate.wait(), timeout=2) is True
    worker.join()


@pytest.mark.asyncio
async def test_racing_resolvers_deliver_one_decision() -> None:
    gate: DecisionGate[int] = DecisionGate()
    results = []
    threads = [threading.Thread(target=lambda v=v: results.append(gate.resolve(v))) for v in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    value = await asyncio.wait_for(gate.wait(), timeout=2)
    assert results.count(True) == 1
    assert value in range(8)


@pytest.mark.asyncio
async def test_console_surface_confirmation_reads_input() -> None:
    surface = ConsoleSurface(input_fn=lambda prompt: "y")
    assert await asyncio.wait_for(ask_confirmation(surface, "Send?"), timeout=2) is True

    surface = ConsoleSurface(input_fn=lambda prompt: "")
    assert await asyncio.wait_for(ask_confirmation(surface, "Send?"), timeout=2) is False
