from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, List

import httpx
import pytest
from openai import APIConnectionError, APITimeoutError, BadRequestError
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from autopilot.conversation import ConversationMemory  # noqa: E402
from autopilot.result import FailureKind  # noqa: E402
from autopilot.vlm import VLMClient, normalize_url  # noqa: E402

REQUEST = httpx.Request("POST", "https://vlm.example.test/v1/chat/completions")


def _reply(content: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeCompletions:
    def __init__(self, outcomes: List[Any]) -> None:
        self.outcomes = list(outcomes)
        self.calls: List[dict] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeModels:
    async def list(self) -> SimpleNamespace:
        return SimpleNamespace(data=[SimpleNamespace(id="vision-small"), SimpleNamespace(id="vision-large")])


class FakeClient:
    def __init__(self, outcomes: List[Any]) -> None:
        self.completions = FakeCompletions(outcomes)
        self.chat = SimpleNamespace(completions=self.completions)
        self.models = FakeModels()


def _client(outcomes: List[Any]) -> tuple[VLMClient, FakeCompletions]:
    fake = FakeClient(outcomes)
    return VLMClient(client=fake, model="vision-test", retry_delay_s=0.0), fake.completions


@pytest.mark.asyncio
async def test_retries_connection_errors_then_succeeds() -> None:
    vlm, completions = _client([APIConnectionError(request=REQUEST), _reply("### Plan ###\nFinished")])

    result = await vlm.predict("plan")

    assert result.ok
    assert result.value == "### Plan ###\nFinished"
    assert len(completions.calls) == 2


@pytest.mark.asyncio
async def test_gives_up_after_max_retries() -> None:
    vlm, completions = _client([APITimeoutError(REQUEST), APITimeoutError(REQUEST), APITimeoutError(REQUEST)])

    result = await vlm.predict("plan")

    assert not result.ok
    assert result.kind is FailureKind.TIMEOUT
    assert len(completions.calls) == 3


@pytest.mark.asyncio
async def test_bad_request_is_not_retried() -> None:
    response = httpx.Response(400, request=REQUEST)
    vlm, completions = _client([BadRequestError("bad image", response=response, body=None)])

    result = await vlm.predict("plan")

    assert not result.ok
    assert result.kind is FailureKind.API_ERROR
    assert len(completions.calls) == 1


@pytest.mark.asyncio
async def test_empty_choices_is_terminal() -> None:
    vlm, completions = _client([SimpleNamespace(choices=[])])

    result = await vlm.predict_with_context(ConversationMemory("sys").messages)

    assert not result.ok
    assert result.kind is FailureKind.EMPTY_RESPONSE
    assert result.message == "No response from model"
    assert len(completions.calls) == 1


@pytest.mark.asyncio
async def test_predict_sends_images_as_jpeg_data_urls() -> None:
    vlm, completions = _client([_reply("ok")])

    await vlm.predict("compare", [Image.new("RGB", (4, 4)), Image.new("RGBA", (4, 4))])

    call = completions.calls[0]
    assert call["model"] == "vision-test"
    assert call["temperature"] == 0.0
    assert call["top_p"] == 0.85
    content = call["messages"][0]["content"]
    assert [part["type"] for part in content] == ["image_url", "image_url", "text"]
    assert content[0]["image_url"]["url"].startswith("data:image/jpeg;base64,")
    assert content[-1]["text"] == "compare"


@pytest.mark.asyncio
async def test_predict_with_context_sends_transcript() -> None:
    vlm, completions = _client([_reply("### Action ###\n{}")])
    memory = ConversationMemory("system prompt")
    memory.add_user_message("first", Image.new("RGB", (4, 4)))
    memory.add_assistant_message("reply")
    memory.add_user_message("second", Image.new("RGB", (4, 4)))

    await vlm.predict_with_context(memory.messages)

    messages = completions.calls[0]["messages"]
    assert [message["role"] for message in messages] == ["system", "user", "assistant", "user"]
    assert isinstance(messages[1]["content"], str)
    assert messages[3]["content"][0]["type"] == "image_url"


@pytest.mark.asyncio
async def test_list_models() -> None:
    vlm, _ = _client([])
    result = await vlm.list_models()
    assert result.ok
    assert result.value == ["vision-small", "vision-large"]


def test_normalize_url() -> None:
    assert normalize_url("api.example.test/v1/") == "https://api.example.test/v1"
    assert normalize_url("http://localhost:8000/v1") == "http://localhost:8000/v1"
