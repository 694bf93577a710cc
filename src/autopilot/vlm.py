"""Vision-language inference backend over an OpenAI-compatible endpoint."""

from __future__ import annotations

import asyncio
import base64
import logging
from io import BytesIO
from typing import Any, Dict, List, Optional, Sequence

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI
from PIL import Image

from .config import VLM_BASE_URL, VLM_MODEL
from .conversation import ChatMessage
from .result import Failure, FailureKind, InferenceResult, Ok

logger = logging.getLogger(__name__)

MAX_TOKENS = 4096
JPEG_QUALITY = 70


def normalize_url(url: str) -> str:
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url.rstrip("/")


def encode_image(image: Image.Image, quality: int = JPEG_QUALITY) -> str:
    """Return ``image`` as a JPEG data URL."""
    if image.mode != "RGB":
        image = image.convert("RGB")
    buffered = BytesIO()
    image.save(buffered, format="JPEG", quality=quality)
    encoded = base64.b64encode(buffered.getvalue()).decode("utf-8")
    return f"data:image/jpeg;base64,{encoded}"


def _user_content(text: str, images: Sequence[Image.Image]) -> List[Dict[str, Any]]:
    content: List[Dict[str, Any]] = [
        {"type": "image_url", "image_url": {"url": encode_image(image)}} for image in images
    ]
    content.append({"type": "text", "text": text})
    return content


def to_openai_messages(messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
    payload: List[Dict[str, Any]] = []
    for message in messages:
        if message.image is not None:
            payload.append({"role": message.role, "content": _user_content(message.content, [message.image])})
        else:
            payload.append({"role": message.role, "content": message.content})
    return payload


class VLMClient:
    """Send prompts and screenshots to the model, retrying transient network failures."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = VLM_BASE_URL,
        model: str = VLM_MODEL,
        client: Optional[AsyncOpenAI] = None,
        max_retries: int = 3,
        retry_delay_s: float = 1.0,
        timeout_s: float = 120.0,
    ) -> None:
        self.base_url = normalize_url(base_url)
        self.model = model
        self.max_retries = max(1, max_retries)
        self.retry_delay_s = retry_delay_s
        # Retries are handled here so the SDK must not retry on its own.
        self.client = client or AsyncOpenAI(
            api_key=api_key or "EMPTY",
            base_url=self.base_url,
            max_retries=0,
            timeout=timeout_s,
        )

    async def predict(self, prompt: str, images: Sequence[Image.Image] = ()) -> InferenceResult[str]:
        messages = [{"role": "user", "content": _user_content(prompt, images)}]
        return await self._complete(
            messages,
            max_tokens=MAX_TOKENS,
            temperature=0.0,
            top_p=0.85,
            frequency_penalty=0.2,
        )

    async def predict_with_context(self, messages: Sequence[ChatMessage]) -> InferenceResult[str]:
        return await self._complete(to_openai_messages(messages), max_tokens=MAX_TOKENS, temperature=0.0)

    async def list_models(self) -> InferenceResult[List[str]]:
        try:
            page = await self.client.models.list()
        except APIConnectionError as exc:
            return Failure(FailureKind.NETWORK, str(exc))
        except APIStatusError as exc:
            return Failure(FailureKind.API_ERROR, f"{exc.status_code}: {exc.message}")
        return Ok([model.id for model in page.data])

    async def _complete(self, messages: List[Dict[str, Any]], **params: Any) -> InferenceResult[str]:
        failure = Failure(FailureKind.UNEXPECTED, "No attempts made")
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    **params,
                )
            except APITimeoutError as exc:
                failure = Failure(FailureKind.TIMEOUT, str(exc))
            except APIConnectionError as exc:
                failure = Failure(FailureKind.NETWORK, str(exc))
            except APIStatusError as exc:
                logger.warning("Model request rejected (%s): %s", exc.status_code, exc.message)
                return Failure(FailureKind.API_ERROR, f"{exc.status_code}: {exc.message}")
            except Exception as exc:  # noqa: BLE001 - surfaced as a failure value
                logger.warning("Model request failed: %s", exc)
                return Failure(FailureKind.UNEXPECTED, str(exc))
            else:
                if not response.choices:
                    return Failure(FailureKind.EMPTY_RESPONSE, "No response from model")
                content = response.choices[0].message.content or ""
                logger.debug("Model response: %s", content)
                return Ok(content)

            if attempt < self.max_retries:
                delay = self.retry_delay_s * attempt
                logger.warning(
                    "Model request attempt %s/%s failed (%s); retrying in %.1fs",
                    attempt,
                    self.max_retries,
                    failure,
                    delay,
                )
                await asyncio.sleep(delay)
        return failure


__all__ = ["VLMClient", "encode_image", "normalize_url", "to_openai_messages"]
