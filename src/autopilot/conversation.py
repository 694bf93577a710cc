"""Role-tagged conversation transcript used by the action-decision phase."""

from __future__ import annotations

import logging
from typing import List, Literal, Optional

from PIL import Image
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant"]

IMAGE_PLACEHOLDER = "[screenshot omitted]"

# Rough per-image cost for a high-detail phone screenshot.
_IMAGE_TOKEN_ESTIMATE = 765


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    role: Role
    content: str
    image: Optional[Image.Image] = None

    def without_image(self) -> "ChatMessage":
        if self.image is None:
            return self
        text = f"{self.content}\n{IMAGE_PLACEHOLDER}" if self.content else IMAGE_PLACEHOLDER
        return ChatMessage(role=self.role, content=text)


class ConversationMemory:
    """Append-only transcript with a single leading system message.

    Only the newest unanswered user message may carry a screenshot. Older
    images are replaced by a text placeholder so that the payload sent with
    every decision stays bounded over long tasks.
    """

    def __init__(self, system_prompt: str) -> None:
        self._messages: List[ChatMessage] = [ChatMessage(role="system", content=system_prompt)]

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    @property
    def system_prompt(self) -> str:
        return self._messages[0].content

    @property
    def image_count(self) -> int:
        return sum(1 for message in self._messages if message.image is not None)

    def __len__(self) -> int:
        return len(self._messages)

    def add_user_message(self, text: str, image: Optional[Image.Image] = None) -> None:
        if image is not None:
            self._strip_all_images()
        self._messages.append(ChatMessage(role="user", content=text, image=image))

    def add_assistant_message(self, text: str) -> None:
        self.strip_last_user_image()
        self._messages.append(ChatMessage(role="assistant", content=text))

    def strip_last_user_image(self) -> bool:
        """Drop the image from the most recent user message, if it has one."""
        for idx in range(len(self._messages) - 1, 0, -1):
            message = self._messages[idx]
            if message.role != "user":
                continue
            if message.image is None:
                return False
            self._messages[idx] = message.without_image()
            return True
        return False

    def estimate_tokens(self) -> int:
        total = 0
        for message in self._messages:
            total += len(message.content) // 4 + 4
            if message.image is not None:
                total += _IMAGE_TOKEN_ESTIMATE
        return total

    def clear(self) -> None:
        """Forget the exchange but keep the system message."""
        self._messages = self._messages[:1]

    def _strip_all_images(self) -> None:
        for idx, message in enumerate(self._messages):
            if message.image is not None:
                logger.debug("Stripping stale screenshot from message %s", idx)
                self._messages[idx] = message.without_image()


__all__ = ["ChatMessage", "ConversationMemory", "IMAGE_PLACEHOLDER", "Role"]
