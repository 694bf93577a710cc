"""Two-case result type returned by inference calls."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class FailureKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    API_ERROR = "api_error"
    EMPTY_RESPONSE = "empty_response"
    UNEXPECTED = "unexpected"

    @property
    def retryable(self) -> bool:
        return self in (FailureKind.NETWORK, FailureKind.TIMEOUT)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str

    @property
    def ok(self) -> bool:
        return False

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


InferenceResult = Union[Ok[T], Failure]

__all__ = ["Failure", "FailureKind", "InferenceResult", "Ok"]
