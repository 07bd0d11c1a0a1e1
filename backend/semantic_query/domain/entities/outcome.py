"""Success/failure result type for calls into external capabilities."""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value or an error message — never both.

    Expected failures of external collaborators (timeouts, HTTP errors,
    malformed JSON) travel as ``Outcome.failure`` values instead of
    exceptions, so call sites can degrade explicitly.
    """

    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "Outcome[T]":
        return cls(error=error or "Unknown error")
