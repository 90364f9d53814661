"""Result pairs returned by the store and data-access services."""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """Either ``data`` or ``error`` is set, never raised across a service boundary."""

    data: Optional[T] = None
    error: Optional[Exception] = None
    count: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: Optional[T] = None, count: Optional[int] = None) -> "Result[T]":
        return cls(data=data, count=count)

    @classmethod
    def failure(cls, error: Exception) -> "Result[T]":
        return cls(error=error)
