"""Result type shared by stores, the CUPS adapter and the orchestration services.

Stores and adapters never hand driver exceptions or error sentinels to callers.
Every call returns either ``Ok(value)`` or ``Err(kind, detail)``, and callers
branch on ``.ok`` before touching ``.value``.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    STORE = "store"
    ADAPTER = "adapter"
    IO = "io"
    INTERNAL = "internal"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T = None  # type: ignore[assignment]

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    detail: str = ""

    @property
    def ok(self) -> bool:
        return False

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.detail}" if self.detail else self.kind.value


Result = Union[Ok[T], Err]


def err_from_exception(kind: ErrorKind, e: BaseException) -> Err:
    """Build an Err whose detail never ends up empty."""
    msg = str(e).strip() or type(e).__name__
    return Err(kind, msg)
