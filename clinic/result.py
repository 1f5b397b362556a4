"""
Discriminated result type returned by every service façade operation.
"""
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

from .errors import ClinicError, ErrorKind

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    data: T
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    field: Optional[str] = None

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_error(cls, error: ClinicError) -> "Failure":
        return cls(kind=error.kind, message=error.message, field=error.field)


Result = Union[Success[T], Failure]
