"""
Error taxonomy and the request Status.

Every failure raised inside a request is an ImageAlchemyError subclass, except
for genuinely unexpected faults, which the executor reports as UNKNOWN.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class StatusCode(Enum):
    OK = "ok"
    VALIDATION = "validation"
    GEOMETRY = "geometry"
    UNSUPPORTED_FORMAT = "unsupported_format"
    STAGE = "stage"
    IO = "io"
    UNKNOWN = "unknown"


class ImageAlchemyError(Exception):
    kind = StatusCode.UNKNOWN


class ValidationError(ImageAlchemyError):
    """A recognised query value cannot be accepted."""
    kind = StatusCode.VALIDATION

    def __init__(self, key: str, message: str):
        super().__init__(f"Invalid value for '{key}': {message}")
        self.key = key


class GeometryError(ImageAlchemyError):
    """Overflow or an impossible target size."""
    kind = StatusCode.GEOMETRY


class UnsupportedFormatError(ImageAlchemyError):
    kind = StatusCode.UNSUPPORTED_FORMAT

    def __init__(self, output_format: str, message: Optional[str] = None):
        super().__init__(message or f"Output format '{output_format}' is not supported for this request")
        self.output_format = output_format


class StageError(ImageAlchemyError):
    """Engine failure while running a specific stage."""
    kind = StatusCode.STAGE

    def __init__(self, stage: str, message: str):
        super().__init__(f"[{stage}] {message}")
        self.stage = stage


class ImageIOError(ImageAlchemyError):
    """Source or target failure."""
    kind = StatusCode.IO


@dataclass(frozen=True)
class Status:
    code: StatusCode
    message: str = ""
    query: str = ""

    @classmethod
    def ok(cls, query: str = "") -> "Status":
        return cls(StatusCode.OK, "", query)

    @classmethod
    def from_error(cls, code: StatusCode, message: str, query: str) -> "Status":
        return cls(code, f"{message} (query: {query!r})", query)

    @property
    def is_ok(self) -> bool:
        return self.code is StatusCode.OK

    def __bool__(self) -> bool:
        return self.is_ok
