"""Capability contract: the versioned schema shared by host and plugins.

Pure data. Everything a plugin hands the host is validated against these
models before the host acts on it; everything the host hands a plugin is
one of these values or an opaque handle proxy.

Flag and enum values are part of the ABI: new members may be added, but
existing values are never renumbered.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Annotated, Any, Never

from pydantic import BaseModel, Field, PlainValidator, model_validator
from pydantic_core import PydanticCustomError

SCHEMA_VERSION = 1

U8 = Annotated[int, Field(ge=0, le=0xFF)]
U32 = Annotated[int, Field(ge=0, le=0xFFFF_FFFF)]


class _ContractModel(BaseModel):
    """Immutable, closed records; unknown keys from a plugin are an error."""

    model_config = {"extra": "forbid", "frozen": True, "revalidate_instances": "always"}


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------


class Point(_ContractModel):
    """Zero-based text position."""

    line: U32
    col: U32

    def __str__(self) -> str:
        return f"{self.line}:{self.col}"


class LineRange(_ContractModel):
    """Inclusive, zero-based span of lines a command was addressed to."""

    start: U32
    end: U32

    @model_validator(mode="after")
    def _ordered(self) -> LineRange:
        if self.start > self.end:
            raise ValueError(f"range start {self.start} is after end {self.end}")
        return self


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class CommandFlags(enum.IntFlag):
    RANGE = 0b0001


_KNOWN_FLAG_BITS = sum(flag.value for flag in CommandFlags)


def _parse_flags(value: Any) -> CommandFlags:
    if isinstance(value, bool) or not isinstance(value, int):
        raise PydanticCustomError("invalid_flags", "flags must be an integer bit set")
    if value & ~_KNOWN_FLAG_BITS:
        raise PydanticCustomError(
            "invalid_flags", "unknown flag bits {bits}", {"bits": hex(value & ~_KNOWN_FLAG_BITS)}
        )
    return CommandFlags(value)


Flags = Annotated[CommandFlags, PlainValidator(_parse_flags)]


class Arity(_ContractModel):
    """Inclusive bounds on the number of arguments a command accepts."""

    min: U8
    max: U8

    @model_validator(mode="after")
    def _min_le_max(self) -> Arity:
        if self.min > self.max:
            raise PydanticCustomError(
                "invalid_arity",
                "arity min {min} is greater than max {max}",
                {"min": self.min, "max": self.max},
            )
        return self

    @classmethod
    def exact(cls, n: int) -> Arity:
        return cls(min=n, max=n)

    def accepts(self, count: int) -> bool:
        return self.min <= count <= self.max


def _check_word(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise PydanticCustomError("invalid_name", "command name must be a non-empty string")
    if any(c.isspace() for c in value):
        raise PydanticCustomError("invalid_name", "command name contains whitespace")
    return value


Word = Annotated[str, PlainValidator(_check_word)]


class Command(_ContractModel):
    name: Word
    arity: Arity
    flags: Flags = CommandFlags(0)

    @property
    def takes_range(self) -> bool:
        return CommandFlags.RANGE in self.flags


class InitializeResult(_ContractModel):
    commands: list[Command] = []


# ---------------------------------------------------------------------------
# Modes
# ---------------------------------------------------------------------------


class Operator(enum.StrEnum):
    DELETE = "delete"
    CHANGE = "change"
    YANK = "yank"


class ModeKind(enum.StrEnum):
    NORMAL = "normal"
    INSERT = "insert"
    VISUAL = "visual"
    COMMAND = "command"
    REPLACE_PENDING = "replace-pending"
    OPERATOR_PENDING = "operator-pending"


class Mode(_ContractModel):
    """Closed variant: ``operator`` is set exactly when kind is OPERATOR_PENDING."""

    kind: ModeKind
    operator: Operator | None = None

    @model_validator(mode="after")
    def _operator_matches_kind(self) -> Mode:
        pending = self.kind is ModeKind.OPERATOR_PENDING
        if pending and self.operator is None:
            raise ValueError("operator-pending mode requires an operator")
        if not pending and self.operator is not None:
            raise ValueError(f"{self.kind} mode cannot carry an operator")
        return self

    @classmethod
    def normal(cls) -> Mode:
        return cls(kind=ModeKind.NORMAL)

    @classmethod
    def insert(cls) -> Mode:
        return cls(kind=ModeKind.INSERT)

    @classmethod
    def visual(cls) -> Mode:
        return cls(kind=ModeKind.VISUAL)

    @classmethod
    def command(cls) -> Mode:
        return cls(kind=ModeKind.COMMAND)

    @classmethod
    def replace_pending(cls) -> Mode:
        return cls(kind=ModeKind.REPLACE_PENDING)

    @classmethod
    def operator_pending(cls, op: Operator) -> Mode:
        return cls(kind=ModeKind.OPERATOR_PENDING, operator=op)

    def __str__(self) -> str:
        if self.operator is not None:
            return f"{self.kind}({self.operator})"
        return str(self.kind)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class EditError(enum.StrEnum):
    READONLY = "readonly"


@dataclass(frozen=True, slots=True)
class Ok[T]:
    value: T = None  # type: ignore[assignment]

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True, slots=True)
class Err[E]:
    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> Never:
        if isinstance(self.error, BaseException):
            raise self.error
        raise ValueError(f"called unwrap() on Err({self.error!r})")


type Result[T, E] = Ok[T] | Err[E]
