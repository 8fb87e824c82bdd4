"""Statements."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Self


class StatementKind(StrEnum):
    """Kind of a statement."""

    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class Statement:
    """A statement issued in a transaction.

    The text and the parameters are opaque to the transaction layer, only the
    transport interprets them.

    Example:
        ```python
        insert = Statement.write("INSERT INTO venues (code, name) VALUES (:code, :name)", code="V1", name="Venue 1")
        lookup = Statement.read("SELECT name FROM venues WHERE code = :code", code="V1")
        ```

    """

    text: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    kind: StatementKind = StatementKind.WRITE

    def __post_init__(self) -> None:
        """Freeze the parameters."""
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    @classmethod
    def read(cls, text: str, /, **parameters: Any) -> Self:
        """Create a read statement."""
        return cls(text=text, parameters=parameters, kind=StatementKind.READ)

    @classmethod
    def write(cls, text: str, /, **parameters: Any) -> Self:
        """Create a write statement."""
        return cls(text=text, parameters=parameters, kind=StatementKind.WRITE)

    @property
    def is_read(self) -> bool:
        """Whether the statement is a read."""
        return self.kind is StatementKind.READ

    @property
    def is_write(self) -> bool:
        """Whether the statement is a write."""
        return self.kind is StatementKind.WRITE
