from __future__ import annotations

from typing import Any, NoReturn


class SchemaBridgeError(Exception):
    """Base class for errors raised by schema_bridge."""


class UnreachableCaseError(SchemaBridgeError, AssertionError):
    """A closed set of cases received a value outside of it."""

    def __init__(self, value: Any, context: str | None = None):
        self.value = value
        msg = f"Unreachable case: {value!r}"
        if context:
            msg = f"{context}: {msg}"
        super().__init__(msg)


class UnrenderableExpressionError(SchemaBridgeError, ValueError):
    """An SQL expression cannot be rendered to static text in its position."""

    def __init__(self, sql: str, position: str):
        self.sql = sql
        self.position = position
        super().__init__(f"Cannot render parameterized SQL in {position} position: {sql}")


class ArrayLiteralParseError(SchemaBridgeError, ValueError):
    """Array literal text did not match the array grammar."""

    def __init__(self, text: str, line: int | None = None, column: int | None = None):
        self.text = text
        self.line = line
        self.column = column
        where = f" at line {line}, column {column}" if line is not None else ""
        super().__init__(f"Failed to parse array literal{where}: {text}")


def assert_unreachable(value: Any, context: str | None = None) -> NoReturn:
    raise UnreachableCaseError(value, context)
