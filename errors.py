from __future__ import annotations
from typing import Any, Optional, Sequence


class BrownError(Exception):
    """Base class for all Brown errors."""


class BrownParseError(BrownError):
    """Raised when lexing or parsing fails."""


class BrownRuntimeError(BrownError):
    """Raised for load-time and run-time faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[Any] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None


class LabelNotFound(BrownRuntimeError):
    def __init__(self, name: str) -> None:
        super().__init__(f"No label named '{name}'", rule="GOTO")
        self.name = name


class FunctionNotFound(BrownRuntimeError):
    def __init__(self, name: str) -> None:
        super().__init__(f"No function named '{name}'", rule="CALL")
        self.name = name


class NameIsNotFunction(BrownRuntimeError):
    def __init__(self, name: str) -> None:
        super().__init__(f"'{name}' is a label, not a function", rule="CALL")
        self.name = name


class LabelRedefinition(BrownRuntimeError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Label '{name}' is defined more than once", rule="LOAD")
        self.name = name


class MemoryOutOfBounds(BrownRuntimeError):
    width = 0
    access = ""

    def __init__(self, index: int, memory_length: int) -> None:
        super().__init__(
            f"{self.width}-byte {self.access} at index {index} is outside memory of length {memory_length}",
            rule="MEMORY",
        )
        self.index = index
        self.memory_length = memory_length


class U32ReadOutOfBounds(MemoryOutOfBounds):
    width = 4
    access = "read"


class U8ReadOutOfBounds(MemoryOutOfBounds):
    width = 1
    access = "read"


class U32WriteOutOfBounds(MemoryOutOfBounds):
    width = 4
    access = "write"


class U8WriteOutOfBounds(MemoryOutOfBounds):
    width = 1
    access = "write"


class IntrinsicArgumentMismatch(BrownRuntimeError):
    def __init__(self, expected: Sequence[int], got: int, func_name: str) -> None:
        counts = " or ".join(str(n) for n in expected)
        super().__init__(f"{func_name} expects {counts} arguments, {got} given", rule=func_name)
        self.expected = tuple(expected)
        self.got = got
        self.func_name = func_name


class ArgumentMismatch(BrownRuntimeError):
    def __init__(self, expected: int, got: int, func_name: str) -> None:
        super().__init__(f"{func_name} expects {expected} arguments, {got} given", rule=func_name)
        self.expected = expected
        self.got = got
        self.func_name = func_name


class InvalidCharacterValue(BrownRuntimeError):
    def __init__(self, value: int) -> None:
        super().__init__(f"{value} is not a valid character", rule="putc")
        self.value = value


class DivisionByZero(BrownRuntimeError):
    def __init__(self) -> None:
        super().__init__("Division by zero", rule="ARITH")


class IntrinsicValueError(BrownRuntimeError):
    def __init__(self, func_name: str, message: str) -> None:
        super().__init__(f"{func_name}: {message}", rule=func_name)
        self.func_name = func_name


class SystemFault(BrownRuntimeError):
    def __init__(self, message: str) -> None:
        super().__init__(message, rule="SYSTEM")


class GraphicsError(BrownRuntimeError):
    def __init__(self, message: str) -> None:
        super().__init__(message, rule="GRAPHICS")


class ExitSignal(Exception):
    def __init__(self, code: int = 0) -> None:
        super().__init__(code)
        self.code = code
