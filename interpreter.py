from __future__ import annotations
import json
import struct
import sys
from collections import deque
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from errors import (
    ArgumentMismatch,
    BrownRuntimeError,
    DivisionByZero,
    ExitSignal,
    FunctionNotFound,
    LabelNotFound,
    LabelRedefinition,
    NameIsNotFunction,
    SystemFault,
    U8ReadOutOfBounds,
    U8WriteOutOfBounds,
    U32ReadOutOfBounds,
    U32WriteOutOfBounds,
)
from graphics import Graphics, Sprites
from intrinsics import lookup_intrinsic
from lowering import (
    Assign,
    DataSegment,
    Eval,
    FunEntry,
    FunReturn,
    Goto,
    Instruction,
    JumpFalse,
    Label,
)
from parser import (
    AddrTarget,
    BinaryOp,
    ByteAddrTarget,
    Deref,
    DerefByte,
    Expression,
    FunCall,
    Literal,
    SourceLocation,
    Var,
    VarAddress,
    VarTarget,
)


MASK = 0xFFFFFFFF
WORD = struct.Struct(">I")
RETURN_VARIABLE = "ans"
DEFAULT_HISTORY_LIMIT = 10000


def _div(a: int, b: int) -> int:
    if b == 0:
        raise DivisionByZero()
    return a // b


def _mod(a: int, b: int) -> int:
    if b == 0:
        raise DivisionByZero()
    return a % b


# Operands are always u32; shift amounts are taken modulo 32.
BINARY_OPS: Dict[str, Callable[[int, int], int]] = {
    "+": lambda a, b: (a + b) & MASK,
    "-": lambda a, b: (a - b) & MASK,
    "*": lambda a, b: (a * b) & MASK,
    "/": _div,
    "%": _mod,
    "&": lambda a, b: a & b,
    "|": lambda a, b: a | b,
    "^": lambda a, b: a ^ b,
    "<<": lambda a, b: (a << (b & 31)) & MASK,
    ">>": lambda a, b: a >> (b & 31),
    "==": lambda a, b: int(a == b),
    "!=": lambda a, b: int(a != b),
    "<": lambda a, b: int(a < b),
    ">": lambda a, b: int(a > b),
    "<=": lambda a, b: int(a <= b),
    ">=": lambda a, b: int(a >= b),
}


class Memory:
    """Flat byte-addressed memory. Words are stored big-endian."""

    def __init__(self, initial: bytes = b"") -> None:
        self.data = bytearray(initial)

    def __len__(self) -> int:
        return len(self.data)

    def allocate_word(self) -> int:
        index = len(self.data)
        self.data.extend(b"\x00\x00\x00\x00")
        return index

    def read_u32(self, index: int) -> int:
        if index + 4 > len(self.data):
            raise U32ReadOutOfBounds(index, len(self.data))
        return WORD.unpack_from(self.data, index)[0]

    def write_u32(self, index: int, value: int) -> None:
        if index + 4 > len(self.data):
            raise U32WriteOutOfBounds(index, len(self.data))
        WORD.pack_into(self.data, index, value & MASK)

    def read_u8(self, index: int) -> int:
        if index >= len(self.data):
            raise U8ReadOutOfBounds(index, len(self.data))
        return self.data[index]

    def write_u8(self, index: int, value: int) -> None:
        if index >= len(self.data):
            raise U8WriteOutOfBounds(index, len(self.data))
        self.data[index] = value & 0xFF

    def read_bytes(self, index: int, length: int) -> bytes:
        if index + length > len(self.data):
            raise U8ReadOutOfBounds(max(index, len(self.data)), len(self.data))
        return bytes(self.data[index:index + length])


def build_label_table(code: Sequence[Instruction]) -> Dict[str, int]:
    """Map every label and function name to its instruction index."""
    table: Dict[str, int] = {}
    for index, instr in enumerate(code):
        if isinstance(instr, Label):
            name = instr.name
        elif isinstance(instr, FunEntry):
            name = instr.name
        else:
            continue
        if name in table:
            raise LabelRedefinition(name)
        table[name] = index
    return table


@dataclass(frozen=True)
class Program:
    code: Tuple[Instruction, ...]
    data: bytes
    label_table: Mapping[str, int]
    data_label_table: Mapping[str, int]

    @classmethod
    def try_new(cls, code: Sequence[Instruction], data_segment: DataSegment) -> "Program":
        label_table = build_label_table(code)
        return cls(
            code=tuple(code),
            data=bytes(data_segment.data),
            label_table=MappingProxyType(label_table),
            data_label_table=MappingProxyType(dict(data_segment.labels)),
        )


@dataclass
class Frame:
    name: str
    frame_id: str
    call_location: Optional[SourceLocation]


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame_id: Optional[str]
    ip: int
    rule: str
    source_location: Optional[SourceLocation]
    memory_snapshot: Optional[Dict[str, int]]


class StateLogger:
    def __init__(self, verbose: bool, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=history_limit)
        self.next_state_index = 0
        self.frame_last_entry: Dict[str, StateEntry] = {}

    def record(
        self,
        *,
        frame: Optional[Frame],
        ip: int,
        rule: str,
        location: Optional[SourceLocation],
        memory_snapshot: Optional[Dict[str, int]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            frame_id=frame.frame_id if frame else None,
            ip=ip,
            rule=rule,
            source_location=location,
            memory_snapshot=memory_snapshot,
        )
        self.entries.append(entry)
        if frame:
            self.frame_last_entry[frame.frame_id] = entry
        self.next_state_index += 1
        return entry

    @property
    def last_entry(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)

    def drop_frame(self, frame_id: str) -> None:
        self.frame_last_entry.pop(frame_id, None)


def _stdout_sink(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class InterpreterState:
    def __init__(
        self,
        program: Program,
        *,
        output_sink: Optional[Callable[[str], None]] = None,
        graphics: Optional[Graphics] = None,
        seed: Optional[int] = None,
        verbose: bool = False,
        strict_args: bool = False,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.program = program
        self.memory = Memory(program.data)
        # Data labels are pre-bound: the variable "msg" is the word at the label "msg".
        self.var_table: Dict[str, int] = dict(program.data_label_table)
        self.instr_index = 0
        self.output_sink = output_sink or _stdout_sink
        self.graphics = graphics if graphics is not None else Graphics()
        self.sprites = Sprites()
        self.rng = np.random.default_rng(seed)
        self.verbose = verbose
        self.strict_args = strict_args
        self.logger = StateLogger(verbose, history_limit)
        self.call_stack: List[Frame] = []
        self.frame_counter = 0
        self.exit_code: Optional[int] = None

    # ---- driver ----

    def run(self) -> int:
        code = self.program.code
        self.call_stack.append(self._new_frame("<top-level>", None))
        try:
            while self.instr_index < len(code):
                self.execute_line()
        except ExitSignal as signal:
            self.exit_code = signal.code
        except BrownRuntimeError as error:
            last = self.logger.last_entry
            if last is not None:
                error.step_index = last.step_index
                if error.location is None:
                    error.location = last.source_location
            raise
        except Exception as exc:
            # Surface Python-level failures (including RecursionError) as runtime errors
            # so the CLI can format them with a traceback.
            last = self.logger.last_entry
            wrapped = BrownRuntimeError(
                f"Internal interpreter error: {exc}",
                location=last.source_location if last else None,
                rule="internal",
            )
            if last is not None:
                wrapped.step_index = last.step_index
            raise wrapped from exc
        else:
            self.exit_code = 0
        self.call_stack.clear()
        return self.exit_code

    def execute_line(self) -> None:
        line = self.program.code[self.instr_index]
        self._log_step(line)
        if isinstance(line, Assign):
            value = self.evaluate_expr(line.expression)
            target = line.target
            if isinstance(target, VarTarget):
                self.set_var_value(target.name, value)
            elif isinstance(target, AddrTarget):
                self.memory.write_u32(self.evaluate_expr(target.address), value)
            elif isinstance(target, ByteAddrTarget):
                self.memory.write_u8(self.evaluate_expr(target.address), value)
            else:
                raise TypeError(f"Unknown assignment target {target!r}")
        elif isinstance(line, Eval):
            self.evaluate_expr(line.expression)
        elif isinstance(line, Goto):
            self.instr_index = self._resolve_label(line.label)
        elif isinstance(line, JumpFalse):
            if self.evaluate_expr(line.condition) == 0:
                self.instr_index = self._resolve_label(line.label)
        # Label, FunEntry and FunReturn do nothing when reached by falling through.
        self.instr_index += 1

    def _resolve_label(self, name: str) -> int:
        index = self.program.label_table.get(name)
        if index is None:
            raise LabelNotFound(name)
        return index

    def _log_step(self, line: Instruction) -> None:
        snapshot = self.snapshot() if self.verbose else None
        self.logger.record(
            frame=self.call_stack[-1] if self.call_stack else None,
            ip=self.instr_index,
            rule=line.__class__.__name__,
            location=getattr(line, "location", None),
            memory_snapshot=snapshot,
        )

    def _new_frame(self, name: str, call_location: Optional[SourceLocation]) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, frame_id=frame_id, call_location=call_location)

    # ---- expressions ----

    def evaluate_expr(self, expr: Expression) -> int:
        if isinstance(expr, Literal):
            return expr.value
        if isinstance(expr, Var):
            return self.get_var_value(expr.name)
        if isinstance(expr, VarAddress):
            return self.get_var_address(expr.name)
        if isinstance(expr, Deref):
            return self.memory.read_u32(self.evaluate_expr(expr.address))
        if isinstance(expr, DerefByte):
            return self.memory.read_u8(self.evaluate_expr(expr.address))
        if isinstance(expr, BinaryOp):
            left = self.evaluate_expr(expr.left)
            right = self.evaluate_expr(expr.right)
            op = BINARY_OPS.get(expr.op)
            if op is None:
                raise BrownRuntimeError(f"Unknown operator '{expr.op}'", rule="ARITH")
            return op(left, right)
        if isinstance(expr, FunCall):
            args = [self.evaluate_expr(arg) for arg in expr.args]
            return self.evaluate_funcall(expr.name, args)
        raise TypeError(f"Unknown expression {expr!r}")

    def evaluate_funcall(self, name: str, args: List[int]) -> int:
        intrinsic = lookup_intrinsic(name)
        if intrinsic is not None:
            return intrinsic.invoke(args, self)
        return self._call_function(name, args)

    def _call_function(self, name: str, args: List[int]) -> int:
        code = self.program.code
        entry = self.program.label_table.get(name)
        if entry is None:
            raise FunctionNotFound(name)
        decl = code[entry]
        if not isinstance(decl, FunEntry):
            raise NameIsNotFunction(name)
        if self.strict_args and len(args) != len(decl.params):
            raise ArgumentMismatch(len(decl.params), len(args), name)

        return_index = self.instr_index
        saved = [self.get_var_value(param) for param in decl.params] if decl.preserve else None
        # Parameters are ordinary globals; missing arguments read as 0, extras are dropped.
        for i, param in enumerate(decl.params):
            self.set_var_value(param, args[i] if i < len(args) else 0)

        self.call_stack.append(self._new_frame(name, getattr(code[return_index], "location", None)))
        self.instr_index = entry
        while True:
            if self.instr_index >= len(code):
                # Fell off the end of the program inside the call.
                raise ExitSignal(0)
            if isinstance(code[self.instr_index], FunReturn):
                break
            self.execute_line()

        result = self.get_var_value(RETURN_VARIABLE)
        if saved is not None:
            for param, value in zip(decl.params, saved):
                self.set_var_value(param, value)
        frame = self.call_stack.pop()
        self.logger.drop_frame(frame.frame_id)
        self.instr_index = return_index
        return result

    # ---- variables ----

    def get_var_address(self, name: str) -> int:
        address = self.var_table.get(name)
        if address is None:
            address = self.memory.allocate_word()
            self.var_table[name] = address
        return address

    def get_var_value(self, name: str) -> int:
        return self.memory.read_u32(self.get_var_address(name))

    def set_var_value(self, name: str, value: int) -> None:
        self.memory.write_u32(self.get_var_address(name), value)

    def snapshot(self) -> Dict[str, int]:
        size = len(self.memory)
        return {
            name: self.memory.read_u32(address)
            for name, address in self.var_table.items()
            if address + 4 <= size
        }

    # ---- output ----

    def write(self, text: str) -> None:
        try:
            self.output_sink(text)
        except OSError as exc:
            raise SystemFault(f"Failed to write output: {exc}") from exc


def execute(program: Program, **options: Any) -> InterpreterState:
    """Run ``program`` to completion and return the final state.

    Keyword options are passed to :class:`InterpreterState`. The exit code is
    available as ``state.exit_code``.
    """
    state = InterpreterState(program, **options)
    state.run()
    return state


@dataclass
class TracebackFrame:
    name: str
    location: Optional[SourceLocation]
    state_entry: Optional[StateEntry]


class TracebackFormatter:
    def __init__(self, state: InterpreterState) -> None:
        self.state = state

    def build_frames(self) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        for frame in self.state.call_stack:
            entry = self.state.logger.last_entry_for_frame(frame.frame_id)
            location = entry.source_location if entry else frame.call_location
            frames.append(TracebackFrame(name=frame.name, location=location, state_entry=entry))
        return frames

    def format_text(self, error: BrownRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames():
            if frame.location:
                lines.append(f"  File \"{frame.location.file}\", line {frame.location.line}, in {frame.name}")
                if frame.location.statement:
                    lines.append(f"    {frame.location.statement}")
            else:
                lines.append(f"  <unknown location> in {frame.name}")
            if frame.state_entry:
                lines.append(
                    f"    State log index: {frame.state_entry.step_index}  ip: {frame.state_entry.ip}"
                    f"  ({frame.state_entry.rule})"
                )
                if verbose and frame.state_entry.memory_snapshot is not None:
                    snapshot = ", ".join(f"{k}={v}" for k, v in frame.state_entry.memory_snapshot.items())
                    lines.append(f"    Memory snapshot: {snapshot}")
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {rule})")
        return "\n".join(lines)

    def to_json(self, error: BrownRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames()):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.location:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "statement": frame.location.statement,
                }
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
                entry["ip"] = frame.state_entry.ip
                entry["rule"] = frame.state_entry.rule
                if frame.state_entry.memory_snapshot is not None:
                    entry["memory_snapshot"] = frame.state_entry.memory_snapshot
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rule,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
