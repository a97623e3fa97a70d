"""Converts a parsed code block into the flat intermediate representation.

Every structured control statement (if, for, while, fun) is flattened into
labels, gotos and jump-if-false instructions. Expression trees are kept exactly
as parsed. Label references stay symbolic; they are resolved by
``interpreter.build_label_table`` once the whole program has been lowered.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional

from errors import LabelRedefinition
from parser import (
    AddrTarget,
    AssignTarget,
    Assignment,
    BinaryOp,
    Block,
    ByteAddrTarget,
    DataBytes,
    DataDef,
    DataLabel,
    Deref,
    DerefByte,
    Expression,
    ExpressionStatement,
    ForStatement,
    FunCall,
    FuncDef,
    GotoStatement,
    IfStatement,
    LabelStatement,
    Literal,
    SourceLocation,
    Statement,
    Var,
    VarAddress,
    VarTarget,
    WhileStatement,
)


INTERNAL_LABEL_PREFIX = "$internal_"


class Instruction:
    pass


@dataclass
class Assign(Instruction):
    target: AssignTarget
    expression: Expression
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class Goto(Instruction):
    label: str
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class Label(Instruction):
    name: str
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class JumpFalse(Instruction):
    condition: Expression
    label: str
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class FunEntry(Instruction):
    name: str
    params: List[str]
    preserve: bool = False
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class FunReturn(Instruction):
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass
class Eval(Instruction):
    expression: Expression
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


class DataSegment(NamedTuple):
    data: bytes
    labels: Dict[str, int]


def to_intermediate_repr(block: Block) -> List[Instruction]:
    """Lower a whole program block.

    A single counter is shared by the entire conversion so every generated
    label is unique within the program.
    """
    return _Lowering().convert_block(block)


class _Lowering:
    def __init__(self) -> None:
        self.label_counter = 0

    def next_label_name(self) -> str:
        name = f"{INTERNAL_LABEL_PREFIX}{self.label_counter}"
        self.label_counter += 1
        return name

    def convert_block(self, block: Block) -> List[Instruction]:
        out: List[Instruction] = []
        for statement in block:
            out.extend(self.convert_statement(statement))
        return out

    def convert_statement(self, statement: Statement) -> List[Instruction]:
        loc = getattr(statement, "location", None)
        if isinstance(statement, Assignment):
            return [Assign(target=statement.target, expression=statement.expression, location=loc)]
        if isinstance(statement, GotoStatement):
            return [Goto(label=statement.label, location=loc)]
        if isinstance(statement, LabelStatement):
            return [Label(name=statement.name, location=loc)]
        if isinstance(statement, ExpressionStatement):
            return [Eval(expression=statement.expression, location=loc)]
        if isinstance(statement, IfStatement):
            return self._convert_if(statement, loc)
        if isinstance(statement, ForStatement):
            return self._convert_for(statement, loc)
        if isinstance(statement, WhileStatement):
            return self._convert_while(statement, loc)
        if isinstance(statement, FuncDef):
            out: List[Instruction] = [
                FunEntry(name=statement.name, params=list(statement.params), preserve=statement.preserve, location=loc)
            ]
            out.extend(self.convert_block(statement.body))
            out.append(FunReturn(location=loc))
            return out
        raise TypeError(f"Cannot lower {statement.__class__.__name__}")

    def _convert_if(self, statement: IfStatement, loc: Optional[SourceLocation]) -> List[Instruction]:
        else_label = self.next_label_name()
        # condition false: skip the then-block
        out: List[Instruction] = [JumpFalse(condition=statement.condition, label=else_label, location=loc)]
        out.extend(self.convert_block(statement.then_block))
        if statement.else_block is None:
            out.append(Label(name=else_label, location=loc))
            return out
        exit_label = self.next_label_name()
        out.append(Goto(label=exit_label, location=loc))
        out.append(Label(name=else_label, location=loc))
        out.extend(self.convert_block(statement.else_block))
        out.append(Label(name=exit_label, location=loc))
        return out

    def _convert_for(self, statement: ForStatement, loc: Optional[SourceLocation]) -> List[Instruction]:
        start_label = self.next_label_name()
        exit_label = self.next_label_name()
        counter = statement.counter
        out: List[Instruction] = [
            Assign(target=VarTarget(name=counter), expression=statement.start, location=loc),
            Label(name=start_label, location=loc),
            # counter >= end: leave the loop
            JumpFalse(
                condition=BinaryOp(op="<", left=Var(name=counter), right=statement.end),
                label=exit_label,
                location=loc,
            ),
        ]
        out.extend(self.convert_block(statement.body))
        out.extend([
            Assign(
                target=VarTarget(name=counter),
                expression=BinaryOp(op="+", left=Var(name=counter), right=Literal(value=1)),
                location=loc,
            ),
            Goto(label=start_label, location=loc),
            Label(name=exit_label, location=loc),
        ])
        return out

    def _convert_while(self, statement: WhileStatement, loc: Optional[SourceLocation]) -> List[Instruction]:
        start_label = self.next_label_name()
        exit_label = self.next_label_name()
        out: List[Instruction] = [
            Label(name=start_label, location=loc),
            JumpFalse(condition=statement.condition, label=exit_label, location=loc),
        ]
        out.extend(self.convert_block(statement.body))
        out.append(Goto(label=start_label, location=loc))
        out.append(Label(name=exit_label, location=loc))
        return out


def convert_data_segment(data: List[DataDef]) -> DataSegment:
    """Flatten data declarations into one byte string.

    Each label maps to the offset of the first byte declared after it.
    """
    labels: Dict[str, int] = {}
    buffer = bytearray()
    for item in data:
        if isinstance(item, DataLabel):
            if item.name in labels:
                raise LabelRedefinition(item.name)
            labels[item.name] = len(buffer)
        elif isinstance(item, DataBytes):
            buffer.extend(item.data)
        else:
            raise TypeError(f"Unknown data declaration {item!r}")
    return DataSegment(data=bytes(buffer), labels=labels)


# ---- textual form ----

def format_expr(expr: Expression) -> str:
    if isinstance(expr, Literal):
        return str(expr.value)
    if isinstance(expr, Var):
        return expr.name
    if isinstance(expr, VarAddress):
        return f"&{expr.name}"
    if isinstance(expr, Deref):
        return f"[{format_expr(expr.address)}]"
    if isinstance(expr, DerefByte):
        return f"b[{format_expr(expr.address)}]"
    if isinstance(expr, BinaryOp):
        return f"({format_expr(expr.left)} {expr.op} {format_expr(expr.right)})"
    if isinstance(expr, FunCall):
        return f"{expr.name}({', '.join(format_expr(a) for a in expr.args)})"
    raise TypeError(f"Unknown expression {expr!r}")


def format_target(target: AssignTarget) -> str:
    if isinstance(target, VarTarget):
        return target.name
    if isinstance(target, AddrTarget):
        return f"[{format_expr(target.address)}]"
    if isinstance(target, ByteAddrTarget):
        return f"b[{format_expr(target.address)}]"
    raise TypeError(f"Unknown assignment target {target!r}")


def format_instruction(instr: Instruction) -> str:
    if isinstance(instr, Assign):
        return f"    {format_expr(instr.expression)} -> {format_target(instr.target)}"
    if isinstance(instr, Goto):
        return f"    goto {instr.label}"
    if isinstance(instr, Label):
        return f"{instr.name}:"
    if isinstance(instr, JumpFalse):
        return f"    if not {format_expr(instr.condition)}: goto {instr.label}"
    if isinstance(instr, FunEntry):
        suffix = " preserve" if instr.preserve else ""
        return f"fun {instr.name}({', '.join(instr.params)}){suffix}"
    if isinstance(instr, FunReturn):
        return "return"
    if isinstance(instr, Eval):
        return f"    {format_expr(instr.expression)}"
    raise TypeError(f"Unknown instruction {instr!r}")


def format_ir(code: List[Instruction]) -> str:
    width = len(str(max(len(code) - 1, 0)))
    return "\n".join(f"{i:>{width}}  {format_instruction(instr)}" for i, instr in enumerate(code))
