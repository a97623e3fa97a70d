"""Tests for IR lowering, the data segment builder and the label table."""

import pytest

from errors import LabelRedefinition
from interpreter import Program, build_label_table
from lowering import (
    Assign,
    DataSegment,
    Eval,
    FunEntry,
    FunReturn,
    Goto,
    JumpFalse,
    Label,
    convert_data_segment,
    format_ir,
    to_intermediate_repr,
)
from parser import BinaryOp, DataBytes, DataLabel, FunCall, Literal, Var, VarTarget, parse_source


def _lower(source: str) -> list:
    return to_intermediate_repr(parse_source(source, "<test>").code)


# ── Control flow ─────────────────────────────────────────────


def test_straight_line_is_unchanged():
    assert _lower("1 -> x\nprintln(x)") == [
        Assign(VarTarget("x"), Literal(1)),
        Eval(FunCall("println", [Var("x")])),
    ]


def test_if_without_else():
    assert _lower("if x\n  a()\nend") == [
        JumpFalse(Var("x"), "$internal_0"),
        Eval(FunCall("a", [])),
        Label("$internal_0"),
    ]


def test_if_with_else():
    assert _lower("if x\n  a()\nelse\n  b()\nend") == [
        JumpFalse(Var("x"), "$internal_0"),
        Eval(FunCall("a", [])),
        Goto("$internal_1"),
        Label("$internal_0"),
        Eval(FunCall("b", [])),
        Label("$internal_1"),
    ]


def test_while():
    assert _lower("while x\n  a()\nend") == [
        Label("$internal_0"),
        JumpFalse(Var("x"), "$internal_1"),
        Eval(FunCall("a", [])),
        Goto("$internal_0"),
        Label("$internal_1"),
    ]


def test_for():
    assert _lower("for i from 0 to 3\n  a()\nend") == [
        Assign(VarTarget("i"), Literal(0)),
        Label("$internal_0"),
        JumpFalse(BinaryOp("<", Var("i"), Literal(3)), "$internal_1"),
        Eval(FunCall("a", [])),
        Assign(VarTarget("i"), BinaryOp("+", Var("i"), Literal(1))),
        Goto("$internal_0"),
        Label("$internal_1"),
    ]


def test_function_is_bracketed_by_entry_and_return():
    assert _lower("fun f(a) preserve\n  a -> ans\nend") == [
        FunEntry("f", ["a"], preserve=True),
        Assign(VarTarget("ans"), Var("a")),
        FunReturn(),
    ]


def test_generated_labels_are_unique_across_nesting():
    code = _lower("while a\n  if b\n    c()\n  end\nend\nwhile d\nend")
    labels = [instr.name for instr in code if isinstance(instr, Label)]
    assert len(labels) == len(set(labels)) == 5
    assert all(name.startswith("$internal_") for name in labels)


def test_lowered_code_keeps_source_locations():
    (instr,) = _lower("\n7 -> x")
    assert instr.location.line == 2


def test_format_ir():
    text = format_ir(_lower("if x == 1\n  println(x)\nend"))
    assert text.splitlines() == [
        "0      if not (x == 1): goto $internal_0",
        "1      println(x)",
        "2  $internal_0:",
    ]


# ── Data segment ─────────────────────────────────────────────


def test_data_segment_offsets():
    segment = convert_data_segment([
        DataLabel("a"),
        DataBytes(b"xyz"),
        DataLabel("b"),
        DataLabel("c"),
        DataBytes(b"\x01"),
    ])
    assert segment == DataSegment(data=b"xyz\x01", labels={"a": 0, "b": 3, "c": 3})


def test_data_label_at_end_points_past_data():
    assert convert_data_segment([DataBytes(b"ab"), DataLabel("end")]).labels == {"end": 2}


def test_duplicate_data_label():
    with pytest.raises(LabelRedefinition):
        convert_data_segment([DataLabel("a"), DataLabel("a")])


# ── Label table ──────────────────────────────────────────────


def test_label_table_indexes_labels_and_functions():
    code = _lower("top:\nfun f()\nend\ngoto top")
    assert build_label_table(code) == {"top": 0, "f": 1}


def test_duplicate_label_fails():
    with pytest.raises(LabelRedefinition) as info:
        build_label_table(_lower("a:\na:"))
    assert info.value.name == "a"


def test_label_and_function_share_a_namespace():
    with pytest.raises(LabelRedefinition):
        build_label_table(_lower("f:\nfun f()\nend"))


def test_program_rejects_duplicates_before_running():
    with pytest.raises(LabelRedefinition):
        Program.try_new(_lower("fun f()\nend\nfun f()\nend"), DataSegment(b"", {}))


def test_program_tables_are_read_only():
    program = Program.try_new(_lower("x:"), DataSegment(b"\x00", {"d": 0}))
    with pytest.raises(TypeError):
        program.label_table["y"] = 1
    assert program.data_label_table["d"] == 0
