"""Pytest configuration for the Brown test suite."""

import sys
from pathlib import Path
from typing import List

import pytest

# Add the repository root to path for the top-level modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from brown import compile_source  # noqa: E402
from interpreter import InterpreterState  # noqa: E402


class Run:
    """Result of running a program: captured output plus the final state."""

    def __init__(self, state: InterpreterState, chunks: List[str]) -> None:
        self.state = state
        self.chunks = chunks

    @property
    def output(self) -> str:
        return "".join(self.chunks)

    def var(self, name: str) -> int:
        return self.state.get_var_value(name)


def make_state(source: str, **options) -> tuple:
    chunks: List[str] = []
    program = compile_source(source, "<test>")
    state = InterpreterState(program, output_sink=chunks.append, **options)
    return state, chunks


def run_source(source: str, **options) -> Run:
    state, chunks = make_state(source, **options)
    state.run()
    return Run(state, chunks)


@pytest.fixture
def run():
    return run_source
