"""Intrinsic functions (the standard library).

Intrinsics are looked up by exact name before user functions. Each one
declares the argument counts it accepts, or ``None`` for variadic; the count
is checked before the body runs.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Optional, Sequence, Tuple

from errors import (
    ExitSignal,
    GraphicsError,
    IntrinsicArgumentMismatch,
    IntrinsicValueError,
    InvalidCharacterValue,
)

if TYPE_CHECKING:
    from interpreter import InterpreterState


IntrinsicImpl = Callable[[Sequence[int], "InterpreterState"], int]

MAX_CODE_POINT = 0x10FFFF
SURROGATES = range(0xD800, 0xE000)


@dataclass(frozen=True)
class Intrinsic:
    name: str
    expected_args: Optional[Tuple[int, ...]]
    impl: IntrinsicImpl

    def validate(self, supplied: int) -> None:
        if self.expected_args is not None and supplied not in self.expected_args:
            raise IntrinsicArgumentMismatch(self.expected_args, supplied, self.name)

    def invoke(self, args: Sequence[int], state: "InterpreterState") -> int:
        self.validate(len(args))
        return self.impl(args, state)


INTRINSICS: Dict[str, Intrinsic] = {}


def intrinsic(name: str, *expected_args: int, vararg: bool = False):
    def deco(fn: IntrinsicImpl) -> IntrinsicImpl:
        if name in INTRINSICS:
            raise ValueError(f"Intrinsic '{name}' registered twice")
        INTRINSICS[name] = Intrinsic(name=name, expected_args=None if vararg else tuple(expected_args), impl=fn)
        return fn

    return deco


def lookup_intrinsic(name: str) -> Optional[Intrinsic]:
    return INTRINSICS.get(name)


# ---- console ----

@intrinsic("println", vararg=True)
def _println(args, state):
    if not args:
        state.write("\n")
        return 0
    for arg in args:
        state.write(f"{arg}\n")
    return 0


@intrinsic("print", vararg=True)
def _print(args, state):
    for arg in args:
        state.write(str(arg))
    return 0


@intrinsic("puts", 1)
def _puts(args, state):
    state.write(str(args[0]))
    return 0


@intrinsic("putc", 1)
def _putc(args, state):
    value = args[0]
    if value > MAX_CODE_POINT or value in SURROGATES:
        raise InvalidCharacterValue(value)
    state.write(chr(value))
    return 0


@intrinsic("exit", 0)
def _exit(args, state):
    raise ExitSignal(0)


# ---- randomness ----

@intrinsic("random", 0)
def _random(args, state):
    return int(state.rng.integers(0, 1 << 32))


@intrinsic("random_range", 2)
def _random_range(args, state):
    low, high = args
    if low >= high:
        raise IntrinsicValueError("random_range", f"empty range [{low}, {high})")
    return int(state.rng.integers(low, high))


# ---- graphics ----

@intrinsic("present", 0)
def _present(args, state):
    state.graphics.present()
    return 0


@intrinsic("draw_color", 1)
def _draw_color(args, state):
    state.graphics.draw_color(args[0])
    return 0


@intrinsic("pixel", 2)
def _pixel(args, state):
    state.graphics.pixel(args[0], args[1])
    return 0


@intrinsic("fill_rect", 4)
def _fill_rect(args, state):
    state.graphics.fill_rect(*args)
    return 0


@intrinsic("line", 4)
def _line(args, state):
    state.graphics.line(*args)
    return 0


@intrinsic("key_pressed", 1)
def _key_pressed(args, state):
    return 1 if state.graphics.is_key_pressed(args[0]) else 0


@intrinsic("clear", 0)
def _clear(args, state):
    state.graphics.clear()
    return 0


@intrinsic("delay", 1)
def _delay(args, state):
    state.graphics.delay(args[0])
    return 0


@intrinsic("poll_events", 0)
def _poll_events(args, state):
    if state.graphics.poll_events():
        raise ExitSignal(0)
    return 0


@intrinsic("create_sprite_mono", 4)
def _create_sprite_mono(args, state):
    addr, w, h, color = args
    if w % 8 != 0:
        raise GraphicsError(f"Sprite width {w} is not a multiple of 8")
    sprite_data = state.memory.read_bytes(addr, (w // 8) * h)
    return state.sprites.create_sprite_mono(sprite_data, w, h, color)


@intrinsic("sprite", 3)
def _sprite(args, state):
    state.graphics.sprite(state.sprites, args[0], args[1], args[2])
    return 0
