"""Tests for the intrinsic table: console output, randomness and graphics calls."""

import pytest

from conftest import make_state, run_source
from errors import (
    GraphicsError,
    IntrinsicArgumentMismatch,
    IntrinsicValueError,
    InvalidCharacterValue,
    U8ReadOutOfBounds,
)
from graphics import Graphics
from intrinsics import INTRINSICS, lookup_intrinsic


# ── Table ────────────────────────────────────────────────────


def test_table_contents():
    assert set(INTRINSICS) == {
        "println", "print", "puts", "putc", "exit", "random", "random_range",
        "present", "draw_color", "pixel", "fill_rect", "line", "key_pressed",
        "clear", "delay", "poll_events", "create_sprite_mono", "sprite",
    }


def test_lookup_unknown_name():
    assert lookup_intrinsic("nope") is None


def test_variadic_intrinsics_accept_any_count():
    assert lookup_intrinsic("println").expected_args is None
    lookup_intrinsic("print").validate(17)


def test_argument_count_checked_before_body():
    with pytest.raises(IntrinsicArgumentMismatch) as info:
        run_source("exit(1)")
    assert info.value.expected == (0,)
    assert info.value.got == 1
    assert str(info.value) == "exit expects 0 arguments, 1 given"


# ── Console ──────────────────────────────────────────────────


def test_println():
    assert run_source("println(1, 22)\nprintln()").output == "1\n22\n\n"


def test_print_has_no_separator():
    assert run_source("print(1, 2, 3)").output == "123"


def test_puts():
    assert run_source("puts(4294967295)").output == "4294967295"


def test_putc():
    assert run_source("putc('H'); putc(105); putc(0x1F600)").output == "Hi\U0001F600"


@pytest.mark.parametrize("value", ["0xD800", "0xDFFF", "0x110000"])
def test_putc_rejects_invalid_code_points(value):
    with pytest.raises(InvalidCharacterValue):
        run_source(f"putc({value})")


def test_intrinsics_return_zero():
    assert run_source("print() -> r").var("r") == 0


# ── Randomness ───────────────────────────────────────────────


def test_random_is_reproducible_with_seed():
    first = run_source("random() -> r", seed=7).var("r")
    second = run_source("random() -> r", seed=7).var("r")
    assert first == second
    assert 0 <= first <= 0xFFFFFFFF


def test_random_range_bounds():
    result = run_source("for i from 0 to 50\n  println(random_range(5, 8))\nend", seed=1)
    values = [int(line) for line in result.output.split()]
    assert len(values) == 50
    assert set(values) <= {5, 6, 7}


def test_random_range_empty():
    with pytest.raises(IntrinsicValueError):
        run_source("random_range(3, 3)")


# ── Graphics ─────────────────────────────────────────────────


def test_draw_and_present():
    result = run_source("draw_color(0x00FF00FF)\nfill_rect(1, 2, 3, 4)\npresent()")
    graphics = result.state.graphics
    assert graphics.frames_presented == 1
    assert tuple(graphics.front[2, 1]) == (0, 255, 0, 255)
    assert tuple(graphics.front[5, 3]) == (0, 255, 0, 255)
    assert tuple(graphics.front[6, 1]) == (0, 0, 0, 0)


def test_drawing_is_invisible_until_present():
    result = run_source("draw_color(0xFFFFFFFF)\nclear()")
    assert not result.state.graphics.front.any()
    assert result.state.graphics.back.all()


def test_key_pressed():
    graphics = Graphics()
    graphics.press_key(4)
    state, _ = make_state("key_pressed(4) -> a\nkey_pressed(5) -> b", graphics=graphics)
    state.run()
    assert state.get_var_value("a") == 1
    assert state.get_var_value("b") == 0


def test_key_pressed_invalid_scancode():
    with pytest.raises(GraphicsError):
        run_source("key_pressed(512)")


def test_poll_events_exits_on_close_request():
    graphics = Graphics()
    graphics.request_close()
    state, chunks = make_state("print(1)\npoll_events()\nprint(2)", graphics=graphics)
    assert state.run() == 0
    assert "".join(chunks) == "1"


def test_poll_events_without_close_continues():
    assert run_source("poll_events()\nprint(2)").output == "2"


def test_sprite_from_data_section():
    source = (
        "data\n  bmp: 0x80 0x01\nend\n"
        "create_sprite_mono(&bmp, 8, 2, 0xFF0000FF) -> s\n"
        "sprite(s, 10, 20)"
    )
    result = run_source(source)
    back = result.state.graphics.back
    assert result.var("s") == 0
    assert tuple(back[20, 10]) == (255, 0, 0, 255)
    assert tuple(back[20, 11]) == (0, 0, 0, 0)
    assert tuple(back[21, 17]) == (255, 0, 0, 255)


def test_sprite_indexes_count_up():
    source = "data\n  bmp: 0xFF\nend\ncreate_sprite_mono(&bmp, 8, 1, 1) -> a\ncreate_sprite_mono(&bmp, 8, 1, 1) -> b"
    result = run_source(source)
    assert (result.var("a"), result.var("b")) == (0, 1)


def test_sprite_bitmap_out_of_bounds():
    with pytest.raises(U8ReadOutOfBounds):
        run_source("data\n  bmp: 0xFF\nend\ncreate_sprite_mono(&bmp, 8, 2, 1)")


def test_sprite_width_must_be_byte_aligned():
    with pytest.raises(GraphicsError):
        run_source("data\n  bmp: 0xFF\nend\ncreate_sprite_mono(&bmp, 4, 1, 1)")


def test_unknown_sprite():
    with pytest.raises(GraphicsError):
        run_source("sprite(0, 0, 0)")
