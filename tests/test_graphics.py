"""Tests for the headless framebuffer and sprite store."""

import numpy as np
import pytest
from PIL import Image

from errors import GraphicsError
from graphics import PIX_SIZE, SCREEN_HEIGHT, SCREEN_WIDTH, Graphics, Sprites, unpack_color


def test_unpack_color_is_rgba8888():
    assert unpack_color(0x11223344) == (0x11, 0x22, 0x33, 0x44)


def test_framebuffer_shape():
    graphics = Graphics()
    assert graphics.back.shape == (SCREEN_HEIGHT, SCREEN_WIDTH, 4)
    assert graphics.back.dtype == np.uint8


# ── Drawing ──────────────────────────────────────────────────


def test_pixel_alpha_blends_over_background():
    graphics = Graphics()
    graphics.draw_color(0x000000FF)
    graphics.clear()
    graphics.draw_color(0xFF000080)
    graphics.pixel(3, 4)
    assert tuple(graphics.back[4, 3]) == (128, 0, 0, 255)
    assert tuple(graphics.back[4, 4]) == (0, 0, 0, 255)


def test_clear_replaces_without_blending():
    graphics = Graphics()
    graphics.draw_color(0x10203000)
    graphics.clear()
    assert tuple(graphics.back[0, 0]) == (0x10, 0x20, 0x30, 0)


def test_fill_rect_is_clipped():
    graphics = Graphics()
    graphics.draw_color(0xFFFFFFFF)
    graphics.fill_rect(0xFFFFFFFE, 0, 4, 1)  # x = -2
    assert graphics.back[0, :2].all()
    assert not graphics.back[0, 2:].any()
    graphics.fill_rect(90, 60, 100, 100)
    assert graphics.back[63, 95].all()


def test_offscreen_pixel_is_ignored():
    graphics = Graphics()
    graphics.draw_color(0xFFFFFFFF)
    graphics.pixel(SCREEN_WIDTH, 0)
    graphics.pixel(0, 1000)
    assert not graphics.back.any()


def test_line_diagonal():
    graphics = Graphics()
    graphics.draw_color(0xFFFFFFFF)
    graphics.line(0, 0, 3, 3)
    drawn = {(int(y), int(x)) for y, x in zip(*np.nonzero(graphics.back[..., 3]))}
    assert drawn == {(0, 0), (1, 1), (2, 2), (3, 3)}


def test_line_horizontal_reversed():
    graphics = Graphics()
    graphics.draw_color(0xFFFFFFFF)
    graphics.line(5, 2, 1, 2)
    assert graphics.back[2, 1:6, 3].tolist() == [255] * 5


# ── Presenting ───────────────────────────────────────────────


def test_present_copies_back_buffer():
    graphics = Graphics()
    graphics.draw_color(0xFFFFFFFF)
    graphics.pixel(0, 0)
    graphics.present()
    graphics.draw_color(0x000000FF)
    graphics.clear()
    assert tuple(graphics.front[0, 0]) == (255, 255, 255, 255)


def test_present_saves_scaled_frames(tmp_path):
    graphics = Graphics(frame_dir=str(tmp_path))
    graphics.draw_color(0xFF0000FF)
    graphics.pixel(1, 0)
    graphics.present()
    graphics.present()
    assert sorted(p.name for p in tmp_path.iterdir()) == ["frame_00000.png", "frame_00001.png"]
    with Image.open(tmp_path / "frame_00000.png") as im:
        assert im.size == (SCREEN_WIDTH * PIX_SIZE, SCREEN_HEIGHT * PIX_SIZE)
        assert im.getpixel((PIX_SIZE, 0)) == (255, 0, 0, 255)
        assert im.getpixel((PIX_SIZE - 1, 0)) == (0, 0, 0, 0)


def test_unwritable_frame_dir(tmp_path):
    graphics = Graphics(frame_dir=str(tmp_path / "missing"))
    with pytest.raises(GraphicsError):
        graphics.present()


# ── Input ────────────────────────────────────────────────────


def test_key_state_is_injected():
    graphics = Graphics()
    graphics.press_key(40)
    assert graphics.is_key_pressed(40)
    graphics.release_key(40)
    assert not graphics.is_key_pressed(40)


def test_invalid_scancode():
    with pytest.raises(GraphicsError):
        Graphics().press_key(600)


def test_close_request():
    graphics = Graphics()
    assert graphics.poll_events() is False
    graphics.request_close()
    assert graphics.poll_events() is True


# ── Sprites ──────────────────────────────────────────────────


def test_mono_sprite_bits_are_msb_first():
    sprites = Sprites()
    index = sprites.create_sprite_mono(b"\xa0\x00", 16, 1, 0x0000FFFF)
    texture = sprites.get(index)
    assert texture.shape == (1, 16, 4)
    assert texture[0, :, 3].tolist() == [255, 0, 255] + [0] * 13
    assert tuple(texture[0, 0]) == (0, 0, 255, 255)


def test_mono_sprite_wrong_length():
    with pytest.raises(GraphicsError):
        Sprites().create_sprite_mono(b"\x00", 8, 2, 0)


def test_sprite_blit_is_clipped():
    sprites = Sprites()
    index = sprites.create_sprite_mono(b"\xff\xff", 8, 2, 0xFFFFFFFF)
    graphics = Graphics()
    graphics.sprite(sprites, index, 0xFFFFFFFC, SCREEN_HEIGHT - 1)  # x = -4
    assert graphics.back[SCREEN_HEIGHT - 1, :4, 3].tolist() == [255] * 4
    assert not graphics.back[SCREEN_HEIGHT - 1, 4:].any()
    assert not graphics.back[:SCREEN_HEIGHT - 1].any()


def test_sprite_index_out_of_range():
    with pytest.raises(GraphicsError):
        Sprites().get(0)


def test_sprite_count_bounds_lookup():
    sprites = Sprites()
    sprites.create_sprite_mono(b"\x01", 8, 1, 0xFFFFFFFF)
    assert len(sprites) == 1
    assert sprites.get(0).shape == (1, 8, 4)
    with pytest.raises(GraphicsError, match="No sprite with index 1"):
        sprites.get(1)
