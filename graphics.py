"""Headless graphics backend.

Drawing goes to an RGBA back buffer held as a numpy array; ``present`` copies
it to the front buffer and, when a frame directory is configured, writes the
frame out as a PNG scaled up by ``PIX_SIZE``. Keyboard state and close
requests are injected by the host instead of being read from a window.

Colours are packed RGBA8888: red in the top byte, alpha in the low byte.
"""

from __future__ import annotations
import os
import time
from typing import List, Optional, Set, Tuple

import numpy as np
from PIL import Image

from errors import GraphicsError


SCREEN_WIDTH = 96
SCREEN_HEIGHT = 64
PIX_SIZE = 8
NUM_SCANCODES = 512


def unpack_color(color: int) -> Tuple[int, int, int, int]:
    return ((color >> 24) & 0xFF, (color >> 16) & 0xFF, (color >> 8) & 0xFF, color & 0xFF)


def _signed(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def _blend_into(dest: np.ndarray, src: np.ndarray) -> None:
    # src-over: rgb = src*a + dst*(1-a), alpha = a + dst_a*(1-a)
    sa = src[..., 3:4].astype(np.uint32)
    inv_sa = 255 - sa
    rgb = (sa * src[..., :3] + inv_sa * dest[..., :3]) // 255
    alpha = sa[..., 0] + (dest[..., 3].astype(np.uint32) * inv_sa[..., 0]) // 255
    dest[..., :3] = rgb.astype(np.uint8)
    dest[..., 3] = np.minimum(alpha, 255).astype(np.uint8)


class Sprites:
    """Textures created at run time, addressed by creation order."""

    def __init__(self) -> None:
        self.textures: List[np.ndarray] = []

    def __len__(self) -> int:
        return len(self.textures)

    def create_sprite_mono(self, data: bytes, w: int, h: int, color: int) -> int:
        """Build a sprite from a 1-bit bitmap, most significant bit first.

        Set bits take ``color``; clear bits are fully transparent.
        """
        if w % 8 != 0:
            raise GraphicsError(f"Sprite width {w} is not a multiple of 8")
        if len(data) != (w // 8) * h:
            raise GraphicsError(f"Sprite of {w}x{h} needs {(w // 8) * h} bytes, got {len(data)}")
        bits = np.unpackbits(np.frombuffer(bytes(data), dtype=np.uint8)).reshape(h, w)
        texture = np.zeros((h, w, 4), dtype=np.uint8)
        texture[bits == 1] = unpack_color(color)
        self.textures.append(texture)
        return len(self.textures) - 1

    def get(self, index: int) -> np.ndarray:
        if not 0 <= index < len(self):
            raise GraphicsError(f"No sprite with index {index}")
        return self.textures[index]


class Graphics:
    def __init__(
        self,
        *,
        frame_dir: Optional[str] = None,
        width: int = SCREEN_WIDTH,
        height: int = SCREEN_HEIGHT,
        pix_size: int = PIX_SIZE,
    ) -> None:
        self.width = width
        self.height = height
        self.pix_size = pix_size
        self.frame_dir = frame_dir
        self.back = np.zeros((height, width, 4), dtype=np.uint8)
        self.front = self.back.copy()
        self.color: Tuple[int, int, int, int] = (0, 0, 0, 0)
        self.pressed_keys: Set[int] = set()
        self.close_requested = False
        self.frames_presented = 0

    # ---- frame handling ----

    def present(self) -> None:
        self.front = self.back.copy()
        if self.frame_dir is not None:
            self.save_frame(os.path.join(self.frame_dir, f"frame_{self.frames_presented:05d}.png"))
        self.frames_presented += 1

    def save_frame(self, path: str) -> None:
        im = Image.frombytes("RGBA", (self.width, self.height), self.front.tobytes())
        if self.pix_size != 1:
            im = im.resize((self.width * self.pix_size, self.height * self.pix_size), Image.Resampling.NEAREST)
        try:
            im.save(path)
        except OSError as exc:
            raise GraphicsError(f"Failed to save frame to '{path}': {exc}") from exc

    # ---- drawing ----

    def draw_color(self, color: int) -> None:
        self.color = unpack_color(color)

    def clear(self) -> None:
        self.back[:, :] = self.color

    def pixel(self, x: int, y: int) -> None:
        self._fill(_signed(x), _signed(y), 1, 1)

    def fill_rect(self, x: int, y: int, w: int, h: int) -> None:
        self._fill(_signed(x), _signed(y), w, h)

    def line(self, x0: int, y0: int, x1: int, y1: int) -> None:
        # Bresenham integer line rasterization
        x0, y0, x1, y1 = _signed(x0), _signed(y0), _signed(x1), _signed(y1)
        dx = abs(x1 - x0)
        dy = -abs(y1 - y0)
        sx = 1 if x0 < x1 else -1
        sy = 1 if y0 < y1 else -1
        err = dx + dy
        while True:
            self._fill(x0, y0, 1, 1)
            if x0 == x1 and y0 == y1:
                break
            e2 = 2 * err
            if e2 >= dy:
                err += dy
                x0 += sx
            if e2 <= dx:
                err += dx
                y0 += sy

    def sprite(self, sprites: Sprites, index: int, x: int, y: int) -> None:
        texture = sprites.get(index)
        h, w = texture.shape[:2]
        x, y = _signed(x), _signed(y)
        clipped = self._clip(x, y, w, h)
        if clipped is None:
            return
        x0, y0, x1, y1 = clipped
        src = texture[y0 - y:y1 - y, x0 - x:x1 - x]
        _blend_into(self.back[y0:y1, x0:x1], src)

    def _fill(self, x: int, y: int, w: int, h: int) -> None:
        clipped = self._clip(x, y, w, h)
        if clipped is None:
            return
        x0, y0, x1, y1 = clipped
        region = self.back[y0:y1, x0:x1]
        src = np.broadcast_to(np.array(self.color, dtype=np.uint8), region.shape)
        _blend_into(region, src)

    def _clip(self, x: int, y: int, w: int, h: int) -> Optional[Tuple[int, int, int, int]]:
        x0, y0 = max(x, 0), max(y, 0)
        x1, y1 = min(x + w, self.width), min(y + h, self.height)
        if x0 >= x1 or y0 >= y1:
            return None
        return x0, y0, x1, y1

    # ---- input and timing ----

    def _check_scancode(self, scancode: int) -> None:
        if not 0 <= scancode < NUM_SCANCODES:
            raise GraphicsError(f"Invalid scancode {scancode}")

    def is_key_pressed(self, scancode: int) -> bool:
        self._check_scancode(scancode)
        return scancode in self.pressed_keys

    def press_key(self, scancode: int) -> None:
        self._check_scancode(scancode)
        self.pressed_keys.add(scancode)

    def release_key(self, scancode: int) -> None:
        self._check_scancode(scancode)
        self.pressed_keys.discard(scancode)

    def request_close(self) -> None:
        self.close_requested = True

    def poll_events(self) -> bool:
        return self.close_requested

    def delay(self, ms: int) -> None:
        time.sleep(ms / 1000)
