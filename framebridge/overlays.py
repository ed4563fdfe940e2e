# =========  overlays.py  =========
"""
Overlay compositions: subtitle or OSD rectangles drawn over a frame.

A producer attaches an OverlayComposition to the VideoBuffer it renders;
the sink uploads a changed composition on the render thread and emits
``new-overlays``.  Positions stay in frame pixels, contents scale them into
whatever box the frame is painted in.

Public API
----------
OverlayRectangle(x, y, width, height, pixels, pixel_width=0, pixel_height=0)
OverlayComposition(rectangles)
Overlay(position, material) / .copy() / .release()
upload_rectangle(rect) → Overlay
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import numpy as np

from .errors import UploadError
from .material import Material, Texture
from .scene import ActorBox


@dataclass(frozen=True)
class OverlayRectangle:
    x: int
    y: int
    width: int
    height: int
    pixels: bytes           # straight RGBA, pixel_width × pixel_height
    pixel_width: int = 0    # 0 → same as the render width
    pixel_height: int = 0

    @property
    def pixel_size(self) -> tuple[int, int]:
        return (self.pixel_width or self.width, self.pixel_height or self.height)


class OverlayComposition:
    """Immutable set of rectangles; producers reuse the same object while unchanged."""

    __slots__ = ("rectangles",)

    def __init__(self, rectangles: Iterable[OverlayRectangle] = ()):
        self.rectangles = tuple(rectangles)

    def __len__(self):
        return len(self.rectangles)


class Overlay:
    __slots__ = ("position", "material")

    def __init__(self, position: ActorBox, material: Material | None):
        self.position = position
        self.material = material

    def copy(self) -> "Overlay":
        return Overlay(self.position, self.material.ref())

    def release(self) -> None:
        material, self.material = self.material, None
        if material is not None:
            material.unref()

    def __repr__(self):
        p = self.position
        return f"<Overlay ({p.x1:g},{p.y1:g})-({p.x2:g},{p.y2:g}) {self.material!r}>"


def upload_rectangle(rect: OverlayRectangle) -> Overlay:
    width, height = rect.pixel_size
    if width <= 0 or height <= 0:
        raise UploadError(f"empty overlay rectangle {width}x{height}")
    size = width * height * 4
    if len(rect.pixels) < size:
        raise UploadError(f"overlay needs {size} bytes, got {len(rect.pixels)}")
    rgba = np.frombuffer(rect.pixels, np.uint8, size).reshape(height, width, 4)
    material = Material([Texture(rgba, "RGBA")], name="overlay")
    position = ActorBox(rect.x, rect.y, rect.x + rect.width, rect.y + rect.height)
    return Overlay(position, material)
