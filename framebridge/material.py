# =========  material.py  =========
"""
Textures and materials: the sink's stand-in for GPU objects.

A Texture is a numpy view of one plane, usually straight over pooled buffer
memory.  A Material binds textures to layers plus the program that samples
them into RGBA.  Materials are reference counted; dropping the last
reference releases the textures and hands the memory back to its pool.

Public API
----------
Material(layers, program, memory=None, name="")
.ref() / .unref() / .released
.sample()      → HxWx4 uint8 RGBA (cached)
.to_surface()  → pygame.Surface (cached)
Material.blank()
"""
from __future__ import annotations

import threading
from typing import Callable, Sequence

import numpy as np
import pygame


class Texture:
    __slots__ = ("data", "components")

    def __init__(self, data: np.ndarray, components: str):
        self.data = data
        self.components = components      # "RGB", "RGBA", "A" …

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    def __repr__(self):
        return f"<Texture {self.components} {self.width}x{self.height}>"


Program = Callable[[Sequence[Texture]], np.ndarray]


def _passthrough(layers: Sequence[Texture]) -> np.ndarray:
    return layers[0].data


class Material:
    def __init__(self, layers: Sequence[Texture], program: Program = _passthrough,
                 memory=None, name: str = ""):
        self.layers = list(layers)
        self.program = program
        self.name = name
        self._memory = memory
        self._refs = 1
        self._lock = threading.Lock()
        self._rgba: np.ndarray | None = None
        self._pixels: bytes | None = None
        self._surface: pygame.Surface | None = None

    @classmethod
    def blank(cls) -> "Material":
        return cls([Texture(np.zeros((1, 1, 4), np.uint8), "RGBA")], name="blank")

    # ── reference counting ─────────────────────────────────────────────
    def ref(self) -> "Material":
        with self._lock:
            if self._refs <= 0:
                raise RuntimeError(f"material {self.name!r} already released")
            self._refs += 1
        return self

    def unref(self) -> None:
        with self._lock:
            if self._refs <= 0:
                return
            self._refs -= 1
            if self._refs:
                return
            memory, self._memory = self._memory, None
        self.layers.clear()
        self._rgba = self._pixels = self._surface = None
        if memory is not None:
            memory.release()

    @property
    def released(self) -> bool:
        return self._refs <= 0

    @property
    def refcount(self) -> int:
        return self._refs

    # ── sampling ───────────────────────────────────────────────────────
    def sample(self) -> np.ndarray:
        """Run the program over the bound layers → HxWx4 uint8."""
        if self._rgba is None:
            if not self.layers:
                raise RuntimeError(f"material {self.name!r} has no layers")
            rgba = self.program(self.layers)
            self._rgba = np.ascontiguousarray(rgba, dtype=np.uint8)
        return self._rgba

    def to_surface(self) -> pygame.Surface:
        if self._surface is None:
            rgba = self.sample()
            self._pixels = rgba.tobytes()
            self._surface = pygame.image.frombuffer(
                self._pixels, (rgba.shape[1], rgba.shape[0]), "RGBA")
        return self._surface

    def __repr__(self):
        return f"<Material {self.name} layers={len(self.layers)} refs={self._refs}>"
