# =========  frame.py  =========
"""
One decoded frame: a material plus its resolution.

Copies share the material by reference; ``release`` drops this frame's
reference.  Players and contents each keep their own copy.
"""
from __future__ import annotations

from dataclasses import dataclass, replace

from .material import Material


@dataclass(frozen=True)
class Resolution:
    width: int
    height: int
    par_n: int = 1
    par_d: int = 1

    @property
    def display_aspect(self) -> float:
        return (self.width * self.par_n) / (self.height * self.par_d)


class Frame:
    __slots__ = ("material", "resolution")

    def __init__(self, material: Material | None, resolution: Resolution):
        self.material = material
        self.resolution = resolution

    @classmethod
    def new_blank(cls) -> "Frame":
        """Placeholder shown before the first decoded frame (0x0, PAR 1/1)."""
        return cls(Material.blank(), Resolution(0, 0, 1, 1))

    @property
    def pipeline(self) -> Material | None:
        return self.material

    @property
    def is_blank(self) -> bool:
        return self.resolution.width == 0 or self.resolution.height == 0

    def copy(self) -> "Frame":
        if self.material is None:
            raise RuntimeError("cannot copy a released frame")
        return Frame(self.material.ref(), self.resolution)

    def release(self) -> None:
        material, self.material = self.material, None
        if material is not None:
            material.unref()

    def update_par_from_sink(self, sink) -> None:
        par_n, par_d = sink.get_pixel_aspect_ratio()
        self.resolution = replace(self.resolution, par_n=par_n, par_d=par_d)

    def __repr__(self):
        r = self.resolution
        return f"<Frame {r.width}x{r.height} par={r.par_n}/{r.par_d} {self.material!r}>"
