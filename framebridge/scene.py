# =========  scene.py  =========
"""
A small retained scene: actors own a content, contents emit paint nodes,
``render_tree`` draws the nodes with pygame.

Public API
----------
ActorBox(x1, y1, x2, y2)           Color(r, g, b, a=255)
PaintNode(name) / ColorNode(color, name) / PipelineNode(material, name)
Actor(width, height, content=None)
actor.paint() → root PaintNode
render_tree(surface, root)
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import IntFlag

import pygame


@dataclass(frozen=True)
class ActorBox:
    x1: float
    y1: float
    x2: float
    y2: float

    @classmethod
    def from_size(cls, width: float, height: float, x: float = 0.0, y: float = 0.0) -> "ActorBox":
        return cls(x, y, x + width, y + height)

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    def to_rect(self) -> pygame.Rect:
        x, y = int(round(self.x1)), int(round(self.y1))
        return pygame.Rect(x, y, int(round(self.x2)) - x, int(round(self.y2)) - y)


@dataclass(frozen=True)
class Color:
    r: int
    g: int
    b: int
    a: int = 255

    def with_opacity(self, opacity: int) -> "Color":
        """Alpha multiplied by a 0-255 paint opacity."""
        return Color(self.r, self.g, self.b, self.a * opacity // 255)

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.r, self.g, self.b, self.a)


class ContentRepeat(IntFlag):
    NONE   = 0
    X_AXIS = 1 << 0
    Y_AXIS = 1 << 1
    BOTH   = X_AXIS | Y_AXIS


# ── paint nodes ────────────────────────────────────────────────────────────
class PaintNode:
    def __init__(self, name: str = ""):
        self.name = name
        self.children: list[PaintNode] = []

    def add_child(self, node: "PaintNode") -> "PaintNode":
        self.children.append(node)
        return node

    def walk(self):
        """Depth-first, parents before children."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, name: str) -> list["PaintNode"]:
        return [node for node in self.walk() if node.name == name]

    def __repr__(self):
        return f"<{type(self).__name__} {self.name!r}>"


class ColorNode(PaintNode):
    def __init__(self, color: Color, name: str = ""):
        super().__init__(name)
        self.color = color
        self.rectangles: list[ActorBox] = []

    def add_rectangle(self, box: ActorBox) -> None:
        self.rectangles.append(box)


class PipelineNode(PaintNode):
    """Textured quads sampling *material*; each carries (s1, t1, s2, t2)."""

    def __init__(self, material, name: str = "", opacity: int = 255):
        super().__init__(name)
        self.material = material
        self.opacity = opacity
        self.rectangles: list[tuple[ActorBox, tuple[float, float, float, float]]] = []

    def add_rectangle(self, box: ActorBox) -> None:
        self.add_texture_rectangle(box, 0.0, 0.0, 1.0, 1.0)

    def add_texture_rectangle(self, box: ActorBox, s1: float, t1: float,
                              s2: float, t2: float) -> None:
        self.rectangles.append((box, (s1, t1, s2, t2)))


# ── actor ──────────────────────────────────────────────────────────────────
class Actor:
    def __init__(self, width: float = 0.0, height: float = 0.0, content=None):
        self.allocation = ActorBox.from_size(width, height)
        self.background_color = Color(0, 0, 0, 255)
        self.opacity = 255
        self.content_repeat = ContentRepeat.NONE
        self.needs_redraw = True
        self._content = None
        self._content_handler = None
        if content is not None:
            self.set_content(content)

    def set_size(self, width: float, height: float) -> None:
        self.allocation = ActorBox.from_size(width, height)
        self.queue_redraw()

    def get_content_box(self) -> ActorBox:
        return ActorBox.from_size(self.allocation.width, self.allocation.height)

    def get_paint_opacity(self) -> int:
        return self.opacity

    def get_content(self):
        return self._content

    def set_content(self, content) -> None:
        if self._content is not None:
            self._content.disconnect(self._content_handler)
        self._content = content
        self._content_handler = None
        if content is not None:
            self._content_handler = content.connect("invalidate", self._on_invalidate)
        self.queue_redraw()

    def _on_invalidate(self, content):
        self.queue_redraw()

    def queue_redraw(self) -> None:
        self.needs_redraw = True

    def paint(self) -> PaintNode:
        root = PaintNode("Root")
        if self._content is not None:
            self._content.paint_content(self, root)
        self.needs_redraw = False
        return root


# ── compositor ─────────────────────────────────────────────────────────────
def _fill(surface: pygame.Surface, color: Color, rect: pygame.Rect) -> None:
    if rect.width <= 0 or rect.height <= 0 or color.a == 0:
        return
    if color.a == 255:
        surface.fill(color.as_tuple()[:3], rect)
        return
    overlay = pygame.Surface(rect.size, pygame.SRCALPHA)
    overlay.fill(color.as_tuple())
    surface.blit(overlay, rect.topleft)


def _texture_region(texture: pygame.Surface, coords) -> pygame.Surface | None:
    s1, t1, s2, t2 = coords
    tw, th = texture.get_size()
    if tw == 0 or th == 0 or s2 <= s1 or t2 <= t1:
        return None
    if s1 < 0 or t1 < 0 or s2 > 1 or t2 > 1:
        # repeat: tile the texture far enough to cover the coordinates
        x0, y0 = math.floor(s1), math.floor(t1)
        nx, ny = math.ceil(s2) - x0, math.ceil(t2) - y0
        tiled = pygame.Surface((nx * tw, ny * th), pygame.SRCALPHA)
        for ix in range(nx):
            for iy in range(ny):
                tiled.blit(texture, (ix * tw, iy * th))
        texture = tiled
        s1, s2, t1, t2 = s1 - x0, s2 - x0, t1 - y0, t2 - y0
        tw, th = texture.get_size()
    x, y = int(s1 * tw), int(t1 * th)
    w = max(1, min(tw - x, int(round((s2 - s1) * tw))))
    h = max(1, min(th - y, int(round((t2 - t1) * th))))
    return texture.subsurface(pygame.Rect(x, y, w, h))


def render_tree(surface: pygame.Surface, root: PaintNode) -> None:
    """Draw every node under *root* onto *surface* in tree order."""
    for node in root.walk():
        if isinstance(node, ColorNode):
            for box in node.rectangles:
                _fill(surface, node.color, box.to_rect())
        elif isinstance(node, PipelineNode):
            if node.material is None or node.material.released:
                continue
            texture = node.material.to_surface()
            for box, coords in node.rectangles:
                rect = box.to_rect()
                if rect.width <= 0 or rect.height <= 0:
                    continue
                region = _texture_region(texture, coords)
                if region is None:
                    continue
                if region.get_size() != rect.size:
                    region = pygame.transform.scale(region, rect.size)
                if node.opacity < 255:
                    region = region.copy()
                    region.set_alpha(node.opacity)
                surface.blit(region, rect.topleft)
