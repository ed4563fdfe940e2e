# =========  aspectratio.py  =========
"""
AspectRatio – letter-/pillar-box the frame inside the actor

The display aspect includes the pixel aspect ratio; with ``paint-borders``
the uncovered bars are filled with the actor's background colour.
"""
from __future__ import annotations

from .content import Content
from .events import Accessor
from .scene import ActorBox, ColorNode, PipelineNode


def fit_box(box: ActorBox, frame_aspect: float) -> ActorBox:
    """Largest box of *frame_aspect* centred in *box*."""
    width, height = box.width, box.height
    if width <= 0 or height <= 0 or frame_aspect <= 0:
        return box
    if width / height < frame_aspect:
        new_w, new_h = width, width / frame_aspect
    else:
        new_w, new_h = height * frame_aspect, height
    x1 = box.x1 + (width - new_w) / 2
    y1 = box.y1 + (height - new_h) / 2
    return ActorBox(x1, y1, x1 + new_w, y1 + new_h)


class AspectRatio(Content):
    paint_borders = Accessor(bool, default=False)

    def __init__(self, sink=None, player=None, paint_borders: bool = False):
        super().__init__(sink=sink, player=player)
        self._paint_borders = paint_borders

    def get_paint_borders(self) -> bool:
        return self._paint_borders

    def set_paint_borders(self, paint_borders: bool) -> None:
        if self._paint_borders == bool(paint_borders):
            return
        self._paint_borders = bool(paint_borders)
        self.notify("paint-borders")
        self.invalidate()

    def get_paint_box(self, box: ActorBox) -> ActorBox:
        return fit_box(box, self._frame.resolution.display_aspect)

    def get_frame_mapping(self, box: ActorBox):
        return self.get_paint_box(box), (0.0, 0.0, 1.0, 1.0)

    def paint_content(self, actor, root) -> None:
        if not self.has_painting_content():
            super().paint_content(actor, root)
            return

        box = actor.get_content_box()
        paint_box = self.get_paint_box(box)
        opacity = actor.get_paint_opacity()

        if self._paint_frame:
            node = PipelineNode(self._frame.material, "AspectRatioVideoFrame", opacity)
            node.add_rectangle(paint_box)
            root.add_child(node)
        self.paint_overlay_nodes(actor, root, paint_box)

        if self._paint_borders:
            color = actor.background_color.with_opacity(opacity)
            node = ColorNode(color, "AspectRatioVideoBorders")
            if paint_box.x1 > box.x1:
                # pillarbox
                node.add_rectangle(ActorBox(box.x1, box.y1, paint_box.x1, box.y2))
                node.add_rectangle(ActorBox(paint_box.x2, box.y1, box.x2, box.y2))
            elif paint_box.y1 > box.y1:
                # letterbox
                node.add_rectangle(ActorBox(box.x1, box.y1, box.x2, paint_box.y1))
                node.add_rectangle(ActorBox(box.x1, paint_box.y2, box.x2, box.y2))
            root.add_child(node)
