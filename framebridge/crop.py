# =========  crop.py  =========
"""
Crop – draw a sub-rectangle of the frame into a sub-rectangle of the actor

Both regions are (x1, y1, x2, y2) in normalised [0, 1] coordinates.
Invalid regions are refused with a warning and the previous one is kept.
"""
from __future__ import annotations

import logging

from .content import Content
from .events import Accessor
from .scene import ActorBox, ColorNode, PipelineNode

log = logging.getLogger(__name__)

FULL_REGION = ActorBox(0.0, 0.0, 1.0, 1.0)


def valid_region(region: ActorBox) -> bool:
    return (0.0 <= region.x1 <= region.x2 <= 1.0 and
            0.0 <= region.y1 <= region.y2 <= 1.0)


def _as_box(region) -> ActorBox | None:
    """*region* as an ActorBox, None when it is not four numbers."""
    if isinstance(region, ActorBox):
        return region
    try:
        values = tuple(float(v) for v in region)
    except (TypeError, ValueError):
        return None
    if len(values) != 4:
        return None
    return ActorBox(*values)


class Crop(Content):
    paint_borders = Accessor(bool, default=False)
    input_region = Accessor()
    output_region = Accessor()

    def __init__(self, sink=None, player=None, paint_borders: bool = False):
        super().__init__(sink=sink, player=player)
        self._paint_borders = paint_borders
        self._input_region = FULL_REGION
        self._output_region = FULL_REGION

    def get_paint_borders(self) -> bool:
        return self._paint_borders

    def set_paint_borders(self, paint_borders: bool) -> None:
        if self._paint_borders == bool(paint_borders):
            return
        self._paint_borders = bool(paint_borders)
        self.notify("paint-borders")
        self.invalidate()

    def get_input_region(self) -> ActorBox:
        return self._input_region

    def set_input_region(self, region) -> bool:
        box = _as_box(region)
        if box is None or not valid_region(box):
            log.warning("invalid input region %r", region)
            return False
        self._input_region = box
        self.notify("input-region")
        self.invalidate()
        return True

    def get_output_region(self) -> ActorBox:
        return self._output_region

    def set_output_region(self, region) -> bool:
        box = _as_box(region)
        if box is None or not valid_region(box):
            log.warning("invalid output region %r", region)
            return False
        self._output_region = box
        self.notify("output-region")
        self.invalidate()
        return True

    def _output_box(self, box: ActorBox) -> ActorBox:
        w, h, out = box.width, box.height, self._output_region
        return ActorBox(box.x1 + out.x1 * w, box.y1 + out.y1 * h,
                        box.x1 + out.x2 * w, box.y1 + out.y2 * h)

    def get_frame_mapping(self, box: ActorBox):
        src = self._input_region
        return self._output_box(box), (src.x1, src.y1, src.x2, src.y2)

    def paint_content(self, actor, root) -> None:
        if not self.has_painting_content():
            super().paint_content(actor, root)
            return

        box = actor.get_content_box()
        out, src = self._output_region, self._input_region
        out_box = self._output_box(box)
        opacity = actor.get_paint_opacity()

        if self._paint_frame:
            node = PipelineNode(self._frame.material, "CropVideoFrame", opacity)
            node.add_texture_rectangle(out_box, src.x1, src.y1, src.x2, src.y2)
            root.add_child(node)

        if self._paint_borders and out != FULL_REGION:
            node = ColorNode(actor.background_color.with_opacity(opacity), "CropVideoBorders")
            if out.x1 > 0:
                node.add_rectangle(ActorBox(box.x1, box.y1, out_box.x1, box.y2))
            if out.x2 < 1:
                node.add_rectangle(ActorBox(out_box.x2, box.y1, box.x2, box.y2))
            if out.y1 > 0:
                node.add_rectangle(ActorBox(out_box.x1, box.y1, out_box.x2, out_box.y1))
            if out.y2 < 1:
                node.add_rectangle(ActorBox(out_box.x1, out_box.y2, out_box.x2, box.y2))
            root.add_child(node)
