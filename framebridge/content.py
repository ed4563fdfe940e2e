# =========  content.py  =========
"""
Content – binds a sink (or a player's sink) to scene actors

Public API
----------
Content(sink=None, player=None)
set_sink(sink) / get_sink()         set_player(player) / get_player()
get_frame()                         get_preferred_size() → (w, h) | None
get_overlays()
set_paint_frame(bool) / get_paint_frame()
set_paint_overlays(bool) / get_paint_overlays()
paint_content(actor, root)          adds "Video" or "BlankVideoFrame",
                                    then "VideoOverlay" nodes
get_frame_mapping(box) → (dest box, (s1, t1, s2, t2))
to_frame_coordinates(actor, x, y) → (fx, fy) in frame pixels | None
Signals
-------
size-change(w, h)   invalidate()
"""
from __future__ import annotations

import logging

from gi.repository import GObject

from .events import Accessor
from .frame import Frame
from .overlays import Overlay
from .scene import ActorBox, Color, ColorNode, ContentRepeat, PipelineNode

log = logging.getLogger(__name__)


class Content(GObject.Object):
    __gsignals__ = {
        "size-change": (GObject.SignalFlags.RUN_LAST, None, (int, int)),
        "invalidate": (GObject.SignalFlags.RUN_LAST, None, ()),
    }

    frame = Accessor(writable=False)
    video_sink = Accessor()
    player = Accessor()
    paint_frame = Accessor(bool, default=True)
    paint_overlays = Accessor(bool, default=True)

    def __init__(self, sink=None, player=None):
        super().__init__()
        self._sink = None
        self._sink_handlers: tuple = ()
        self._player = None
        self._player_handler: int | None = None
        self._frame: Frame | None = None
        self._overlays: list[Overlay] = []
        self._paint_frame = True
        self._paint_overlays = True
        if player is not None:
            self.set_player(player)
        elif sink is not None:
            self.set_sink(sink)

    # ── binding ────────────────────────────────────────────────────────
    def get_sink(self):
        return self._sink

    def get_video_sink(self):
        return self._sink

    def set_video_sink(self, sink) -> None:
        self.set_sink(sink)

    def set_sink(self, sink) -> None:
        """Bind *sink* directly; any player binding is dropped."""
        self._unbind_player()
        self._set_sink(sink)

    def _set_sink(self, sink) -> None:
        if sink is self._sink:
            return
        if self._sink is not None:
            for handler_id in self._sink_handlers:
                self._sink.disconnect(handler_id)
            self._sink_handlers = ()
        self._sink = sink
        log.debug("%s: bound to %s", type(self).__name__, getattr(sink, "name", None))
        if sink is not None:
            self._sink_handlers = (
                sink.connect("new-frame", self._new_frame_cb),
                sink.connect("new-overlays", self._new_overlays_cb),
                sink.connect("notify::pixel-aspect-ratio", self._par_cb),
            )
            if sink.get_frame() is not None:
                self.update_frame(sink.get_frame())
            self.update_overlays(sink.get_overlays())
        self.notify("video-sink")

    def get_player(self):
        return self._player

    def set_player(self, player) -> None:
        if player is self._player:
            return
        self._unbind_player()
        self._player = player
        if player is not None:
            self._player_handler = player.connect("notify::video-sink", self._player_sink_cb)
            self._set_sink(player.get_video_sink())
        self.notify("player")

    def _unbind_player(self) -> None:
        if self._player is None:
            return
        self._player.disconnect(self._player_handler)
        self._player = None
        self._player_handler = None
        self.notify("player")

    def _player_sink_cb(self, player, pspec):
        self._set_sink(player.get_video_sink())

    # ── frames ─────────────────────────────────────────────────────────
    def get_frame(self) -> Frame | None:
        return self._frame

    def update_frame(self, new_frame: Frame) -> None:
        old = self._frame
        self._frame = new_frame.copy()
        if old is None or (old.resolution.width, old.resolution.height) != \
                (new_frame.resolution.width, new_frame.resolution.height):
            self.emit("size-change", new_frame.resolution.width, new_frame.resolution.height)
        if old is not None:
            old.release()
        self.notify("frame")

    def _new_frame_cb(self, sink, frame):
        self.update_frame(frame)
        if self.has_painting_content():
            self.invalidate()

    def _par_cb(self, sink, pspec):
        if self._frame is not None:
            self._frame.update_par_from_sink(sink)
            self.invalidate()

    # ── overlays ───────────────────────────────────────────────────────
    def get_overlays(self) -> list[Overlay]:
        return list(self._overlays)

    def update_overlays(self, overlays) -> None:
        old, self._overlays = self._overlays, [o.copy() for o in overlays]
        for overlay in old:
            overlay.release()

    def _new_overlays_cb(self, sink):
        self.update_overlays(sink.get_overlays())
        if self._paint_overlays:
            self.invalidate()

    def invalidate(self) -> None:
        self.emit("invalidate")

    def get_paint_frame(self) -> bool:
        return self._paint_frame

    def set_paint_frame(self, paint_frame: bool) -> None:
        if self._paint_frame == bool(paint_frame):
            return
        self._paint_frame = bool(paint_frame)
        self.notify("paint-frame")
        self.invalidate()

    def get_paint_overlays(self) -> bool:
        return self._paint_overlays

    def set_paint_overlays(self, paint_overlays: bool) -> None:
        if self._paint_overlays == bool(paint_overlays):
            return
        self._paint_overlays = bool(paint_overlays)
        self.notify("paint-overlays")
        self.invalidate()

    # ── scene interface ────────────────────────────────────────────────
    def has_painting_content(self) -> bool:
        return self._frame is not None and not self._frame.is_blank

    def get_preferred_size(self) -> tuple[int, int] | None:
        if not self.has_painting_content():
            return None
        return (self._frame.resolution.width, self._frame.resolution.height)

    def paint_content(self, actor, root) -> None:
        box = actor.get_content_box()
        opacity = actor.get_paint_opacity()

        if not self.has_painting_content():
            color = actor.background_color
            node = ColorNode(Color(color.r, color.g, color.b, opacity), "BlankVideoFrame")
            node.add_rectangle(box)
            root.add_child(node)
            return

        if self._paint_frame:
            self.paint_video_frame(actor, root, box)
        self.paint_overlay_nodes(actor, root, box)

    def paint_video_frame(self, actor, root, box: ActorBox) -> None:
        frame = self._frame
        node = PipelineNode(frame.material, "Video", actor.get_paint_opacity())
        repeat = actor.content_repeat
        if repeat == ContentRepeat.NONE:
            node.add_rectangle(box)
        else:
            t_w = t_h = 1.0
            if repeat & ContentRepeat.X_AXIS:
                t_w = box.width / frame.resolution.width
            if repeat & ContentRepeat.Y_AXIS:
                t_h = box.height / frame.resolution.height
            node.add_texture_rectangle(box, 0.0, 0.0, t_w, t_h)
        root.add_child(node)

    def paint_overlay_nodes(self, actor, root, frame_box: ActorBox) -> None:
        """One "VideoOverlay" node per overlay, scaled from frame pixels into *frame_box*."""
        if not self._paint_overlays or not self._overlays:
            return
        width, height = self._frame.resolution.width, self._frame.resolution.height
        sx, sy = frame_box.width / width, frame_box.height / height
        for overlay in self._overlays:
            p = overlay.position
            node = PipelineNode(overlay.material, "VideoOverlay", actor.get_paint_opacity())
            node.add_rectangle(ActorBox(frame_box.x1 + p.x1 * sx, frame_box.y1 + p.y1 * sy,
                                        frame_box.x1 + p.x2 * sx, frame_box.y1 + p.y2 * sy))
            root.add_child(node)

    # ── pointer mapping ────────────────────────────────────────────────
    def get_frame_mapping(self, box: ActorBox):
        """Where the frame is drawn inside *box*, and which part of it."""
        return box, (0.0, 0.0, 1.0, 1.0)

    def to_frame_coordinates(self, actor, x: float, y: float):
        if not self.has_painting_content():
            return None
        dest, (s1, t1, s2, t2) = self.get_frame_mapping(actor.get_content_box())
        if dest.width <= 0 or dest.height <= 0:
            return None
        if not (dest.x1 <= x < dest.x2 and dest.y1 <= y < dest.y2):
            return None
        u = s1 + (x - dest.x1) / dest.width * (s2 - s1)
        v = t1 + (y - dest.y1) / dest.height * (t2 - t1)
        r = self._frame.resolution
        return (u * r.width, v * r.height)

    def dispose(self) -> None:
        self.set_sink(None)
        self.update_overlays(())
        if self._frame is not None:
            self._frame.release()
            self._frame = None
