# =========  video_sink.py  =========
"""
VideoSink – decoded buffers in, Frames out on the render thread

Producer side (GStreamer streaming threads)
-------------------------------------------
set_caps(fields)      → bool, False when no renderer handles the format
acquire_memory(size)  → pooled bytearray, blocks while the pool is empty
render(buffer)        → FlowReturn; newest-wins single slot
flush_start() / flush_stop()

Render side (MainContext.iteration)
-----------------------------------
get_frame()  → last emitted Frame or None
get_overlays() → [Overlay] of the last uploaded composition
is_ready()
get_pixel_aspect_ratio() → (n, d)
send_navigation_event(event, x, y, button=0) → bool, upstream to the source
stop()
Signals: new-frame(frame), new-overlays(), pipeline-ready(),
notify::pixel-aspect-ratio

States: UNINIT → READY (caps) → RUNNING (first upload) → STOPPED.
"""
from __future__ import annotations

import logging
import threading
from enum import Enum

from gi.repository import GObject

from . import config
from .errors import NotNegotiatedError, UploadError
from .events import Accessor, MainContext
from .formats import VideoInfo, caps_string
from .frame import Frame, Resolution
from .overlays import Overlay, OverlayComposition, upload_rectangle
from .pipeline import FlowReturn
from .renderers import Feature, detect_features, find_renderer, usable_formats

log = logging.getLogger(__name__)

NAVIGATION_EVENTS = ("mouse-move", "mouse-button-press", "mouse-button-release")


class SinkState(Enum):
    UNINIT  = "uninit"
    READY   = "ready"
    RUNNING = "running"
    STOPPED = "stopped"


# ── buffer pool ────────────────────────────────────────────────────────────
class PooledMemory:
    __slots__ = ("pool", "data", "generation")

    def __init__(self, pool: "BufferPool", size: int, generation: int):
        self.pool = pool
        self.data = bytearray(size)
        self.generation = generation

    def release(self) -> None:
        self.pool._recycle(self)


class BufferPool:
    """Fixed number of equally sized upload buffers.

    ``acquire`` blocks while every buffer is held by a pending buffer or a
    live Frame; a release or ``set_flushing(True)`` wakes the waiters.
    """

    def __init__(self, max_buffers: int = config.BUFFER_POOL_SIZE):
        self.max_buffers = max_buffers
        self._cond = threading.Condition()
        self._free: list[PooledMemory] = []
        self._allocated = 0
        self._size = 0
        self._generation = 0
        self._flushing = False
        self._waiters = 0

    def acquire(self, size: int, timeout: float | None = None) -> PooledMemory | None:
        """Return a buffer of *size* bytes, or None when flushing or timed out."""
        with self._cond:
            if size != self._size:
                self._generation += 1
                self._size = size
                self._free.clear()
                self._allocated = 0
            self._waiters += 1
            try:
                while True:
                    if self._flushing:
                        return None
                    if self._free:
                        return self._free.pop()
                    if self._allocated < self.max_buffers:
                        self._allocated += 1
                        return PooledMemory(self, size, self._generation)
                    if not self._cond.wait(timeout):
                        return None
            finally:
                self._waiters -= 1

    def _recycle(self, memory: PooledMemory) -> None:
        with self._cond:
            if memory.generation == self._generation and memory not in self._free:
                self._free.append(memory)
            self._cond.notify()

    def set_flushing(self, flushing: bool) -> None:
        with self._cond:
            self._flushing = flushing
            self._cond.notify_all()

    @property
    def waiting(self) -> int:
        return self._waiters

    @property
    def free(self) -> int:
        with self._cond:
            return len(self._free) + self.max_buffers - self._allocated


class VideoBuffer:
    """A decoded buffer; owns its pooled memory until a material detaches it.

    ``overlays`` is the composition to draw over this buffer, None when the
    buffer carries none.
    """

    __slots__ = ("data", "pts", "_memory", "overlays")

    def __init__(self, data, pts: int | None = None, memory: PooledMemory | None = None,
                 overlays: OverlayComposition | None = None):
        self.data = data
        self.pts = pts
        self._memory = memory
        self.overlays = overlays

    @classmethod
    def from_memory(cls, memory: PooledMemory, pts: int | None = None,
                    overlays: OverlayComposition | None = None) -> "VideoBuffer":
        return cls(memory.data, pts, memory, overlays)

    def detach(self) -> PooledMemory | None:
        memory, self._memory = self._memory, None
        return memory

    def release(self) -> None:
        memory = self.detach()
        if memory is not None:
            memory.release()


# ── sink ───────────────────────────────────────────────────────────────────
class VideoSink(GObject.Object):
    __gsignals__ = {
        "new-frame": (GObject.SignalFlags.RUN_LAST, None, (object,)),
        "new-overlays": (GObject.SignalFlags.RUN_LAST, None, ()),
        "pipeline-ready": (GObject.SignalFlags.RUN_LAST, None, ()),
    }

    pixel_aspect_ratio = Accessor(writable=False)

    def __init__(self, context: MainContext | None = None,
                 features: Feature | None = None, name: str = "videosink"):
        super().__init__()
        self.name = name
        self.context = context or MainContext.default()
        self.features = detect_features() if features is None else features
        self.pool = BufferPool()
        self.element = None                 # Gst appsink, set by gst_backend

        self._lock = threading.Lock()
        self._state = SinkState.UNINIT
        self._pending: VideoBuffer | None = None
        self._new_caps = None               # (info, renderer) awaiting the render thread
        self._scheduled = False
        self._flow_return = FlowReturn.OK

        # render thread only
        self._info: VideoInfo | None = None
        self._renderer = None
        self._frame: Frame | None = None
        self._par = (1, 1)
        self._ready_emitted = False
        self._composition: OverlayComposition | None = None
        self._overlays: list[Overlay] = []
        self._navigation = None             # callable(event, x, y, button)

    # ── producer side ──────────────────────────────────────────────────
    def get_caps(self) -> str:
        return caps_string(usable_formats(self.features))

    def set_caps(self, fields) -> bool:
        try:
            info = VideoInfo.from_caps(fields)
        except NotNegotiatedError as exc:
            log.warning("%s: %s", self.name, exc)
            return False
        renderer = find_renderer(info.format, self.features)
        if renderer is None:
            log.warning("%s: no renderer for %s with features %r",
                        self.name, info.format.value, self.features)
            return False
        log.debug("%s: negotiated %s %dx%d using %s", self.name,
                  info.format.value, info.width, info.height, renderer.name)
        with self._lock:
            self._new_caps = (info, renderer)
            self._flow_return = FlowReturn.OK
            schedule = self._schedule_locked()
        self.pool.set_flushing(False)
        if schedule:
            self.context.post(self._dispatch)
        return True

    def acquire_memory(self, size: int, timeout: float | None = None) -> PooledMemory | None:
        return self.pool.acquire(size, timeout)

    def render(self, buffer: VideoBuffer) -> FlowReturn:
        with self._lock:
            if self._flow_return != FlowReturn.OK:
                ret = self._flow_return
            elif self._state is SinkState.STOPPED and self._new_caps is None:
                ret = FlowReturn.FLUSHING
            elif self._new_caps is None and self._info is None:
                ret = FlowReturn.NOT_NEGOTIATED
            else:
                ret = FlowReturn.OK
                dropped, self._pending = self._pending, buffer
                schedule = self._schedule_locked()
        if ret != FlowReturn.OK:
            buffer.release()
            return ret
        if dropped is not None:
            dropped.release()
        if schedule:
            self.context.post(self._dispatch)
        return ret

    def _schedule_locked(self) -> bool:
        if self._scheduled:
            return False
        self._scheduled = True
        return True

    def flush_start(self) -> None:
        self.pool.set_flushing(True)
        with self._lock:
            dropped, self._pending = self._pending, None
        if dropped is not None:
            dropped.release()

    def flush_stop(self) -> None:
        self.pool.set_flushing(False)

    # ── render side ────────────────────────────────────────────────────
    def _dispatch(self) -> None:
        with self._lock:
            self._scheduled = False
            new_caps, self._new_caps = self._new_caps, None
            buffer, self._pending = self._pending, None

        if new_caps is not None:
            self._info, self._renderer = new_caps
            if self._state in (SinkState.UNINIT, SinkState.STOPPED):
                self._state = SinkState.READY
            par = (self._info.par_n, self._info.par_d)
            if par != self._par:
                self._par = par
                self.notify("pixel-aspect-ratio")
            if not self._ready_emitted:
                self._ready_emitted = True
                self.emit("pipeline-ready")

        if buffer is None:
            return
        if self._renderer is None or self._state is SinkState.STOPPED:
            buffer.release()
            return

        self._upload_overlays(buffer.overlays)
        try:
            material = self._renderer.upload(self._info, buffer)
        except UploadError as exc:
            buffer.release()
            if exc.fatal:
                log.error("%s: %s", self.name, exc)
                with self._lock:
                    self._flow_return = FlowReturn.ERROR
            else:
                log.warning("%s: dropping buffer: %s", self.name, exc)
            return
        except MemoryError:
            buffer.release()
            log.warning("%s: out of memory, dropping buffer", self.name)
            return

        info = self._info
        old, self._frame = self._frame, Frame(
            material, Resolution(info.width, info.height, info.par_n, info.par_d))
        if old is not None:
            old.release()
        self._state = SinkState.RUNNING
        self.emit("new-frame", self._frame)

    def _upload_overlays(self, composition: OverlayComposition | None) -> None:
        if composition is self._composition:
            return
        overlays = []
        for rect in (composition.rectangles if composition is not None else ()):
            try:
                overlays.append(upload_rectangle(rect))
            except UploadError as exc:
                log.warning("%s: cannot upload overlay: %s", self.name, exc)
        self._release_overlays()
        self._composition = composition
        self._overlays = overlays
        self.emit("new-overlays")

    def _release_overlays(self) -> None:
        for overlay in self._overlays:
            overlay.release()
        self._overlays = []

    def set_navigation_handler(self, handler) -> None:
        """Install the upstream event sender, ``handler(event, x, y, button)``."""
        self._navigation = handler

    def send_navigation_event(self, event: str, x: float, y: float, button: int = 0) -> bool:
        """Send a pointer event in frame pixels upstream; False when nobody listens."""
        if event not in NAVIGATION_EVENTS:
            log.warning("%s: unknown navigation event %r", self.name, event)
            return False
        if self._navigation is None or self._info is None:
            return False
        x = max(0.0, min(float(x), self._info.width - 1.0))
        y = max(0.0, min(float(y), self._info.height - 1.0))
        return bool(self._navigation(event, x, y, button))

    def stop(self) -> None:
        """Release textures and the pending slot; new caps are needed to restart."""
        self.pool.set_flushing(True)
        with self._lock:
            dropped, self._pending = self._pending, None
            self._new_caps = None
            self._flow_return = FlowReturn.OK
        if dropped is not None:
            dropped.release()
        if self._frame is not None:
            self._frame.release()
            self._frame = None
        self._release_overlays()
        self._composition = None
        self._info = self._renderer = None
        self._state = SinkState.STOPPED

    # ── accessors ──────────────────────────────────────────────────────
    def needs_caps(self) -> bool:
        """True until caps are negotiated, and again after stop()."""
        with self._lock:
            return self._new_caps is None and (
                self._info is None or self._state is SinkState.STOPPED)

    def get_state(self) -> SinkState:
        return self._state

    def get_frame(self) -> Frame | None:
        return self._frame

    def get_overlays(self) -> list[Overlay]:
        return list(self._overlays)

    def is_ready(self) -> bool:
        return self._renderer is not None and self._ready_emitted

    def get_renderer(self):
        return self._renderer

    def get_video_info(self) -> VideoInfo | None:
        return self._info

    def get_pixel_aspect_ratio(self) -> tuple[int, int]:
        return self._par

    def get_flow_return(self) -> FlowReturn:
        return self._flow_return
