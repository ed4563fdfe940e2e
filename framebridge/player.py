# =========  player.py  =========
"""
Player – the contract every frame producer exposes to consumers

Public API
----------
get_frame()            → current Frame (blank until the first decoded one)
get_pipeline()         → underlying pipeline, observation only
get_video_sink()       → VideoSink
get_playing() / set_playing(bool)
get_audio_volume() / set_audio_volume(0.0-1.0, cubic)
get_idle()
Signals
-------
new-frame(frame)  ready()  eos()  error(kind, message)  size-change(w, h)
Properties
----------
playing  audio-volume  idle (read-only)  video-sink

PipelinePlayer wraps a pipeline the application built around a VideoSink;
PlaybackPlayer and CameraPlayer live in their own modules.
"""
from __future__ import annotations

import logging

from gi.repository import GObject

from .events import Accessor
from .frame import Frame
from .pipeline import MediaPipeline, State
from .video_sink import VideoSink

log = logging.getLogger(__name__)


class Player(GObject.Object):
    __gsignals__ = {
        "new-frame": (GObject.SignalFlags.RUN_LAST, None, (object,)),
        "ready": (GObject.SignalFlags.RUN_LAST, None, ()),
        "eos": (GObject.SignalFlags.RUN_LAST, None, ()),
        "error": (GObject.SignalFlags.RUN_LAST, None, (object, str)),
        "size-change": (GObject.SignalFlags.RUN_LAST, None, (int, int)),
    }

    playing = Accessor(bool)
    audio_volume = Accessor(float)
    idle = Accessor(bool, writable=False)
    video_sink = Accessor()

    _current_frame: Frame | None = None
    _sink: VideoSink | None = None
    _sink_handlers: tuple = ()

    # ── interface ──────────────────────────────────────────────────────
    def get_frame(self) -> Frame | None:
        return self._current_frame

    def get_video_sink(self) -> VideoSink | None:
        return self._sink

    def set_video_sink(self, sink: VideoSink) -> None:
        raise NotImplementedError(f"{type(self).__name__} owns its video sink")

    def get_pipeline(self):
        raise NotImplementedError

    def get_playing(self) -> bool:
        raise NotImplementedError

    def set_playing(self, playing: bool) -> None:
        raise NotImplementedError

    def get_audio_volume(self) -> float:
        raise NotImplementedError

    def set_audio_volume(self, volume: float) -> None:
        raise NotImplementedError

    def get_idle(self) -> bool:
        raise NotImplementedError

    # ── frame bookkeeping shared by implementations ────────────────────
    def update_frame(self, new_frame: Frame) -> None:
        """Keep a copy of *new_frame*, emitting size-change when it differs."""
        old = self._current_frame
        self._current_frame = new_frame.copy()
        if old is None or old.resolution != new_frame.resolution:
            self.emit("size-change",
                      new_frame.resolution.width, new_frame.resolution.height)
        if old is not None:
            old.release()
        self.emit("new-frame", self._current_frame)

    def _bind_sink(self, sink: VideoSink | None) -> None:
        if sink is self._sink:
            return
        if self._sink is not None:
            for handler_id in self._sink_handlers:
                self._sink.disconnect(handler_id)
            self._sink_handlers = ()
        self._sink = sink
        if self._current_frame is None:
            self._current_frame = Frame.new_blank()
        if sink is None:
            return
        # PAR changes reach consumers through update_frame only
        self._sink_handlers = (
            sink.connect("new-frame", self._on_sink_new_frame),
            sink.connect("pipeline-ready", self._on_sink_ready),
        )
        if sink.get_frame() is not None:
            self.update_frame(sink.get_frame())

    def _on_sink_new_frame(self, sink, frame):
        self.update_frame(frame)

    def _on_sink_ready(self, sink):
        self.emit("ready")

    def _release_frame(self) -> None:
        if self._current_frame is not None:
            self._current_frame.release()
            self._current_frame = None


def pipeline_playing(pipeline: MediaPipeline | None) -> bool:
    """True when *pipeline* is PLAYING or heading there."""
    if pipeline is None:
        return False
    state, pending = pipeline.get_state()
    if pending != State.VOID_PENDING:
        return pending == State.PLAYING
    return state == State.PLAYING


class PipelinePlayer(Player):
    """Player over an application-built pipeline that contains *sink*.

    Playing state is read from the pipeline but never changed; volume is
    not controlled.
    """

    def __init__(self, sink: VideoSink | None = None, pipeline: MediaPipeline | None = None):
        super().__init__()
        self._pipeline = pipeline
        self._current_frame = Frame.new_blank()
        if sink is not None:
            self.set_video_sink(sink)

    def set_video_sink(self, sink: VideoSink, pipeline: MediaPipeline | None = None) -> None:
        if pipeline is not None:
            self._pipeline = pipeline
        self._bind_sink(sink)
        self.notify("video-sink")

    def get_pipeline(self):
        return self._pipeline

    def get_playing(self) -> bool:
        return pipeline_playing(self._pipeline)

    def set_playing(self, playing: bool) -> None:
        log.debug("PipelinePlayer does not drive its pipeline")

    def get_audio_volume(self) -> float:
        return 0.0

    def set_audio_volume(self, volume: float) -> None:
        pass

    def get_idle(self) -> bool:
        return False
