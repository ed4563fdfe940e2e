"""Shared fixtures: a private GLib main context, fake pipelines and buffer helpers."""
from __future__ import annotations

import os
import time

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")

import pytest

from framebridge.camera_device import CameraDevice, CameraManager
from framebridge.events import MainContext
from framebridge.overlays import OverlayRectangle
from framebridge.pipeline import (BufferingQuery, BufferingStatsMode, BusMessage,
                                  CameraBinPipeline, MessageType, PlaybinPipeline,
                                  PlayFlags, State, StateChangeReturn, StreamInfo)
from framebridge.renderers import Feature
from framebridge.video_sink import VideoBuffer

ALL_FEATURES = Feature.MULTI_TEXTURE | Feature.FRAGMENT_PROGRAM | Feature.SHADER_PROGRAM


@pytest.fixture
def context():
    return MainContext()


def run_until(context, condition, timeout=2.0):
    """Iterate *context* until *condition()* holds or *timeout* passes."""
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached before timeout")
        if not context.iteration():
            time.sleep(0.002)


def rgb_caps(width=4, height=2, **extra):
    caps = {"format": "RGB", "width": width, "height": height, "framerate": (25, 1)}
    caps.update(extra)
    return caps


def make_buffer(sink, data: bytes, pts=None, overlays=None) -> VideoBuffer:
    memory = sink.acquire_memory(len(data), timeout=0.1)
    assert memory is not None
    memory.data[:] = data
    return VideoBuffer.from_memory(memory, pts, overlays)


def rgb_bytes(width=4, height=2, value=0x80) -> bytes:
    stride = (width * 3 + 3) & ~3
    return bytes([value]) * (stride * height)


def push_frame(sink, context, width=4, height=2, value=0x80, overlays=None, **caps_extra):
    """Negotiate (when needed) and render one RGB frame, then run the loop."""
    info = sink.get_video_info()
    if info is None or (info.width, info.height) != (width, height) or caps_extra:
        assert sink.set_caps(rgb_caps(width, height, **caps_extra))
    sink.render(make_buffer(sink, rgb_bytes(width, height, value), overlays=overlays))
    context.iteration()


def overlay_rect(x, y, width, height, rgba=(255, 255, 255, 255)):
    return OverlayRectangle(x, y, width, height, bytes(rgba) * (width * height))


class Recorder:
    """Connects to signals and records (name, args) in order."""

    def __init__(self):
        self.events = []

    def watch(self, emitter, *names):
        for name in names:
            emitter.connect(name, self._record, name)
        return self

    def _record(self, emitter, *args):
        *payload, name = args
        self.events.append((name, tuple(payload)))

    def names(self):
        return [name for name, _ in self.events]

    def of(self, name):
        return [args for n, args in self.events if n == name]


@pytest.fixture
def recorder():
    return Recorder()


# ── fake pipelines ─────────────────────────────────────────────────────────
class _FakePipeline:
    src_name = "pipeline"

    def _init_common(self):
        self.element = None
        self.state = State.NULL
        self.state_log: list[State] = []
        self.bus_callbacks = []
        self.notify_callbacks: dict[str, list] = {}
        self.disposed = False

    def set_state(self, state: State) -> StateChangeReturn:
        self.state_log.append(State(state))
        ret = self._state_return(State(state))
        step = 1 if state > self.state else -1
        while self.state != state:
            old = self.state
            self.state = State(int(self.state) + step)
            self.post(MessageType.STATE_CHANGED, old=int(old), new=int(self.state),
                      pending=int(State.VOID_PENDING))
        return ret

    def _state_return(self, state: State) -> StateChangeReturn:
        return StateChangeReturn.SUCCESS

    def get_state(self):
        return self.state, State.VOID_PENDING

    def add_bus_watch(self, callback) -> None:
        self.bus_callbacks.append(callback)

    def connect_notify(self, name, callback) -> None:
        self.notify_callbacks.setdefault(name, []).append(callback)

    def post(self, type_, src=None, from_pipeline=True, **fields):
        message = BusMessage(type_, src or self.src_name, from_pipeline, fields)
        for callback in list(self.bus_callbacks):
            callback(message)

    def fire(self, name):
        for callback in self.notify_callbacks.get(name, []):
            callback(name)

    def dispose(self) -> None:
        self.disposed = True
        self.set_state(State.NULL)


class FakePlaybin(_FakePipeline, PlaybinPipeline):
    src_name = "playbin"

    def __init__(self, sink):
        self._init_common()
        self.sink = sink
        self.props = {
            "flags": PlayFlags.VIDEO | PlayFlags.AUDIO | PlayFlags.TEXT | PlayFlags.SOFT_VOLUME,
            "n-audio": 0, "n-text": 0, "current-audio": -1, "current-text": -1,
            "buffer-size": -1, "buffer-duration": -1,
        }
        self.volume = 1.0
        self.live = False
        self.duration: int | None = None
        self.position = 0
        self.seekable: bool | None = True
        self.seeks = []
        self.buffering = BufferingQuery(BufferingStatsMode.STREAM)
        self.streams = {"audio": [], "text": []}
        self.source_props: dict | None = None

    def _state_return(self, state):
        if self.live and state == State.PAUSED:
            return StateChangeReturn.NO_PREROLL
        return StateChangeReturn.SUCCESS

    def set_prop(self, name, value):
        self.props[name] = value

    def get_prop(self, name):
        return self.props.get(name)

    def query_position(self):
        return self.position if self.duration is not None else None

    def query_duration(self):
        return self.duration

    def query_seeking(self):
        return self.seekable

    def query_buffering(self):
        return self.buffering

    def seek(self, position_ns, flags):
        self.seeks.append((position_ns, flags))
        self.position = position_ns
        return True

    def get_volume(self):
        return self.volume

    def set_volume(self, volume):
        self.volume = volume

    def get_stream_info(self, kind, index):
        return self.streams[kind][index]

    def set_source_prop(self, name, value):
        if self.source_props is None:
            return False
        self.source_props[name] = value
        return True

    # helpers
    def set_streams(self, kind, infos):
        self.streams[kind] = list(infos)
        self.props["n-audio" if kind == "audio" else "n-text"] = len(infos)


class FakeCameraBin(_FakePipeline, CameraBinPipeline):
    src_name = "camerabin"

    def __init__(self, sink):
        self._init_common()
        self.sink = sink
        self.sources = []
        self.caps = []
        self.mode = None
        self.location = "unset"
        self.captures = []
        self.ready = True
        self.previews = []
        self.profiles = {}
        self.valve_log = []
        self.chain = ["default"]
        self.fail_link = False
        self.fail_bin = False
        self.elements = {
            "gamma": {"gamma": 1.0},
            "balance": {"brightness": 0.0, "contrast": 1.0, "saturation": 1.0, "hue": 0.0},
        }
        self.ranges = {
            ("gamma", "gamma"): (0.01, 10.0, 1.0),
            ("balance", "brightness"): (-1.0, 1.0, 0.0),
            ("balance", "contrast"): (0.0, 2.0, 1.0),
            ("balance", "saturation"): (0.0, 2.0, 1.0),
            ("balance", "hue"): (-1.0, 1.0, 0.0),
        }
        self.synced = []

    def set_video_source(self, factory, node):
        if factory is None:
            return False
        self.sources.append((factory, node))
        return True

    def set_capture_caps(self, width, height):
        self.caps.append((width, height))

    def set_mode(self, mode):
        self.mode = mode

    def set_location(self, filename):
        self.location = filename

    def start_capture(self):
        self.captures.append(("start", self.mode, self.location))

    def stop_capture(self):
        self.captures.append(("stop", self.mode, self.location))

    def is_ready_for_capture(self):
        return self.ready

    def set_post_previews(self, enabled, caps=None):
        self.previews.append((enabled, caps))

    def set_profile(self, which, profile):
        self.profiles[which] = profile

    def set_valve_drop(self, drop):
        self.valve_log.append(drop)

    def make_filter_bin(self, filter_element):
        if self.fail_bin:
            return None
        return ("bin", filter_element)

    def link_filter(self, filter_bin):
        assert self.valve_log and self.valve_log[-1] is True
        if self.fail_link:
            self.chain.append(filter_bin)
            return False
        self.chain.append(filter_bin)
        return True

    def unlink_filter(self, filter_bin):
        self.chain.remove(filter_bin)

    def link_default(self):
        self.chain.append("default")
        return True

    def unlink_default(self):
        self.chain.remove("default")

    def sync_filter_state(self, filter_bin):
        self.synced.append(filter_bin)

    def has_element(self, name):
        return name in self.elements

    def get_param_range(self, element, prop):
        if element not in self.elements:
            return None
        return self.ranges.get((element, prop))

    def set_element_prop(self, element, prop, value):
        self.elements[element][prop] = value

    def get_element_prop(self, element, prop):
        return self.elements[element][prop]


def stream(index, code=None, name=None, codec=None):
    return StreamInfo(index, code, name, codec)


# ── player fixtures ────────────────────────────────────────────────────────
@pytest.fixture
def playback(context):
    from framebridge.playback import PlaybackPlayer

    player = PlaybackPlayer(context, pipeline_factory=FakePlaybin, features=ALL_FEATURES)
    context.iteration()
    return player


@pytest.fixture
def devices():
    return [
        CameraDevice("v4l2src", "/dev/video0", "Front camera",
                     [{"width": 640, "height": 480}, {"width": 1280, "height": 720}]),
        CameraDevice("v4l2src", "/dev/video1", "Back camera",
                     [{"width": (160, 1920), "height": (120, 1080)}]),
    ]


@pytest.fixture
def camera(context, devices):
    from framebridge.camera import CameraPlayer

    manager = CameraManager(discover=lambda: devices)
    player = CameraPlayer(context, pipeline_factory=FakeCameraBin,
                          device_manager=manager, features=ALL_FEATURES)
    context.iteration()
    return player


def drain(context, limit=50):
    """Iterate until nothing is queued or due."""
    for _ in range(limit):
        if not context.pending():
            return
        context.iteration()
    raise AssertionError("main context did not settle")
