# =========  gst_backend.py  =========
"""
gst_backend.py – every line that touches PyGObject / GStreamer

Public API
----------
Playbin(sink)          PlaybinPipeline over ``playbin``
CameraBin(sink)        CameraBinPipeline over ``camerabin`` + filter chain
AppSinkBinding(sink)   appsink feeding a VideoSink, navigation events back upstream
BusWatch(element)      bus thread → BusMessage callbacks
list_camera_devices() → [CameraDevice]
encoding_profile(EncodingProfile) → GstPbutils.EncodingProfile
caps_fields(caps)      → mapping for VideoInfo.from_caps

Nothing here runs on the render thread except construction; bus messages
and samples arrive on GStreamer threads and are handed to the players,
which re-post them to their MainContext.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable

from . import config
from .camera_device import CameraDevice
from .errors import ErrorKind, PipelineUnavailableError, kind_from_domain
from .pipeline import (BufferingQuery, BufferingStatsMode, BusMessage, CameraBinPipeline,
                       EncodingProfile, MessageType, PlaybinPipeline,
                       PlayFlags, PreviewSample, SeekFlags, State, StateChangeReturn,
                       StreamInfo)
from .video_sink import VideoBuffer, VideoSink

try:
    import gi

    gi.require_version("Gst", "1.0")
    gi.require_version("GstAudio", "1.0")
    gi.require_version("GstPbutils", "1.0")
    gi.require_version("GstVideo", "1.0")
    from gi.repository import Gst, GstAudio, GstPbutils, GstVideo
except (ImportError, ValueError) as exc:       # pragma: no cover - runtime guard
    Gst = None
    _GST_IMPORT_ERROR = exc
else:                                          # pragma: no cover - needs GStreamer
    Gst.init(None)
    _GST_IMPORT_ERROR = None

log = logging.getLogger(__name__)


def _require_gst() -> None:
    if Gst is None:
        raise PipelineUnavailableError(f"GStreamer is not available: {_GST_IMPORT_ERROR}")


def _make(factory: str, name: str | None = None):
    element = Gst.ElementFactory.make(factory, name)
    if element is None:
        raise PipelineUnavailableError(f"Unable to create {factory} element")
    return element


# ── caps helpers ───────────────────────────────────────────────────────────
def caps_fields(caps) -> dict:
    """First structure of raw video *caps* as a plain mapping."""
    s = caps.get_structure(0)
    fields = {"format": s.get_string("format")}
    for key in ("width", "height"):
        ok, value = s.get_int(key)
        if ok:
            fields[key] = value
    for key in ("framerate", "pixel-aspect-ratio"):
        ok, num, den = s.get_fraction(key)
        if ok:
            fields[key] = (num, den)
    info = GstVideo.VideoInfo.new_from_caps(caps)
    if info is not None:
        n_planes = info.finfo.n_planes
        fields["strides"] = tuple(info.stride[:n_planes])
        fields["offsets"] = tuple(info.offset[:n_planes])
        fields["size"] = info.size
    return fields


def _int_or_range(value):
    if isinstance(value, int):
        return value
    span = getattr(value, "range", None)
    if span is not None:
        return (span.start, span.stop)
    return None


def structure_sizes(caps) -> list[dict]:
    """width/height of every structure in device caps (ints or ranges)."""
    out = []
    for i in range(caps.get_size()):
        s = caps.get_structure(i)
        if not (s.has_field("width") and s.has_field("height")):
            continue
        width, height = _int_or_range(s.get_value("width")), _int_or_range(s.get_value("height"))
        if width is None or height is None:
            continue
        out.append({"width": width, "height": height})
    return out


def encoding_profile(profile: EncodingProfile | None):
    if profile is None:
        return None
    if profile.container:
        prof = GstPbutils.EncodingContainerProfile.new(
            "framebridge", None, Gst.Caps.from_string(profile.container), None)
        if profile.video:
            prof.add_profile(GstPbutils.EncodingVideoProfile.new(
                Gst.Caps.from_string(profile.video), None, None, 0))
        if profile.audio:
            prof.add_profile(GstPbutils.EncodingAudioProfile.new(
                Gst.Caps.from_string(profile.audio), None, None, 0))
        return prof
    caps = profile.image or profile.video
    return GstPbutils.EncodingVideoProfile.new(Gst.Caps.from_string(caps), None, None, 0)


# ── bus ────────────────────────────────────────────────────────────────────
def _error_fields(error, debug) -> dict:
    domain = error.domain or ""
    if "not-negotiated" in (debug or ""):
        kind = ErrorKind.NOT_NEGOTIATED
    else:
        kind = kind_from_domain(domain)
    return {"domain": domain, "message": error.message, "debug": debug, "kind": kind}


def _preview_sample(sample) -> PreviewSample | None:
    caps = sample.get_caps()
    buf = sample.get_buffer()
    if caps is None or buf is None:
        return None
    s = caps.get_structure(0)
    width, height = s.get_int("width")[1], s.get_int("height")[1]
    ok, info = buf.map(Gst.MapFlags.READ)
    if not ok:
        return None
    try:
        return PreviewSample(width, height, bytes(info.data))
    finally:
        buf.unmap(info)


def convert_message(msg, pipeline) -> BusMessage | None:
    t = msg.type
    src = msg.src.get_name() if msg.src is not None else ""
    out = BusMessage(MessageType.EOS, src, msg.src == pipeline)
    if t == Gst.MessageType.ERROR:
        out.type = MessageType.ERROR
        out.fields = _error_fields(*msg.parse_error())
    elif t == Gst.MessageType.WARNING:
        out.type = MessageType.WARNING
        out.fields = _error_fields(*msg.parse_warning())
    elif t == Gst.MessageType.EOS:
        out.type = MessageType.EOS
    elif t == Gst.MessageType.BUFFERING:
        out.type = MessageType.BUFFERING
        mode = msg.parse_buffering_stats()[0]
        out.fields = {"percent": msg.parse_buffering(), "mode": BufferingStatsMode(int(mode))}
    elif t == Gst.MessageType.STATE_CHANGED:
        old, new, pending = msg.parse_state_changed()
        out.type = MessageType.STATE_CHANGED
        out.fields = {"old": int(old), "new": int(new), "pending": int(pending)}
    elif t == Gst.MessageType.ASYNC_DONE:
        out.type = MessageType.ASYNC_DONE
    elif t == Gst.MessageType.DURATION_CHANGED:
        out.type = MessageType.DURATION
    elif t == Gst.MessageType.ELEMENT:
        s = msg.get_structure()
        if s is None:
            return None
        out.type = MessageType.ELEMENT
        out.fields = {"name": s.get_name()}
        if s.has_field("filename"):
            out.fields["filename"] = s.get_string("filename")
        if s.has_field("sample"):
            out.fields["sample"] = _preview_sample(s.get_value("sample"))
    else:
        return None
    return out


class BusWatch:
    """Polls *element*'s bus on a daemon thread."""

    MASK_NAMES = ("ERROR", "WARNING", "EOS", "BUFFERING", "STATE_CHANGED",
                  "ASYNC_DONE", "DURATION_CHANGED", "ELEMENT")

    def __init__(self, element):
        self._element = element
        self._callbacks: list[Callable[[BusMessage], None]] = []
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def add(self, callback: Callable[[BusMessage], None]) -> None:
        self._callbacks.append(callback)
        if self._thread is None:
            self._start()

    def dispatch(self, msg) -> None:
        """Convert one Gst.Message and hand it to every callback; never raises."""
        try:
            message = convert_message(msg, self._element)
        except Exception:
            log.exception("unable to convert bus message %r", msg)
            return
        if message is None:
            return
        for callback in list(self._callbacks):
            try:
                callback(message)
            except Exception:
                log.exception("bus callback failed on %s", message.type)

    def _start(self) -> None:
        bus = self._element.get_bus()
        mask = Gst.MessageType(0)
        for name in self.MASK_NAMES:
            mask |= getattr(Gst.MessageType, name)
        interval = config.BUS_POLL_INTERVAL_MS * Gst.MSECOND

        def _loop() -> None:
            while not self._stop.is_set():
                msg = bus.timed_pop_filtered(interval, mask)
                if msg is not None:
                    self.dispatch(msg)

        self._thread = threading.Thread(
            target=_loop, name=f"{self._element.get_name()}-bus", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread and thread.is_alive() and threading.current_thread() is not thread:
            thread.join(timeout=1.0)
        self._thread = None


# ── appsink → VideoSink ────────────────────────────────────────────────────
def navigation_event(event: str, x: float, y: float, button: int = 0):
    """``application/x-gst-navigation`` pointer event, None when it does not parse."""
    fields = f"application/x-gst-navigation, event=(string){event}, " \
             f"pointer_x=(double){float(x)}, pointer_y=(double){float(y)}"
    if event != "mouse-move":
        fields += f", button=(int){int(button)}"
    structure = Gst.Structure.new_from_string(fields)
    if structure is None:
        return None
    return Gst.Event.new_navigation(structure)


class AppSinkBinding:
    def __init__(self, sink: VideoSink, name: str | None = None):
        self.sink = sink
        self.appsink = _make("appsink", name or sink.name)
        self.appsink.set_property("caps", Gst.Caps.from_string(sink.get_caps()))
        self.appsink.set_property("emit-signals", True)
        self.appsink.set_property("sync", True)
        self.appsink.set_property("max-buffers", 1)
        self.appsink.set_property("enable-last-sample", False)
        self.appsink.connect("new-sample", self._on_sample, "pull-sample")
        self.appsink.connect("new-preroll", self._on_sample, "pull-preroll")
        pad = self.appsink.get_static_pad("sink")
        pad.add_probe(Gst.PadProbeType.EVENT_FLUSH, self._on_flush_event)
        self._caps = None
        sink.element = self.appsink
        sink.set_navigation_handler(self.send_navigation)

    def send_navigation(self, event: str, x: float, y: float, button: int = 0) -> bool:
        """Push a navigation event upstream from the appsink pad."""
        nav = navigation_event(event, x, y, button)
        if nav is None:
            return False
        return self.appsink.get_static_pad("sink").push_event(nav)

    def _on_flush_event(self, pad, info):
        event = info.get_event()
        if event is not None:
            if event.type == Gst.EventType.FLUSH_START:
                self.sink.flush_start()
            elif event.type == Gst.EventType.FLUSH_STOP:
                self.sink.flush_stop()
        return Gst.PadProbeReturn.OK

    def _on_sample(self, appsink, action):
        sample = appsink.emit(action)
        if sample is None:
            return Gst.FlowReturn.OK
        caps = sample.get_caps()
        if caps is not None and (self._caps is None or not caps.is_equal(self._caps)
                                 or self.sink.needs_caps()):
            if not self.sink.set_caps(caps_fields(caps)):
                return Gst.FlowReturn.NOT_NEGOTIATED
            self._caps = caps

        buf = sample.get_buffer()
        ok, info = buf.map(Gst.MapFlags.READ)
        if not ok:
            log.warning("%s: unable to map buffer", self.sink.name)
            return Gst.FlowReturn.OK
        try:
            memory = self.sink.acquire_memory(info.size)
            if memory is None:
                return Gst.FlowReturn.FLUSHING
            memory.data[:] = info.data
        finally:
            buf.unmap(info)
        pts = buf.pts if buf.pts != Gst.CLOCK_TIME_NONE else None
        ret = self.sink.render(VideoBuffer.from_memory(memory, pts))
        return Gst.FlowReturn(int(ret))


# ── shared element plumbing ────────────────────────────────────────────────
class _GstPipeline:
    element = None

    def _setup_bus(self) -> None:
        self._bus = BusWatch(self.element)

    def set_state(self, state: State) -> StateChangeReturn:
        return StateChangeReturn(int(self.element.set_state(Gst.State(int(state)))))

    def get_state(self) -> tuple[State, State]:
        _ret, current, pending = self.element.get_state(0)
        return State(int(current)), State(int(pending))

    def add_bus_watch(self, callback) -> None:
        self._bus.add(callback)

    def _connect_notify(self, target, name: str, callback, signals=()) -> None:
        if name in signals:
            target.connect(name, lambda *_args: callback(name))
        else:
            target.connect("notify::" + name, lambda *_args: callback(name))

    def dispose(self) -> None:
        self._bus.stop()
        self.element.set_state(Gst.State.NULL)


# ── playbin ────────────────────────────────────────────────────────────────
class Playbin(_GstPipeline, PlaybinPipeline):
    SIGNALS = ("audio-changed", "audio-tags-changed", "text-changed",
               "text-tags-changed", "video-changed")

    def __init__(self, sink: VideoSink):
        _require_gst()
        self.element = _make("playbin", "playbin")
        self._binding = AppSinkBinding(sink)
        self.element.set_property("video-sink", self._binding.appsink)
        self._setup_bus()

    def connect_notify(self, name: str, callback) -> None:
        self._connect_notify(self.element, name, callback, self.SIGNALS)

    def set_prop(self, name: str, value) -> None:
        if name == "flags":
            value = int(value)
        self.element.set_property(name, value)

    def get_prop(self, name: str):
        value = self.element.get_property(name)
        if name == "flags":
            return PlayFlags(int(value))
        return value

    def query_position(self):
        ok, position = self.element.query_position(Gst.Format.TIME)
        return position if ok else None

    def query_duration(self):
        ok, duration = self.element.query_duration(Gst.Format.TIME)
        return duration if ok and duration >= 0 else None

    def query_seeking(self):
        query = Gst.Query.new_seeking(Gst.Format.TIME)
        if not self.element.query(query):
            return None
        _fmt, seekable, _start, _end = query.parse_seeking()
        return seekable

    def query_buffering(self):
        query = Gst.Query.new_buffering(Gst.Format.PERCENT)
        if not self.element.query(query):
            return None
        busy, percent = query.parse_buffering_percent()
        mode, avg_in, avg_out, left = query.parse_buffering_stats()
        _fmt, start, stop, total = query.parse_buffering_range()
        return BufferingQuery(BufferingStatsMode(int(mode)), percent, busy,
                              avg_in, avg_out, left, start, stop, total)

    def seek(self, position_ns: int, flags: SeekFlags) -> bool:
        return self.element.seek_simple(Gst.Format.TIME, Gst.SeekFlags(int(flags)), position_ns)

    def get_volume(self) -> float:
        return self.element.get_volume(GstAudio.StreamVolumeFormat.CUBIC)

    def set_volume(self, volume: float) -> None:
        self.element.set_volume(GstAudio.StreamVolumeFormat.CUBIC, volume)

    def get_stream_info(self, kind: str, index: int) -> StreamInfo:
        tags = self.element.emit(f"get-{kind}-tags", index)
        info = StreamInfo(index)
        if tags is None:
            return info
        ok, code = tags.get_string(Gst.TAG_LANGUAGE_CODE)
        if ok:
            info.language_code = code
        ok, name = tags.get_string(Gst.TAG_LANGUAGE_NAME)
        if ok:
            info.language_name = name
        codec_tag = Gst.TAG_AUDIO_CODEC if kind == "audio" else Gst.TAG_SUBTITLE_CODEC
        ok, codec = tags.get_string(codec_tag)
        if ok:
            info.codec = codec
        return info

    def set_source_prop(self, name: str, value) -> bool:
        source = self.element.get_property("source")
        if source is None or source.find_property(name) is None:
            return False
        source.set_property(name, value)
        return True


# ── camerabin ──────────────────────────────────────────────────────────────
class CameraBin(_GstPipeline, CameraBinPipeline):
    MODES = {"image": 1, "video": 2}
    CHAIN = (("identity", "identity"), ("valve", "valve"), ("gamma", "gamma"),
             ("pre_colorspace", "videoconvert"), ("balance", "videobalance"),
             ("post_colorspace", "videoconvert"))

    def __init__(self, sink: VideoSink):
        _require_gst()
        self.element = _make("camerabin", "camerabin")
        self._source = _make("wrappercamerabinsrc", "camera_source")
        self.element.set_property("camera-source", self._source)
        self._binding = AppSinkBinding(sink)
        self.element.set_property("viewfinder-sink", self._binding.appsink)
        self._elements: dict = {}
        self._chain = self._build_filter_chain()
        if self._chain is None:
            log.warning("Unable to setup video filter, some features will be disabled")
        else:
            self._source.set_property("video-source-filter", self._chain)
        self._setup_bus()

    def _build_filter_chain(self):
        elements = {}
        for key, factory in self.CHAIN:
            element = Gst.ElementFactory.make(factory, key)
            if element is None:
                return None
            elements[key] = element
        chain = Gst.Bin.new("video_filter_bin")
        for key, _factory in self.CHAIN:
            chain.add(elements[key])
        ordered = [elements[key] for key, _factory in self.CHAIN]
        for upstream, downstream in zip(ordered, ordered[1:]):
            if not upstream.link(downstream):
                return None
        chain.add_pad(Gst.GhostPad.new("sink", elements["identity"].get_static_pad("sink")))
        chain.add_pad(Gst.GhostPad.new("src", elements["post_colorspace"].get_static_pad("src")))
        self._elements = elements
        return chain

    def connect_notify(self, name: str, callback) -> None:
        target = self._source if name == "ready-for-capture" else self.element
        self._connect_notify(target, name, callback)

    # capture control
    def set_video_source(self, factory, node: str) -> bool:
        if isinstance(factory, str):
            src = Gst.ElementFactory.make(factory, None)
        else:
            src = factory.create(None)
        if src is None:
            return False
        src.set_property("device", node)
        self._source.set_property("video-source", src)
        return True

    def set_capture_caps(self, width: int, height: int) -> None:
        caps = Gst.Caps.from_string(f"video/x-raw, width=(int){width}, height=(int){height}")
        for prop in ("video-capture-caps", "image-capture-caps", "viewfinder-caps"):
            self.element.set_property(prop, caps)

    def set_mode(self, mode: str) -> None:
        self.element.set_property("mode", self.MODES[mode])

    def set_location(self, filename) -> None:
        self.element.set_property("location", filename)

    def start_capture(self) -> None:
        self.element.emit("start-capture")

    def stop_capture(self) -> None:
        self.element.emit("stop-capture")

    def is_ready_for_capture(self) -> bool:
        return bool(self.element.get_property("ready-for-capture"))

    def set_post_previews(self, enabled: bool, caps=None) -> None:
        self.element.set_property("post-previews", enabled)
        if caps is not None:
            self.element.set_property("preview-caps", Gst.Caps.from_string(caps))

    def set_profile(self, which: str, profile) -> None:
        self.element.set_property(f"{which}-profile", encoding_profile(profile))

    # filter chain
    def set_valve_drop(self, drop: bool) -> None:
        if "valve" in self._elements:
            self._elements["valve"].set_property("drop", drop)

    def make_filter_bin(self, filter_element):
        if self._chain is None:
            return None
        filter_bin = Gst.Bin.new("custom_filter_bin")
        pre = Gst.ElementFactory.make("videoconvert", None)
        post = Gst.ElementFactory.make("videoconvert", None)
        if pre is None or post is None:
            return None
        for element in (pre, filter_element, post):
            filter_bin.add(element)
        if not (pre.link(filter_element) and filter_element.link(post)):
            log.warning("Unable to link filter element")
            return None
        filter_bin.add_pad(Gst.GhostPad.new("sink", pre.get_static_pad("sink")))
        filter_bin.add_pad(Gst.GhostPad.new("src", post.get_static_pad("src")))
        return filter_bin

    def link_filter(self, filter_bin) -> bool:
        self._chain.add(filter_bin)
        valve, gamma = self._elements["valve"], self._elements["gamma"]
        return valve.link(filter_bin) and filter_bin.link(gamma)

    def unlink_filter(self, filter_bin) -> None:
        valve, gamma = self._elements["valve"], self._elements["gamma"]
        valve.unlink(filter_bin)
        filter_bin.unlink(gamma)
        self._chain.remove(filter_bin)
        filter_bin.set_state(Gst.State.NULL)

    def link_default(self) -> bool:
        if self._chain is None:
            return False
        return self._elements["valve"].link(self._elements["gamma"])

    def unlink_default(self) -> None:
        if self._chain is not None:
            self._elements["valve"].unlink(self._elements["gamma"])

    def sync_filter_state(self, filter_bin) -> None:
        filter_bin.sync_state_with_parent()

    # gamma / colour balance
    def has_element(self, name: str) -> bool:
        return name in self._elements

    def get_param_range(self, element: str, prop: str):
        target = self._elements.get(element)
        if target is None:
            return None
        pspec = target.find_property(prop)
        if pspec is None:
            return None
        return (pspec.minimum, pspec.maximum, pspec.default_value)

    def set_element_prop(self, element: str, prop: str, value) -> None:
        self._elements[element].set_property(prop, value)

    def get_element_prop(self, element: str, prop: str):
        return self._elements[element].get_property(prop)


# ── devices ────────────────────────────────────────────────────────────────
def list_camera_devices() -> list[CameraDevice]:
    _require_gst()
    monitor = Gst.DeviceMonitor.new()
    monitor.add_filter("Video/Source", None)
    monitor.start()
    try:
        found = monitor.get_devices() or []
    finally:
        monitor.stop()

    factory = Gst.ElementFactory.find(config.CAMERA_SOURCE_FACTORY)
    devices = []
    for device in found:
        props = device.get_properties()
        node = None
        if props is not None:
            node = props.get_string("device.path") or props.get_string("api.v4l2.path")
        if not node:
            log.debug("skipping %s: no device node", device.get_display_name())
            continue
        caps = device.get_caps()
        devices.append(CameraDevice(factory or config.CAMERA_SOURCE_FACTORY, node,
                                    device.get_display_name(),
                                    structure_sizes(caps) if caps is not None else ()))
    return devices
