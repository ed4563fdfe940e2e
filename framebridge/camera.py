# =========  camera.py  =========
"""
CameraPlayer – camera viewfinder, photos and recordings over camerabin

Public API
----------
get_camera_devices() / get_camera_device() / set_camera_device(device)
set_playing(bool) / get_playing()
is_ready_for_capture()
take_photo(filename) / take_photo_pixbuf()
start_video_recording(filename) / stop_video_recording() / is_recording_video()
set_filter(element | None) / get_filter() / remove_filter()
supports_gamma_correction() / get_gamma_range() / get_gamma() / set_gamma(v)
supports_color_balance() / get_color_balance_property_range(prop)
get_color_balance_property(prop) / set_color_balance_property(prop, v)
set_video_profile(profile) / set_photo_profile(profile)
Signals
-------
Player signals plus photo-saved(), photo-taken(surface), video-saved(),
ready-for-capture(bool)
"""
from __future__ import annotations

import logging

from gi.repository import GObject

from . import config
from .camera_device import CameraDevice, CameraManager
from .errors import kind_from_domain
from .events import Accessor, MainContext
from .pipeline import BusMessage, EncodingProfile, MessageType, PreviewSample, State
from .player import Player, pipeline_playing
from .video_sink import VideoSink

log = logging.getLogger(__name__)

COLOR_BALANCE_PROPERTIES = ("brightness", "contrast", "saturation", "hue")
PREVIEW_CAPS = "video/x-raw, format=(string)RGB"


def default_video_profile() -> EncodingProfile:
    container, video, audio = config.VIDEO_PROFILE
    return EncodingProfile(container=container, video=video, audio=audio)


def default_photo_profile() -> EncodingProfile:
    return EncodingProfile(image=config.PHOTO_PROFILE)


def preview_to_surface(sample: PreviewSample):
    """Packed RGB preview → pygame Surface."""
    import pygame
    stride = len(sample.data) // sample.height if sample.height else 0
    row = sample.width * 3
    data = sample.data
    if stride != row:
        data = b"".join(data[y * stride:y * stride + row] for y in range(sample.height))
    return pygame.image.frombuffer(bytes(data), (sample.width, sample.height), "RGB").copy()


class CameraPlayer(Player):
    __gsignals__ = {
        "photo-saved": (GObject.SignalFlags.RUN_LAST, None, ()),
        "photo-taken": (GObject.SignalFlags.RUN_LAST, None, (object,)),
        "video-saved": (GObject.SignalFlags.RUN_LAST, None, ()),
        "ready-for-capture": (GObject.SignalFlags.RUN_LAST, None, (bool,)),
    }

    device = Accessor()
    filter = Accessor()
    gamma = Accessor()
    brightness = Accessor()
    contrast = Accessor()
    saturation = Accessor()
    hue = Accessor()
    video_profile = Accessor()
    photo_profile = Accessor()

    def __init__(self, context: MainContext | None = None, pipeline_factory=None,
                 device_manager: CameraManager | None = None, features=None):
        super().__init__()
        self._context = context or MainContext.default()
        if pipeline_factory is None:
            from .gst_backend import CameraBin
            pipeline_factory = CameraBin
        self._manager = device_manager or CameraManager.get_default()

        sink = VideoSink(self._context, features, name="camera-sink")
        self._pipeline = pipeline_factory(sink)

        self._device: CameraDevice | None = None
        self._device_handler: int | None = None
        self._filter = None
        self._filter_bin = None
        self._is_idle = True
        self._is_recording = False
        self._photo_filename: str | None = None
        self._video_profile: EncodingProfile | None = None
        self._photo_profile: EncodingProfile | None = None

        self._bind_sink(sink)
        self._pipeline.add_bus_watch(self._bus_message_cb)
        self._pipeline.connect_notify("ready-for-capture", self._ready_for_capture_cb)

        self.set_video_profile(default_video_profile())
        self.set_photo_profile(default_photo_profile())

        devices = self._manager.get_camera_devices()
        if devices:
            self.set_camera_device(devices[0])
        else:
            log.warning("no camera devices found")

    # ── Player interface ───────────────────────────────────────────────
    def get_pipeline(self):
        return self._pipeline.element or self._pipeline

    def get_playing(self) -> bool:
        return pipeline_playing(self._pipeline)

    def set_playing(self, playing: bool) -> None:
        if self.get_playing() == playing:
            return
        if not playing and self._is_recording:
            self.stop_video_recording()
            self._is_recording = False
        self._pipeline.set_state(State.PLAYING if playing else State.NULL)
        self.notify("playing")

    def get_audio_volume(self) -> float:
        return 0.0

    def set_audio_volume(self, volume: float) -> None:
        pass

    def get_idle(self) -> bool:
        return self._is_idle

    def _set_idle(self, idle: bool) -> None:
        if self._is_idle != idle:
            self._is_idle = idle
            self.notify("idle")

    # ── devices ────────────────────────────────────────────────────────
    def get_camera_devices(self) -> list[CameraDevice]:
        return self._manager.get_camera_devices()

    def get_camera_device(self) -> CameraDevice | None:
        return self._device

    def get_device(self) -> CameraDevice | None:
        return self._device

    def set_device(self, device: CameraDevice) -> None:
        self.set_camera_device(device)

    def set_camera_device(self, device: CameraDevice) -> bool:
        if device is None:
            log.warning("set_camera_device: no device given")
            return False
        if self._is_recording:
            self.stop_video_recording()

        was_playing = self.get_playing()
        if was_playing:
            self._pipeline.set_state(State.NULL)

        log.debug("using camera %s (%s)", device.get_name(), device.get_node())
        if not self._pipeline.set_video_source(device.get_element_factory(), device.get_node()):
            log.warning("Unable to create video source for %s", device.get_node())
            return False

        if self._device is not None and self._device_handler is not None:
            self._device.disconnect(self._device_handler)
        self._device = device
        self._device_handler = device.connect(
            "capture-resolution-changed", self._capture_resolution_changed_cb)

        width, height = device.get_capture_resolution()
        self._pipeline.set_capture_caps(width, height)

        if was_playing:
            self._pipeline.set_state(State.PLAYING)
        self.notify("device")
        return True

    def _capture_resolution_changed_cb(self, device, width, height):
        if device is not self._device:
            return
        log.debug("capture resolution changed to %dx%d", width, height)
        was_playing = self.get_playing()
        if was_playing:
            self._pipeline.set_state(State.READY)
        self._pipeline.set_capture_caps(width, height)
        if was_playing:
            self._pipeline.set_state(State.PLAYING)

    # ── capture ────────────────────────────────────────────────────────
    def is_ready_for_capture(self) -> bool:
        return self._pipeline.is_ready_for_capture()

    def _ready_for_capture_cb(self, name: str) -> None:
        self._context.post(self._emit_ready_for_capture)

    def _emit_ready_for_capture(self) -> None:
        self.emit("ready-for-capture", self.is_ready_for_capture())

    def is_recording_video(self) -> bool:
        return self._is_recording

    def start_video_recording(self, filename: str) -> bool:
        if self._is_recording:
            return True
        if not self.get_playing():
            log.warning("Cannot record: camera is not playing")
            return False
        if not self.is_ready_for_capture():
            log.warning("Cannot record: camera is not ready for capture")
            return False
        self._pipeline.set_mode("video")
        self._pipeline.set_location(filename)
        self._pipeline.start_capture()
        self._is_recording = True
        return True

    def stop_video_recording(self) -> None:
        if not self._is_recording or not self.get_playing():
            return
        state, _pending = self._pipeline.get_state()
        if state == State.PLAYING:
            self._pipeline.stop_capture()
        else:
            log.warning("pipeline is in a bad state, restarting it")
            self._pipeline.set_state(State.NULL)
            self._pipeline.set_state(State.PLAYING)
            self._is_recording = False

    def take_photo(self, filename: str) -> bool:
        if not self.get_playing() or not self.is_ready_for_capture():
            log.warning("Cannot take photo: camera is not ready")
            return False
        if self._is_recording:
            log.warning("Cannot take photo while recording video")
            return False
        self._photo_filename = filename
        self._pipeline.set_location(filename)
        self._pipeline.set_mode("image")
        self._pipeline.start_capture()
        return True

    def take_photo_pixbuf(self) -> bool:
        if not self.get_playing() or not self.is_ready_for_capture():
            log.warning("Cannot take photo: camera is not ready")
            return False
        if self._is_recording:
            log.warning("Cannot take photo while recording video")
            return False
        self._pipeline.set_post_previews(True, PREVIEW_CAPS)
        self._photo_filename = None
        self._pipeline.set_location(None)
        self._pipeline.set_mode("image")
        self._pipeline.start_capture()
        return True

    # ── encoding profiles ──────────────────────────────────────────────
    def get_video_profile(self) -> EncodingProfile | None:
        return self._video_profile

    def set_video_profile(self, profile: EncodingProfile | None) -> None:
        self._video_profile = profile
        self._pipeline.set_profile("video", profile)
        self.notify("video-profile")

    def get_photo_profile(self) -> EncodingProfile | None:
        return self._photo_profile

    def set_photo_profile(self, profile: EncodingProfile | None) -> None:
        self._photo_profile = profile
        self._pipeline.set_profile("image", profile)
        self.notify("photo-profile")

    # ── filter ─────────────────────────────────────────────────────────
    def get_filter(self):
        return self._filter

    def set_filter(self, filter_element) -> bool:
        if filter_element is None and self._filter is None:
            return True

        self._pipeline.set_valve_drop(True)
        try:
            if self._filter_bin is not None:
                self._pipeline.unlink_filter(self._filter_bin)
                self._filter_bin = None
                self._filter = None
            else:
                self._pipeline.unlink_default()

            if filter_element is None:
                ok = self._pipeline.link_default()
            else:
                ok = self._insert_filter(filter_element)
        finally:
            self._pipeline.set_valve_drop(False)
        self.notify("filter")
        return ok

    def _insert_filter(self, filter_element) -> bool:
        filter_bin = self._pipeline.make_filter_bin(filter_element)
        if filter_bin is None:
            log.warning("Unable to create filter bin")
            self._pipeline.link_default()
            return False
        if not self._pipeline.link_filter(filter_bin):
            log.warning("Unable to link filter")
            self._pipeline.unlink_filter(filter_bin)
            self._pipeline.link_default()
            return False
        self._filter_bin = filter_bin
        self._filter = filter_element
        if self.get_playing():
            self._pipeline.sync_filter_state(filter_bin)
        return True

    def remove_filter(self) -> None:
        self.set_filter(None)

    # ── gamma ──────────────────────────────────────────────────────────
    def supports_gamma_correction(self) -> bool:
        return self._pipeline.has_element("gamma")

    def get_gamma_range(self):
        """(min, max, default) of the gamma element, None if absent."""
        if not self.supports_gamma_correction():
            return None
        return self._pipeline.get_param_range("gamma", "gamma")

    def get_gamma(self):
        if not self.supports_gamma_correction():
            return None
        return self._pipeline.get_element_prop("gamma", "gamma")

    def set_gamma(self, value: float) -> bool:
        if not self.supports_gamma_correction():
            log.warning("gamma correction not supported")
            return False
        value = self._clamp("gamma", "gamma", value)
        self._pipeline.set_element_prop("gamma", "gamma", value)
        self.notify("gamma")
        return True

    # ── colour balance ─────────────────────────────────────────────────
    def supports_color_balance(self) -> bool:
        return self._pipeline.has_element("balance")

    def get_color_balance_property_range(self, prop: str):
        if prop not in COLOR_BALANCE_PROPERTIES or not self.supports_color_balance():
            return None
        return self._pipeline.get_param_range("balance", prop)

    def get_color_balance_property(self, prop: str):
        if prop not in COLOR_BALANCE_PROPERTIES or not self.supports_color_balance():
            return None
        return self._pipeline.get_element_prop("balance", prop)

    def set_color_balance_property(self, prop: str, value: float) -> bool:
        if prop not in COLOR_BALANCE_PROPERTIES:
            log.warning("unknown colour balance property %r", prop)
            return False
        if not self.supports_color_balance():
            log.warning("colour balance not supported")
            return False
        value = self._clamp("balance", prop, value)
        self._pipeline.set_element_prop("balance", prop, value)
        self.notify(prop)
        return True

    def _clamp(self, element: str, prop: str, value: float) -> float:
        bounds = self._pipeline.get_param_range(element, prop)
        value = float(value)
        if bounds is None:
            return value
        low, high, _default = bounds
        return max(low, min(high, value))

    # property surface for brightness/contrast/saturation/hue
    def get_brightness(self):
        return self.get_color_balance_property("brightness")

    def set_brightness(self, value):
        self.set_color_balance_property("brightness", value)

    def get_contrast(self):
        return self.get_color_balance_property("contrast")

    def set_contrast(self, value):
        self.set_color_balance_property("contrast", value)

    def get_saturation(self):
        return self.get_color_balance_property("saturation")

    def set_saturation(self, value):
        self.set_color_balance_property("saturation", value)

    def get_hue(self):
        return self.get_color_balance_property("hue")

    def set_hue(self, value):
        self.set_color_balance_property("hue", value)

    # ── bus ────────────────────────────────────────────────────────────
    def _bus_message_cb(self, message: BusMessage) -> None:
        self._context.post(self.handle_bus_message, message)

    def handle_bus_message(self, message: BusMessage) -> None:
        kind = message.type
        if kind is MessageType.ERROR:
            text = message.fields.get("message", "")
            log.warning("error: %s", text)
            self._set_idle(True)
            self.emit("error", message.fields.get("kind")
                      or kind_from_domain(message.fields.get("domain", "")), text)
        elif kind is MessageType.STATE_CHANGED:
            if message.src == "camerabin" or message.from_pipeline:
                new = State(message.fields["new"])
                self._set_idle(new != State.PLAYING)
        elif kind is MessageType.ELEMENT:
            self._on_element(message)

    def _on_element(self, message: BusMessage) -> None:
        name = message.fields.get("name")
        if name == "preview-image":
            sample = message.fields.get("sample")
            if sample is None:
                return
            self._pipeline.set_post_previews(False)
            self.emit("photo-taken", preview_to_surface(sample))
        elif name == "image-done":
            filename = message.fields.get("filename")
            if self._photo_filename is not None and filename == self._photo_filename:
                self.emit("photo-saved")
        elif name == "video-done":
            self.emit("video-saved")
            self._is_recording = False

    # ── teardown ───────────────────────────────────────────────────────
    def dispose(self) -> None:
        if self._device is not None and self._device_handler is not None:
            self._device.disconnect(self._device_handler)
            self._device_handler = None
        self._pipeline.dispose()
        self._bind_sink(None)
        self._release_frame()
