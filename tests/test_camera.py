import logging

import pytest

from framebridge.camera import (PREVIEW_CAPS, CameraPlayer, default_photo_profile,
                                default_video_profile, preview_to_surface)
from framebridge.camera_device import CameraDevice, CameraManager, supported_resolutions
from framebridge.errors import ErrorKind
from framebridge.pipeline import MessageType, PreviewSample, State

from conftest import ALL_FEATURES, FakeCameraBin, drain


def start(camera, context):
    camera.set_playing(True)
    drain(context)


# ── devices ────────────────────────────────────────────────────────────────
def test_supported_resolutions_sorted_by_area():
    caps = [
        {"width": 640, "height": 480},
        {"width": 1280, "height": 720},
        {"width": 640, "height": 480},
        {"width": (160, 1920), "height": (120, 1080)},
        {"width": 0, "height": 0},
        {"format": "YUY2"},
    ]
    assert supported_resolutions(caps) == [(1920, 1080), (1280, 720), (640, 480), (160, 120)]


def test_device_capture_resolution(devices, recorder):
    front, back = devices
    assert front.get_capture_resolution() == (1280, 720)
    assert back.get_supported_resolutions() == [(1920, 1080), (160, 120)]
    assert CameraDevice("v4l2src", "/dev/video9", "empty").get_capture_resolution() == (0, 0)

    recorder.watch(front, "capture-resolution-changed")
    front.set_capture_resolution((640, 480))
    assert front.get_capture_resolution() == (640, 480)
    assert recorder.of("capture-resolution-changed") == [(640, 480)]


def test_manager_lists_devices_once(devices):
    calls = []

    def discover():
        calls.append(1)
        return devices

    manager = CameraManager(discover=discover)
    assert manager.get_camera_devices() == devices
    assert manager.get_camera_devices() == devices
    assert calls == [1]


def test_default_manager_is_shared(monkeypatch):
    monkeypatch.setattr(CameraManager, "_default", None)
    assert CameraManager.get_default() is CameraManager.get_default()


# ── setup ──────────────────────────────────────────────────────────────────
def test_first_device_selected(camera, devices):
    pipeline = camera.get_pipeline()
    assert camera.get_camera_device() is devices[0]
    assert camera.get_camera_devices() == devices
    assert pipeline.sources == [("v4l2src", "/dev/video0")]
    assert pipeline.caps == [(1280, 720)]
    assert pipeline.profiles == {"video": default_video_profile(),
                                 "image": default_photo_profile()}
    assert camera.get_idle()
    assert not camera.get_playing()


def test_no_devices_leaves_camera_unset(context, caplog):
    with caplog.at_level(logging.WARNING, logger="framebridge.camera"):
        player = CameraPlayer(context, pipeline_factory=FakeCameraBin,
                              device_manager=CameraManager(discover=list),
                              features=ALL_FEATURES)
    assert player.get_camera_device() is None
    assert "no camera devices" in caplog.text


def test_playing_toggles_idle(camera, context):
    start(camera, context)
    assert camera.get_playing()
    assert not camera.get_idle()
    assert camera.get_audio_volume() == 0.0

    camera.set_playing(False)
    drain(context)
    assert camera.get_pipeline().state == State.NULL
    assert camera.get_idle()


def test_switch_device_while_playing(camera, context, devices, recorder):
    start(camera, context)
    pipeline = camera.get_pipeline()
    recorder.watch(camera, "notify::device")
    del pipeline.state_log[:]

    assert camera.set_camera_device(devices[1])
    assert pipeline.state_log == [State.NULL, State.PLAYING]
    assert pipeline.sources[-1] == ("v4l2src", "/dev/video1")
    assert pipeline.caps[-1] == (1920, 1080)
    assert recorder.names() == ["notify::device"]


def test_capture_resolution_follows_current_device(camera, context, devices):
    start(camera, context)
    pipeline = camera.get_pipeline()
    camera.set_camera_device(devices[1])
    del pipeline.state_log[:]

    devices[1].set_capture_resolution(160, 120)
    assert pipeline.caps[-1] == (160, 120)
    assert pipeline.state_log == [State.READY, State.PLAYING]

    devices[0].set_capture_resolution(640, 480)
    assert pipeline.caps[-1] == (160, 120)


def test_rejected_devices(camera, devices):
    assert not camera.set_camera_device(None)
    assert not camera.set_camera_device(CameraDevice(None, "/dev/video7", "broken"))
    assert camera.get_camera_device() is devices[0]


def test_ready_for_capture_signal(camera, context, recorder):
    recorder.watch(camera, "ready-for-capture")
    pipeline = camera.get_pipeline()
    pipeline.ready = False
    pipeline.fire("ready-for-capture")
    assert recorder.names() == []
    context.iteration()
    assert recorder.of("ready-for-capture") == [(False,)]


# ── photos and recordings ──────────────────────────────────────────────────
def test_take_photo_while_recording_is_refused(camera, context, recorder):
    start(camera, context)
    pipeline = camera.get_pipeline()
    recorder.watch(camera, "photo-saved")

    assert camera.start_video_recording("out.ogv")
    assert camera.is_recording_video()
    captures = list(pipeline.captures)

    assert not camera.take_photo("shot.jpg")
    pipeline.post(MessageType.ELEMENT, name="image-done", filename="shot.jpg")
    drain(context)
    assert pipeline.captures == captures == [("start", "video", "out.ogv")]
    assert pipeline.location == "out.ogv"
    assert camera.is_recording_video()
    assert recorder.names() == []
    assert not camera.take_photo_pixbuf()


def test_stopping_playback_stops_recording(camera, context):
    start(camera, context)
    camera.start_video_recording("out.ogv")
    camera.set_playing(False)
    assert camera.get_pipeline().captures[-1] == ("stop", "video", "out.ogv")
    assert not camera.is_recording_video()
    assert not camera.get_playing()


def test_recording_requires_playing_and_ready(camera, context):
    assert not camera.start_video_recording("out.ogv")
    start(camera, context)
    camera.get_pipeline().ready = False
    assert not camera.start_video_recording("out.ogv")
    assert not camera.take_photo("shot.jpg")
    assert camera.get_pipeline().captures == []


def test_video_done_ends_recording(camera, context, recorder):
    start(camera, context)
    recorder.watch(camera, "video-saved")
    camera.start_video_recording("out.ogv")
    assert camera.start_video_recording("other.ogv")
    camera.stop_video_recording()
    camera.get_pipeline().post(MessageType.ELEMENT, name="video-done")
    drain(context)
    assert recorder.names() == ["video-saved"]
    assert not camera.is_recording_video()


def test_photo_saved_matches_filename(camera, context, recorder):
    start(camera, context)
    pipeline = camera.get_pipeline()
    recorder.watch(camera, "photo-saved")
    assert camera.take_photo("shot.jpg")
    assert pipeline.captures == [("start", "image", "shot.jpg")]

    pipeline.post(MessageType.ELEMENT, name="image-done", filename="other.jpg")
    pipeline.post(MessageType.ELEMENT, name="image-done", filename="shot.jpg")
    drain(context)
    assert recorder.names() == ["photo-saved"]


def test_photo_preview_is_delivered_as_surface(camera, context, recorder):
    start(camera, context)
    pipeline = camera.get_pipeline()
    recorder.watch(camera, "photo-taken")
    assert camera.take_photo_pixbuf()
    assert pipeline.previews == [(True, PREVIEW_CAPS)]
    assert pipeline.location is None

    pipeline.post(MessageType.ELEMENT, name="preview-image",
                  sample=PreviewSample(2, 1, bytes([255, 0, 0, 0, 255, 0])))
    drain(context)
    (surface,), = recorder.of("photo-taken")
    assert surface.get_size() == (2, 1)
    assert tuple(surface.get_at((1, 0)))[:3] == (0, 255, 0)
    assert pipeline.previews[-1] == (False, None)


def test_preview_rows_are_unpadded():
    data = bytes([1, 2, 3, 4, 5, 6, 0, 0, 7, 8, 9, 10, 11, 12, 0, 0])
    surface = preview_to_surface(PreviewSample(2, 2, data))
    assert tuple(surface.get_at((1, 1)))[:3] == (10, 11, 12)
    assert tuple(surface.get_at((0, 1)))[:3] == (7, 8, 9)


def test_error_message(camera, context, recorder):
    start(camera, context)
    recorder.watch(camera, "error")
    camera.get_pipeline().post(MessageType.ERROR, message="device busy",
                               domain="gst-resource-error-quark")
    drain(context)
    assert recorder.of("error") == [(ErrorKind.IO_OR_URI, "device busy")]
    assert camera.get_idle()


# ── filters ────────────────────────────────────────────────────────────────
def test_filter_swap_holds_valve(camera, context):
    pipeline = camera.get_pipeline()
    assert camera.set_filter("sepia")
    assert pipeline.chain == [("bin", "sepia")]
    assert pipeline.valve_log == [True, False]
    assert camera.get_filter() == "sepia"
    assert pipeline.synced == []

    start(camera, context)
    assert camera.set_filter("edge")
    assert pipeline.chain == [("bin", "edge")]
    assert pipeline.synced == [("bin", "edge")]

    camera.remove_filter()
    assert pipeline.chain == ["default"]
    assert camera.get_filter() is None
    assert pipeline.valve_log == [True, False] * 3


def test_removing_absent_filter_is_a_no_op(camera):
    assert camera.set_filter(None)
    assert camera.get_pipeline().valve_log == []


@pytest.mark.parametrize("failure", ["fail_link", "fail_bin"])
def test_failed_filter_restores_default(camera, failure):
    pipeline = camera.get_pipeline()
    setattr(pipeline, failure, True)
    assert not camera.set_filter("sepia")
    assert pipeline.chain == ["default"]
    assert pipeline.valve_log == [True, False]
    assert camera.get_filter() is None


# ── gamma and colour balance ───────────────────────────────────────────────
def test_gamma_is_clamped(camera):
    assert camera.supports_gamma_correction()
    assert camera.get_gamma_range() == (0.01, 10.0, 1.0)
    assert camera.set_gamma(20)
    assert camera.get_gamma() == 10.0
    camera.set_property("gamma", 2.2)
    assert camera.get_property("gamma") == 2.2


def test_color_balance(camera):
    assert camera.supports_color_balance()
    assert camera.get_color_balance_property_range("hue") == (-1.0, 1.0, 0.0)
    assert camera.set_color_balance_property("brightness", -3)
    assert camera.get_brightness() == -1.0
    camera.set_properties(contrast=1.5, saturation=0.5)
    assert camera.get_contrast() == 1.5
    assert camera.get_saturation() == 0.5
    assert not camera.set_color_balance_property("sharpness", 1.0)
    assert camera.get_color_balance_property("sharpness") is None


def test_missing_elements(camera):
    pipeline = camera.get_pipeline()
    del pipeline.elements["gamma"]
    del pipeline.elements["balance"]
    assert not camera.supports_gamma_correction()
    assert camera.get_gamma_range() is None
    assert camera.get_gamma() is None
    assert not camera.set_gamma(1.0)
    assert not camera.supports_color_balance()
    assert camera.get_hue() is None
    assert not camera.set_color_balance_property("hue", 0.1)


def test_dispose_detaches_device(camera, devices):
    pipeline = camera.get_pipeline()
    camera.dispose()
    assert pipeline.disposed
    devices[0].set_capture_resolution(640, 480)
    assert pipeline.caps == [(1280, 720)]
