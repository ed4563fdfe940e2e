# =========  camera_device.py  =========
"""
Camera devices and the process-wide device manager.

A device is a (factory, node, name) tuple plus the frame sizes its source
pad advertises.  Only ``capture_resolution`` ever changes; doing so emits
``capture-resolution-changed(width, height)``.

CameraManager.get_default() lists devices once, lazily, through gst_backend.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, Mapping

from gi.repository import GObject

from .events import Accessor

log = logging.getLogger(__name__)


def _bounds(value) -> tuple[int, ...]:
    if isinstance(value, (tuple, list)):
        return tuple(int(v) for v in value[:2])
    return (int(value),)


def supported_resolutions(structures: Iterable[Mapping]) -> list[tuple[int, int]]:
    """Distinct (width, height) pairs, largest area first.

    Each structure carries ``width``/``height`` as an int or a
    ``(min, max)`` range; a range contributes both of its ends.
    """
    found: set[tuple[int, int]] = set()
    for structure in structures:
        if "width" not in structure or "height" not in structure:
            continue
        widths, heights = _bounds(structure["width"]), _bounds(structure["height"])
        if len(widths) == 1 and len(heights) == 1:
            found.add((widths[0], heights[0]))
        else:
            found.add((widths[0], heights[0]))
            found.add((widths[-1], heights[-1]))
    return sorted((r for r in found if r[0] > 0 and r[1] > 0),
                  key=lambda r: (r[0] * r[1], r[0]), reverse=True)


class CameraDevice(GObject.Object):
    __gsignals__ = {
        "capture-resolution-changed": (GObject.SignalFlags.RUN_LAST, None, (int, int)),
    }

    element_factory = Accessor(writable=False)
    node = Accessor(str, writable=False)
    name = Accessor(str, writable=False)
    capture_resolution = Accessor()

    def __init__(self, element_factory, node: str, name: str,
                 caps: Iterable[Mapping] = ()):
        super().__init__()
        self._factory = element_factory
        self._node = node
        self._name = name
        self._resolutions = supported_resolutions(caps)
        self._capture = self._resolutions[0] if self._resolutions else (0, 0)

    def get_element_factory(self):
        return self._factory

    def get_node(self) -> str:
        return self._node

    def get_name(self) -> str:
        return self._name

    def get_supported_resolutions(self) -> list[tuple[int, int]]:
        return list(self._resolutions)

    def get_capture_resolution(self) -> tuple[int, int]:
        return self._capture

    def set_capture_resolution(self, width: int, height: int | None = None) -> None:
        if height is None:
            width, height = width
        self._capture = (int(width), int(height))
        log.debug("%s: capture resolution %dx%d", self._node, *self._capture)
        self.emit("capture-resolution-changed", *self._capture)

    def __repr__(self):
        return f"<CameraDevice {self._name!r} {self._node}>"


class CameraManager:
    """Read-only list of the camera devices present at first use."""

    _default: "CameraManager | None" = None
    _default_lock = threading.Lock()

    def __init__(self, discover: Callable[[], list[CameraDevice]] | None = None):
        self._discover = discover
        self._devices: list[CameraDevice] | None = None
        self._lock = threading.Lock()

    @classmethod
    def get_default(cls) -> "CameraManager":
        with cls._default_lock:
            if cls._default is None:
                cls._default = cls()
            return cls._default

    def get_camera_devices(self) -> list[CameraDevice]:
        with self._lock:
            if self._devices is None:
                discover = self._discover
                if discover is None:
                    from .gst_backend import list_camera_devices
                    discover = list_camera_devices
                self._devices = list(discover())
                log.info("found %d camera device(s)", len(self._devices))
            return list(self._devices)
