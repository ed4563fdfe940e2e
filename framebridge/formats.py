# =========  formats.py  =========
"""
Raw video formats accepted by the sink and their memory layout.

``VideoInfo.from_caps`` takes the fields of a ``video/x-raw`` caps
structure as a plain mapping; gst_backend builds that mapping from the
negotiated ``Gst.Caps`` (including real strides/offsets when available).
Default strides follow GStreamer's layout rules: rows padded to 4 bytes,
chroma planes of 4:2:0 formats at half size rounded up.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Mapping

from .errors import NotNegotiatedError


class VideoFormat(Enum):
    RGB24  = "RGB"
    BGR24  = "BGR"
    RGBA32 = "RGBA"
    BGRA32 = "BGRA"
    AYUV   = "AYUV"
    I420   = "I420"
    YV12   = "YV12"

    @classmethod
    def from_caps_name(cls, name: str) -> "VideoFormat":
        try:
            return cls(name)
        except ValueError:
            raise NotNegotiatedError(f"unsupported video format {name!r}") from None

    @property
    def planar(self) -> bool:
        return self in (VideoFormat.I420, VideoFormat.YV12)

    @property
    def pixel_stride(self) -> int:
        if self in (VideoFormat.RGB24, VideoFormat.BGR24):
            return 3
        if self.planar:
            return 1
        return 4


def _round_up_4(n: int) -> int:
    return (n + 3) & ~3


def _fraction(value, default=(1, 1)) -> tuple[int, int]:
    if value is None:
        return default
    if isinstance(value, Fraction):
        return value.numerator, value.denominator
    if isinstance(value, str):
        num, _, den = value.partition("/")
        return int(num), int(den or 1)
    num, den = value
    return int(num), int(den)


@dataclass(frozen=True)
class VideoInfo:
    format: VideoFormat
    width: int
    height: int
    fps_n: int = 0
    fps_d: int = 1
    par_n: int = 1
    par_d: int = 1
    strides: tuple[int, ...] = ()
    offsets: tuple[int, ...] = ()
    size: int = 0

    @classmethod
    def from_caps(cls, caps: Mapping) -> "VideoInfo":
        """Parse ``video/x-raw`` caps fields; raises NotNegotiatedError."""
        if "format" not in caps:
            raise NotNegotiatedError("caps carry no format")
        fmt = VideoFormat.from_caps_name(caps["format"])
        try:
            width, height = int(caps["width"]), int(caps["height"])
        except (KeyError, TypeError, ValueError):
            raise NotNegotiatedError("caps carry no usable width/height") from None
        if width <= 0 or height <= 0:
            raise NotNegotiatedError(f"invalid frame size {width}x{height}")

        fps_n, fps_d = _fraction(caps.get("framerate"), (0, 1))
        par_n, par_d = _fraction(caps.get("pixel-aspect-ratio"))
        if par_n <= 0 or par_d <= 0:
            raise NotNegotiatedError(f"invalid pixel-aspect-ratio {par_n}/{par_d}")

        strides, offsets, size = _layout(fmt, width, height)
        if caps.get("strides"):
            strides = tuple(int(s) for s in caps["strides"])
        if caps.get("offsets"):
            offsets = tuple(int(o) for o in caps["offsets"])
        if caps.get("size"):
            size = int(caps["size"])
        return cls(fmt, width, height, fps_n, fps_d, par_n, par_d,
                   strides, offsets, size)

    @property
    def n_planes(self) -> int:
        return 3 if self.format.planar else 1

    def plane_size(self, plane: int) -> tuple[int, int]:
        """(width, height) in samples of *plane*."""
        if plane == 0:
            return self.width, self.height
        return (self.width + 1) // 2, (self.height + 1) // 2


def _layout(fmt: VideoFormat, width: int, height: int):
    if fmt.planar:
        y_stride = _round_up_4(width)
        c_stride = _round_up_4((width + 1) // 2)
        c_height = (height + 1) // 2
        o1 = y_stride * height
        o2 = o1 + c_stride * c_height
        return (y_stride, c_stride, c_stride), (0, o1, o2), o2 + c_stride * c_height
    stride = _round_up_4(width * fmt.pixel_stride)
    return (stride,), (0,), stride * height


def caps_string(formats) -> str:
    """The ``video/x-raw`` template caps accepting *formats*."""
    names = ", ".join(f.value for f in formats)
    return ("video/x-raw, format=(string){ %s }, "
            "width=(int)[ 1, 2147483647 ], height=(int)[ 1, 2147483647 ], "
            "framerate=(fraction)[ 0/1, 2147483647/1 ]" % names)
