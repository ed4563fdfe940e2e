# =========  renderers.py  =========
"""
Upload strategies, one per pixel format, in priority order.

Each renderer maps the planes of a decoded buffer into textures (numpy views,
no copy) and attaches the program that turns those layers into RGBA when
the material is sampled.  YUV formats need a program: the float path stands
in for GLSL shaders, the fixed-point path for ARB fragment programs.

A renderer is usable when its flags are a subset of the detected features;
``find_renderer`` returns the first usable one for a format.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntFlag
from typing import Sequence

import numpy as np

from . import config
from .errors import UploadError
from .formats import VideoFormat, VideoInfo
from .material import Material, Program, Texture


class Feature(IntFlag):
    NONE             = 0
    MULTI_TEXTURE    = 1 << 0
    FRAGMENT_PROGRAM = 1 << 1
    SHADER_PROGRAM   = 1 << 2


def detect_features() -> Feature:
    features = Feature.NONE
    if config.ENABLE_MULTI_TEXTURE:
        features |= Feature.MULTI_TEXTURE
    if config.ENABLE_FRAGMENT_PROGRAMS:
        features |= Feature.FRAGMENT_PROGRAM
    if config.ENABLE_SHADER_PROGRAMS:
        features |= Feature.SHADER_PROGRAM
    return features


# ── programs ───────────────────────────────────────────────────────────────
def _opaque(rgb: np.ndarray) -> np.ndarray:
    alpha = np.full(rgb.shape[:2] + (1,), 255, np.uint8)
    return np.concatenate((rgb, alpha), axis=2)


def _rgb(layers):
    return _opaque(layers[0].data)


def _bgr(layers):
    return _opaque(layers[0].data[..., ::-1])


def _rgba(layers):
    return layers[0].data


def _bgra(layers):
    return layers[0].data[..., [2, 1, 0, 3]]


def _yuv_float(y, u, v, a=None) -> np.ndarray:
    y = 1.164 * (y.astype(np.float32) / 255.0 - 0.0625)
    u = u.astype(np.float32) / 255.0 - 0.5
    v = v.astype(np.float32) / 255.0 - 0.5
    rgb = np.stack((y + 1.596 * v,
                    y - 0.391 * u - 0.813 * v,
                    y + 2.016 * u), axis=2)
    rgb = np.clip(rgb * 255.0 + 0.5, 0, 255).astype(np.uint8)
    if a is None:
        return _opaque(rgb)
    return np.concatenate((rgb, a[..., None]), axis=2)


def _yuv_fixed(y, u, v, a=None) -> np.ndarray:
    # BT.601 in 8.8 fixed point
    c = y.astype(np.int32) - 16
    d = u.astype(np.int32) - 128
    e = v.astype(np.int32) - 128
    rgb = np.stack(((298 * c + 409 * e + 128) >> 8,
                    (298 * c - 100 * d - 208 * e + 128) >> 8,
                    (298 * c + 516 * d + 128) >> 8), axis=2)
    rgb = np.clip(rgb, 0, 255).astype(np.uint8)
    if a is None:
        return _opaque(rgb)
    return np.concatenate((rgb, a[..., None]), axis=2)


def _ayuv_program(convert) -> Program:
    def program(layers):
        d = layers[0].data
        return convert(d[..., 1], d[..., 2], d[..., 3], d[..., 0])
    return program


def _upsample(plane: np.ndarray, height: int, width: int) -> np.ndarray:
    return plane.repeat(2, axis=0).repeat(2, axis=1)[:height, :width]


def _planar_program(convert, u_layer: int, v_layer: int) -> Program:
    def program(layers):
        y = layers[0].data
        h, w = y.shape
        u = _upsample(layers[u_layer].data, h, w)
        v = _upsample(layers[v_layer].data, h, w)
        return convert(y, u, v)
    return program


# ── upload ─────────────────────────────────────────────────────────────────
def map_planes(info: VideoInfo, data) -> list[Texture]:
    """Wrap the planes of *data* described by *info* as textures."""
    buf = np.frombuffer(data, np.uint8)
    components = {VideoFormat.RGB24: "RGB", VideoFormat.BGR24: "RGB"}.get(
        info.format, "A" if info.format.planar else "RGBA")
    bpp = info.format.pixel_stride
    textures = []
    for plane in range(info.n_planes):
        w, h = info.plane_size(plane)
        stride, offset = info.strides[plane], info.offsets[plane]
        if stride < w * bpp or offset + stride * h > buf.size:
            raise UploadError(
                f"plane {plane} of {info.format.value} {info.width}x{info.height} "
                f"does not fit a {buf.size} byte buffer")
        rows = buf[offset:offset + stride * h].reshape(h, stride)[:, :w * bpp]
        data_ = rows if bpp == 1 else rows.reshape(h, w, bpp)
        textures.append(Texture(data_, components))
    return textures


@dataclass(frozen=True)
class Renderer:
    name: str
    format: VideoFormat
    flags: Feature
    n_layers: int
    program: Program

    def usable(self, features: Feature) -> bool:
        return (self.flags & features) == self.flags

    def upload(self, info: VideoInfo, buffer) -> Material:
        """Bind *buffer*'s planes; the material takes over the buffer memory."""
        if info.format is not self.format:
            raise UploadError(f"{self.name} cannot upload {info.format.value}", fatal=True)
        textures = map_planes(info, buffer.data)
        return Material(textures, self.program, memory=buffer.detach(), name=self.name)


_SHADER = Feature.SHADER_PROGRAM | Feature.MULTI_TEXTURE
_FP     = Feature.FRAGMENT_PROGRAM | Feature.MULTI_TEXTURE

RENDERERS: tuple[Renderer, ...] = (
    Renderer("RGB 24",    VideoFormat.RGB24,  Feature.NONE, 1, _rgb),
    Renderer("BGR 24",    VideoFormat.BGR24,  Feature.NONE, 1, _bgr),
    Renderer("RGBA 32",   VideoFormat.RGBA32, Feature.NONE, 1, _rgba),
    Renderer("BGRA 32",   VideoFormat.BGRA32, Feature.NONE, 1, _bgra),
    Renderer("AYUV glsl", VideoFormat.AYUV, Feature.SHADER_PROGRAM, 1, _ayuv_program(_yuv_float)),
    Renderer("AYUV fp",   VideoFormat.AYUV, Feature.FRAGMENT_PROGRAM, 1, _ayuv_program(_yuv_fixed)),
    Renderer("YV12 glsl", VideoFormat.YV12, _SHADER, 3, _planar_program(_yuv_float, 2, 1)),
    Renderer("YV12 fp",   VideoFormat.YV12, _FP,     3, _planar_program(_yuv_fixed, 2, 1)),
    Renderer("I420 glsl", VideoFormat.I420, _SHADER, 3, _planar_program(_yuv_float, 1, 2)),
    Renderer("I420 fp",   VideoFormat.I420, _FP,     3, _planar_program(_yuv_fixed, 1, 2)),
)


def find_renderer(fmt: VideoFormat, features: Feature,
                  renderers: Sequence[Renderer] = RENDERERS) -> Renderer | None:
    for renderer in renderers:
        if renderer.format is fmt and renderer.usable(features):
            return renderer
    return None


def usable_formats(features: Feature, renderers: Sequence[Renderer] = RENDERERS):
    seen = []
    for renderer in renderers:
        if renderer.usable(features) and renderer.format not in seen:
            seen.append(renderer.format)
    return seen
