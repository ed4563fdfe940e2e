# =========  errors.py  =========
"""
Error kinds and exceptions.

Exceptions are raised inside the library (caps parsing, uploads, pipeline
adapters) and caught at the render-thread boundary, where players turn them
into ``error(kind, message)`` signals, flow returns or warnings.  Nothing
raised here is expected to unwind through a consumer's main loop.
"""
from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    NOT_NEGOTIATED   = "not-negotiated"
    DECODING         = "decoding"
    IO_OR_URI        = "io-or-uri"
    INVALID_ARGUMENT = "invalid-argument"
    NOT_SUPPORTED    = "not-supported"


class FrameBridgeError(Exception):
    """Base exception for framebridge errors.

    Attributes:
        kind: ErrorKind reported when the error reaches a player signal
    """

    kind = ErrorKind.DECODING

    def __init__(self, message: str, kind: ErrorKind | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class NotNegotiatedError(FrameBridgeError):
    """Caps cannot be parsed or no renderer handles the negotiated format."""

    kind = ErrorKind.NOT_NEGOTIATED


class DecodingError(FrameBridgeError):
    """The media pipeline reported a stream, core or library error."""

    kind = ErrorKind.DECODING


class UriError(FrameBridgeError):
    """A path or URI could not be converted, or the source is unreachable."""

    kind = ErrorKind.IO_OR_URI


class InvalidArgumentError(FrameBridgeError, ValueError):
    kind = ErrorKind.INVALID_ARGUMENT


class NotSupportedError(FrameBridgeError):
    """A camera element needed for the operation is absent."""

    kind = ErrorKind.NOT_SUPPORTED


class PipelineUnavailableError(FrameBridgeError, RuntimeError):
    """GStreamer, PyGObject or a required element factory is missing."""

    kind = ErrorKind.NOT_SUPPORTED


class UploadError(FrameBridgeError):
    """A buffer could not be mapped into textures.

    Attributes:
        fatal: when true the renderer can no longer upload and the sink stops
            accepting buffers
    """

    def __init__(self, message: str, fatal: bool = False):
        super().__init__(message, ErrorKind.DECODING)
        self.fatal = fatal


def kind_from_domain(domain: str | None) -> ErrorKind:
    """Classify a GStreamer error domain name (``gst-resource-error-quark``…)."""
    if not domain:
        return ErrorKind.DECODING
    if "resource" in domain:
        return ErrorKind.IO_OR_URI
    if "negotiat" in domain:
        return ErrorKind.NOT_NEGOTIATED
    return ErrorKind.DECODING
