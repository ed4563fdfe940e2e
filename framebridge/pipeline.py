# =========  pipeline.py  =========
"""
GStreamer-neutral view of the media pipelines the players drive.

The enum values mirror GStreamer's so the real adapters in gst_backend.py
convert with a plain ``Gst.State(int(state))``.  Players only ever talk to a
``PlaybinPipeline`` or ``CameraBinPipeline``; tests hand them fakes.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum, IntFlag
from typing import Any, Callable, Optional


class State(IntEnum):
    VOID_PENDING = 0          # also "no forced state"
    NULL         = 1
    READY        = 2
    PAUSED       = 3
    PLAYING      = 4


class StateChangeReturn(IntEnum):
    FAILURE    = 0
    SUCCESS    = 1
    ASYNC      = 2
    NO_PREROLL = 3


class FlowReturn(IntEnum):
    OK             = 0
    NOT_LINKED     = -1
    FLUSHING       = -2
    EOS            = -3
    NOT_NEGOTIATED = -4
    ERROR          = -5


class SeekFlags(IntFlag):
    NONE     = 0
    FLUSH    = 1 << 0
    ACCURATE = 1 << 1
    KEY_UNIT = 1 << 2


class PlayFlags(IntFlag):
    VIDEO         = 1 << 0
    AUDIO         = 1 << 1
    TEXT          = 1 << 2
    VIS           = 1 << 3
    SOFT_VOLUME   = 1 << 4
    NATIVE_AUDIO  = 1 << 5
    NATIVE_VIDEO  = 1 << 6
    DOWNLOAD      = 1 << 7
    BUFFERING     = 1 << 8
    DEINTERLACE   = 1 << 9


class BufferingStatsMode(IntEnum):
    STREAM    = 0
    DOWNLOAD  = 1
    TIMESHIFT = 2
    LIVE      = 3


class MessageType(Enum):
    ERROR         = "error"
    WARNING       = "warning"
    EOS           = "eos"
    BUFFERING     = "buffering"
    STATE_CHANGED = "state-changed"
    ASYNC_DONE    = "async-done"
    DURATION      = "duration-changed"
    ELEMENT       = "element"


@dataclass
class BusMessage:
    """One bus message, already decoded off the GStreamer structure.

    ``fields`` carries: old/new/pending for STATE_CHANGED; percent and mode
    for BUFFERING; domain/message/debug for ERROR; name plus structure
    fields for ELEMENT (``filename``, ``sample``).
    """
    type: MessageType
    src: str = ""
    from_pipeline: bool = False
    fields: dict = field(default_factory=dict)


@dataclass
class BufferingQuery:
    mode: BufferingStatsMode
    percent: int = 100
    busy: bool = False
    avg_in: int = -1
    avg_out: int = -1
    buffering_left: int = -1          # estimated ms until buffered, -1 unknown
    start: int = 0
    stop: int = -1
    estimated_total: int = -1


@dataclass
class StreamInfo:
    """Tags of one audio or text stream."""
    index: int
    language_code: Optional[str] = None
    language_name: Optional[str] = None
    codec: Optional[str] = None

    def describe(self) -> str:
        if self.language_name or self.language_code:
            return self.language_name or self.language_code
        if self.codec:
            return self.codec
        return f"Track {self.index + 1}"


@dataclass(frozen=True)
class EncodingProfile:
    """Container plus optional video/audio caps; turned into a GstPbutils profile."""
    container: Optional[str] = None
    video: Optional[str] = None
    audio: Optional[str] = None
    image: Optional[str] = None


@dataclass
class PreviewSample:
    """A packed RGB preview posted by the camera source."""
    width: int
    height: int
    data: bytes


BusCallback = Callable[[BusMessage], None]


# ── adapters ───────────────────────────────────────────────────────────────
class MediaPipeline(ABC):
    """Common surface of every pipeline a player controls.

    Bus messages and element signals arrive on GStreamer threads; players
    re-post them to their MainContext.
    """

    element: Any = None               # the underlying Gst.Element, if any

    @abstractmethod
    def set_state(self, state: State) -> StateChangeReturn: ...

    @abstractmethod
    def get_state(self) -> tuple[State, State]:
        """Return (current, pending) without blocking."""

    @abstractmethod
    def add_bus_watch(self, callback: BusCallback) -> None: ...

    @abstractmethod
    def connect_notify(self, name: str, callback: Callable[[str], None]) -> None:
        """Call *callback(name)* from any thread when element signal/property *name* fires."""

    def dispose(self) -> None:
        self.set_state(State.NULL)


class PlaybinPipeline(MediaPipeline):
    """URI playback: properties are playbin's (uri, suburi, flags …)."""

    @abstractmethod
    def set_prop(self, name: str, value) -> None: ...

    @abstractmethod
    def get_prop(self, name: str): ...

    @abstractmethod
    def query_position(self) -> Optional[int]:
        """Stream time in ns, None when unknown."""

    @abstractmethod
    def query_duration(self) -> Optional[int]: ...

    @abstractmethod
    def query_seeking(self) -> Optional[bool]:
        """None when the query fails."""

    @abstractmethod
    def query_buffering(self) -> Optional[BufferingQuery]: ...

    @abstractmethod
    def seek(self, position_ns: int, flags: SeekFlags) -> bool: ...

    @abstractmethod
    def get_volume(self) -> float:
        """Cubic volume."""

    @abstractmethod
    def set_volume(self, volume: float) -> None: ...

    @abstractmethod
    def get_stream_info(self, kind: str, index: int) -> StreamInfo:
        """*kind* is ``"audio"`` or ``"text"``."""

    @abstractmethod
    def set_source_prop(self, name: str, value) -> bool:
        """Set a property on the current source element if it has one."""


class CameraBinPipeline(MediaPipeline):
    """Camera capture: camerabin plus the viewfinder filter chain.

    The chain is ``identity → valve → [filter] → gamma → convert →
    videobalance → convert``.
    """

    @abstractmethod
    def set_video_source(self, factory, node: str) -> bool: ...

    @abstractmethod
    def set_capture_caps(self, width: int, height: int) -> None:
        """Apply WxH to video-capture, image-capture and viewfinder caps."""

    @abstractmethod
    def set_mode(self, mode: str) -> None:
        """``"image"`` or ``"video"``."""

    @abstractmethod
    def set_location(self, filename: Optional[str]) -> None: ...

    @abstractmethod
    def start_capture(self) -> None: ...

    @abstractmethod
    def stop_capture(self) -> None: ...

    @abstractmethod
    def is_ready_for_capture(self) -> bool: ...

    @abstractmethod
    def set_post_previews(self, enabled: bool, caps: Optional[str] = None) -> None: ...

    @abstractmethod
    def set_profile(self, which: str, profile: Optional[EncodingProfile]) -> None:
        """*which* is ``"video"`` or ``"image"``."""

    # filter chain
    @abstractmethod
    def set_valve_drop(self, drop: bool) -> None: ...

    @abstractmethod
    def make_filter_bin(self, filter_element):
        """Wrap *filter_element* in convert ! filter ! convert; None on failure."""

    @abstractmethod
    def link_filter(self, filter_bin) -> bool:
        """Add *filter_bin* and link valve → bin → gamma."""

    @abstractmethod
    def unlink_filter(self, filter_bin) -> None:
        """Unlink and remove *filter_bin* from the chain."""

    @abstractmethod
    def link_default(self) -> bool:
        """Link valve → gamma directly."""

    @abstractmethod
    def unlink_default(self) -> None: ...

    @abstractmethod
    def sync_filter_state(self, filter_bin) -> None: ...

    # gamma / colour balance
    @abstractmethod
    def has_element(self, name: str) -> bool:
        """``"gamma"`` or ``"balance"``."""

    @abstractmethod
    def get_param_range(self, element: str, prop: str) -> Optional[tuple[float, float, float]]:
        """(minimum, maximum, default) or None when unavailable."""

    @abstractmethod
    def set_element_prop(self, element: str, prop: str, value) -> None: ...

    @abstractmethod
    def get_element_prop(self, element: str, prop: str): ...
