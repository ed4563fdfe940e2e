"""framebridge – GStreamer video frames into a pygame scene."""
from .actors import CameraActor, VideoActor
from .aspectratio import AspectRatio
from .camera import CameraPlayer
from .camera_device import CameraDevice, CameraManager
from .content import Content
from .crop import Crop
from .errors import ErrorKind, FrameBridgeError
from .events import MainContext
from .frame import Frame, Resolution
from .overlays import Overlay, OverlayComposition, OverlayRectangle
from .playback import BufferingMode, PlaybackPlayer, SeekMode
from .player import PipelinePlayer, Player
from .video_sink import VideoSink

__version__ = "0.1.0"

__all__ = [
    "AspectRatio", "BufferingMode", "CameraActor", "CameraDevice", "CameraManager",
    "CameraPlayer", "Content", "Crop", "ErrorKind", "Frame", "FrameBridgeError",
    "MainContext", "Overlay", "OverlayComposition", "OverlayRectangle", "PipelinePlayer",
    "PlaybackPlayer", "Player", "Resolution", "SeekMode", "VideoActor", "VideoSink",
]
