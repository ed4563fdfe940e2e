# config.py
"""
Configuration settings for framebridge.

Plain constants, read at use time so tests and applications may patch them.
"""

# ── Player timing ──────────────────────────────────────────────────────────

TICK_INTERVAL_MS      = 500    # progress notification while a URI is set
BUFFERING_INTERVAL_MS = 250    # download-buffering query period

# estimated download time × margin must stay below the remaining play time
BUFFERING_SAFETY_MARGIN = 1.1

# ── Subtitles ──────────────────────────────────────────────────────────────

DEFAULT_SUBTITLE_FONT = "Sans 16"

# tried in this order next to local media files
SUBTITLE_EXTENSIONS = (
    "sub", "SUB",
    "srt", "SRT",
    "smi", "SMI",
    "ssa", "SSA",
    "ass", "ASS",
    "asc", "ASC",
)

# ── Video sink ─────────────────────────────────────────────────────────────

BUFFER_POOL_SIZE     = 4      # upload buffers shared with the decoder threads
BUS_POLL_INTERVAL_MS = 50     # bus thread wake-up period

# Renderer features; switching one off removes every renderer needing it
ENABLE_MULTI_TEXTURE     = True
ENABLE_FRAGMENT_PROGRAMS = True
ENABLE_SHADER_PROGRAMS   = True

# ── Camera ─────────────────────────────────────────────────────────────────

CAMERA_SOURCE_FACTORY = "v4l2src"

# (container, video, audio) caps of the default recording profile
VIDEO_PROFILE = ("application/ogg", "video/x-theora", "audio/x-vorbis")
PHOTO_PROFILE = "image/jpeg"

# ── Stage / command line ───────────────────────────────────────────────────

FPS              = 60
FULLSCREEN       = False
WINDOWED_SIZE    = (800, 600)
BACKGROUND_COLOR = (0, 0, 0, 255)
SEEK_STEP        = 0.05     # fraction of the clip per arrow key press
LOG_LEVEL        = "WARNING"
