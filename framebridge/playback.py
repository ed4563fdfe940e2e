# =========  playback.py  =========
"""
PlaybackPlayer – URI playback over playbin

Public API
----------
set_uri(uri) / get_uri()            set_filename(path)
set_playing(bool) / get_playing()
set_progress(0.0-1.0) / get_progress()
get_position() / get_duration()     seconds
set_seek_flags(SeekMode) / get_seek_flags()
set_buffering_mode(BufferingMode) / get_buffering_mode()
set_buffer_size(bytes) / set_buffer_duration(ns)
set_subtitle_uri(uri) / set_subtitle_font_name(desc)
get_audio_streams() / set_audio_stream(i) / get_audio_stream()
get_subtitle_tracks() / set_subtitle_track(i | -1) / get_subtitle_track()
set_user_agent(str)
set_audio_volume(0.0-1.0) / get_audio_volume()
dispose()
Signals
-------
Player signals plus should-buffer(query) → bool (first handler wins)
and notify::<property> for uri, progress, duration, can-seek, in-seek,
idle, buffer-fill, audio-volume, audio-streams, subtitle-tracks …

All bus traffic and element notifications are re-posted to the
MainContext; every method here runs on the render thread.
"""
from __future__ import annotations

import logging
import os
from enum import Enum, IntFlag
from pathlib import Path
from urllib.parse import urlsplit
from urllib.request import url2pathname

from gi.repository import GObject

from . import config
from .errors import ErrorKind, kind_from_domain
from .events import Accessor, MainContext, first_wins
from .pipeline import (BufferingQuery, BufferingStatsMode, BusMessage, MessageType,
                       PlayFlags, SeekFlags, State, StateChangeReturn, StreamInfo)
from .player import Player
from .video_sink import VideoSink

log = logging.getLogger(__name__)


class SeekMode(IntFlag):
    NONE     = 0          # fast, nearest key unit
    ACCURATE = 1 << 0


class BufferingMode(Enum):
    STREAM   = "stream"
    DOWNLOAD = "download"


def uri_to_path(uri: str) -> str | None:
    parts = urlsplit(uri)
    if parts.scheme != "file":
        return None
    return url2pathname(parts.path)


def find_subtitle_file(uri: str) -> str | None:
    """URI of the first sibling subtitle file of a local media URI."""
    if not uri.startswith("file://"):
        return None
    path = uri_to_path(uri)
    if not path:
        return None
    media = Path(path)
    if not media.suffix:
        return None
    for ext in config.SUBTITLE_EXTENSIONS:
        candidate = media.with_suffix("." + ext)
        if candidate.exists():
            return candidate.as_uri()
    return None


class PlaybackPlayer(Player):
    __gsignals__ = {
        "should-buffer": (GObject.SignalFlags.RUN_LAST, bool, (object,),
                          first_wins, None),
    }

    uri = Accessor(str)
    subtitle_uri = Accessor(str)
    subtitle_font_name = Accessor(str)
    user_agent = Accessor(str)
    seek_flags = Accessor()
    buffering_mode = Accessor()
    buffer_size = Accessor(int, minimum=-1)
    buffer_duration = Accessor(GObject.TYPE_INT64, minimum=-1)
    audio_stream = Accessor(int, minimum=-1)
    subtitle_track = Accessor(int, minimum=-1)
    audio_streams = Accessor(writable=False)
    subtitle_tracks = Accessor(writable=False)
    progress = Accessor(float)
    position = Accessor(float, writable=False)
    duration = Accessor(float, writable=False)
    can_seek = Accessor(bool, writable=False)
    in_seek = Accessor(bool, writable=False)
    buffer_fill = Accessor(float, writable=False)
    is_live_media = Accessor(bool, writable=False)

    def __init__(self, context: MainContext | None = None,
                 pipeline_factory=None, features=None):
        super().__init__()
        self._context = context or MainContext.default()
        if pipeline_factory is None:
            from .gst_backend import Playbin
            pipeline_factory = Playbin

        sink = VideoSink(self._context, features, name="playback-sink")
        self._pipeline = pipeline_factory(sink)

        # state
        self._uri: str | None = None
        self._subtitle_uri: str | None = None
        self._user_agent: str | None = None
        self._font_name = config.DEFAULT_SUBTITLE_FONT
        self._target_state = State.PAUSED
        self._force_state = State.VOID_PENDING
        self._is_idle = True
        self._is_live = False
        self._can_seek = False
        self._in_seek = False
        self._in_eos = False
        self._in_error = False
        self._is_changing_uri = False
        self._in_download_buffering = False
        self._target_progress = 0.0
        self._stacked_progress = -1.0
        self._duration = 0.0
        self._buffer_fill = 0.0
        self._volume = 1.0
        self._seek_flags = SeekFlags.KEY_UNIT
        self._audio_streams: list[StreamInfo] = []
        self._subtitle_tracks: list[StreamInfo] = []
        self._tick_id: int | None = None
        self._buffering_id: int | None = None

        self._bind_sink(sink)
        self._pipeline.add_bus_watch(self._bus_message_cb)
        for name in ("volume", "audio-changed", "audio-tags-changed", "current-audio",
                     "text-changed", "text-tags-changed", "current-text", "source"):
            self._pipeline.connect_notify(name, self._pipeline_notify_cb)
        self._pipeline.set_prop("subtitle-font-desc", self._font_name)
        self._pipeline.set_state(State.READY)

    # ── pipeline state helpers ─────────────────────────────────────────
    def _set_target_state(self, state: State) -> StateChangeReturn:
        self._target_state = state
        if not self._uri or self._force_state != State.VOID_PENDING:
            return StateChangeReturn.SUCCESS
        return self._pipeline.set_state(state)

    def _force_pipeline_state(self, state: State) -> StateChangeReturn:
        """Override the target state; VOID_PENDING hands control back to it."""
        self._force_state = state
        if state == State.VOID_PENDING:
            state = self._target_state
        return self._pipeline.set_state(state)

    def _current_or_pending(self) -> State:
        state, pending = self._pipeline.get_state()
        return pending if pending != State.VOID_PENDING else state

    def _set_idle(self, idle: bool) -> None:
        if self._is_idle != idle:
            self._is_idle = idle
            self.notify("idle")

    def _set_in_seek(self, seeking: bool) -> None:
        self._in_seek = seeking
        self.notify("in-seek")

    def _set_buffer_fill(self, fill: float) -> None:
        self._buffer_fill = fill
        self.notify("buffer-fill")

    # ── Player interface ───────────────────────────────────────────────
    def get_pipeline(self):
        return self._pipeline.element or self._pipeline

    def get_playing(self) -> bool:
        return bool(self._uri) and self._target_state == State.PLAYING

    def set_playing(self, playing: bool) -> None:
        log.debug("set playing: %s", playing)
        self._in_error = False
        self._in_eos = False
        if playing and not self._uri:
            log.warning("Unable to start playing: no URI is set")
            return
        self._set_target_state(State.PLAYING if playing else State.PAUSED)
        self.notify("playing")
        self.notify("progress")

    def get_audio_volume(self) -> float:
        return self._volume

    def set_audio_volume(self, volume: float) -> None:
        volume = max(0.0, min(1.0, float(volume)))
        log.debug("set volume: %.02f", volume)
        self._volume = volume
        self._pipeline.set_volume(volume)
        self.notify("audio-volume")

    def get_idle(self) -> bool:
        return self._is_idle

    # ── URI ────────────────────────────────────────────────────────────
    def get_uri(self) -> str | None:
        return self._uri

    def set_uri(self, uri: str | None) -> None:
        log.debug("setting uri %s", uri)
        self._in_eos = False
        self._in_error = False

        if uri:
            self._uri = uri
            if self._tick_id is None:
                self._tick_id = self._context.timeout_add(
                    config.TICK_INTERVAL_MS, self._tick_timeout)
            self._apply_subtitle_uri(None)
            self._clear_download_buffering()
        else:
            self._uri = None
            self._remove_timeouts()

        self._can_seek = False
        self._duration = 0.0
        self._stacked_progress = -1.0
        self._target_progress = 0.0

        if uri:
            self._force_pipeline_state(State.NULL)
            self._pipeline.set_prop("uri", uri)
            self._is_live = self._detect_live()
            self._apply_subtitle_uri(find_subtitle_file(uri))
            self._force_pipeline_state(State.VOID_PENDING)
            self._is_changing_uri = True
        else:
            self._is_live = False
            self._apply_subtitle_uri(None)
            self._pipeline.set_state(State.NULL)
            self._set_idle(True)

        for prop in ("uri", "can-seek", "duration", "progress"):
            self.notify(prop)
        self._audio_streams = []
        self.notify("audio-streams")
        self._subtitle_tracks = []
        self.notify("subtitle-tracks")

    def _detect_live(self) -> bool:
        """Live sources answer NO_PREROLL when asked to pause."""
        previous = self._current_or_pending()
        live = self._pipeline.set_state(State.PAUSED) == StateChangeReturn.NO_PREROLL
        self._pipeline.set_state(previous)
        log.debug("live source: %s", live)
        return live

    def set_filename(self, filename: str) -> None:
        try:
            uri = Path(os.path.abspath(filename)).as_uri()
        except ValueError as exc:
            log.warning("cannot convert %r to a URI: %s", filename, exc)
            self.emit("error", ErrorKind.IO_OR_URI, str(exc))
            return
        self.set_uri(uri)

    # ── subtitles ──────────────────────────────────────────────────────
    def _apply_subtitle_uri(self, uri: str | None) -> None:
        flags = self._pipeline.get_prop("flags")
        self._pipeline.set_prop("suburi", uri)
        self._pipeline.set_prop("flags", flags)
        self._subtitle_uri = uri

    def get_subtitle_uri(self) -> str | None:
        return self._subtitle_uri

    def set_subtitle_uri(self, uri: str | None) -> None:
        log.debug("setting subtitle URI: %s", uri)
        self._apply_subtitle_uri(uri)
        self.notify("subtitle-uri")

    def get_subtitle_font_name(self) -> str:
        return self._font_name

    def set_subtitle_font_name(self, font_name: str) -> None:
        self._font_name = font_name
        self._pipeline.set_prop("subtitle-font-desc", font_name)
        self.notify("subtitle-font-name")

    # ── progress & seeking ─────────────────────────────────────────────
    def set_progress(self, progress: float) -> None:
        log.debug("set progress: %.02f", progress)
        self._in_eos = False
        self._target_progress = progress

        if self._is_changing_uri or self._in_seek:
            log.debug("already seeking, stacking progress point")
            self._stacked_progress = progress
            return

        duration = self._pipeline.query_duration()
        if duration is None:
            if progress != 0.0:
                log.debug("duration unknown, cannot seek to %.02f", progress)
            self._stacked_progress = -1.0
            return

        self._pipeline.seek(int(progress * duration), SeekFlags.FLUSH | self._seek_flags)
        self._set_in_seek(True)
        if not self._is_live and self.get_buffering_mode() is BufferingMode.DOWNLOAD:
            self._force_pipeline_state(State.PAUSED)
        self._stacked_progress = -1.0

    def get_progress(self) -> float:
        if self._in_error:
            return 0.0
        if self._in_eos:
            return 1.0
        if self._in_seek or self._is_changing_uri:
            return self._target_progress
        position = self._pipeline.query_position()
        duration = self._pipeline.query_duration()
        if position is None or not duration:
            return 0.0
        return max(0.0, min(1.0, position / duration))

    def get_position(self) -> float:
        position = self._pipeline.query_position()
        return position / 1e9 if position is not None else 0.0

    def get_duration(self) -> float:
        return self._duration

    def get_can_seek(self) -> bool:
        return self._can_seek

    def get_in_seek(self) -> bool:
        return self._in_seek

    def get_is_live_media(self) -> bool:
        return self._is_live

    def get_seek_flags(self) -> SeekMode:
        if self._seek_flags == SeekFlags.ACCURATE:
            return SeekMode.ACCURATE
        return SeekMode.NONE

    def set_seek_flags(self, flags: SeekMode) -> None:
        if flags & SeekMode.ACCURATE:
            self._seek_flags = SeekFlags.ACCURATE
        else:
            self._seek_flags = SeekFlags.KEY_UNIT
        self.notify("seek-flags")

    def _query_duration(self) -> None:
        duration = self._pipeline.query_duration()
        if duration is None:
            return
        new_duration = duration / 1e9
        difference = abs(self._duration - new_duration)
        if difference > 1e-3:
            log.debug("duration: %.02f", new_duration)
            self._duration = new_duration
            if difference > 1.0:
                self.notify("duration")

    def _tick_timeout(self) -> bool:
        self.notify("progress")
        return True

    # ── buffering ──────────────────────────────────────────────────────
    def get_buffering_mode(self) -> BufferingMode:
        flags = PlayFlags(self._pipeline.get_prop("flags") or 0)
        return BufferingMode.DOWNLOAD if flags & PlayFlags.DOWNLOAD else BufferingMode.STREAM

    def set_buffering_mode(self, mode: BufferingMode) -> None:
        flags = PlayFlags(self._pipeline.get_prop("flags") or 0)
        if mode is BufferingMode.DOWNLOAD:
            flags |= PlayFlags.DOWNLOAD
        else:
            flags &= ~PlayFlags.DOWNLOAD
        if self._in_download_buffering:
            self._clear_download_buffering()
            if self._force_state != State.VOID_PENDING:
                self._force_pipeline_state(State.VOID_PENDING)
        self._pipeline.set_prop("flags", flags)
        self.notify("buffering-mode")

    def get_buffer_fill(self) -> float:
        return self._buffer_fill

    def get_buffer_size(self) -> int:
        return self._pipeline.get_prop("buffer-size")

    def set_buffer_size(self, size: int) -> None:
        self._pipeline.set_prop("buffer-size", int(size))
        self.notify("buffer-size")

    def get_buffer_duration(self) -> int:
        return self._pipeline.get_prop("buffer-duration")

    def set_buffer_duration(self, duration_ns: int) -> None:
        self._pipeline.set_prop("buffer-duration", int(duration_ns))
        self.notify("buffer-duration")

    def _configure_buffering_timeout(self, interval_ms: int) -> None:
        if self._buffering_id is not None:
            self._context.source_remove(self._buffering_id)
            self._buffering_id = None
        if interval_ms:
            self._buffering_id = self._context.timeout_add(
                interval_ms, self._buffering_timeout)
            self._buffering_timeout()

    def _clear_download_buffering(self) -> None:
        self._configure_buffering_timeout(0)
        self._in_download_buffering = False

    def do_should_buffer(self, query: BufferingQuery) -> bool:
        """Keep buffering while the download would overtake playback."""
        if query.buffering_left == -1 or query.busy:
            return True
        play_left_ms = 0.0
        if self._duration:
            play_left_ms = (self._duration - self.get_position()) * 1000.0
        return query.buffering_left * config.BUFFERING_SAFETY_MARGIN >= play_left_ms

    def _buffering_timeout(self) -> bool:
        if self._in_seek:
            return True

        query = self._pipeline.query_buffering()
        if query is None:
            log.debug("buffering query failed")
            return True

        if query.mode != BufferingStatsMode.DOWNLOAD:
            log.debug("restoring the pipeline, not download buffering")
            if not query.busy:
                self._force_pipeline_state(State.VOID_PENDING)
            self._clear_download_buffering()
            return False

        if self.emit("should-buffer", query):
            if self._buffer_fill != 0.0:
                self._set_buffer_fill(0.0)
            if self._force_state == State.VOID_PENDING:
                log.debug("pausing the pipeline for buffering (busy=%s)", query.busy)
                self._force_pipeline_state(State.PAUSED)
            return True

        self._clear_download_buffering()
        self._force_pipeline_state(State.VOID_PENDING)
        if self._buffer_fill != 1.0:
            self._set_buffer_fill(1.0)
        return False

    # ── streams ────────────────────────────────────────────────────────
    def _read_streams(self, kind: str) -> list[StreamInfo]:
        count = self._pipeline.get_prop("n-audio" if kind == "audio" else "n-text") or 0
        return [self._pipeline.get_stream_info(kind, i) for i in range(count)]

    def _refresh_audio_streams(self) -> None:
        self._audio_streams = self._read_streams("audio")
        log.debug("audio-streams changed: %d", len(self._audio_streams))
        self.notify("audio-streams")

    def _refresh_subtitle_tracks(self) -> None:
        self._subtitle_tracks = self._read_streams("text")
        log.debug("subtitle-tracks changed: %d", len(self._subtitle_tracks))
        self.notify("subtitle-tracks")

    def get_audio_streams(self) -> list[str]:
        return [s.describe() for s in self._audio_streams]

    def get_audio_stream_info(self) -> list[StreamInfo]:
        return list(self._audio_streams)

    def get_audio_stream(self) -> int:
        index = self._pipeline.get_prop("current-audio")
        return -1 if index is None else index

    def set_audio_stream(self, index: int) -> bool:
        if not 0 <= index < len(self._audio_streams):
            log.warning("audio stream %d out of range (%d streams)",
                        index, len(self._audio_streams))
            return False
        log.debug("set audio stream to #%d", index)
        self._pipeline.set_prop("current-audio", index)
        return True

    def get_subtitle_tracks(self) -> list[str]:
        return [s.describe() for s in self._subtitle_tracks]

    def get_subtitle_track_info(self) -> list[StreamInfo]:
        return list(self._subtitle_tracks)

    def get_subtitle_track(self) -> int:
        flags = PlayFlags(self._pipeline.get_prop("flags") or 0)
        if not flags & PlayFlags.TEXT:
            return -1
        index = self._pipeline.get_prop("current-text")
        return -1 if index is None else index

    def set_subtitle_track(self, index: int) -> bool:
        if not -1 <= index < len(self._subtitle_tracks):
            log.warning("subtitle track %d out of range (%d tracks)",
                        index, len(self._subtitle_tracks))
            return False
        log.debug("set subtitle track to #%d", index)
        flags = PlayFlags(self._pipeline.get_prop("flags") or 0) & ~PlayFlags.TEXT
        self._pipeline.set_prop("flags", flags)
        if index >= 0:
            self._pipeline.set_prop("current-text", index)
            self._pipeline.set_prop("flags", flags | PlayFlags.TEXT)
        return True

    # ── user agent ─────────────────────────────────────────────────────
    def get_user_agent(self) -> str | None:
        return self._user_agent

    def set_user_agent(self, user_agent: str | None) -> None:
        self._user_agent = user_agent
        if user_agent:
            self._pipeline.set_source_prop("user-agent", user_agent)
        self.notify("user-agent")

    # ── element notifications (any thread) ─────────────────────────────
    def _pipeline_notify_cb(self, name: str) -> None:
        if name == "source":
            # applied on the calling thread, before the source starts
            if self._user_agent:
                self._pipeline.set_source_prop("user-agent", self._user_agent)
            return
        self._context.post_once((self, name), self._on_pipeline_notify, name)

    def _on_pipeline_notify(self, name: str) -> None:
        if name == "volume":
            self._volume = self._pipeline.get_volume()
            self.notify("audio-volume")
        elif name in ("audio-changed", "audio-tags-changed"):
            self._refresh_audio_streams()
        elif name in ("text-changed", "text-tags-changed"):
            self._refresh_subtitle_tracks()
        elif name == "current-audio":
            self.notify("audio-stream")
        elif name == "current-text":
            self.notify("subtitle-track")

    # ── bus ────────────────────────────────────────────────────────────
    def _bus_message_cb(self, message: BusMessage) -> None:
        self._context.post(self.handle_bus_message, message)

    def handle_bus_message(self, message: BusMessage) -> None:
        """Render-thread handler for one bus message."""
        handler = {
            MessageType.ERROR: self._on_error,
            MessageType.EOS: self._on_eos,
            MessageType.BUFFERING: self._on_buffering,
            MessageType.DURATION: self._on_duration_changed,
            MessageType.STATE_CHANGED: self._on_state_changed,
            MessageType.ASYNC_DONE: self._on_async_done,
        }.get(message.type)
        if handler is not None:
            handler(message)

    def _on_error(self, message: BusMessage) -> None:
        text = message.fields.get("message", "unknown error")
        kind = message.fields.get("kind") or kind_from_domain(message.fields.get("domain"))
        log.warning("pipeline error from %s: %s", message.src, text)
        self._pipeline.set_state(State.NULL)
        self._in_error = True
        self.emit("error", kind, text)
        self._set_idle(True)

    def _on_eos(self, message: BusMessage) -> None:
        if self._in_eos:
            log.debug("ignoring repeated EOS")
            return
        self._in_eos = True
        self._pipeline.set_state(State.READY)
        self.emit("eos")
        self.notify("progress")
        if self._current_or_pending() not in (State.PLAYING, State.PAUSED):
            self._set_idle(True)

    def _on_buffering(self, message: BusMessage) -> None:
        mode = BufferingStatsMode(message.fields.get("mode", BufferingStatsMode.STREAM))
        if mode != BufferingStatsMode.DOWNLOAD:
            self._in_download_buffering = False

        if mode in (BufferingStatsMode.STREAM, BufferingStatsMode.LIVE):
            percent = message.fields.get("percent", 100)
            self._buffer_fill = max(0.0, min(1.0, percent / 100.0))
            log.debug("buffer-fill: %.02f", self._buffer_fill)
            if not self._is_live:
                if self._buffer_fill < 1.0:
                    if self._force_state != State.PAUSED:
                        log.debug("pausing the pipeline")
                        self._force_pipeline_state(State.PAUSED)
                elif self._force_state != State.VOID_PENDING:
                    log.debug("restoring the pipeline")
                    self._force_pipeline_state(State.VOID_PENDING)
            self.notify("buffer-fill")
        elif mode == BufferingStatsMode.DOWNLOAD:
            if self._is_live:
                self._set_buffer_fill(max(0.0, min(1.0, message.fields.get("percent", 100) / 100.0)))
                return
            if self._in_download_buffering:
                return
            self._set_buffer_fill(0.0)
            self._in_download_buffering = True
            self._configure_buffering_timeout(config.BUFFERING_INTERVAL_MS)
        else:
            log.warning("buffering mode %s not handled", mode.name)

    def _on_duration_changed(self, message: BusMessage) -> None:
        self._query_duration()

    def _on_state_changed(self, message: BusMessage) -> None:
        if not message.from_pipeline:
            return
        old, new = State(message.fields["old"]), State(message.fields["new"])
        log.debug("state change: %s -> %s", old.name, new.name)
        if old == new:
            return

        if old == State.READY and new == State.PAUSED:
            can_seek = self._pipeline.query_seeking()
            if can_seek is None:
                can_seek = not (self._uri or "").startswith("http://")
            self._can_seek = bool(can_seek)
            log.debug("can-seek: %s", self._can_seek)
            self.notify("can-seek")

            self._query_duration()
            self._refresh_audio_streams()
            self._refresh_subtitle_tracks()

            self._is_changing_uri = False
            if self._stacked_progress != -1.0 and self._can_seek:
                self.set_progress(self._stacked_progress)

        if old > State.READY and new == State.READY:
            self._set_idle(True)
            if old == State.PAUSED:
                self._sink.stop()
        elif new == State.PLAYING:
            self._set_idle(False)

    def _on_async_done(self, message: BusMessage) -> None:
        if not self._in_seek:
            return
        self.notify("progress")
        self._set_in_seek(False)
        self._configure_buffering_timeout(config.BUFFERING_INTERVAL_MS)
        if self._stacked_progress != -1.0:
            self.set_progress(self._stacked_progress)

    # ── teardown ───────────────────────────────────────────────────────
    def _remove_timeouts(self) -> None:
        if self._tick_id is not None:
            self._context.source_remove(self._tick_id)
            self._tick_id = None
        if self._buffering_id is not None:
            self._context.source_remove(self._buffering_id)
            self._buffering_id = None

    def dispose(self) -> None:
        self._remove_timeouts()
        self._pipeline.dispose()
        self._bind_sink(None)
        self._release_frame()
