# =========  events.py  =========
"""
events.py – render-thread dispatch hub

• MainContext: a GLib.MainContext any thread may attach callbacks to, plus
  periodic timeouts.  The render thread dispatches them with
  ``iteration()`` once per frame.
• Accessor: a GObject property routed through the owner's
  ``get_<name>`` / ``set_<name>`` methods, so sinks, players and contents
  keep one code path for ``obj.set_uri(x)`` and ``obj.props.uri = x``.

Signals themselves are plain ``GObject.Object`` signals declared in
``__gsignals__``; handlers are called as ``handler(obj, *args, *user_args)``.

Public API
----------
MainContext.default()
ctx.post(cb, *args) / ctx.post_once(key, cb, *args)
ctx.timeout_add(ms, cb, *args) → id  /  ctx.source_remove(id)
ctx.iteration(may_block=False) → True when something was dispatched
Accessor(type=object, writable=True)
first_wins             accumulator: the first handler (or the class handler) decides
"""
from __future__ import annotations

import threading
from typing import Any, Callable

import gi

gi.require_version("GLib", "2.0")
gi.require_version("GObject", "2.0")
from gi.repository import GLib, GObject  # noqa: E402

Callback = Callable[..., Any]


class MainContext:
    _default: "MainContext | None" = None
    _default_lock = threading.Lock()

    def __init__(self, context: GLib.MainContext | None = None):
        self.context = context or GLib.MainContext.new()
        self._once: set = set()
        self._lock = threading.Lock()

    @classmethod
    def default(cls) -> "MainContext":
        with cls._default_lock:
            if cls._default is None:
                cls._default = cls(GLib.MainContext.default())
            return cls._default

    def _attach(self, source: GLib.Source, dispatch: Callable[[], bool]) -> int:
        source.set_callback(lambda *_data: dispatch())
        return source.attach(self.context)

    # ── any thread ─────────────────────────────────────────────────────
    def post(self, callback: Callback, *args) -> None:
        """Queue *callback* for the next ``iteration()`` on the render thread."""
        def dispatch() -> bool:
            callback(*args)
            return GLib.SOURCE_REMOVE

        self._attach(GLib.Idle(GLib.PRIORITY_DEFAULT), dispatch)

    def post_once(self, key, callback: Callback, *args) -> None:
        """Like ``post`` but at most one callback per *key* is queued at a time."""
        with self._lock:
            if key in self._once:
                return
            self._once.add(key)

        def dispatch() -> bool:
            with self._lock:
                self._once.discard(key)
            callback(*args)
            return GLib.SOURCE_REMOVE

        self._attach(GLib.Idle(GLib.PRIORITY_DEFAULT), dispatch)

    # ── timeouts ───────────────────────────────────────────────────────
    def timeout_add(self, interval_ms: int, callback: Callback, *args) -> int:
        """Call *callback* every *interval_ms* until it returns a false value."""
        return self._attach(GLib.Timeout(interval_ms),
                            lambda: bool(callback(*args)))

    def _find(self, source_id: int) -> GLib.Source | None:
        source = self.context.find_source_by_id(source_id)
        if source is None or source.is_destroyed():
            return None
        return source

    def source_remove(self, source_id: int) -> bool:
        source = self._find(source_id)
        if source is None:
            return False
        source.destroy()
        return True

    def has_source(self, source_id: int) -> bool:
        return self._find(source_id) is not None

    # ── render thread ──────────────────────────────────────────────────
    def iteration(self, may_block: bool = False) -> bool:
        """Dispatch what is ready; callbacks attached meanwhile wait for the next call."""
        return self.context.iteration(may_block)

    def pending(self) -> bool:
        return self.context.pending()


class Accessor(GObject.Property):
    """GObject property forwarding to ``get_<name>`` and ``set_<name>``.

    Setters notify themselves, so the property is flagged EXPLICIT_NOTIFY
    and ``set_property`` never produces a second ``notify::<name>``.
    """

    def __init__(self, type=object, writable: bool = True, **kwargs):
        flags = GObject.ParamFlags.READABLE | GObject.ParamFlags.EXPLICIT_NOTIFY
        if writable:
            flags |= GObject.ParamFlags.WRITABLE
        super().__init__(type=type, getter=self._get,
                         setter=self._set if writable else None,
                         flags=flags, **kwargs)

    def _method(self, obj, prefix: str):
        return getattr(obj, prefix + self.name.replace("-", "_"))

    def _get(self, obj):
        return self._method(obj, "get_")()

    def _set(self, obj, value) -> None:
        self._method(obj, "set_")(value)


def first_wins(ihint, return_accu, handler_return, user_data=None):
    """Signal accumulator keeping the first handler's answer."""
    return False, handler_return
