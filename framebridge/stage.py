# =========  stage.py  =========
"""
stage.py – a pygame window showing one Content

Keys and pointer events are translated to action dicts, then applied;
every frame the MainContext is drained so sink and player callbacks run on
this thread.  Pointer actions are mapped into frame pixels and sent
upstream through the bound sink as navigation events.
"""
from __future__ import annotations

import logging

import pygame
from pygame.locals import (FULLSCREEN, K_ESCAPE, K_LEFT, K_RIGHT, K_SPACE, K_f,
                           K_q, KEYDOWN, MOUSEBUTTONDOWN, MOUSEBUTTONUP, MOUSEMOTION,
                           QUIT, VIDEORESIZE, RESIZABLE)

from . import config
from .events import MainContext
from .scene import Actor, Color, render_tree

log = logging.getLogger(__name__)

Action = dict

_POINTER_EVENTS = {
    MOUSEMOTION: "mouse-move",
    MOUSEBUTTONDOWN: "mouse-button-press",
    MOUSEBUTTONUP: "mouse-button-release",
}


def translate_event(event) -> Action | None:
    """One pygame event → action dict, or None."""
    if event.type == QUIT:
        return {"type": "quit"}
    if event.type == VIDEORESIZE:
        return {"type": "resize", "size": event.size}
    if event.type in _POINTER_EVENTS:
        return {"type": "pointer", "event": _POINTER_EVENTS[event.type],
                "pos": event.pos, "button": getattr(event, "button", 0)}
    if event.type == KEYDOWN:
        if event.key in (K_ESCAPE, K_q):
            return {"type": "quit"}
        if event.key == K_SPACE:
            return {"type": "toggle_playing"}
        if event.key == K_RIGHT:
            return {"type": "seek", "delta": config.SEEK_STEP}
        if event.key == K_LEFT:
            return {"type": "seek", "delta": -config.SEEK_STEP}
        if event.key == K_f:
            return {"type": "toggle_fullscreen"}
    return None


class Stage:
    def __init__(self, content, player=None, context: MainContext | None = None):
        self.content = content
        self.player = player
        self.context = context or MainContext.default()
        self.screen: pygame.Surface | None = None
        self.actor = Actor(*config.WINDOWED_SIZE, content=content)
        self.actor.background_color = Color(*config.BACKGROUND_COLOR)
        self.running = False

    def _open_window(self) -> None:
        if config.FULLSCREEN:
            self.screen = pygame.display.set_mode((0, 0), FULLSCREEN)
        else:
            self.screen = pygame.display.set_mode(config.WINDOWED_SIZE, RESIZABLE)
        log.debug("window %dx%d (fullscreen=%s)", *self.screen.get_size(), config.FULLSCREEN)
        self.actor.set_size(*self.screen.get_size())

    def _navigate(self, action: Action) -> bool:
        sink = self.content.get_sink()
        if sink is None:
            return False
        pos = self.content.to_frame_coordinates(self.actor, *action["pos"])
        if pos is None:
            return False
        return sink.send_navigation_event(action["event"], pos[0], pos[1], action["button"])

    def apply(self, action: Action) -> None:
        t = action["type"]
        if t == "quit":
            self.running = False
        elif t == "resize":
            self.actor.set_size(*action["size"])
        elif t == "toggle_fullscreen":
            config.FULLSCREEN ^= True
            self._open_window()
        elif t == "pointer":
            self._navigate(action)
        elif self.player is None:
            return
        elif t == "toggle_playing":
            self.player.set_playing(not self.player.get_playing())
        elif t == "seek" and hasattr(self.player, "set_progress"):
            progress = self.player.get_progress() + action["delta"]
            self.player.set_progress(max(0.0, min(1.0, progress)))

    def run(self) -> None:
        pygame.init()
        pygame.display.set_caption("framebridge")
        self._open_window()
        clock = pygame.time.Clock()
        self.running = True
        try:
            while self.running:
                for event in pygame.event.get():
                    action = translate_event(event)
                    if action:
                        self.apply(action)
                self.context.iteration()
                if self.actor.needs_redraw:
                    self.screen.fill(config.BACKGROUND_COLOR[:3])
                    render_tree(self.screen, self.actor.paint())
                    pygame.display.flip()
                clock.tick(config.FPS)
        finally:
            if self.player is not None:
                self.player.set_playing(False)
            pygame.quit()
