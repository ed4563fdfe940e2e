# =========  actors.py  =========
"""
Ready-made actors: an aspect-preserving view bound to its own player.

Public API
----------
VideoActor(width, height, player=None, context=None)   PlaybackPlayer view
CameraActor(width, height, player=None, context=None)  CameraPlayer view
actor.get_player()
"""
from __future__ import annotations

from .aspectratio import AspectRatio
from .camera import CameraPlayer
from .playback import PlaybackPlayer
from .scene import Actor


class _PlayerActor(Actor):
    player_type = PlaybackPlayer

    def __init__(self, width: float = 0.0, height: float = 0.0, player=None, context=None):
        if player is None:
            player = self.player_type(context)
        super().__init__(width, height, content=AspectRatio(player=player))

    def get_player(self):
        return self.get_content().get_player()


class VideoActor(_PlayerActor):
    player_type = PlaybackPlayer


class CameraActor(_PlayerActor):
    player_type = CameraPlayer
