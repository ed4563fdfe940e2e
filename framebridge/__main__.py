# =========  __main__.py  =========
"""
python -m framebridge [--aspect | --crop X1,Y1,X2,Y2] [--verbose] URI|PATH
"""
from __future__ import annotations

import argparse
import logging
import os
import sys

from . import config
from .aspectratio import AspectRatio
from .content import Content
from .crop import Crop
from .errors import PipelineUnavailableError
from .playback import PlaybackPlayer
from .stage import Stage

log = logging.getLogger("framebridge")


def _region(text: str):
    try:
        values = tuple(float(v) for v in text.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"bad region {text!r}") from None
    if len(values) != 4:
        raise argparse.ArgumentTypeError("a region is X1,Y1,X2,Y2")
    return values


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="framebridge", description="Play a video in a pygame window")
    parser.add_argument("media", help="URI or local file")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--aspect", action="store_true", help="keep the aspect ratio (letterbox)")
    group.add_argument("--crop", type=_region, metavar="X1,Y1,X2,Y2", help="show only this input region")
    parser.add_argument("--borders", action="store_true", help="paint borders around the frame")
    parser.add_argument("--fullscreen", action="store_true")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.fullscreen:
        config.FULLSCREEN = True

    try:
        player = PlaybackPlayer()
    except PipelineUnavailableError as exc:
        log.error("%s", exc)
        return 1

    if "://" in args.media:
        player.set_uri(args.media)
    elif os.path.exists(args.media):
        player.set_filename(args.media)
    else:
        log.error("no such file: %s", args.media)
        return 1

    if args.aspect:
        content = AspectRatio(player=player, paint_borders=args.borders)
    elif args.crop:
        content = Crop(player=player, paint_borders=args.borders)
        content.set_input_region(args.crop)
    else:
        content = Content(player=player)

    player.connect("error", lambda _p, kind, text: log.error("%s: %s", kind.name, text))
    player.connect("eos", lambda _p: log.info("end of stream"))
    player.set_playing(True)
    try:
        Stage(content, player).run()
    finally:
        player.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
