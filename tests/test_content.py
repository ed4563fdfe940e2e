import pygame
import pytest

from framebridge.actors import CameraActor, VideoActor
from framebridge.aspectratio import AspectRatio, fit_box
from framebridge.content import Content
from framebridge.crop import FULL_REGION, Crop
from framebridge.overlays import OverlayComposition
from framebridge.player import PipelinePlayer
from framebridge.scene import (Actor, ActorBox, Color, ColorNode, ContentRepeat,
                               PipelineNode, render_tree)
from framebridge.video_sink import VideoSink

from conftest import ALL_FEATURES, FakeCameraBin, FakePlaybin, overlay_rect, push_frame


@pytest.fixture
def sink(context):
    return VideoSink(context, ALL_FEATURES)


def box_values(box):
    return pytest.approx((box.x1, box.y1, box.x2, box.y2))


def only(root, name):
    nodes = root.find(name)
    assert len(nodes) == 1, nodes
    return nodes[0]


# ── Content ────────────────────────────────────────────────────────────────
def test_content_follows_sink(sink, context, recorder):
    content = Content(sink=sink)
    recorder.watch(content, "size-change", "invalidate")
    assert content.get_preferred_size() is None

    push_frame(sink, context)
    push_frame(sink, context)
    assert recorder.names() == ["size-change", "invalidate", "invalidate"]
    assert recorder.of("size-change") == [(4, 2)]
    assert content.get_preferred_size() == (4, 2)
    assert content.get_frame().material is sink.get_frame().material


def test_blank_content_paints_background(sink):
    content = Content(sink=sink)
    actor = Actor(320, 240, content)
    actor.background_color = Color(10, 20, 30)
    actor.opacity = 128
    node = only(actor.paint(), "BlankVideoFrame")
    assert isinstance(node, ColorNode)
    assert node.color == Color(10, 20, 30, 128)
    assert node.rectangles == [ActorBox(0, 0, 320, 240)]


def test_video_node_and_repeat(sink, context):
    content = Content(sink=sink)
    push_frame(sink, context)
    actor = Actor(8, 4, content)

    node = only(actor.paint(), "Video")
    assert isinstance(node, PipelineNode)
    assert node.rectangles == [(ActorBox(0, 0, 8, 4), (0.0, 0.0, 1.0, 1.0))]

    actor.content_repeat = ContentRepeat.BOTH
    node = only(actor.paint(), "Video")
    assert node.rectangles[0][1] == (0.0, 0.0, 2.0, 2.0)


def test_paint_frame_flag(sink, context, recorder):
    content = Content(sink=sink)
    push_frame(sink, context)
    recorder.watch(content, "invalidate")
    content.set_paint_frame(False)
    assert recorder.names() == ["invalidate"]
    assert Actor(8, 4, content).paint().find("Video") == []


def test_invalidate_queues_redraw(sink, context):
    content = Content(sink=sink)
    actor = Actor(8, 4, content)
    actor.paint()
    assert not actor.needs_redraw
    push_frame(sink, context)
    assert actor.needs_redraw


def test_content_follows_player_sink(context):
    first = VideoSink(context, ALL_FEATURES)
    second = VideoSink(context, ALL_FEATURES)
    player = PipelinePlayer(first)
    content = Content(player=player)
    assert content.get_sink() is first

    player.set_video_sink(second)
    assert content.get_sink() is second
    push_frame(second, context, 6, 4)
    assert content.get_preferred_size() == (6, 4)

    content.set_sink(first)
    assert content.get_player() is None
    assert content.get_sink() is first


def test_dispose_releases_frame(sink, context):
    content = Content(sink=sink)
    push_frame(sink, context)
    material = content.get_frame().material
    content.dispose()
    assert content.get_frame() is None
    assert content.get_sink() is None
    assert material.refcount == 1


# ── AspectRatio ────────────────────────────────────────────────────────────
def test_pillarbox(sink, context):
    content = AspectRatio(sink=sink, paint_borders=True)
    push_frame(sink, context, 640, 480)
    root = Actor(800, 300, content).paint()

    frame = only(root, "AspectRatioVideoFrame")
    assert box_values(frame.rectangles[0][0]) == (200, 0, 600, 300)
    borders = only(root, "AspectRatioVideoBorders")
    assert [box_values(b) for b in borders.rectangles] == [(0, 0, 200, 300),
                                                         (600, 0, 800, 300)]


def test_letterbox(sink, context):
    content = AspectRatio(sink=sink, paint_borders=True)
    push_frame(sink, context, 640, 480)
    root = Actor(400, 600, content).paint()

    frame = only(root, "AspectRatioVideoFrame")
    assert box_values(frame.rectangles[0][0]) == (0, 150, 400, 450)
    borders = only(root, "AspectRatioVideoBorders")
    assert [box_values(b) for b in borders.rectangles] == [(0, 0, 400, 150),
                                                         (0, 450, 400, 600)]


def test_aspect_includes_pixel_aspect_ratio(sink, context):
    content = AspectRatio(sink=sink)
    push_frame(sink, context, 4, 2, **{"pixel-aspect-ratio": (2, 1)})
    root = Actor(400, 400, content).paint()
    assert box_values(only(root, "AspectRatioVideoFrame").rectangles[0][0]) == (0, 150, 400, 250)
    assert root.find("AspectRatioVideoBorders") == []


def test_fit_box_keeps_degenerate_boxes():
    box = ActorBox(0, 0, 0, 10)
    assert fit_box(box, 4 / 3) is box


def test_border_toggle_invalidates(sink, recorder):
    content = AspectRatio(sink=sink)
    recorder.watch(content, "invalidate")
    content.set_paint_borders(True)
    content.set_paint_borders(True)
    assert recorder.names() == ["invalidate"]
    assert content.get_property("paint-borders")


# ── Crop ───────────────────────────────────────────────────────────────────
@pytest.mark.parametrize("region", [
    (-0.1, 0.0, 1.0, 1.0),
    (0.0, 0.0, 1.2, 1.0),
    (0.0, 1.5, 1.0, 1.0),
    (0.6, 0.0, 0.5, 1.0),
])
def test_crop_rejects_invalid_regions(region):
    content = Crop()
    assert not content.set_input_region(region)
    assert not content.set_output_region(region)
    assert content.get_input_region() == FULL_REGION
    assert content.get_output_region() == FULL_REGION


@pytest.mark.parametrize("region", [(0, 1), "abc", None, (0, 0, "x", 1), 5])
def test_crop_rejects_malformed_regions(region, caplog):
    content = Crop()
    assert not content.set_input_region(region)
    assert not content.set_output_region(region)
    assert content.get_input_region() == FULL_REGION
    assert content.get_output_region() == FULL_REGION
    assert "invalid input region" in caplog.text


def test_crop_regions_round_trip():
    content = Crop()
    assert content.set_input_region((0.1, 0.2, 0.5, 0.9))
    assert content.get_input_region() == ActorBox(0.1, 0.2, 0.5, 0.9)
    region = ActorBox(0.0, 0.25, 1.0, 0.75)
    assert content.set_output_region(region)
    assert content.get_output_region() is region


def test_crop_paints_input_into_output(sink, context):
    content = Crop(sink=sink, paint_borders=True)
    push_frame(sink, context)
    content.set_input_region((0.0, 0.0, 0.5, 0.5))
    content.set_output_region((0.25, 0.0, 0.75, 1.0))
    root = Actor(400, 200, content).paint()

    (box, coords), = only(root, "CropVideoFrame").rectangles
    assert box_values(box) == (100, 0, 300, 200)
    assert coords == (0.0, 0.0, 0.5, 0.5)
    borders = only(root, "CropVideoBorders")
    assert [box_values(b) for b in borders.rectangles] == [(0, 0, 100, 200),
                                                         (300, 0, 400, 200)]


def test_crop_top_and_bottom_borders(sink, context):
    content = Crop(sink=sink, paint_borders=True)
    push_frame(sink, context)
    content.set_output_region((0.0, 0.25, 1.0, 0.75))
    borders = only(Actor(400, 200, content).paint(), "CropVideoBorders")
    assert [box_values(b) for b in borders.rectangles] == [(0, 0, 400, 50),
                                                         (0, 150, 400, 200)]


def test_crop_full_output_has_no_borders(sink, context):
    content = Crop(sink=sink, paint_borders=True)
    push_frame(sink, context)
    assert Actor(40, 20, content).paint().find("CropVideoBorders") == []


# ── rendering ──────────────────────────────────────────────────────────────
def test_render_tree_draws_frame_and_borders(sink, context):
    content = Crop(sink=sink, paint_borders=True)
    push_frame(sink, context, 4, 2, value=0x80)
    content.set_output_region((0.0, 0.0, 0.5, 1.0))
    actor = Actor(8, 4, content)
    actor.background_color = Color(255, 0, 0)

    surface = pygame.Surface((8, 4))
    surface.fill((0, 0, 255))
    render_tree(surface, actor.paint())
    assert tuple(surface.get_at((1, 1)))[:3] == (128, 128, 128)
    assert tuple(surface.get_at((6, 2)))[:3] == (255, 0, 0)


def test_render_tree_tiles_repeated_content(sink, context):
    content = Content(sink=sink)
    push_frame(sink, context, 4, 2, value=0x40)
    actor = Actor(8, 4, content)
    actor.content_repeat = ContentRepeat.BOTH

    surface = pygame.Surface((8, 4))
    render_tree(surface, actor.paint())
    assert tuple(surface.get_at((7, 3)))[:3] == (64, 64, 64)
    assert tuple(surface.get_at((0, 0)))[:3] == (64, 64, 64)


def test_render_tree_skips_released_material(sink, context):
    content = Content(sink=sink)
    push_frame(sink, context)
    root = Actor(4, 2, content).paint()
    only(root, "Video").material = None

    surface = pygame.Surface((4, 2))
    surface.fill((1, 2, 3))
    render_tree(surface, root)
    assert tuple(surface.get_at((0, 0)))[:3] == (1, 2, 3)


# ── overlays ───────────────────────────────────────────────────────────────
def subtitles():
    return OverlayComposition([overlay_rect(1, 1, 2, 1, (200, 0, 0, 255))])


def test_overlays_scale_into_the_frame_box(sink, context, recorder):
    content = Content(sink=sink)
    push_frame(sink, context)
    recorder.watch(content, "invalidate")
    push_frame(sink, context, overlays=subtitles())
    assert recorder.names() == ["invalidate", "invalidate"]
    assert len(content.get_overlays()) == 1

    root = Actor(40, 20, content).paint()
    assert [n.name for n in root.children] == ["Video", "VideoOverlay"]
    (box, coords), = only(root, "VideoOverlay").rectangles
    assert box_values(box) == (10, 10, 30, 20)


def test_overlays_follow_the_aspect_paint_box(sink, context):
    content = AspectRatio(sink=sink)
    push_frame(sink, context, 4, 2, overlays=subtitles())
    root = Actor(400, 400, content).paint()
    (box, _coords), = only(root, "VideoOverlay").rectangles
    assert box_values(box) == (100, 200, 300, 300)


def test_paint_overlays_flag(sink, context, recorder):
    content = Content(sink=sink)
    push_frame(sink, context, overlays=subtitles())
    recorder.watch(content, "invalidate")
    content.set_property("paint-overlays", False)
    assert recorder.names() == ["invalidate"]
    root = Actor(40, 20, content).paint()
    assert root.find("VideoOverlay") == []
    assert root.find("Video")


def test_content_holds_its_own_overlay_references(sink, context):
    content = Content(sink=sink)
    push_frame(sink, context, overlays=subtitles())
    material = content.get_overlays()[0].material
    assert material.refcount == 2
    sink.stop()
    assert material.refcount == 1
    content.dispose()
    assert material.released


def test_render_tree_draws_overlays(sink, context):
    content = Content(sink=sink)
    push_frame(sink, context, 4, 2, value=0x10, overlays=subtitles())
    surface = pygame.Surface((4, 2))
    render_tree(surface, Actor(4, 2, content).paint())
    assert tuple(surface.get_at((2, 1)))[:3] == (200, 0, 0)
    assert tuple(surface.get_at((0, 0)))[:3] == (16, 16, 16)


# ── pointer mapping ────────────────────────────────────────────────────────
def test_frame_coordinates_for_plain_content(sink, context):
    content = Content(sink=sink)
    actor = Actor(40, 20, content)
    assert content.to_frame_coordinates(actor, 10, 10) is None
    push_frame(sink, context, 4, 2)
    assert content.to_frame_coordinates(actor, 10, 10) == pytest.approx((1.0, 1.0))
    assert content.to_frame_coordinates(actor, 40, 10) is None


def test_frame_coordinates_skip_aspect_borders(sink, context):
    content = AspectRatio(sink=sink)
    push_frame(sink, context, 4, 2)
    actor = Actor(400, 400, content)
    assert content.to_frame_coordinates(actor, 200, 50) is None
    assert content.to_frame_coordinates(actor, 300, 250) == pytest.approx((3.0, 1.5))


def test_frame_coordinates_through_crop(sink, context):
    content = Crop(sink=sink)
    push_frame(sink, context, 4, 2)
    content.set_input_region((0.5, 0.0, 1.0, 1.0))
    content.set_output_region((0.0, 0.0, 0.5, 1.0))
    actor = Actor(40, 20, content)
    assert content.to_frame_coordinates(actor, 30, 10) is None
    assert content.to_frame_coordinates(actor, 10, 5) == pytest.approx((3.0, 0.5))


# ── ready-made actors ──────────────────────────────────────────────────────
def test_video_actor_binds_its_player(context):
    from framebridge.playback import PlaybackPlayer

    player = PlaybackPlayer(context, pipeline_factory=FakePlaybin, features=ALL_FEATURES)
    actor = VideoActor(320, 240, player=player)
    assert actor.get_player() is player
    content = actor.get_content()
    assert isinstance(content, AspectRatio)
    assert content.get_sink() is player.get_video_sink()


def test_camera_actor_creates_a_player(context, devices, monkeypatch):
    from framebridge.camera import CameraPlayer
    from framebridge.camera_device import CameraManager

    manager = CameraManager(discover=lambda: devices)
    monkeypatch.setattr(CameraActor, "player_type", staticmethod(lambda ctx: CameraPlayer(
        ctx, pipeline_factory=FakeCameraBin, device_manager=manager, features=ALL_FEATURES)))
    actor = CameraActor(320, 240, context=context)
    assert isinstance(actor.get_player(), CameraPlayer)
    assert actor.get_content().get_sink() is actor.get_player().get_video_sink()
