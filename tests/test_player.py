from framebridge.frame import Frame, Resolution
from framebridge.player import PipelinePlayer, pipeline_playing
from framebridge.pipeline import State
from framebridge.video_sink import VideoSink

from conftest import ALL_FEATURES, FakePlaybin, push_frame


def test_blank_frame():
    frame = Frame.new_blank()
    assert frame.resolution == Resolution(0, 0, 1, 1)
    assert frame.is_blank
    assert frame.pipeline is not None


def test_copy_shares_material():
    frame = Frame.new_blank()
    copy = frame.copy()
    assert copy.material is frame.material
    frame.release()
    assert not copy.material.released
    copy.release()
    assert copy.material is None


def test_update_par_from_sink(context):
    sink = VideoSink(context, ALL_FEATURES)
    push_frame(sink, context, **{"pixel-aspect-ratio": (10, 11)})
    frame = Frame.new_blank()
    frame.update_par_from_sink(sink)
    assert (frame.resolution.par_n, frame.resolution.par_d) == (10, 11)


def _pipeline_player(context):
    sink = VideoSink(context, ALL_FEATURES)
    pipeline = FakePlaybin(sink)
    return PipelinePlayer(sink, pipeline), sink, pipeline


def test_pipeline_player_forwards_frames(context, recorder):
    player, sink, _ = _pipeline_player(context)
    assert player.get_frame().is_blank
    recorder.watch(player, "ready", "size-change", "new-frame")
    push_frame(sink, context)
    assert recorder.names() == ["ready", "size-change", "new-frame"]
    emitted = recorder.of("new-frame")[0][0]
    assert emitted is player.get_frame()
    assert emitted.material is sink.get_frame().material


def test_size_change_only_when_resolution_differs(context, recorder):
    player, sink, _ = _pipeline_player(context)
    push_frame(sink, context)
    recorder.watch(player, "size-change", "new-frame")
    push_frame(sink, context)
    push_frame(sink, context, 8, 6)
    assert recorder.names() == ["new-frame", "size-change", "new-frame"]
    assert recorder.of("size-change") == [(8, 6)]


def test_par_change_is_a_size_change(context, recorder):
    player, sink, _ = _pipeline_player(context)
    push_frame(sink, context)
    recorder.watch(player, "size-change", "new-frame")
    push_frame(sink, context, **{"pixel-aspect-ratio": (2, 1)})
    assert recorder.names().count("size-change") == 1
    assert recorder.names()[0] == "size-change"
    assert player.get_frame().resolution.par_n == 2


def test_emitted_frames_are_never_blank(context, recorder):
    player, sink, _ = _pipeline_player(context)
    recorder.watch(player, "new-frame")
    for size in ((4, 2), (8, 6), (2, 2)):
        push_frame(sink, context, *size)
    for (frame,) in recorder.of("new-frame"):
        r = frame.resolution
        assert r.width > 0 and r.height > 0 and r.par_n > 0 and r.par_d > 0


def test_pipeline_player_reads_state(context):
    player, _, pipeline = _pipeline_player(context)
    assert not player.get_playing()
    pipeline.set_state(State.PLAYING)
    assert player.get_playing()
    player.set_playing(False)
    assert pipeline.state == State.PLAYING
    assert player.get_audio_volume() == 0.0
    assert not player.get_idle()


def test_pipeline_playing_prefers_pending():
    class Pending:
        def get_state(self):
            return State.PAUSED, State.PLAYING

    assert pipeline_playing(Pending())
    assert not pipeline_playing(None)


def test_set_video_sink_rebinds(context, recorder):
    player, first, _ = _pipeline_player(context)
    second = VideoSink(context, ALL_FEATURES)
    recorder.watch(player, "notify::video-sink", "new-frame")
    player.set_video_sink(second)
    push_frame(first, context)
    assert recorder.names() == ["notify::video-sink"]
    push_frame(second, context)
    assert recorder.names()[-1] == "new-frame"


def test_size_and_par_change_together_is_one_size_change(context, recorder):
    player, sink, _ = _pipeline_player(context)
    push_frame(sink, context, 4, 2)
    recorder.watch(player, "size-change", "new-frame")
    push_frame(sink, context, 8, 6, **{"pixel-aspect-ratio": (2, 1)})
    assert recorder.names() == ["size-change", "new-frame"]
    assert recorder.of("size-change") == [(8, 6)]
    assert player.get_frame().resolution == Resolution(8, 6, 2, 1)
