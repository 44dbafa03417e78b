from agent.video import find_video, read_state
from relay.protocol import PlaybackState

from .conftest import FakeVideo


def test_no_videos():
    assert find_video([]) is None


def test_playing_video_with_data_wins():
    progressed = FakeVideo(current_time=30)
    buffering = FakeVideo(paused=False, ready_state=1)
    playing = FakeVideo(paused=False, ready_state=2)
    assert find_video([progressed, buffering, playing]) is playing


def test_progressed_video_beats_sourced_one():
    sourced = FakeVideo(src="a.mp4")
    progressed = FakeVideo(current_time=3, src="")
    assert find_video([sourced, progressed]) is progressed


def test_video_with_source_beats_empty_one():
    empty = FakeVideo(src="")
    sourced = FakeVideo(src="b.mp4")
    assert find_video([empty, sourced]) is sourced


def test_first_video_is_fallback():
    first, second = FakeVideo(src=""), FakeVideo(src="")
    assert find_video([first, second]) is first


def test_read_state():
    video = FakeVideo(current_time=12.5, paused=False, playback_rate=1.25)
    assert read_state(video) == PlaybackState(12.5, False, 1.25)


def test_source_from_child_element_counts():
    empty = FakeVideo(src="")
    child_sourced = FakeVideo(src="", current_src="https://cdn.example/clip.m3u8")
    assert find_video([empty, child_sourced]) is child_sourced
