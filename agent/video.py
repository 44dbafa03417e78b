"""
Video element abstraction and discovery policy

The host page supplies VideoHandle objects; this module only decides which
one to follow and how to read its state.
"""
from typing import Optional, Protocol, Sequence

from relay.protocol import PlaybackState

# HTMLMediaElement.readyState
HAVE_CURRENT_DATA = 2

# Events that report a deliberate user change
USER_EVENTS = ("play", "pause", "seeked", "ratechange")
TIME_UPDATE = "timeupdate"


class VideoHandle(Protocol):
    current_time: float
    paused: bool
    playback_rate: float
    ready_state: int
    src: str
    # resolved source, also set when it comes from a <source> child
    current_src: str

    def play(self) -> None: ...

    def pause(self) -> None: ...


def find_video(videos: Sequence[VideoHandle]) -> Optional[VideoHandle]:
    """Pick the video to sync, first match wins:

    1. a playing video with enough buffered data
    2. a video that has made progress
    3. a video with a source
    4. the first video
    """
    if not videos:
        return None

    for video in videos:
        if not video.paused and video.ready_state >= HAVE_CURRENT_DATA:
            return video

    for video in videos:
        if video.current_time > 0:
            return video

    for video in videos:
        if video.src or video.current_src:
            return video

    return videos[0]


def read_state(video: VideoHandle) -> PlaybackState:
    return PlaybackState(
        current_time=video.current_time,
        paused=video.paused,
        playback_rate=video.playback_rate,
    )
