"""
Media resource backed by python-mpv.
mpv reports events on its own thread; they are queued and replayed on the
thread that owns the PlaybackController.
"""

import logging
import queue
import time
from typing import Any, Callable, Optional

import mpv

from player.controller import (
    LoadStrategy,
    MediaErrorKind,
    MediaListener,
    MediaResource,
)

logger = logging.getLogger(__name__)

# mpv_error codes carried by end-file events
MPV_ERROR_KINDS = {
    -13: MediaErrorKind.NETWORK,             # loading failed
    -16: MediaErrorKind.DECODE,              # nothing to play
    -17: MediaErrorKind.UNSUPPORTED_FORMAT,  # unrecognized file format
    -18: MediaErrorKind.UNSUPPORTED_FORMAT,  # unsupported
}

# mpv_end_file_reason
END_FILE_EOF = 0
END_FILE_STOP = 2
END_FILE_ERROR = 4

CACHE_MODE = {
    LoadStrategy.AUTO: "yes",
    LoadStrategy.METADATA: "auto",
    LoadStrategy.NONE: "no",
}


class EventQueue:
    """Thread-safe hand-off from mpv's event thread to the owner loop."""

    def __init__(self):
        self._queue: "queue.Queue" = queue.Queue()

    def post(self, callback: Callable[..., None], *args: Any):
        self._queue.put((callback, args))

    def drain(self) -> int:
        """Run everything queued so far on the calling thread."""
        handled = 0
        while True:
            try:
                callback, args = self._queue.get_nowait()
            except queue.Empty:
                return handled
            callback(*args)
            handled += 1


class MpvMediaResource(MediaResource):
    """Wrapper around MPV for one article."""

    def __init__(self, events: EventQueue, player: Optional[Any] = None):
        self._events = events
        self._listener: Optional[MediaListener] = None
        # vo='null' because we are audio-only
        self.player = player if player is not None else mpv.MPV(
            vo='null',
            video=False,
            ytdl=False,  # We provide direct URLs
        )

        # Throttling for time updates (reduce CPU usage)
        self._last_time_update = 0.0
        self._metadata_sent = False

        self.player.observe_property('duration', self._handle_duration)
        self.player.observe_property('time-pos', self._handle_time_update)
        self.player.observe_property('paused-for-cache', self._handle_cache_pause)
        self.player.event_callback('end-file')(self._handle_end_file)

    # --- MediaResource ---

    def load(self, url: str, strategy: LoadStrategy):
        self._metadata_sent = False
        self.player.cache = CACHE_MODE[strategy]
        # Stay paused until the controller asks to start
        self.player.pause = True
        self.player.play(url)

    def start(self):
        self.player.pause = False

    def pause(self):
        self.player.pause = True

    def seek(self, position: float):
        try:
            self.player.seek(position, reference='absolute')
        except Exception as e:
            logger.warning(f"Error seeking to {position}: {e}")

    @property
    def position(self) -> float:
        return self.player.time_pos or 0.0

    @property
    def duration(self) -> Optional[float]:
        return self.player.duration

    def buffered_end(self) -> float:
        return self.player.demuxer_cache_time or 0.0

    def set_volume(self, volume: float):
        self.player.volume = round(max(0.0, min(1.0, volume)) * 100)

    def set_rate(self, rate: float):
        self.player.speed = rate

    def set_listener(self, listener: MediaListener):
        self._listener = listener

    def clear_listener(self):
        self._listener = None

    def release(self):
        self._listener = None
        self.player.terminate()

    def preload(self, start: float, end: float):
        self.player.demuxer_readahead_secs = max(1, int(end - start))

    # --- mpv thread handlers ---

    def _post(self, method: str, *args: Any):
        self._events.post(self._dispatch, method, args)

    def _dispatch(self, method: str, args: tuple):
        listener = self._listener
        if listener is not None:
            getattr(listener, method)(*args)

    def _handle_duration(self, name, value):
        if value is not None and not self._metadata_sent:
            self._metadata_sent = True
            self._post('on_metadata', value)

    def _handle_time_update(self, name, value):
        """Handle time position updates from MPV with throttling."""
        if value is None:
            return
        # Throttle to ~4 updates per second (250ms between updates)
        current_time = time.monotonic()
        if current_time - self._last_time_update >= 0.25:
            self._last_time_update = current_time
            self._post('on_progress', value)

    def _handle_cache_pause(self, name, value):
        if value is None:
            return
        self._post('on_stall' if value else 'on_resume')

    def _handle_end_file(self, event):
        data = event.data
        reason = getattr(data, 'reason', None)
        if reason == END_FILE_EOF:
            self._post('on_ended')
        elif reason == END_FILE_ERROR:
            code = getattr(data, 'error', None)
            kind = MPV_ERROR_KINDS.get(code, MediaErrorKind.NETWORK)
            self._post('on_error', kind, f"mpv error {code}")
        elif reason == END_FILE_STOP:
            self._post('on_error', MediaErrorKind.ABORTED, "stopped")
