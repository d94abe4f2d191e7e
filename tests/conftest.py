"""
Shared fakes for the test suite.
"""

from typing import List, Optional, Tuple

import pytest

from media_tool.media_service import MediaService, MediaServiceError
from player.controller import (
    MediaResource,
    PlaybackController,
    PlaybackPermissionError,
    PolledScheduler,
    StaticCapabilityProvider,
    TelemetrySink,
)
from shared.models import Track, UploadResult

CDN_URL = "https://res.cloudinary.com/demo/video/upload/v1712345678/audio/episode.m4a"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class FakeMediaResource(MediaResource):
    """Records every call; tests fire events through `listener`."""

    def __init__(self):
        self.loads: List[Tuple[str, object]] = []
        self.seeks: List[float] = []
        self.preloads: List[Tuple[float, float]] = []
        self.started = 0
        self.paused = 0
        self.volume = None
        self.rate = None
        self.listener = None
        self.released = False
        self.refuse_start = False
        self._buffered_end = 0.0
        self._position = 0.0

    def load(self, url, strategy):
        self.loads.append((url, strategy))

    def start(self):
        if self.refuse_start:
            raise PlaybackPermissionError("NotAllowedError")
        self.started += 1

    def pause(self):
        self.paused += 1

    def seek(self, position):
        self.seeks.append(position)
        self._position = position

    @property
    def position(self):
        return self._position

    @property
    def duration(self):
        return None

    def buffered_end(self):
        return self._buffered_end

    def set_volume(self, volume):
        self.volume = volume

    def set_rate(self, rate):
        self.rate = rate

    def set_listener(self, listener):
        self.listener = listener

    def clear_listener(self):
        self.listener = None

    def release(self):
        self.released = True

    def preload(self, start, end):
        self.preloads.append((start, end))

    @property
    def last_url(self) -> Optional[str]:
        return self.loads[-1][0] if self.loads else None


class FakeTelemetry(TelemetrySink):
    def __init__(self):
        self.plays: List[str] = []
        self.durations: List[Tuple[str, int]] = []

    def report_play(self, article_id):
        self.plays.append(article_id)

    def report_duration(self, article_id, seconds):
        self.durations.append((article_id, seconds))


class FakeMediaService(MediaService):
    def __init__(self):
        self.uploads = []
        self.deleted = []
        self.fail_uploads_for = set()
        self._counter = 0

    def upload(self, data, folder, resource_type, filename=None):
        if resource_type in self.fail_uploads_for:
            raise MediaServiceError("upload refused")
        self._counter += 1
        public_id = f"{folder}/file{self._counter}"
        self.uploads.append((folder, resource_type, filename, len(data)))
        return UploadResult(
            url=f"https://res.cloudinary.com/demo/{resource_type}/upload/v1/{public_id}",
            public_id=public_id,
            bytes=len(data),
            format=(filename or "bin").rsplit(".", 1)[-1],
            resource_type=resource_type,
        )

    def delete(self, public_id, resource_type):
        self.deleted.append((public_id, resource_type))
        return True

    def optimize_url(self, url):
        return url


class PlayerHarness:
    """A controller wired to fakes, plus helpers to drive it."""

    def __init__(self, provider=None, settings=None):
        self.clock = FakeClock()
        self.scheduler = PolledScheduler(clock=self.clock)
        self.telemetry = FakeTelemetry()
        self.resources: List[FakeMediaResource] = []
        self.controller = PlaybackController(
            resource_factory=self._make_resource,
            capability_provider=provider or StaticCapabilityProvider(),
            scheduler=self.scheduler,
            telemetry=self.telemetry,
            settings=settings,
        )

    def _make_resource(self):
        resource = FakeMediaResource()
        self.resources.append(resource)
        return resource

    @property
    def resource(self) -> FakeMediaResource:
        return self.resources[-1]

    def advance(self, seconds: float):
        self.clock.now += seconds
        self.scheduler.run_due()


def make_track(media_ref=CDN_URL, stored=None, track_id="a1") -> Track:
    return Track(
        id=track_id,
        title="Episode",
        category="News",
        thumbnail_ref=None,
        media_ref=media_ref,
        stored_duration_seconds=stored,
    )


@pytest.fixture
def harness():
    return PlayerHarness()
