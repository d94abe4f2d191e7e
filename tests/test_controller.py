import math

import pytest

from player.controller import (
    LoadStrategy,
    MediaErrorKind,
    PlaybackErrorKind,
    PlaybackState,
    QualityTier,
    StaticCapabilityProvider,
    TelemetrySink,
    play_article,
)
from player.settings import PlayerSettings

from conftest import CDN_URL, PlayerHarness, make_track
from test_device import ANDROID_UA, IPHONE_UA

LOW_SEGMENT = "/upload/q_auto:low,"
HIGH_SEGMENT = "/upload/q_auto:best,"


def start_playing(harness, stored=600, measured=600.0):
    harness.controller.load_track(make_track(stored=stored), autoplay=True)
    harness.resource.listener.on_metadata(measured)
    assert harness.controller.state == PlaybackState.PLAYING


# --- Loading ---

def test_load_requests_tier_variant(harness):
    harness.controller.load_track(make_track(stored=120))
    assert harness.controller.state == PlaybackState.LOADING
    url, strategy = harness.resource.loads[0]
    assert HIGH_SEGMENT in url
    assert strategy == LoadStrategy.AUTO
    assert harness.controller.session.resolved_duration == 120


def test_metadata_moves_to_ready_without_autoplay(harness):
    harness.controller.load_track(make_track(stored=120))
    harness.resource.listener.on_metadata(121.0)
    assert harness.controller.state == PlaybackState.READY
    assert harness.resource.started == 0
    assert harness.telemetry.plays == []


def test_non_cdn_url_is_loaded_as_is(harness):
    harness.controller.load_track(make_track(media_ref="https://example.com/a.mp3"))
    assert harness.resource.last_url == "https://example.com/a.mp3"


@pytest.mark.parametrize("media_ref", [None, ""])
def test_track_without_media_is_an_error(harness, media_ref):
    messages = []
    harness.controller.set_message_callback(messages.append)
    harness.controller.load_track(make_track(media_ref=media_ref))
    assert harness.controller.state == PlaybackState.ERROR
    assert harness.resources == []
    assert messages[-1].kind == PlaybackErrorKind.INVALID_INPUT
    assert harness.controller.play() is False


def test_non_sticky_message_is_dismissed(harness):
    messages = []
    harness.controller.set_message_callback(messages.append)
    harness.controller.load_track(make_track(media_ref=None))
    harness.advance(4.9)
    assert harness.controller.message is not None
    harness.advance(0.2)
    assert harness.controller.message is None
    assert messages[-1] is None


# --- Duration reconciliation ---

def test_placeholder_duration_is_corrected_once(harness):
    start_playing(harness, stored=480, measured=623.0)
    assert harness.controller.session.resolved_duration == 623
    assert harness.telemetry.durations == [("a1", 623)]

    # Recover from a network error; the second metadata must not report again
    harness.resource.listener.on_error(MediaErrorKind.NETWORK)
    harness.advance(1.0)
    harness.resource.listener.on_metadata(623.0)
    assert harness.telemetry.durations == [("a1", 623)]


def test_close_duration_is_not_reported(harness):
    start_playing(harness, stored=600, measured=612.0)
    assert harness.controller.session.resolved_duration == 600
    assert harness.telemetry.durations == []


def test_missing_measurement_does_not_zero_duration(harness):
    harness.controller.load_track(make_track(stored=200))
    harness.resource.listener.on_metadata(None)
    assert harness.controller.session.resolved_duration == 200


def test_time_updates_carry_duration(harness):
    updates = []
    harness.controller.set_time_update_callback(lambda t, d: updates.append((t, d)))
    start_playing(harness, stored=0, measured=95.6)
    harness.resource.listener.on_progress(12.5)
    assert updates[-1] == (12.5, 96)


# --- Network retries ---

def test_retry_budget_is_three_then_sticky_error(harness):
    harness.controller.load_track(make_track(), autoplay=True)
    for attempt in range(1, 4):
        harness.resource.listener.on_error(MediaErrorKind.NETWORK)
        assert harness.controller.state == PlaybackState.LOADING
        assert harness.controller.message.kind == PlaybackErrorKind.NETWORK_STALL
        harness.advance(attempt * 1.0)
        assert len(harness.resource.loads) == attempt + 1
        assert harness.resource.last_url == CDN_URL

    harness.resource.listener.on_error(MediaErrorKind.NETWORK)
    assert harness.controller.state == PlaybackState.ERROR
    assert harness.controller.message.kind == PlaybackErrorKind.MAX_RETRIES_EXCEEDED
    assert harness.controller.message.sticky
    assert len(harness.resource.loads) == 4

    harness.advance(60)
    assert harness.controller.message is not None
    assert len(harness.resource.loads) == 4


def test_retry_waits_for_backoff(harness):
    harness.controller.load_track(make_track())
    harness.resource.listener.on_error(MediaErrorKind.NETWORK)
    harness.resource.listener.on_error(MediaErrorKind.NETWORK)
    harness.advance(0.5)
    assert len(harness.resource.loads) == 1
    assert harness.controller.session.retry_count == 1
    harness.advance(0.5)
    assert len(harness.resource.loads) == 2


def test_play_while_retry_pending_is_deferred(harness):
    harness.controller.load_track(make_track())
    harness.resource.listener.on_error(MediaErrorKind.NETWORK)
    assert harness.controller.play() is False
    assert harness.resource.started == 0
    harness.advance(1.0)
    harness.resource.listener.on_metadata(600.0)
    assert harness.controller.state == PlaybackState.PLAYING


def test_play_before_metadata_waits_for_ready(harness):
    harness.controller.load_track(make_track())
    assert harness.controller.play() is False
    assert harness.controller.state == PlaybackState.LOADING
    assert harness.resource.started == 0
    assert harness.telemetry.plays == []

    harness.resource.listener.on_metadata(600.0)
    assert harness.controller.state == PlaybackState.PLAYING
    assert harness.resource.started == 1
    assert harness.telemetry.plays == ["a1"]


def test_recovery_resumes_position_and_ended_resets_retries(harness):
    start_playing(harness)
    harness.resource.listener.on_progress(42.0)
    for attempt in range(1, 4):
        harness.resource.listener.on_error(2)
        harness.advance(attempt * 1.0)
        harness.resource.listener.on_metadata(600.0)
        assert harness.controller.state == PlaybackState.PLAYING
    assert harness.resource.seeks == [42.0, 42.0, 42.0]
    assert harness.controller.session.retry_count == 3

    harness.resource.listener.on_ended()
    assert harness.controller.state == PlaybackState.ENDED
    assert harness.controller.session.retry_count == 0
    assert harness.telemetry.plays == ["a1"]


@pytest.mark.parametrize("code", [99, "weird", None])
def test_unknown_errors_count_as_network(harness, code):
    harness.controller.load_track(make_track())
    harness.resource.listener.on_error(code)
    assert harness.controller.session.retry_count == 1


def test_aborted_load_changes_nothing(harness):
    harness.controller.load_track(make_track())
    harness.resource.listener.on_error(MediaErrorKind.ABORTED)
    assert harness.controller.state == PlaybackState.LOADING
    assert harness.controller.session.retry_count == 0
    assert harness.controller.message is None


# --- Format and decode fallbacks ---

def test_unsupported_format_falls_back_once(harness):
    harness.controller.load_track(make_track())
    harness.resource.listener.on_error(MediaErrorKind.UNSUPPORTED_FORMAT)
    assert harness.resource.last_url == (
        "https://res.cloudinary.com/demo/video/upload/f_mp3/v1712345678/audio/episode.m4a"
    )
    assert harness.controller.session.used_fallback
    assert harness.controller.state == PlaybackState.LOADING

    harness.resource.listener.on_error(MediaErrorKind.UNSUPPORTED_FORMAT)
    assert harness.controller.state == PlaybackState.ERROR
    assert harness.controller.message.kind == PlaybackErrorKind.UNSUPPORTED_FORMAT
    assert len(harness.resource.loads) == 2


def test_decode_error_retries_raw_url_once(harness):
    harness.controller.load_track(make_track())
    harness.resource.listener.on_error(MediaErrorKind.DECODE)
    assert harness.resource.last_url == CDN_URL

    harness.resource.listener.on_error(MediaErrorKind.DECODE)
    assert harness.controller.state == PlaybackState.ERROR
    assert harness.controller.message.kind == PlaybackErrorKind.DECODE_FAILURE


def test_errors_after_terminal_failure_are_ignored(harness):
    harness.controller.load_track(make_track())
    harness.resource.listener.on_error(MediaErrorKind.DECODE)
    harness.resource.listener.on_error(MediaErrorKind.DECODE)
    loads = len(harness.resource.loads)
    harness.resource.listener.on_error(MediaErrorKind.NETWORK)
    harness.resource.listener.on_metadata(100.0)
    assert harness.controller.state == PlaybackState.ERROR
    assert len(harness.resource.loads) == loads


# --- Session lifecycle ---

def test_reload_cancels_pending_timers_and_drops_stale_events(harness):
    harness.controller.load_track(make_track(track_id="a1"))
    old_resource = harness.resource
    old_listener = old_resource.listener
    old_listener.on_error(MediaErrorKind.NETWORK)

    harness.controller.load_track(make_track(track_id="b2", stored=0))
    assert old_resource.released
    assert old_resource.listener is None
    assert harness.scheduler.pending() == 1  # the new watchdog

    harness.advance(1.0)
    assert len(old_resource.loads) == 1
    old_listener.on_metadata(999.0)
    old_listener.on_error(MediaErrorKind.NETWORK)
    assert harness.controller.state == PlaybackState.LOADING
    assert harness.controller.session.retry_count == 0
    assert harness.telemetry.durations == []


def test_destroy_releases_everything(harness):
    start_playing(harness)
    harness.controller.destroy()
    assert harness.controller.state == PlaybackState.IDLE
    assert harness.resource.released
    assert harness.controller.play() is False


def test_play_article_starts_when_ready(harness):
    controller = play_article(harness.controller, make_track())
    assert controller is harness.controller
    harness.resource.listener.on_metadata(600.0)
    assert controller.state == PlaybackState.PLAYING


# --- Transport ---

def test_pause_and_resume_report_one_play(harness):
    start_playing(harness)
    harness.controller.pause()
    assert harness.controller.state == PlaybackState.PAUSED
    assert harness.resource.paused == 1
    assert harness.controller.toggle_play() is True
    assert harness.controller.state == PlaybackState.PLAYING
    assert harness.telemetry.plays == ["a1"]


def test_play_after_end_restarts_from_zero(harness):
    ended = []
    harness.controller.add_track_end_callback(ended.append)
    start_playing(harness)
    harness.resource.listener.on_progress(600.0)
    harness.resource.listener.on_ended()
    assert [t.id for t in ended] == ["a1"]
    assert harness.controller.play() is True
    assert harness.resource.seeks[-1] == 0.0
    assert harness.controller.session.current_time == 0.0


def test_seek_is_clamped_and_rejects_garbage(harness):
    harness.controller.load_track(make_track(stored=200))
    harness.resource.listener.on_metadata(None)
    harness.controller.seek_to(500)
    harness.controller.seek_to(-5)
    harness.controller.seek_to(math.nan)
    harness.controller.seek_to(True)
    harness.controller.seek_to("10")
    assert harness.resource.seeks == [200.0, 0.0]


def test_skips(harness):
    start_playing(harness)
    harness.controller.skip_forward()
    harness.controller.skip_back()
    harness.controller.skip_back()
    assert harness.resource.seeks == [30.0, 15.0, 0.0]


def test_stall_and_resume_toggle_buffering(harness):
    loading = []
    harness.controller.set_loading_callback(loading.append)
    harness.controller.load_track(make_track())
    harness.resource.listener.on_stall()
    assert loading == []

    harness.resource.listener.on_metadata(600.0)
    harness.controller.play()
    harness.resource.listener.on_stall()
    harness.resource.listener.on_stall()
    assert harness.controller.session.buffering
    harness.resource.listener.on_resume()
    assert loading == [True, False]
    assert harness.controller.state == PlaybackState.PLAYING


def test_permission_refusal_on_touch_device_shows_hint_once():
    harness = PlayerHarness(provider=StaticCapabilityProvider(user_agent=IPHONE_UA))
    messages = []
    harness.controller.set_message_callback(messages.append)
    harness.controller.load_track(make_track(), autoplay=True)
    assert harness.resource.loads[0][1] == LoadStrategy.NONE
    harness.resource.refuse_start = True
    harness.resource.listener.on_metadata(600.0)

    assert harness.controller.state == PlaybackState.PAUSED
    assert messages[-1].kind == PlaybackErrorKind.PERMISSION_DENIED
    assert harness.controller.play() is False
    assert len([m for m in messages if m is not None]) == 1

    harness.resource.refuse_start = False
    assert harness.controller.play() is True
    assert harness.controller.state == PlaybackState.PLAYING


def test_permission_refusal_on_desktop_is_silent(harness):
    harness.controller.load_track(make_track(), autoplay=True)
    harness.resource.refuse_start = True
    harness.resource.listener.on_metadata(600.0)
    assert harness.controller.state == PlaybackState.PAUSED
    assert harness.controller.message is None


# --- Adaptive quality ---

def test_slow_start_downgrades_to_low_quality(harness):
    harness.controller.load_track(make_track())
    harness.advance(3.0)
    assert harness.controller.session.tier == QualityTier.LOW
    assert LOW_SEGMENT in harness.resource.last_url
    assert len(harness.resource.loads) == 2

    harness.advance(10.0)
    assert len(harness.resource.loads) == 2


def test_fast_start_keeps_quality(harness):
    harness.controller.load_track(make_track())
    harness.resource.listener.on_metadata(600.0)
    harness.advance(3.0)
    assert len(harness.resource.loads) == 1
    assert harness.controller.session.tier == QualityTier.HIGH


def test_slow_connection_starts_low_and_never_reloads():
    harness = PlayerHarness(provider=StaticCapabilityProvider(effective_type="2g"))
    harness.controller.load_track(make_track())
    url, strategy = harness.resource.loads[0]
    assert LOW_SEGMENT in url
    assert strategy == LoadStrategy.METADATA
    harness.advance(3.0)
    assert len(harness.resource.loads) == 1


def test_set_quality_reloads_at_position(harness):
    start_playing(harness)
    harness.resource.listener.on_progress(50.0)
    harness.controller.set_quality(QualityTier.LOW)
    assert LOW_SEGMENT in harness.resource.last_url
    assert harness.controller.state == PlaybackState.LOADING

    harness.resource.listener.on_metadata(600.0)
    assert harness.resource.seeks == [50.0]
    assert harness.controller.state == PlaybackState.PLAYING

    harness.controller.set_quality(QualityTier.LOW)
    assert len(harness.resource.loads) == 2


# --- Preloading ---

def test_initial_window_and_lookahead(harness):
    start_playing(harness)
    assert harness.resource.preloads == [(0.0, 30.0)]
    harness.resource._buffered_end = 40.0
    harness.resource.listener.on_progress(20.0)
    harness.resource.listener.on_progress(21.0)
    assert harness.resource.preloads == [(0.0, 30.0), (40.0, 70.0)]


def test_lookahead_stops_at_duration(harness):
    start_playing(harness, stored=100, measured=100.0)
    harness.resource._buffered_end = 90.0
    harness.resource.listener.on_progress(80.0)
    assert harness.resource.preloads[-1] == (90.0, 100.0)


def test_mobile_skips_lookahead():
    harness = PlayerHarness(provider=StaticCapabilityProvider(user_agent=ANDROID_UA))
    start_playing(harness)
    harness.resource._buffered_end = 40.0
    harness.resource.listener.on_progress(20.0)
    assert harness.resource.preloads == [(0.0, 30.0)]


def test_ios_preloads_nothing_up_front():
    harness = PlayerHarness(provider=StaticCapabilityProvider(user_agent=IPHONE_UA))
    start_playing(harness)
    assert harness.resource.preloads == []


# --- Settings and telemetry ---

def test_speed_volume_and_quality_persist(tmp_path):
    settings = PlayerSettings(config_dir=str(tmp_path))
    harness = PlayerHarness(settings=settings)
    start_playing(harness)

    assert harness.controller.cycle_speed() == 1.25
    assert harness.resource.rate == 1.25
    harness.controller.set_volume(1.7)
    assert harness.resource.volume == 1.0
    harness.controller.set_quality(QualityTier.MEDIUM)

    reloaded = PlayerSettings(config_dir=str(tmp_path))
    assert reloaded.playback_rate == 1.25
    assert reloaded.volume == 1.0
    assert reloaded.quality == "medium"

    fresh = PlayerHarness(settings=reloaded)
    assert fresh.controller.quality_tier == QualityTier.MEDIUM
    assert fresh.controller.playback_rate == 1.25


def test_speed_wraps_around(harness):
    for _ in range(4):
        harness.controller.cycle_speed()
    assert harness.controller.playback_rate == 2.0
    assert harness.controller.cycle_speed() == 0.5


def test_position_is_remembered_and_cleared_on_end(tmp_path):
    settings = PlayerSettings(config_dir=str(tmp_path))
    harness = PlayerHarness(settings=settings)
    start_playing(harness)
    harness.resource.listener.on_progress(123.0)
    harness.controller.pause()
    assert settings.resume_position("a1") == 123.0

    harness.controller.play()
    harness.resource.listener.on_ended()
    assert settings.resume_position("a1") == 0.0


def test_failing_telemetry_does_not_break_playback(harness):
    class Exploding(TelemetrySink):
        def report_play(self, article_id):
            raise RuntimeError("offline")

        def report_duration(self, article_id, seconds):
            raise RuntimeError("offline")

    harness.controller.telemetry = Exploding()
    start_playing(harness, stored=0, measured=321.0)
    assert harness.controller.session.resolved_duration == 321
