"""
Adaptive playback controller.

Owns the media resource for the current article and drives it through a
small state machine:

    Idle -> Loading -> Ready <-> Playing <-> Paused -> Ended
                                   (any) -> Error

with a parallel buffering flag. On top of the state machine it decides which
transform variant of a CDN URL to request for the device, reconciles the
duration stored in the database against what the media layer measures, and
recovers from media errors with bounded retries and format fallbacks.

The controller is single-threaded. Media events and timer callbacks must be
delivered on the thread that owns it (see `player.engine.EventQueue` and
`PolledScheduler.run_due`).
"""

import heapq
import itertools
import logging
import math
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from shared.constants import (
    MESSAGE_DISMISS_SECONDS,
    PLAYBACK_RATES,
    SKIP_BACK_SECONDS,
    SKIP_FORWARD_SECONDS,
)
from shared.models import Track

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BACKOFF_SECONDS = 1.0
WATCHDOG_SECONDS = 3.0


class QualityTier(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class LoadStrategy(Enum):
    AUTO = "auto"          # full preload
    METADATA = "metadata"  # headers only until play
    NONE = "none"          # nothing until play


class PlaybackState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"
    ERROR = "error"


class DurationSource(Enum):
    STORED = "stored"
    MEASURED = "measured"


class MediaErrorKind(Enum):
    """Raw failure reported by a media resource."""
    ABORTED = 1
    NETWORK = 2
    DECODE = 3
    UNSUPPORTED_FORMAT = 4


class PlaybackErrorKind(Enum):
    """What the listener is told about."""
    INVALID_INPUT = "invalid_input"
    NETWORK_STALL = "network_stall"
    DECODE_FAILURE = "decode_failure"
    UNSUPPORTED_FORMAT = "unsupported_format"
    PERMISSION_DENIED = "permission_denied"
    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"


class PlaybackPermissionError(Exception):
    """The platform refused to start playback without a user gesture."""


# ---------------------------------------------------------------------------
# Device capability detection
# ---------------------------------------------------------------------------

MOBILE_UA_PATTERN = re.compile(r"Android|webOS|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini", re.IGNORECASE)
IOS_UA_PATTERN = re.compile(r"iPhone|iPad|iPod")
ANDROID_UA_PATTERN = re.compile(r"Android")
SLOW_EFFECTIVE_TYPES = {"slow-2g", "2g"}

CODEC_PROBES = {
    "mp3": "audio/mpeg",
    "ogg": 'audio/ogg; codecs="vorbis"',
    "wav": "audio/wav",
    "m4a": "audio/mp4",
    "webm": 'audio/webm; codecs="opus"',
}


@dataclass(frozen=True)
class DeviceProfile:
    """
    Capabilities of the playing device, derived once per controller.

    Every codec defaults to decodable and the device to a fast desktop, which
    is what a profile degrades to when a signal cannot be read.
    """
    is_mobile: bool = False
    is_ios: bool = False
    is_android: bool = False
    is_slow_connection: bool = False
    supports_mp3: bool = True
    supports_ogg: bool = True
    supports_wav: bool = True
    supports_m4a: bool = True
    supports_webm: bool = True

    @property
    def quality_tier(self) -> QualityTier:
        if self.is_slow_connection:
            return QualityTier.LOW
        if self.is_mobile:
            return QualityTier.MEDIUM
        return QualityTier.HIGH

    @property
    def preload_buffer_seconds(self) -> int:
        return 10 if self.is_ios else 30

    @property
    def load_strategy(self) -> LoadStrategy:
        if self.is_ios:
            return LoadStrategy.NONE
        if self.is_slow_connection:
            return LoadStrategy.METADATA
        return LoadStrategy.AUTO

    @property
    def is_touch_first(self) -> bool:
        """Platforms that may refuse to start audio without a gesture."""
        return self.is_ios or self.is_android


class CapabilityProvider(ABC):
    """Source of the raw signals a DeviceProfile is derived from."""

    @abstractmethod
    def user_agent(self) -> Optional[str]:
        pass

    @abstractmethod
    def connection_hints(self) -> Mapping[str, Any]:
        """Keys: 'effective_type' (e.g. '4g', '2g') and 'save_data' (bool)."""
        pass

    @abstractmethod
    def can_play_type(self, mime: str) -> Optional[bool]:
        """True/False when known, None when the provider cannot tell."""
        pass


class StaticCapabilityProvider(CapabilityProvider):
    """Fixed signals. Defaults describe a desktop mpv build that decodes everything."""

    def __init__(self, user_agent: str = "", effective_type: Optional[str] = None,
                 save_data: bool = False, playable: Optional[Dict[str, bool]] = None):
        self._user_agent = user_agent
        self._effective_type = effective_type
        self._save_data = save_data
        self._playable = playable or {}

    def user_agent(self) -> Optional[str]:
        return self._user_agent

    def connection_hints(self) -> Mapping[str, Any]:
        return {"effective_type": self._effective_type, "save_data": self._save_data}

    def can_play_type(self, mime: str) -> Optional[bool]:
        return self._playable.get(mime)


class HeaderCapabilityProvider(CapabilityProvider):
    """
    Reads the signals from HTTP request headers (User-Agent, ECT, Save-Data)
    so the API can hand each client a URL suited to it.
    """

    def __init__(self, headers: Mapping[str, str]):
        self._headers = headers

    def user_agent(self) -> Optional[str]:
        return self._headers.get("User-Agent")

    def connection_hints(self) -> Mapping[str, Any]:
        save_data = (self._headers.get("Save-Data") or "").strip().lower() == "on"
        return {"effective_type": self._headers.get("ECT"), "save_data": save_data}

    def can_play_type(self, mime: str) -> Optional[bool]:
        return None


def detect_device_profile(provider: Optional[CapabilityProvider]) -> DeviceProfile:
    """Probe the provider. Any signal that cannot be read falls back to the default."""
    if provider is None:
        return DeviceProfile()

    try:
        ua = provider.user_agent() or ""
    except Exception as e:
        logger.debug(f"User agent probe failed: {e}")
        ua = ""
    if not isinstance(ua, str):
        ua = ""

    try:
        hints = provider.connection_hints() or {}
        effective_type = hints.get("effective_type")
        slow = effective_type in SLOW_EFFECTIVE_TYPES or hints.get("save_data") is True
    except Exception as e:
        logger.debug(f"Connection probe failed: {e}")
        slow = False

    codecs = {}
    for codec, mime in CODEC_PROBES.items():
        try:
            answer = provider.can_play_type(mime)
        except Exception as e:
            logger.debug(f"can_play_type({mime}) failed: {e}")
            answer = None
        codecs[f"supports_{codec}"] = True if answer is None else bool(answer)

    return DeviceProfile(
        is_mobile=bool(MOBILE_UA_PATTERN.search(ua)),
        is_ios=bool(IOS_UA_PATTERN.search(ua)),
        is_android=bool(ANDROID_UA_PATTERN.search(ua)),
        is_slow_connection=slow,
        **codecs,
    )


# ---------------------------------------------------------------------------
# URL quality transforms
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TierSettings:
    quality: str
    bitrate_kbps: int
    sample_rate: int
    channels: int


def default_tiers() -> Dict[QualityTier, TierSettings]:
    return {
        QualityTier.LOW: TierSettings("auto:low", 24, 22050, 1),
        QualityTier.MEDIUM: TierSettings("auto:good", 32, 22050, 1),
        QualityTier.HIGH: TierSettings("auto:best", 48, 44100, 2),
    }


@dataclass(frozen=True)
class TransformPolicy:
    """Where transforms apply and what each tier asks the CDN for."""
    host_pattern: str = "cloudinary.com"
    upload_marker: str = "/upload/"
    reserved_prefixes: Tuple[str, ...] = ("q_", "f_")
    streaming_flag: str = "fl_streaming_attachment"
    fallback_format: str = "mp3"
    tiers: Dict[QualityTier, TierSettings] = field(default_factory=default_tiers)


DEFAULT_POLICY = TransformPolicy()


def is_supported_media_url(url: Any, policy: TransformPolicy = DEFAULT_POLICY) -> bool:
    return isinstance(url, str) and policy.host_pattern in url and policy.upload_marker in url


def _is_transform_segment(segment: str, policy: TransformPolicy) -> bool:
    first_token = segment.split(",", 1)[0]
    return first_token.startswith(policy.reserved_prefixes)


def strip_transform(url: Any, policy: TransformPolicy = DEFAULT_POLICY) -> Any:
    """Remove every leading transform segment after the upload marker."""
    if not is_supported_media_url(url, policy):
        return url
    base, rest = url.split(policy.upload_marker, 1)
    segments = rest.split("/")
    # Keep at least the asset id even if it happens to look like a transform
    while len(segments) > 1 and _is_transform_segment(segments[0], policy):
        segments.pop(0)
    return f"{base}{policy.upload_marker}{'/'.join(segments)}"


def _insert_segment(url: str, segment: str, policy: TransformPolicy) -> str:
    clean = strip_transform(url, policy)
    base, rest = clean.split(policy.upload_marker, 1)
    return f"{base}{policy.upload_marker}{segment}/{rest}"


def _codec_for(profile: DeviceProfile) -> Tuple[Optional[str], str]:
    if profile.supports_m4a:
        return "aac", "m4a"
    if profile.supports_mp3:
        return "mp3", "mp3"
    if profile.supports_ogg:
        return "vorbis", "ogg"
    return None, "auto"


def select_transform(raw_url: Any, tier: QualityTier, profile: DeviceProfile,
                     policy: TransformPolicy = DEFAULT_POLICY) -> Any:
    """
    Return the URL of the variant to request for this tier and device.

    URLs outside the media host come back untouched. Any transform already
    on the URL is replaced, so applying this twice gives the same result.
    """
    if not is_supported_media_url(raw_url, policy):
        return raw_url
    settings = policy.tiers[tier]
    codec, container = _codec_for(profile)
    tokens = [f"q_{settings.quality}"]
    if codec:
        tokens.append(f"ac_{codec}")
    tokens += [
        f"br_{settings.bitrate_kbps}k",
        f"af_{settings.sample_rate}",
        f"ch_{settings.channels}",
        f"f_{container}",
        policy.streaming_flag,
    ]
    return _insert_segment(raw_url, ",".join(tokens), policy)


def forced_format_url(url: Any, policy: TransformPolicy = DEFAULT_POLICY) -> Any:
    """Single-format variant used when the device rejects the negotiated one."""
    if not is_supported_media_url(url, policy):
        return url
    return _insert_segment(url, f"f_{policy.fallback_format}", policy)


# ---------------------------------------------------------------------------
# Duration reconciliation
# ---------------------------------------------------------------------------

SENTINEL_DURATIONS = frozenset({0, 300, 480})
DURATION_TOLERANCE_SECONDS = 30


@dataclass(frozen=True)
class DurationResolution:
    seconds: float
    source: DurationSource
    needs_update: bool = False


def _as_seconds(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return value


def reconcile_duration(measured: Any, stored: Any) -> DurationResolution:
    """
    Decide which duration to trust.

    The stored value wins unless it is a known placeholder (0, 300, 480) or
    is more than 30 seconds away from a valid measurement. An invalid stored
    value counts as 0.
    """
    s = _as_seconds(stored)
    if s is None:
        s = 0
    m = _as_seconds(measured)
    if m is not None:
        # Compare whole seconds, the value that would be stored
        m = math.floor(m + 0.5)
    if m is None or m <= 0:
        return DurationResolution(s, DurationSource.STORED)
    if s in SENTINEL_DURATIONS or abs(m - s) > DURATION_TOLERANCE_SECONDS:
        return DurationResolution(m, DurationSource.MEASURED, needs_update=True)
    return DurationResolution(s, DurationSource.STORED)


def format_time(seconds: Any) -> str:
    """m:ss, or h:mm:ss past an hour. 0:00 for zero or garbage."""
    value = _as_seconds(seconds)
    if not value:
        return "0:00"
    total = int(value)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


# ---------------------------------------------------------------------------
# Timers
# ---------------------------------------------------------------------------

class TimerHandle:
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class Scheduler(ABC):
    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        pass


class PolledScheduler(Scheduler):
    """
    Timer queue drained by the owner loop.

    Callbacks only ever run inside `run_due()`, i.e. on the caller's thread.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._heap: List[Tuple[float, int, TimerHandle]] = []
        self._sequence = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self._clock() + max(0.0, delay), callback)
        heapq.heappush(self._heap, (handle.due, next(self._sequence), handle))
        return handle

    def run_due(self) -> int:
        """Run every callback whose time has come. Returns how many ran."""
        now = self._clock()
        ran = 0
        while self._heap and self._heap[0][0] <= now:
            _, _, handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            handle.cancelled = True
            handle.callback()
            ran += 1
        return ran

    def pending(self) -> int:
        return sum(1 for _, _, handle in self._heap if not handle.cancelled)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

class MediaListener:
    """Receives events from a MediaResource. All methods default to no-ops."""

    def on_metadata(self, duration: Optional[float]):
        pass

    def on_progress(self, position: float):
        pass

    def on_stall(self):
        pass

    def on_resume(self):
        pass

    def on_ended(self):
        pass

    def on_error(self, kind: Any, detail: Optional[str] = None):
        pass


class MediaResource(ABC):
    """One decoder/player instance. Replaced wholesale on every new track."""

    @abstractmethod
    def load(self, url: str, strategy: LoadStrategy):
        pass

    @abstractmethod
    def start(self):
        """Begin or resume playback. May raise PlaybackPermissionError."""
        pass

    @abstractmethod
    def pause(self):
        pass

    @abstractmethod
    def seek(self, position: float):
        pass

    @property
    @abstractmethod
    def position(self) -> float:
        pass

    @property
    @abstractmethod
    def duration(self) -> Optional[float]:
        pass

    @abstractmethod
    def buffered_end(self) -> float:
        pass

    @abstractmethod
    def set_volume(self, volume: float):
        """0.0 - 1.0"""
        pass

    @abstractmethod
    def set_rate(self, rate: float):
        pass

    @abstractmethod
    def set_listener(self, listener: MediaListener):
        pass

    @abstractmethod
    def clear_listener(self):
        pass

    @abstractmethod
    def release(self):
        pass

    def preload(self, start: float, end: float):
        """Advisory hint that [start, end) will be needed soon."""
        return None


class TelemetrySink(ABC):
    """Persistence side of playback. Calls must not block the controller."""

    @abstractmethod
    def report_play(self, article_id: str):
        pass

    @abstractmethod
    def report_duration(self, article_id: str, seconds: int):
        pass


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

@dataclass
class PlayerMessage:
    kind: PlaybackErrorKind
    text: str
    sticky: bool = False


@dataclass
class PlaybackSession:
    """Everything that belongs to one load of one track."""
    track: Track
    generation: int
    tier: QualityTier
    state: PlaybackState = PlaybackState.LOADING
    playing: bool = False
    current_time: float = 0.0
    resolved_duration: float = 0.0
    duration_source: DurationSource = DurationSource.STORED
    buffering: bool = False
    retry_count: int = 0
    used_fallback: bool = False
    preloaded_ranges: List[Tuple[float, float]] = field(default_factory=list)
    current_url: Optional[str] = None
    wants_playback: bool = False
    resume_position: float = 0.0
    decode_retry_used: bool = False
    low_quality_applied: bool = False
    hint_shown: bool = False
    duration_reported: bool = False
    play_reported: bool = False
    watchdog_handle: Optional[TimerHandle] = None
    retry_handle: Optional[TimerHandle] = None


class _SessionListener(MediaListener):
    """Forwards events to the controller only while its session is current."""

    def __init__(self, controller: 'PlaybackController', generation: int):
        self._controller = controller
        self._generation = generation

    def _live(self) -> bool:
        session = self._controller.session
        return session is not None and session.generation == self._generation

    def on_metadata(self, duration):
        if self._live():
            self._controller._on_metadata(duration)

    def on_progress(self, position):
        if self._live():
            self._controller._on_progress(position)

    def on_stall(self):
        if self._live():
            self._controller._on_stall()

    def on_resume(self):
        if self._live():
            self._controller._on_resume()

    def on_ended(self):
        if self._live():
            self._controller._on_ended()

    def on_error(self, kind, detail=None):
        if self._live():
            self._controller._on_error(kind, detail)


class PlaybackController:
    """Plays one article at a time and keeps the UI informed through callbacks."""

    def __init__(self, resource_factory: Callable[[], MediaResource],
                 capability_provider: Optional[CapabilityProvider],
                 scheduler: Scheduler,
                 telemetry: Optional[TelemetrySink] = None,
                 settings=None,
                 policy: TransformPolicy = DEFAULT_POLICY):
        self._resource_factory = resource_factory
        self.scheduler = scheduler
        self.telemetry = telemetry
        self.settings = settings
        self.policy = policy

        self.profile = detect_device_profile(capability_provider)
        self.quality_tier = self.profile.quality_tier
        self.volume = 1.0
        self.playback_rate = 1.0
        if settings is not None:
            self._apply_settings(settings)

        self.session: Optional[PlaybackSession] = None
        self.message: Optional[PlayerMessage] = None
        self._resource: Optional[MediaResource] = None
        self._generation = 0
        self._message_handle: Optional[TimerHandle] = None

        self._error_handlers = {
            MediaErrorKind.ABORTED: self._handle_aborted,
            MediaErrorKind.NETWORK: self._handle_network_error,
            MediaErrorKind.DECODE: self._handle_decode_error,
            MediaErrorKind.UNSUPPORTED_FORMAT: self._handle_unsupported_format,
        }

        # Callbacks
        self._on_state_change: Optional[Callable[[PlaybackState], None]] = None
        self._on_time_update: Optional[Callable[[float, float], None]] = None
        self._on_loading_change: Optional[Callable[[bool], None]] = None
        self._on_message: Optional[Callable[[Optional[PlayerMessage]], None]] = None
        self._track_end_callbacks: List[Callable[[Track], None]] = []

        logger.info(f"Device profile: {self.profile} -> tier {self.quality_tier.value}")

    def _apply_settings(self, settings):
        self.volume = min(1.0, max(0.0, float(settings.volume)))
        if settings.playback_rate in PLAYBACK_RATES:
            self.playback_rate = settings.playback_rate
        if settings.quality:
            try:
                self.quality_tier = QualityTier(settings.quality)
            except ValueError:
                logger.warning(f"Ignoring unknown quality setting: {settings.quality}")

    # --- Read-only views ---

    @property
    def state(self) -> PlaybackState:
        return self.session.state if self.session else PlaybackState.IDLE

    @property
    def current_track(self) -> Optional[Track]:
        return self.session.track if self.session else None

    # --- Loading ---

    def load_track(self, track: Optional[Track], autoplay: bool = False):
        """Replace the current session with a fresh one for `track`."""
        previous = self.session
        if previous is not None:
            self._remember_position(previous)
            self._cancel_session_timers(previous)
        self._generation += 1
        self._clear_message()

        session = PlaybackSession(track=track, generation=self._generation, tier=self.quality_tier,
                                  wants_playback=autoplay)
        self.session = session

        if track is None or not track.media_ref:
            logger.warning(f"Track has no media reference: {track}")
            self._release_resource()
            session.state = PlaybackState.ERROR
            self._show_message(PlaybackErrorKind.INVALID_INPUT, "No audio available for this article")
            self._notify_state()
            return

        session.resolved_duration = reconcile_duration(None, track.stored_duration_seconds).seconds
        self._swap_resource()
        self._issue(select_transform(track.media_ref, session.tier, self.profile, self.policy))
        session.watchdog_handle = self._schedule(WATCHDOG_SECONDS, self._on_watchdog)
        self._notify_state()

    def _swap_resource(self):
        """Release the old media resource and wire up a new one for the current session."""
        self._release_resource()
        resource = self._resource_factory()
        resource.set_volume(self.volume)
        resource.set_rate(self.playback_rate)
        resource.set_listener(_SessionListener(self, self._generation))
        self._resource = resource

    def _release_resource(self):
        if self._resource is None:
            return
        resource, self._resource = self._resource, None
        resource.clear_listener()
        try:
            resource.release()
        except Exception as e:
            logger.warning(f"Error releasing media resource: {e}")

    def _issue(self, url: str):
        session = self.session
        session.current_url = url
        logger.debug(f"Loading {url} ({self.profile.load_strategy.value})")
        self._resource.load(url, self.profile.load_strategy)

    def _reissue(self, url: str):
        """Load another variant of the current track, keeping position and play intent."""
        session = self.session
        if session.state == PlaybackState.PLAYING:
            session.wants_playback = True
        session.resume_position = session.current_time
        session.state = PlaybackState.LOADING
        self._issue(url)
        self._notify_state()

    # --- Media events ---

    def _on_metadata(self, duration):
        session = self.session
        if session.state == PlaybackState.ERROR:
            return
        self._cancel_watchdog(session)

        resolution = reconcile_duration(duration, session.track.stored_duration_seconds)
        if resolution.seconds > 0 or session.resolved_duration <= 0:
            session.resolved_duration = resolution.seconds
            session.duration_source = resolution.source
        if resolution.needs_update and not session.duration_reported and session.track.id:
            session.duration_reported = True
            logger.info(f"Correcting stored duration of {session.track.id}: "
                        f"{session.track.stored_duration_seconds} -> {resolution.seconds}")
            self._report(self.telemetry.report_duration if self.telemetry else None,
                         session.track.id, int(resolution.seconds))

        if session.state == PlaybackState.LOADING:
            session.state = PlaybackState.READY
        if self.profile.load_strategy != LoadStrategy.NONE:
            self._record_range(session, 0.0, float(self.profile.preload_buffer_seconds))
        if session.resume_position > 0:
            self._resource.seek(session.resume_position)
            session.current_time = session.resume_position
            session.resume_position = 0.0

        self._notify_state()
        if session.wants_playback and session.state == PlaybackState.READY:
            self._start(session)
        self._notify_time()

    def _on_progress(self, position):
        session = self.session
        if isinstance(position, (int, float)) and math.isfinite(position):
            session.current_time = max(0.0, float(position))
        if session.state == PlaybackState.PLAYING:
            self._preload_ahead(session)
        self._notify_time()

    def _on_stall(self):
        session = self.session
        if session.state == PlaybackState.PLAYING and not session.buffering:
            session.buffering = True
            self._notify_loading(True)

    def _on_resume(self):
        session = self.session
        if session.buffering:
            session.buffering = False
            self._notify_loading(False)

    def _on_ended(self):
        session = self.session
        session.state = PlaybackState.ENDED
        session.retry_count = 0
        session.wants_playback = False
        session.playing = False
        if session.buffering:
            session.buffering = False
            self._notify_loading(False)
        if self.settings is not None and session.track.id:
            self.settings.remember_position(session.track.id, 0.0)
        self._notify_state()
        self._trigger_track_end(session.track)

    def _on_error(self, error, detail=None):
        session = self.session
        if session.state == PlaybackState.ERROR:
            logger.debug(f"Ignoring media error after terminal failure: {error}")
            return
        if session.retry_handle is not None:
            logger.debug(f"Ignoring media error while a retry is pending: {error}")
            return
        self._cancel_watchdog(session)
        kind = self._classify(error)
        logger.warning(f"Media error ({kind.name}) on {session.current_url}: {detail or ''}")
        self._error_handlers[kind](session)

    @staticmethod
    def _classify(error) -> MediaErrorKind:
        """Normalize whatever the media layer reported. Unknown errors count as network errors."""
        if isinstance(error, MediaErrorKind):
            return error
        try:
            return MediaErrorKind(int(error))
        except (TypeError, ValueError):
            return MediaErrorKind.NETWORK

    # --- Error handlers ---

    def _handle_aborted(self, session: PlaybackSession):
        logger.info("Media load aborted")

    def _handle_network_error(self, session: PlaybackSession):
        if session.retry_count >= MAX_RETRIES:
            logger.error(f"Giving up on {session.track.id} after {MAX_RETRIES} retries")
            self._fail(session, PlaybackErrorKind.MAX_RETRIES_EXCEEDED,
                       "Unable to load audio. Please check your connection.", sticky=True)
            return
        session.retry_count += 1
        delay = RETRY_BACKOFF_SECONDS * session.retry_count
        logger.info(f"Retry attempt {session.retry_count}/{MAX_RETRIES} in {delay:.0f}s")
        if session.state == PlaybackState.PLAYING:
            session.wants_playback = True
        session.resume_position = session.current_time
        session.state = PlaybackState.LOADING
        session.retry_handle = self._schedule(delay, self._retry_clean_url)
        self._show_message(PlaybackErrorKind.NETWORK_STALL,
                           f"Connection problem, retrying ({session.retry_count}/{MAX_RETRIES})")
        self._notify_state()

    def _retry_clean_url(self):
        session = self.session
        session.retry_handle = None
        self._issue(strip_transform(session.current_url, self.policy))
        self._notify_state()

    def _handle_decode_error(self, session: PlaybackSession):
        if session.decode_retry_used:
            self._fail(session, PlaybackErrorKind.DECODE_FAILURE, "This audio could not be decoded")
            return
        session.decode_retry_used = True
        self._reissue(session.track.media_ref)

    def _handle_unsupported_format(self, session: PlaybackSession):
        if session.used_fallback:
            self._fail(session, PlaybackErrorKind.UNSUPPORTED_FORMAT,
                       "This audio format is not supported on your device")
            return
        session.used_fallback = True
        self._reissue(forced_format_url(session.current_url or session.track.media_ref, self.policy))

    def _fail(self, session: PlaybackSession, kind: PlaybackErrorKind, text: str, sticky: bool = False):
        session.state = PlaybackState.ERROR
        session.wants_playback = False
        session.playing = False
        if session.buffering:
            session.buffering = False
            self._notify_loading(False)
        self._show_message(kind, text, sticky=sticky)
        self._notify_state()

    def _on_watchdog(self):
        session = self.session
        session.watchdog_handle = None
        still_loading = session.state == PlaybackState.LOADING or session.buffering
        if not still_loading or session.low_quality_applied or session.tier == QualityTier.LOW:
            return
        logger.info("Slow start detected, switching to low quality")
        session.low_quality_applied = True
        session.tier = QualityTier.LOW
        self._reissue(select_transform(session.track.media_ref, QualityTier.LOW, self.profile, self.policy))

    # --- Preloading ---

    def _record_range(self, session: PlaybackSession, start: float, end: float):
        if end <= start:
            return
        for existing_start, existing_end in session.preloaded_ranges:
            if existing_start <= start and existing_end >= end:
                return
        session.preloaded_ranges.append((start, end))
        try:
            self._resource.preload(start, end)
        except Exception as e:
            logger.debug(f"Preload hint failed: {e}")

    def _preload_ahead(self, session: PlaybackSession):
        if self.profile.is_slow_connection or self.profile.is_mobile:
            return
        try:
            buffered_end = float(self._resource.buffered_end())
        except Exception as e:
            logger.debug(f"Could not read buffered range: {e}")
            return
        window = self.profile.preload_buffer_seconds
        if buffered_end - session.current_time >= window or buffered_end >= session.resolved_duration:
            return
        self._record_range(session, buffered_end, min(buffered_end + window, session.resolved_duration))

    # --- Transport controls ---

    def play(self) -> bool:
        """Start or resume playback. Returns True when the media is now playing."""
        session = self.session
        if session is None or self._resource is None or session.state == PlaybackState.ERROR:
            return False
        session.wants_playback = True
        # Still fetching: start once metadata arrives
        if session.retry_handle is not None or session.state == PlaybackState.LOADING:
            return False
        if session.state == PlaybackState.ENDED:
            self._resource.seek(0.0)
            session.current_time = 0.0
        return self._start(session)

    def _start(self, session: PlaybackSession) -> bool:
        try:
            self._resource.start()
        except PlaybackPermissionError as e:
            logger.info(f"Playback refused by the platform: {e}")
            session.wants_playback = False
            session.playing = False
            session.state = PlaybackState.PAUSED
            if self.profile.is_touch_first and not session.hint_shown:
                session.hint_shown = True
                self._show_message(PlaybackErrorKind.PERMISSION_DENIED, "Tap play to start listening")
            self._notify_state()
            return False

        session.state = PlaybackState.PLAYING
        session.playing = True
        self._notify_state()
        # One play per load, however often it is paused and resumed
        if not session.play_reported and session.track.id:
            session.play_reported = True
            self._report(self.telemetry.report_play if self.telemetry else None, session.track.id)
        return True

    def pause(self):
        session = self.session
        if session is None:
            return
        session.wants_playback = False
        self._cancel_watchdog(session)
        if session.buffering:
            session.buffering = False
            self._notify_loading(False)
        if session.state == PlaybackState.PLAYING and self._resource is not None:
            self._resource.pause()
            session.state = PlaybackState.PAUSED
            session.playing = False
            self._remember_position(session)
            self._notify_state()

    def toggle_play(self) -> bool:
        if self.state == PlaybackState.PLAYING:
            self.pause()
            return False
        return self.play()

    def seek_to(self, seconds: float):
        """Jump to `seconds`, clamped into the known duration."""
        session = self.session
        if session is None or self._resource is None:
            return
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or math.isnan(seconds):
            return
        target = min(max(float(seconds), 0.0), float(session.resolved_duration))
        self._resource.seek(target)
        session.current_time = target
        if session.state == PlaybackState.PLAYING:
            try:
                self._resource.start()
            except PlaybackPermissionError:
                logger.debug("Play after seek refused")
        self._notify_time()

    def skip(self, seconds: float):
        if self.session is None:
            return
        self.seek_to(max(0.0, self.session.current_time + seconds))

    def skip_back(self):
        self.skip(-SKIP_BACK_SECONDS)

    def skip_forward(self):
        self.skip(SKIP_FORWARD_SECONDS)

    def cycle_speed(self) -> float:
        """Advance to the next rate on the ladder, wrapping around."""
        try:
            index = PLAYBACK_RATES.index(self.playback_rate)
        except ValueError:
            index = PLAYBACK_RATES.index(1.0)
        self.playback_rate = PLAYBACK_RATES[(index + 1) % len(PLAYBACK_RATES)]
        if self._resource is not None:
            self._resource.set_rate(self.playback_rate)
        if self.settings is not None:
            self.settings.update(playback_rate=self.playback_rate)
        return self.playback_rate

    def set_volume(self, volume: float):
        self.volume = min(1.0, max(0.0, float(volume)))
        if self._resource is not None:
            self._resource.set_volume(self.volume)
        if self.settings is not None:
            self.settings.update(volume=self.volume)

    def set_quality(self, tier: QualityTier):
        """User override. Reloads the current track at the new tier where it was."""
        self.quality_tier = tier
        if self.settings is not None:
            self.settings.update(quality=tier.value)
        session = self.session
        if session is None or self._resource is None or session.state == PlaybackState.ERROR:
            return
        if session.tier == tier:
            return
        session.tier = tier
        if session.retry_handle is not None:
            return
        self._reissue(select_transform(session.track.media_ref, tier, self.profile, self.policy))

    def destroy(self):
        """Stop everything. The controller can be reused with load_track afterwards."""
        session = self.session
        if session is not None:
            self._remember_position(session)
            self._cancel_session_timers(session)
        self._generation += 1
        self._clear_message()
        self._release_resource()
        self.session = None
        self._notify_state()

    format_time = staticmethod(format_time)

    # --- Timers and messages ---

    def _schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Schedule a callback that only runs if the current session is still live."""
        generation = self._generation

        def fire():
            if self.session is not None and self.session.generation == generation:
                callback()

        return self.scheduler.call_later(delay, fire)

    def _cancel_watchdog(self, session: PlaybackSession):
        if session.watchdog_handle is not None:
            session.watchdog_handle.cancel()
            session.watchdog_handle = None

    def _cancel_session_timers(self, session: PlaybackSession):
        self._cancel_watchdog(session)
        if session.retry_handle is not None:
            session.retry_handle.cancel()
            session.retry_handle = None

    def _show_message(self, kind: PlaybackErrorKind, text: str, sticky: bool = False):
        if self._message_handle is not None:
            self._message_handle.cancel()
            self._message_handle = None
        self.message = PlayerMessage(kind, text, sticky)
        if not sticky:
            self._message_handle = self._schedule(MESSAGE_DISMISS_SECONDS, self._clear_message)
        self._notify_message()

    def _clear_message(self):
        if self._message_handle is not None:
            self._message_handle.cancel()
            self._message_handle = None
        if self.message is not None:
            self.message = None
            self._notify_message()

    # --- Telemetry and persistence ---

    def _report(self, fn: Optional[Callable[..., Any]], *args):
        if fn is None:
            return
        try:
            fn(*args)
        except Exception as e:
            logger.warning(f"Telemetry call {getattr(fn, '__name__', fn)} failed: {e}")

    def _remember_position(self, session: PlaybackSession):
        if self.settings is None or not session.track or not session.track.id:
            return
        if session.state in (PlaybackState.PLAYING, PlaybackState.PAUSED):
            self.settings.remember_position(session.track.id, session.current_time)

    # --- Notifications ---

    def _notify_state(self):
        if self._on_state_change:
            self._on_state_change(self.state)

    def _notify_time(self):
        if self._on_time_update and self.session:
            self._on_time_update(self.session.current_time, self.session.resolved_duration)

    def _notify_loading(self, loading: bool):
        if self._on_loading_change:
            self._on_loading_change(loading)

    def _notify_message(self):
        if self._on_message:
            self._on_message(self.message)

    def _trigger_track_end(self, track: Track):
        for callback in self._track_end_callbacks:
            try:
                callback(track)
            except Exception as e:
                logger.error(f"Error in track end callback {callback}: {e}")

    # Callback setters
    def set_state_change_callback(self, callback: Callable[[PlaybackState], None]):
        self._on_state_change = callback

    def set_time_update_callback(self, callback: Callable[[float, float], None]):
        self._on_time_update = callback

    def set_loading_callback(self, callback: Callable[[bool], None]):
        self._on_loading_change = callback

    def set_message_callback(self, callback: Callable[[Optional[PlayerMessage]], None]):
        self._on_message = callback

    def add_track_end_callback(self, callback: Callable[[Track], None]):
        """Register a callback for when a track ends (used for autoplay)."""
        if callback not in self._track_end_callbacks:
            self._track_end_callbacks.append(callback)


def play_article(controller: PlaybackController, track: Track) -> PlaybackController:
    """Load `track` on the given controller and ask it to play as soon as it can."""
    controller.load_track(track, autoplay=True)
    return controller
