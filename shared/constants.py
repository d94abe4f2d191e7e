"""
Shared constants used across the platform.
"""

# Service metadata
SERVICE_NAME = "Soundpost API"
SERVICE_VERSION = "1.0.0"

# Audio uploads
ALLOWED_AUDIO_MIME_TYPES = [
    "audio/mpeg", "audio/mp3", "audio/wav", "audio/x-wav",
    "audio/m4a", "audio/x-m4a", "audio/aac", "audio/ogg",
    "audio/webm"
]

AUDIO_MIME_BY_EXTENSION = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "m4a": "audio/mp4",
    "ogg": "audio/ogg",
    "aac": "audio/aac",
    "webm": "audio/webm",
}

MAX_AUDIO_UPLOAD_BYTES = 50 * 1024 * 1024  # 50MB
MAX_THUMBNAIL_UPLOAD_BYTES = 5 * 1024 * 1024  # 5MB

# Media folders on the CDN
AUDIO_FOLDER = "audio"
THUMBNAIL_FOLDER = "thumbnails"

# Speech-optimised compression applied at upload time
UPLOAD_AUDIO_CODEC = "aac"
UPLOAD_AUDIO_BITRATE = "32k"
UPLOAD_AUDIO_SAMPLE_RATE = 22050
UPLOAD_AUDIO_CHANNELS = 1
UPLOAD_AUDIO_FORMAT = "m4a"

# Duration estimation when nothing can be measured (1 MB is about a minute of podcast audio)
ESTIMATE_SECONDS_PER_MB = 60
FALLBACK_DURATION_SECONDS = 300

# Pagination
DEFAULT_PAGE_SIZE = 10

# Auth
TOKEN_TTL_SECONDS = 30 * 24 * 3600  # 30 days
TOKEN_SALT = b"soundpost-admin-token"

# Player
PLAYBACK_RATES = [0.5, 0.75, 1.0, 1.25, 1.5, 1.75, 2.0]
SKIP_BACK_SECONDS = 15
SKIP_FORWARD_SECONDS = 30
MESSAGE_DISMISS_SECONDS = 5.0

# Configuration paths
DEFAULT_CONFIG_DIR = "~/.config/soundpost"
DEFAULT_DATA_DIR = "~/.local/share/soundpost"
DEFAULT_DATABASE_PATH = DEFAULT_DATA_DIR + "/soundpost.db"
DEFAULT_MEDIA_DIR = DEFAULT_DATA_DIR + "/media"
PLAYER_SETTINGS_FILENAME = "player_settings.json"

# Network Settings
DEFAULT_PORT = 5000
DEFAULT_API_URL = "http://localhost:5000/api"
DEFAULT_NETWORK_TIMEOUT = 10  # seconds
