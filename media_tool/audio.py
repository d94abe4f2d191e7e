"""
Audio file processing utilities.

This module validates uploads and measures audio duration with mutagen,
either from an in-memory buffer or a file on disk.
"""

import io
import logging
from pathlib import Path
from typing import Optional, Union

import requests
from mutagen import File as MutagenFile
from mutagen import MutagenError

from shared.constants import (
    ALLOWED_AUDIO_MIME_TYPES,
    AUDIO_MIME_BY_EXTENSION,
    DEFAULT_NETWORK_TIMEOUT,
    ESTIMATE_SECONDS_PER_MB,
    FALLBACK_DURATION_SECONDS,
    MAX_AUDIO_UPLOAD_BYTES,
    MAX_THUMBNAIL_UPLOAD_BYTES,
)

logger = logging.getLogger(__name__)


class UploadValidationError(ValueError):
    """Raised when an uploaded file has the wrong type or size."""


class AudioProcessor:
    """Handler for audio file operations."""

    @staticmethod
    def guess_mime_type(filename: str) -> str:
        """MIME type from the file extension, audio/mpeg when unknown."""
        ext = Path(filename or "").suffix.lower().lstrip(".")
        return AUDIO_MIME_BY_EXTENSION.get(ext, "audio/mpeg")

    @staticmethod
    def validate_audio(data: bytes, mime_type: Optional[str]) -> None:
        """
        Check an audio upload.

        Raises:
            UploadValidationError: If the type is not allowed or the file is too large
        """
        if mime_type not in ALLOWED_AUDIO_MIME_TYPES:
            raise UploadValidationError("Only audio files are allowed for audio field")
        if len(data) > MAX_AUDIO_UPLOAD_BYTES:
            raise UploadValidationError("Audio file too large (max 50MB)")
        if not data:
            raise UploadValidationError("Audio file is empty")

    @staticmethod
    def validate_image(data: bytes, mime_type: Optional[str]) -> None:
        """
        Check a thumbnail upload.

        Raises:
            UploadValidationError: If it is not an image or is too large
        """
        if not mime_type or not mime_type.startswith("image/"):
            raise UploadValidationError("Only image files are allowed for thumbnail")
        if len(data) > MAX_THUMBNAIL_UPLOAD_BYTES:
            raise UploadValidationError("Thumbnail too large (max 5MB)")
        if not data:
            raise UploadValidationError("Thumbnail is empty")

    @staticmethod
    def measure_duration(source: Union[bytes, str, Path]) -> int:
        """
        Duration in whole seconds, or 0 if mutagen cannot read it.

        Args:
            source: Raw audio bytes or a path to an audio file
        """
        try:
            if isinstance(source, (bytes, bytearray)):
                audio = MutagenFile(io.BytesIO(source))
            else:
                audio = MutagenFile(str(source))
        except (MutagenError, OSError) as e:
            logger.warning(f"Duration detection error: {e}")
            return 0
        if audio is None or not hasattr(audio.info, 'length'):
            logger.warning("Duration detection error: unrecognized audio format")
            return 0
        return round(audio.info.length or 0)

    @staticmethod
    def estimate_duration_from_size(size_bytes: int) -> int:
        """Rough duration from file size, for when the audio itself cannot be read."""
        size_mb = size_bytes / (1024 * 1024)
        return round(size_mb * ESTIMATE_SECONDS_PER_MB)

    @staticmethod
    def probe_remote_duration(url: str, timeout: float = DEFAULT_NETWORK_TIMEOUT) -> int:
        """
        Work out a duration for audio that only exists behind a URL.

        Downloads and measures the file; falls back to an estimate from
        Content-Length, and finally to FALLBACK_DURATION_SECONDS.
        """
        try:
            response = requests.get(url, timeout=timeout)
            response.raise_for_status()
            measured = AudioProcessor.measure_duration(response.content)
            if measured > 0:
                return measured
            logger.info("Could not measure downloaded audio, estimating from size")
        except requests.RequestException as e:
            logger.warning(f"Error downloading {url}: {e}")

        try:
            head = requests.head(url, timeout=timeout, allow_redirects=True)
            content_length = int(head.headers.get('content-length', 0))
            if content_length > 0:
                estimate = AudioProcessor.estimate_duration_from_size(content_length)
                logger.info(f"Estimated duration from {content_length} bytes: {estimate}s")
                if estimate > 0:
                    return estimate
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Size probe failed for {url}: {e}")

        logger.warning(f"Using fallback duration of {FALLBACK_DURATION_SECONDS} seconds")
        return FALLBACK_DURATION_SECONDS
