"""
Cloudinary media service.

Audio is uploaded as resource_type "video" (Cloudinary's bucket for audio)
and recompressed on ingestion to speech-friendly AAC.
"""

import io
import logging
from typing import Any, Dict, Optional

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from media_tool.media_service import MediaService, MediaServiceError
from player.controller import DEFAULT_POLICY, is_supported_media_url, strip_transform
from shared.constants import (
    UPLOAD_AUDIO_BITRATE,
    UPLOAD_AUDIO_CHANNELS,
    UPLOAD_AUDIO_CODEC,
    UPLOAD_AUDIO_FORMAT,
    UPLOAD_AUDIO_SAMPLE_RATE,
)
from shared.models import UploadResult

logger = logging.getLogger(__name__)

UPLOAD_TIMEOUT_SECONDS = 60
STREAMING_TRANSFORM = "q_auto:good,f_auto,fl_streaming_attachment"


class CloudinaryMediaService(MediaService):
    """Stores media on Cloudinary."""

    def __init__(self, cloud_name: str, api_key: str, api_secret: str):
        if not (cloud_name and api_key and api_secret):
            raise ValueError("Cloudinary needs CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET")
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )
        self.cloud_name = cloud_name

    def _upload_options(self, folder: str, resource_type: str) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "folder": folder,
            "resource_type": resource_type,
            "timeout": UPLOAD_TIMEOUT_SECONDS,
        }
        if resource_type == "video":
            # Max compression for speech
            options.update({
                "quality": "auto:low",
                "audio_codec": UPLOAD_AUDIO_CODEC,
                "bit_rate": UPLOAD_AUDIO_BITRATE,
                "audio_frequency": UPLOAD_AUDIO_SAMPLE_RATE,
                "audio_channels": UPLOAD_AUDIO_CHANNELS,
                "format": UPLOAD_AUDIO_FORMAT,
            })
        elif resource_type == "image":
            options.update({"quality": "auto:good", "fetch_format": "auto"})
        return options

    def upload(self, data: bytes, folder: str, resource_type: str,
               filename: Optional[str] = None) -> UploadResult:
        logger.info(f"Uploading to Cloudinary: {folder}/{resource_type} ({len(data)} bytes)")
        try:
            result = cloudinary.uploader.upload(io.BytesIO(data), **self._upload_options(folder, resource_type))
        except CloudinaryError as e:
            logger.error(f"Cloudinary upload error: {e}")
            raise MediaServiceError(f"Upload failed: {e}") from e

        url = result.get("secure_url") or result.get("url")
        if resource_type == "video":
            url = self.optimize_url(url)
        logger.info(f"Cloudinary upload successful: {url}")
        duration = result.get("duration")
        return UploadResult(
            url=url,
            public_id=result["public_id"],
            bytes=result.get("bytes", len(data)),
            format=result.get("format", ""),
            resource_type=result.get("resource_type", resource_type),
            duration=round(duration) if duration else None,
            width=result.get("width"),
            height=result.get("height"),
        )

    def delete(self, public_id: str, resource_type: str) -> bool:
        try:
            result = cloudinary.uploader.destroy(public_id, resource_type=resource_type, invalidate=True)
        except CloudinaryError as e:
            logger.error(f"Cloudinary delete error: {e}")
            raise MediaServiceError(f"Delete failed: {e}") from e
        logger.info(f"Cloudinary delete {public_id}: {result}")
        return result.get("result") == "ok"

    def optimize_url(self, url: str) -> str:
        """Prefix the asset with a streaming-friendly transform."""
        if not is_supported_media_url(url, DEFAULT_POLICY):
            return url
        base, rest = strip_transform(url, DEFAULT_POLICY).split(DEFAULT_POLICY.upload_marker, 1)
        return f"{base}{DEFAULT_POLICY.upload_marker}{STREAMING_TRANSFORM}/{rest}"

    def get_service_name(self) -> str:
        return "Cloudinary"
