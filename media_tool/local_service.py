"""
Local filesystem media service.
Implements the MediaService interface on top of a directory served by the API.
"""

import logging
import uuid
from pathlib import Path
from typing import Optional

from media_tool.media_service import MediaService, MediaServiceError
from shared.models import UploadResult

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}


class LocalMediaService(MediaService):
    """
    Media service that writes into a local directory.
    Useful for development and self-hosting; files are served from
    `<public_base_url>/media/<public_id>`.
    """

    def __init__(self, base_path: str, public_base_url: str):
        self.base_path = Path(base_path).expanduser().absolute()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def _get_path(self, public_id: str) -> Path:
        """Absolute path for an id, refusing anything that escapes the base directory."""
        path = (self.base_path / public_id).resolve()
        if self.base_path.resolve() not in path.parents:
            raise MediaServiceError(f"Invalid media id: {public_id}")
        return path

    def upload(self, data: bytes, folder: str, resource_type: str,
               filename: Optional[str] = None) -> UploadResult:
        ext = Path(filename).suffix.lower().lstrip(".") if filename else ""
        if not ext:
            ext = "jpg" if resource_type == "image" else "mp3"
        public_id = f"{folder}/{uuid.uuid4().hex}.{ext}"
        try:
            dest_path = self._get_path(public_id)
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            dest_path.write_bytes(data)
        except OSError as e:
            logger.error(f"Local upload error: {e}")
            raise MediaServiceError(f"Upload failed: {e}") from e

        logger.info(f"Stored {len(data)} bytes at {dest_path}")
        return UploadResult(
            url=f"{self.public_base_url}/media/{public_id}",
            public_id=public_id,
            bytes=len(data),
            format=ext,
            resource_type="image" if ext in IMAGE_EXTENSIONS else resource_type,
        )

    def delete(self, public_id: str, resource_type: str) -> bool:
        path = self._get_path(public_id)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            logger.error(f"Local delete error: {e}")
            raise MediaServiceError(f"Delete failed: {e}") from e
        return True

    def optimize_url(self, url: str) -> str:
        return url

    def get_service_name(self) -> str:
        return "Local Storage"
