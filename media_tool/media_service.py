"""
Abstract base class for media services.

A media service stores uploaded audio and thumbnails and hands back a
public URL for them. The application works against this interface so the
same code runs with Cloudinary in production and a local directory in
development and tests.
"""

from abc import ABC, abstractmethod
from typing import Optional

from shared.models import UploadResult


class MediaServiceError(Exception):
    """Raised when the underlying SDK or filesystem fails to store or delete media."""


class MediaService(ABC):
    """
    Interface every media backend implements.

    resource_type follows Cloudinary's vocabulary: "video" is used for
    audio files, "image" for thumbnails.
    """

    @abstractmethod
    def upload(self, data: bytes, folder: str, resource_type: str,
               filename: Optional[str] = None) -> UploadResult:
        """
        Store a file.

        Args:
            data: Raw file contents
            folder: Logical folder (audio or thumbnails)
            resource_type: "video" for audio, "image" for pictures
            filename: Original filename, used for the extension when known

        Returns:
            UploadResult with the public URL and identifier

        Raises:
            MediaServiceError: If the upload fails
        """
        pass

    @abstractmethod
    def delete(self, public_id: str, resource_type: str) -> bool:
        """
        Delete a stored file.

        Returns:
            True if something was deleted, False if it did not exist

        Raises:
            MediaServiceError: If the backend fails
        """
        pass

    @abstractmethod
    def optimize_url(self, url: str) -> str:
        """Return the URL clients should use to stream the file."""
        pass

    def get_service_name(self) -> str:
        return self.__class__.__name__
