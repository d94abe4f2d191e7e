"""
Article ingestion.

Validates uploaded files, measures audio duration, pushes the media to the
configured media service and writes the article document. Used by both the
API routes and the admin CLI.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from media_tool.audio import AudioProcessor, UploadValidationError
from media_tool.media_service import MediaService, MediaServiceError
from shared.constants import AUDIO_FOLDER, THUMBNAIL_FOLDER
from shared.database import DatabaseManager
from shared.models import Article, UploadResult

logger = logging.getLogger(__name__)

REQUIRED_ARTICLE_FIELDS = ("title", "description", "content", "category")


@dataclass
class IncomingFile:
    """An uploaded file held in memory."""
    data: bytes
    filename: str
    mime_type: Optional[str] = None


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _parse_duration(value: Any) -> int:
    try:
        duration = int(float(value))
    except (TypeError, ValueError):
        return 0
    return max(0, duration)


class ArticleUploader:
    """Handles validation, media upload and persistence of articles."""

    def __init__(self, database: DatabaseManager, media: MediaService):
        self.database = database
        self.media = media

    def upload_audio(self, file: IncomingFile) -> UploadResult:
        """
        Validate, measure and upload an audio file.

        Raises:
            UploadValidationError: If the file is rejected
            MediaServiceError: If the media service fails
        """
        mime_type = file.mime_type or AudioProcessor.guess_mime_type(file.filename)
        AudioProcessor.validate_audio(file.data, mime_type)
        measured = AudioProcessor.measure_duration(file.data)
        logger.info(f"Measured duration of {file.filename}: {measured}s")
        result = self.media.upload(file.data, AUDIO_FOLDER, "video", filename=file.filename)
        if measured > 0:
            result.duration = measured
        return result

    def upload_thumbnail(self, file: IncomingFile) -> UploadResult:
        AudioProcessor.validate_image(file.data, file.mime_type)
        return self.media.upload(file.data, THUMBNAIL_FOLDER, "image", filename=file.filename)

    def create_article(self, fields: Dict[str, Any], audio: Optional[IncomingFile],
                       thumbnail: Optional[IncomingFile]) -> Article:
        """
        Upload both files and store the new article.

        Raises:
            UploadValidationError: If fields or files are missing or invalid
            MediaServiceError: If the media service fails
        """
        if audio is None or thumbnail is None:
            raise UploadValidationError("Please upload both audio and thumbnail files")
        missing = [name for name in REQUIRED_ARTICLE_FIELDS if not str(fields.get(name) or "").strip()]
        if missing:
            raise UploadValidationError(f"Please provide all required fields: {', '.join(missing)}")
        # Validate the thumbnail up front so a bad image never leaves an orphaned audio upload
        AudioProcessor.validate_image(thumbnail.data, thumbnail.mime_type)

        audio_upload = self.upload_audio(audio)
        try:
            thumbnail_upload = self.upload_thumbnail(thumbnail)
        except MediaServiceError:
            self._discard(audio_upload.public_id, "video")
            raise

        duration = audio_upload.duration or _parse_duration(fields.get("duration"))
        article = Article(
            id=Article.generate_id(),
            title=str(fields["title"]).strip(),
            description=str(fields["description"]).strip(),
            content=str(fields["content"]),
            audio_url=audio_upload.url,
            thumbnail_url=thumbnail_upload.url,
            audio_public_id=audio_upload.public_id,
            thumbnail_public_id=thumbnail_upload.public_id,
            duration=duration,
            category=str(fields["category"]).strip(),
            published=_parse_bool(fields.get("published", True)),
            featured=_parse_bool(fields.get("featured", False)),
        )
        try:
            self.database.insert_article(article)
        except Exception:
            logger.error(f"Could not store article {article.id}, removing its uploaded media")
            self._discard(audio_upload.public_id, "video")
            self._discard(thumbnail_upload.public_id, "image")
            raise
        logger.info(f"Created article {article.id} ({article.title}), duration {duration}s")
        return article

    def update_article(self, article_id: str, fields: Dict[str, Any],
                       thumbnail: Optional[IncomingFile] = None) -> Optional[Article]:
        """
        Apply field changes and optionally replace the thumbnail.

        Returns:
            The updated article, or None if it does not exist
        """
        article = self.database.get_article(article_id)
        if article is None:
            return None

        updates = dict(fields)
        for flag in ("published", "featured"):
            if flag in updates:
                updates[flag] = _parse_bool(updates[flag])
        if "duration" in updates:
            updates["duration"] = _parse_duration(updates["duration"])

        if thumbnail is not None:
            upload = self.upload_thumbnail(thumbnail)
            updates["thumbnail_url"] = upload.url
            updates["thumbnail_public_id"] = upload.public_id
            if article.thumbnail_public_id:
                self._discard(article.thumbnail_public_id, "image")

        return self.database.update_article(article_id, updates)

    def delete_article(self, article_id: str) -> bool:
        """
        Delete the article's media, then the document.

        Raises:
            MediaServiceError: If the media could not be deleted; the document is kept
        """
        article = self.database.get_article(article_id)
        if article is None:
            return False
        if article.audio_public_id:
            self.media.delete(article.audio_public_id, "video")
        if article.thumbnail_public_id:
            self.media.delete(article.thumbnail_public_id, "image")
        return self.database.delete_article(article_id)

    def _discard(self, public_id: str, resource_type: str) -> None:
        try:
            self.media.delete(public_id, resource_type)
        except MediaServiceError as e:
            logger.warning(f"Could not delete {public_id}: {e}")
