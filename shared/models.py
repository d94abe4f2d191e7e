"""
Data models for articles, categories and uploaded media.

This module defines the core data structures used throughout the platform
for representing audio articles, their categories and the media stored on
the CDN.
"""

from dataclasses import dataclass, asdict, field
from typing import Dict, Optional, Any
import dataclasses
import json
import re
import uuid
from datetime import datetime, timezone


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def slugify(name: str) -> str:
    """Lowercase the name and replace anything outside [a-z0-9] with '-'."""
    return re.sub(r"[^a-z0-9]", "-", name.lower())


@dataclass(frozen=True)
class Track:
    """
    Read-only view of an article handed to the playback controller.

    Attributes:
        id: Article identifier (used for telemetry)
        title: Display title
        category: Category name
        thumbnail_ref: Thumbnail URL
        media_ref: Audio URL as stored (may already carry a transform)
        stored_duration_seconds: Duration recorded at ingestion; best effort
    """
    id: Optional[str]
    title: str
    category: str
    thumbnail_ref: Optional[str]
    media_ref: Optional[str]
    stored_duration_seconds: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Track':
        """Build a Track from an API article payload."""
        return cls(
            id=data.get("id"),
            title=data.get("title", ""),
            category=data.get("category", ""),
            thumbnail_ref=data.get("thumbnail_url"),
            media_ref=data.get("audio_url"),
            stored_duration_seconds=data.get("duration"),
        )


@dataclass
class Article:
    """
    Represents a single audio article.

    Attributes:
        id: Unique identifier (uuid4 hex)
        title: Article title
        description: Short summary shown in listings
        content: Body text
        audio_url: CDN URL of the audio
        thumbnail_url: CDN URL of the thumbnail
        audio_public_id: CDN identifier used to delete the audio
        thumbnail_public_id: CDN identifier used to delete the thumbnail
        duration: Duration in seconds (measured at ingestion, corrected by players)
        category: Category name
        created_at: ISO-8601 creation timestamp
        published: Whether the article is listed publicly
        plays: Play counter
        featured: Whether the article is featured
    """
    id: str
    title: str
    description: str
    content: str
    audio_url: str
    thumbnail_url: str
    audio_public_id: str
    thumbnail_public_id: str
    duration: int
    category: str
    created_at: str = field(default_factory=utc_now)
    published: bool = True
    plays: int = 0
    featured: bool = False

    @staticmethod
    def generate_id() -> str:
        """Generate a unique article ID."""
        return uuid.uuid4().hex

    def to_dict(self) -> Dict[str, Any]:
        """Convert article to dictionary."""
        return asdict(self)

    def to_track(self) -> Track:
        return Track(
            id=self.id,
            title=self.title,
            category=self.category,
            thumbnail_ref=self.thumbnail_url,
            media_ref=self.audio_url,
            stored_duration_seconds=self.duration,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Article':
        """Create Article from dictionary, filtering unknown keys."""
        field_names = {f.name for f in dataclasses.fields(cls)}
        filtered_data = {k: v for k, v in data.items() if k in field_names}
        for flag in ("published", "featured"):
            if flag in filtered_data:
                filtered_data[flag] = bool(filtered_data[flag])
        return cls(**filtered_data)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


@dataclass
class Category:
    """A named grouping of articles."""
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    article_count: int = 0
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @classmethod
    def create(cls, name: str, description: Optional[str] = None) -> 'Category':
        name = name.strip()
        return cls(id=uuid.uuid4().hex, name=name, slug=slugify(name), description=description)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Category':
        field_names = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in field_names})


@dataclass
class UploadResult:
    """
    What the media service returns after storing a file.

    `duration` is only filled for audio when it was measured before upload.
    """
    url: str
    public_id: str
    bytes: int
    format: str
    resource_type: str
    duration: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
