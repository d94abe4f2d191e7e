"""
Factory for creating media service instances.

Simplifies backend selection from the server configuration.
"""

from shared.config import ServerConfig
from media_tool.media_service import MediaService


class MediaServiceFactory:
    """Factory for creating media service instances."""

    @staticmethod
    def create(config: ServerConfig) -> MediaService:
        """
        Create the media service named by config.media_provider.

        Raises:
            ValueError: If the provider is not supported or misconfigured
        """
        if config.media_provider == "cloudinary":
            from media_tool.cloudinary_service import CloudinaryMediaService
            return CloudinaryMediaService(
                config.cloudinary_cloud_name,
                config.cloudinary_api_key,
                config.cloudinary_api_secret,
            )

        elif config.media_provider == "local":
            from media_tool.local_service import LocalMediaService
            return LocalMediaService(str(config.resolved_media_dir), config.public_base_url)

        else:
            raise ValueError(f"Unknown media provider: {config.media_provider}")

    @staticmethod
    def get_provider_name(provider: str) -> str:
        """Get human-readable provider name."""
        names = {
            "cloudinary": "Cloudinary",
            "local": "Local Storage",
        }
        return names.get(provider, "Unknown")
