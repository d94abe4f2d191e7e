"""
Server configuration loaded from the environment (and an optional .env file).
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from shared.constants import (
    DEFAULT_DATABASE_PATH,
    DEFAULT_MEDIA_DIR,
    DEFAULT_PORT,
)


@dataclass
class ServerConfig:
    """
    Everything the API server needs to boot.

    media_provider selects the media service: "cloudinary" or "local".
    """
    secret_key: str
    admin_username: str
    admin_password: str
    admin_email: Optional[str] = None
    database_path: str = DEFAULT_DATABASE_PATH
    media_provider: str = "local"
    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    media_dir: str = DEFAULT_MEDIA_DIR
    public_base_url: str = f"http://localhost:{DEFAULT_PORT}"
    frontend_dir: Optional[str] = None
    port: int = DEFAULT_PORT

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> 'ServerConfig':
        """
        Build the config from environment variables.

        Args:
            env_file: Optional path to a .env file; defaults to ./.env when present

        Raises:
            ValueError: If a required variable is missing
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        secret = os.getenv("JWT_SECRET") or os.getenv("SECRET_KEY")
        username = os.getenv("ADMIN_USERNAME")
        password = os.getenv("ADMIN_PASSWORD")
        missing = [name for name, value in (
            ("JWT_SECRET", secret),
            ("ADMIN_USERNAME", username),
            ("ADMIN_PASSWORD", password),
        ) if not value]
        if missing:
            raise ValueError(f"Missing required settings: {', '.join(missing)}")

        port = int(os.getenv("PORT", DEFAULT_PORT))
        return cls(
            secret_key=secret,
            admin_username=username,
            admin_password=password,
            admin_email=os.getenv("ADMIN_EMAIL"),
            database_path=os.getenv("DATABASE_PATH", DEFAULT_DATABASE_PATH),
            media_provider=os.getenv("MEDIA_PROVIDER", "local").lower(),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY"),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET"),
            media_dir=os.getenv("MEDIA_DIR", DEFAULT_MEDIA_DIR),
            public_base_url=os.getenv("PUBLIC_BASE_URL", f"http://localhost:{port}").rstrip("/"),
            frontend_dir=os.getenv("FRONTEND_DIR"),
            port=port,
        )

    @property
    def resolved_database_path(self) -> Path:
        return Path(self.database_path).expanduser()

    @property
    def resolved_media_dir(self) -> Path:
        return Path(self.media_dir).expanduser()
