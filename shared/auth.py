"""
Admin authentication.

Issues and validates the bearer token required for privileged API calls.
Tokens are Fernet tokens whose key is derived from the server secret, so
they carry their own issue time and can be expired without server state.
"""

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
import base64
import hmac
import json
import logging
from typing import Any, Dict, Optional

from shared.constants import TOKEN_SALT, TOKEN_TTL_SECONDS

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Raised when a token is missing, malformed, expired or for the wrong user."""


class TokenManager:
    """Creates and verifies admin tokens for a single configured admin."""

    def __init__(self, secret: str, admin_username: str, admin_password: str,
                 admin_email: Optional[str] = None, ttl_seconds: int = TOKEN_TTL_SECONDS):
        self._fernet = Fernet(self.generate_key_from_secret(secret, TOKEN_SALT))
        self.admin_username = admin_username
        self._admin_password = admin_password
        self.admin_email = admin_email
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def generate_key_from_secret(secret: str, salt: bytes) -> bytes:
        """
        Derive a Fernet key from the server secret using PBKDF2.

        Args:
            secret: Server secret (JWT_SECRET)
            salt: Salt bytes for key derivation

        Returns:
            URL-safe base64 encoded 32 byte key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )
        return base64.urlsafe_b64encode(kdf.derive(secret.encode()))

    def validate_credentials(self, username: str, password: str) -> bool:
        """Constant-time comparison against the configured admin."""
        if not isinstance(username, str) or not isinstance(password, str):
            return False
        user_ok = hmac.compare_digest(username.encode(), self.admin_username.encode())
        pass_ok = hmac.compare_digest(password.encode(), self._admin_password.encode())
        return user_ok and pass_ok

    def issue(self, username: str) -> str:
        payload = json.dumps({"username": username, "role": "admin"})
        return self._fernet.encrypt(payload.encode()).decode()

    def verify(self, token: Optional[str]) -> Dict[str, Any]:
        """
        Return the token payload.

        Raises:
            AuthError: If the token is missing, invalid, expired, or not the admin's
        """
        if not token:
            raise AuthError("No token, authorization denied")
        try:
            raw = self._fernet.decrypt(token.encode(), ttl=self.ttl_seconds)
            payload = json.loads(raw)
        except (InvalidToken, ValueError) as e:
            logger.debug(f"Token rejected: {e!r}")
            raise AuthError("Token is not valid")
        if payload.get("username") != self.admin_username:
            raise AuthError("Token is not valid")
        return payload

    def user_info(self, username: str) -> Dict[str, Any]:
        return {"username": username, "email": self.admin_email, "role": "admin"}


def extract_bearer(header_value: Optional[str]) -> Optional[str]:
    """Pull the token out of an 'Authorization: Bearer <token>' header."""
    if not header_value:
        return None
    if header_value.startswith("Bearer "):
        return header_value[len("Bearer "):].strip() or None
    return header_value.strip() or None
