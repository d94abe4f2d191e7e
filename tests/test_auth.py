import pytest

from shared.auth import AuthError, TokenManager, extract_bearer
from shared.config import ServerConfig


@pytest.fixture(scope="module")
def tokens():
    return TokenManager("s3cret", "admin", "hunter2", admin_email="admin@example.com")


def test_credentials(tokens):
    assert tokens.validate_credentials("admin", "hunter2")
    assert not tokens.validate_credentials("admin", "wrong")
    assert not tokens.validate_credentials("root", "hunter2")
    assert not tokens.validate_credentials(None, None)


def test_issue_and_verify(tokens):
    payload = tokens.verify(tokens.issue("admin"))
    assert payload == {"username": "admin", "role": "admin"}
    assert tokens.user_info("admin")["email"] == "admin@example.com"


def test_rejections(tokens):
    with pytest.raises(AuthError, match="No token"):
        tokens.verify(None)
    with pytest.raises(AuthError, match="not valid"):
        tokens.verify("garbage")
    with pytest.raises(AuthError, match="not valid"):
        tokens.verify(tokens.issue("someone-else"))

    other_server = TokenManager("different", "admin", "hunter2")
    with pytest.raises(AuthError):
        other_server.verify(tokens.issue("admin"))


def test_expired_token(monkeypatch):
    manager = TokenManager("s3cret", "admin", "pw", ttl_seconds=60)
    token = manager.issue("admin")
    monkeypatch.setattr("cryptography.fernet.time.time", lambda: 10 ** 10)
    with pytest.raises(AuthError):
        manager.verify(token)


def test_extract_bearer():
    assert extract_bearer("Bearer abc") == "abc"
    assert extract_bearer("abc") == "abc"
    assert extract_bearer("Bearer ") is None
    assert extract_bearer(None) is None


def test_config_from_env(monkeypatch, tmp_path):
    for name in ("JWT_SECRET", "SECRET_KEY", "ADMIN_USERNAME", "ADMIN_PASSWORD", "MEDIA_PROVIDER", "PORT"):
        monkeypatch.delenv(name, raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("")

    with pytest.raises(ValueError, match="JWT_SECRET"):
        ServerConfig.from_env(str(env_file))

    monkeypatch.setenv("SECRET_KEY", "x")
    monkeypatch.setenv("ADMIN_USERNAME", "admin")
    monkeypatch.setenv("ADMIN_PASSWORD", "pw")
    monkeypatch.setenv("MEDIA_PROVIDER", "Cloudinary")
    monkeypatch.setenv("PORT", "8080")
    config = ServerConfig.from_env(str(env_file))
    assert config.secret_key == "x"
    assert config.media_provider == "cloudinary"
    assert config.port == 8080
    assert config.public_base_url == "http://localhost:8080"
