import json

import pytest

from player.settings import PlayerSettings


def test_defaults_without_file(tmp_path):
    settings = PlayerSettings(config_dir=str(tmp_path))
    assert settings.volume == 1.0
    assert settings.playback_rate == 1.0
    assert settings.quality is None
    assert settings.autoplay is True
    assert not settings.path.exists()


def test_update_persists(tmp_path):
    settings = PlayerSettings(config_dir=str(tmp_path))
    changes = []
    settings.add_change_callback(lambda: changes.append(True))
    settings.update(volume=0.4, playback_rate=1.5, quality="low", autoplay=False, api_url="http://host/api/")
    assert changes == [True]

    reloaded = PlayerSettings(config_dir=str(tmp_path))
    assert reloaded.to_dict() == settings.to_dict()
    assert reloaded.api_url == "http://host/api"


def test_invalid_updates(tmp_path):
    settings = PlayerSettings(config_dir=str(tmp_path))
    with pytest.raises(ValueError):
        settings.update(playback_rate=3.0)
    with pytest.raises(ValueError):
        settings.update(quality="ultra")
    with pytest.raises(KeyError):
        settings.update(colour="blue")
    settings.update(volume=5)
    assert settings.volume == 1.0


def test_resume_position(tmp_path):
    settings = PlayerSettings(config_dir=str(tmp_path))
    settings.remember_position("a1", 42.5)
    assert settings.resume_position("a1") == 42.5
    assert settings.resume_position("b2") == 0.0
    assert PlayerSettings(config_dir=str(tmp_path)).resume_position("a1") == 42.5


def test_bad_file_keeps_defaults(tmp_path):
    path = tmp_path / "player_settings.json"
    path.write_text(json.dumps({"volume": 0.3, "playback_rate": 9, "quality": "ultra", "last_position": "x"}))
    settings = PlayerSettings(config_dir=str(tmp_path))
    assert settings.volume == 0.3
    assert settings.playback_rate == 1.0
    assert settings.quality is None
    assert settings.last_position == 0.0

    path.write_text("{not json")
    assert PlayerSettings(config_dir=str(tmp_path)).volume == 1.0
