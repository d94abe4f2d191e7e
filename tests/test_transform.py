from player.controller import (
    DeviceProfile,
    QualityTier,
    TierSettings,
    TransformPolicy,
    default_tiers,
    forced_format_url,
    is_supported_media_url,
    select_transform,
    strip_transform,
)

from conftest import CDN_URL

DESKTOP = DeviceProfile()


def test_non_media_urls_pass_through():
    for url in ["https://example.com/a.mp3", "", "not a url", "https://cloudinary.com/no-marker/a.mp3"]:
        assert select_transform(url, QualityTier.HIGH, DESKTOP) == url


def test_non_strings_pass_through():
    for value in [None, 42, ["x"], {"a": 1}]:
        assert select_transform(value, QualityTier.LOW, DESKTOP) is value
        assert strip_transform(value) is value
        assert forced_format_url(value) is value
        assert not is_supported_media_url(value)


def test_high_tier_descriptor():
    url = select_transform(CDN_URL, QualityTier.HIGH, DESKTOP)
    assert url == (
        "https://res.cloudinary.com/demo/video/upload/"
        "q_auto:best,ac_aac,br_48k,af_44100,ch_2,f_m4a,fl_streaming_attachment/"
        "v1712345678/audio/episode.m4a"
    )


def test_low_tier_descriptor():
    url = select_transform(CDN_URL, QualityTier.LOW, DESKTOP)
    assert "/upload/q_auto:low,ac_aac,br_24k,af_22050,ch_1,f_m4a,fl_streaming_attachment/v1712345678/" in url


def test_codec_follows_decodability():
    no_aac = DeviceProfile(supports_m4a=False)
    assert ",ac_mp3," in select_transform(CDN_URL, QualityTier.MEDIUM, no_aac)
    assert ",f_mp3," in select_transform(CDN_URL, QualityTier.MEDIUM, no_aac)

    ogg_only = DeviceProfile(supports_m4a=False, supports_mp3=False)
    assert ",ac_vorbis," in select_transform(CDN_URL, QualityTier.MEDIUM, ogg_only)

    nothing = DeviceProfile(supports_m4a=False, supports_mp3=False, supports_ogg=False)
    url = select_transform(CDN_URL, QualityTier.MEDIUM, nothing)
    assert ",f_auto," in url
    assert "ac_" not in url


def test_select_is_idempotent():
    once = select_transform(CDN_URL, QualityTier.MEDIUM, DESKTOP)
    assert select_transform(once, QualityTier.MEDIUM, DESKTOP) == once


def test_existing_transform_is_replaced():
    legacy = CDN_URL.replace("/upload/", "/upload/q_auto:good,f_auto,fl_streaming_attachment,ac_mp3,ab_128k/")
    assert select_transform(legacy, QualityTier.LOW, DESKTOP) == select_transform(CDN_URL, QualityTier.LOW, DESKTOP)


def test_strip_removes_all_leading_transforms():
    doubled = CDN_URL.replace("/upload/", "/upload/q_auto:low/f_mp3/")
    assert strip_transform(doubled) == CDN_URL
    assert strip_transform(CDN_URL) == CDN_URL


def test_forced_format_url():
    url = forced_format_url(select_transform(CDN_URL, QualityTier.HIGH, DESKTOP))
    assert url == "https://res.cloudinary.com/demo/video/upload/f_mp3/v1712345678/audio/episode.m4a"
    assert forced_format_url("https://example.com/a.ogg") == "https://example.com/a.ogg"


def test_policy_numbers_are_configurable():
    tiers = default_tiers()
    tiers[QualityTier.LOW] = TierSettings("auto:eco", 16, 16000, 1)
    policy = TransformPolicy(tiers=tiers)
    url = select_transform(CDN_URL, QualityTier.LOW, DESKTOP, policy)
    assert "/upload/q_auto:eco,ac_aac,br_16k,af_16000,ch_1," in url


def test_custom_host_pattern():
    policy = TransformPolicy(host_pattern="media.example.org")
    url = "https://media.example.org/upload/abc.mp3"
    assert select_transform(url, QualityTier.LOW, DESKTOP, policy).startswith("https://media.example.org/upload/q_")
    assert select_transform(CDN_URL, QualityTier.LOW, DESKTOP, policy) == CDN_URL
