import json
from pathlib import Path

from shorts_blocker.config import (
    STORE_KEYS,
    BlockRules,
    BlockSettings,
    SettingsCache,
    consume_load_warnings,
)


def test_settings_defaults_are_safe():
    settings = BlockSettings()
    assert settings.block_youtube_shorts is True
    assert settings.block_instagram_reels is True
    assert settings.block_instagram_completely is False
    assert settings.block_vertical_video is False


def test_settings_from_mapping_with_type_coercion():
    settings = BlockSettings.from_mapping(
        {
            "blockYouTubeShorts": "yes",
            "blockInstagramReels": 0,
            "blockInstagramCompletely": True,
            "somethingElse": False,
        }
    )
    assert settings.block_youtube_shorts is True
    assert settings.block_instagram_reels is True
    assert settings.block_instagram_completely is True
    assert settings.block_vertical_video is False


def test_settings_from_mapping_keeps_base_for_missing_keys():
    base = BlockSettings(block_youtube_shorts=False, block_vertical_video=True)
    settings = BlockSettings.from_mapping({"blockInstagramReels": False}, base=base)
    assert settings.block_youtube_shorts is False
    assert settings.block_vertical_video is True
    assert settings.block_instagram_reels is False
    assert BlockSettings.from_mapping(None, base=base) is base


def test_settings_to_store_uses_store_keys():
    store_values = BlockSettings(block_instagram_completely=True).to_store()
    assert set(store_values) == set(STORE_KEYS.values())
    assert store_values["blockInstagramCompletely"] is True
    assert BlockSettings.default_store_values()["blockYouTubeShorts"] is True


def test_settings_cache_replaces_whole_object():
    cache = SettingsCache()
    first = cache.current
    updated = BlockSettings(block_youtube_shorts=False)
    previous = cache.replace(updated)
    assert previous is first
    assert cache.current is updated
    assert first.block_youtube_shorts is True


def test_rules_load_with_bounds(tmp_path: Path):
    path = tmp_path / "block_rules.json"
    path.write_text(
        json.dumps(
            {
                "debounce_ms": 1,
                "countdown_seconds": 999,
                "vertical_video_margin": "wide",
                "log_rate_limit_seconds": 0,
                "site_hosts": "youtube.com",
                "block_rules": [],
                "overlay_title": 5,
            }
        ),
        encoding="utf-8",
    )
    rules = BlockRules.load(str(path))
    defaults = BlockRules()
    assert rules.debounce_ms == 10
    assert rules.countdown_seconds == 30
    assert rules.vertical_video_margin == defaults.vertical_video_margin
    assert rules.log_rate_limit_seconds >= 0.1
    assert rules.site_hosts == defaults.site_hosts
    assert rules.block_rules == defaults.block_rules
    assert rules.overlay_title == defaults.overlay_title


def test_rules_load_replaces_unusable_overlay_templates(tmp_path: Path):
    consume_load_warnings()
    path = tmp_path / "block_rules.json"
    path.write_text(
        json.dumps(
            {
                "overlay_title": "{title} blocked",
                "overlay_message": "No {label_lower} for you",
                "overlay_countdown": "Leaving in {0}",
                "overlay_cancel_text": "Keep {watching}",
            }
        ),
        encoding="utf-8",
    )

    rules = BlockRules.load(str(path))

    defaults = BlockRules()
    assert rules.overlay_title == defaults.overlay_title
    assert rules.overlay_message == "No {label_lower} for you"
    assert rules.overlay_countdown == defaults.overlay_countdown
    # The cancel label is shown as-is, never formatted.
    assert rules.overlay_cancel_text == "Keep {watching}"
    warnings = consume_load_warnings()
    assert any("overlay_title is not a usable template" in w for w in warnings)
    assert any("overlay_countdown is not a usable template" in w for w in warnings)
    assert not any("overlay_message" in w for w in warnings)


def test_rules_load_keeps_custom_sites(tmp_path: Path):
    path = tmp_path / "block_rules.json"
    path.write_text(
        json.dumps(
            {
                "site_hosts": {"tiktok": ["tiktok.com"], "": ["x"], "bad": "nope"},
                "candidate_selectors": {"tiktok": ["div.item"]},
            }
        ),
        encoding="utf-8",
    )
    rules = BlockRules.load(str(path))
    assert rules.site_hosts == {"tiktok": ["tiktok.com"]}
    assert rules.candidate_selectors == {"tiktok": ["div.item"]}
    assert rules.hosts_flat == ["tiktok.com"]


def test_rules_load_backs_up_broken_json(tmp_path: Path):
    consume_load_warnings()
    path = tmp_path / "block_rules.json"
    path.write_text("{not json", encoding="utf-8")

    rules = BlockRules.load(str(path))

    assert rules.debounce_ms == BlockRules().debounce_ms
    warnings = consume_load_warnings()
    assert any("block_rules.json is corrupted" in w for w in warnings)
    assert list(tmp_path.glob("block_rules.json.broken-*"))


def test_rules_load_rejects_non_object(tmp_path: Path):
    consume_load_warnings()
    path = tmp_path / "block_rules.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")
    BlockRules.load(str(path))
    warnings = consume_load_warnings()
    assert any("not an object" in w for w in warnings)


def test_rules_save_then_load(tmp_path: Path):
    path = tmp_path / "nested" / "block_rules.json"
    rules = BlockRules(countdown_seconds=3, debounce_ms=250)
    rules.save(str(path))
    loaded = BlockRules.load(str(path))
    assert loaded.countdown_seconds == 3
    assert loaded.debounce_ms == 250
    assert loaded.url_rules == rules.url_rules
