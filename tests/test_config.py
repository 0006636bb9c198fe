"""Tests for YAML configuration loading."""

from __future__ import annotations

from digest_to_podcast.config import AppConfig, load_config, load_profile, validate_config


def test_missing_files_give_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "nope.yaml"))
    assert cfg.fetch.batch_size == 3
    assert cfg.fetch.max_content_chars == 5000
    assert cfg.selection.multiplier == 1.5
    assert cfg.selection.failed_url_retention_days == 7
    assert cfg.tts.concurrency == 6
    assert cfg.tts.max_retries == 1

    profile = load_profile(str(tmp_path / "nope.yaml"))
    assert profile.max_articles_per_run == 5


def test_yaml_overrides(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        """
site:
  title: My Cast
  link: https://pod.example.com
output:
  feed_filename: podcast.xml
fetch:
  batch_size: 4
tts:
  provider: gcp
  voices: [ja-JP-Neural2-B]
  chunk_size: 1200
collectors:
  rss:
    feeds:
      - name: Example
        url: https://example.com/rss
      - name: Broken entry
""",
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg.site.title == "My Cast"
    assert cfg.feed_url == "https://pod.example.com/podcast.xml"
    assert cfg.fetch.batch_size == 4
    assert cfg.tts.provider == "gcp"
    assert cfg.tts.voices == ["ja-JP-Neural2-B"]
    assert cfg.tts.chunk_size == 1200
    assert [f.url for f in cfg.collectors.rss_feeds] == ["https://example.com/rss"]


def test_profile_yaml(tmp_path):
    path = tmp_path / "profile.yaml"
    path.write_text(
        """
interests: [rust, python]
max_articles_per_run: 3
narrator:
  name: Aoi
script_style:
  tone: news
custom_prompts:
  selection: prefer deep dives
""",
        encoding="utf-8",
    )
    profile = load_profile(str(path))
    assert profile.interests == ["rust", "python"]
    assert profile.max_articles_per_run == 3
    assert profile.narrator_name == "Aoi"
    assert profile.script_style.tone == "news"
    assert profile.script_style.include_intro is True
    assert profile.selection_prompt == "prefer deep dives"


def test_validate_config_warns_without_raising(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    cfg = AppConfig()
    cfg.tts.provider = "espeak"
    warnings = validate_config(cfg)
    assert any("espeak" in w for w in warnings)
    assert any("OPENAI_API_KEY" in w for w in warnings)
