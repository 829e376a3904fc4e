"""Tests for Settings configuration model."""

from chatrelay.config import Settings


class TestDefaults:
    def test_memory_defaults(self):
        s = Settings()
        assert s.context_window_size == 5
        assert s.compaction_threshold == 8
        assert s.compaction_retain_window == 5

    def test_cache_ttl_is_one_day(self):
        assert Settings().customization_cache_ttl == 86400

    def test_default_summary_model(self):
        assert Settings().summary_model == "mistralai/devstral-2512:free"

    def test_default_auth_header(self):
        assert Settings().auth_user_header == "X-User-Id"


class TestCacheEnabled:
    def test_empty_url_disables(self):
        assert Settings(redis_url="").cache_enabled is False

    def test_whitespace_url_disables(self):
        assert Settings(redis_url="  ").cache_enabled is False

    def test_url_enables(self):
        assert Settings(redis_url="redis://localhost:6379/0").cache_enabled is True
