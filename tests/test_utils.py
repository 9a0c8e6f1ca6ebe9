"""Tests for configuration loading and logging helpers."""

import pytest

from assistly.utils import (
    ConfigurationError,
    DEFAULT_SETTINGS,
    Timer,
    load_and_validate_env,
    require,
    sanitize_for_logging,
)


class TestLoadAndValidateEnv:

    def test_defaults_applied(self, monkeypatch):
        for var in DEFAULT_SETTINGS:
            monkeypatch.delenv(var, raising=False)

        config = load_and_validate_env()

        assert config["TIER_A_THRESHOLD"] == 0.4
        assert config["CHUNK_SIZE"] == 500
        assert config["EMBEDDING_MODEL"] == "sentence-transformers/all-MiniLM-L6-v2"

    def test_values_converted_to_default_type(self, monkeypatch):
        monkeypatch.setenv("RETRIEVAL_TOP_K", "10")
        monkeypatch.setenv("TIER_B_THRESHOLD", "0.25")

        config = load_and_validate_env()

        assert config["RETRIEVAL_TOP_K"] == 10
        assert config["TIER_B_THRESHOLD"] == 0.25

    def test_invalid_number_falls_back_to_default(self, monkeypatch):
        monkeypatch.setenv("MAX_CONTEXT_LENGTH", "lots")

        assert load_and_validate_env()["MAX_CONTEXT_LENGTH"] == 6000

    def test_overlap_must_be_smaller_than_chunk_size(self, monkeypatch):
        monkeypatch.setenv("CHUNK_SIZE", "100")
        monkeypatch.setenv("CHUNK_OVERLAP", "100")

        with pytest.raises(ConfigurationError):
            load_and_validate_env()

    def test_tier_b_bounds_must_be_ordered(self, monkeypatch):
        monkeypatch.setenv("TIER_B_MIN", "6")

        with pytest.raises(ConfigurationError):
            load_and_validate_env()


class TestHelpers:

    def test_require_missing_value(self):
        with pytest.raises(ConfigurationError):
            require({"COMPLETION_API_KEY": ""}, "COMPLETION_API_KEY")

    def test_require_present_value(self):
        assert require({"PINECONE_API_KEY": "pc-key"}, "PINECONE_API_KEY") == "pc-key"

    def test_sanitize_redacts_keys(self):
        text = sanitize_for_logging("my key is gsk_abc123 please help")

        assert "gsk_abc123" not in text
        assert "[REDACTED]" in text

    def test_sanitize_truncates(self):
        assert sanitize_for_logging("word " * 100, max_length=20).endswith("...")

    def test_timer_measures_duration(self):
        with Timer("unit") as timer:
            pass

        assert timer.duration_ms >= 0.0
