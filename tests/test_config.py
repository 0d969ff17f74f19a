"""
Unit tests for configuration loading and validation.

Tests the YAML overlay on the built-in feature defaults, strict key
checking, quota parsing and environment settings.
"""

import os
import shutil
import tempfile

import pytest
import yaml

from ai_service.config.loader import (
    DAY,
    DEFAULT_AI_CONFIG,
    WEEK,
    AIConfig,
    FeatureConfig,
    QuotaLimit,
    load_ai_config,
    validate_ai_config,
)
from ai_service.config.settings import Settings, load_settings
from ai_service.core.errors import ConfigurationError
from ai_service.core.types import AIModel, AIProvider, FeatureType


class TestDefaultConfig:
    """Test the built-in per-feature defaults."""

    def test_every_feature_has_defaults(self):
        """Verify the closed feature set is fully configured."""
        for feature_type in FeatureType:
            assert DEFAULT_AI_CONFIG.get_feature_config(feature_type) is not None

    def test_cache_follows_ttl(self):
        """Verify features with a TTL cache and conversational ones do not."""
        chat = DEFAULT_AI_CONFIG.get_feature_config(FeatureType.CHAT)
        assert chat.cache_ttl == 0
        assert chat.cache_enabled is False

        weekly = DEFAULT_AI_CONFIG.get_feature_config(FeatureType.WEEKLY_SUMMARY)
        assert weekly.cache_ttl == WEEK
        assert weekly.cache_enabled is True

    def test_default_quota_for_unlisted_feature(self):
        """Verify features without an explicit quota use the default."""
        assert DEFAULT_AI_CONFIG.get_quota_limit(FeatureType.CHAT) == DEFAULT_AI_CONFIG.default_quota
        assert DEFAULT_AI_CONFIG.get_quota_limit(FeatureType.STUDY_COACH).max_requests == 5

    def test_missing_feature_rejected(self):
        """Verify a config that omits a feature is invalid."""
        features = dict(DEFAULT_AI_CONFIG.features)
        del features[FeatureType.CHAT]
        with pytest.raises(ConfigurationError, match="chat"):
            AIConfig(features=features)

    def test_with_feature_leaves_original_untouched(self):
        """Verify overrides return a copy."""
        updated = DEFAULT_AI_CONFIG.with_feature(FeatureType.CHAT, cache_enabled=True, cache_ttl=60)
        assert updated.get_feature_config(FeatureType.CHAT).cache_ttl == 60
        assert DEFAULT_AI_CONFIG.get_feature_config(FeatureType.CHAT).cache_ttl == 0

    def test_feature_config_validation(self):
        """Verify option ranges are enforced."""
        with pytest.raises(ConfigurationError, match="temperature"):
            FeatureConfig(model=AIModel.GPT_4, temperature=2.5, max_tokens=100)
        with pytest.raises(ConfigurationError, match="max_tokens"):
            FeatureConfig(model=AIModel.GPT_4, temperature=0.5, max_tokens=0)
        with pytest.raises(ConfigurationError, match="top_p"):
            FeatureConfig(model=AIModel.GPT_4, temperature=0.5, max_tokens=100, top_p=1.5)

    def test_quota_limit_validation(self):
        """Verify negative limits and empty windows are rejected."""
        with pytest.raises(ConfigurationError, match="max_requests"):
            QuotaLimit(max_requests=-1, max_tokens=None)
        with pytest.raises(ConfigurationError, match="window_seconds"):
            QuotaLimit(max_requests=1, max_tokens=None, window_seconds=0)


class TestConfigLoading:
    """Test YAML configuration loading."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "ai.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_overrides_apply_on_top_of_defaults(self):
        """Verify only listed fields change."""
        path = self._write_config({
            "features": {"chat": {"model": "gpt-4o-mini", "cache_ttl": 600, "cache_enabled": True}},
        })

        config = load_ai_config(path)

        chat = config.get_feature_config(FeatureType.CHAT)
        assert chat.model == AIModel.GPT_4O_MINI
        assert chat.cache_ttl == 600
        assert chat.cache_enabled is True
        assert chat.temperature == 0.7
        assert config.get_feature_config(FeatureType.SUMMARIZER) == \
            DEFAULT_AI_CONFIG.get_feature_config(FeatureType.SUMMARIZER)

    def test_quota_overrides(self):
        """Verify quota sections parse, including unlimited and default."""
        path = self._write_config({
            "quotas": {"chat": {"max_requests": 50, "max_tokens": None, "window_seconds": DAY}},
            "default_quota": {"max_requests": 10},
        })

        config = load_ai_config(path)

        assert config.get_quota_limit(FeatureType.CHAT) == QuotaLimit(50, None, DAY)
        assert config.default_quota.max_requests == 10
        assert config.default_quota.max_tokens == DEFAULT_AI_CONFIG.default_quota.max_tokens

    def test_unknown_top_level_key(self):
        """Verify typos at the root are rejected."""
        path = self._write_config({"featurs": {}})
        with pytest.raises(ConfigurationError, match="Unknown configuration keys"):
            load_ai_config(path)

    def test_unknown_feature(self):
        """Verify an unknown feature name is rejected."""
        path = self._write_config({"features": {"homework_helper": {"temperature": 0.1}}})
        with pytest.raises(ConfigurationError, match="Unknown feature 'homework_helper'"):
            load_ai_config(path)

    def test_unknown_feature_key(self):
        """Verify unknown per-feature keys are rejected."""
        path = self._write_config({"features": {"chat": {"temprature": 0.1}}})
        with pytest.raises(ConfigurationError, match="Unknown keys in features.chat"):
            load_ai_config(path)

    def test_invalid_model(self):
        """Verify models outside the closed set are rejected."""
        path = self._write_config({"features": {"chat": {"model": "gpt-17"}}})
        with pytest.raises(ConfigurationError, match="'model' in features.chat"):
            load_ai_config(path)

    def test_out_of_range_temperature(self):
        """Verify dataclass validation errors carry the config path."""
        path = self._write_config({"features": {"chat": {"temperature": 3.0}}})
        with pytest.raises(ConfigurationError, match="Invalid features.chat"):
            load_ai_config(path)

    def test_non_integer_quota(self):
        """Verify quota values must be integers."""
        path = self._write_config({"quotas": {"chat": {"max_requests": "lots"}}})
        with pytest.raises(ConfigurationError, match="must be an integer"):
            load_ai_config(path)

    def test_null_window_rejected(self):
        """Verify window_seconds cannot be null."""
        path = self._write_config({"quotas": {"chat": {"window_seconds": None}}})
        with pytest.raises(ConfigurationError, match="window_seconds"):
            load_ai_config(path)

    def test_missing_file(self):
        """Verify a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_ai_config(os.path.join(self.temp_dir, "absent.yaml"))

    def test_empty_file(self):
        """Verify an empty file is rejected."""
        path = os.path.join(self.temp_dir, "empty.yaml")
        open(path, 'w').close()
        with pytest.raises(ConfigurationError, match="empty"):
            load_ai_config(path)

    def test_non_dict_root(self):
        """Verify a list at the root is rejected."""
        path = self._write_config(["chat"])
        with pytest.raises(ConfigurationError, match="must be a dictionary"):
            load_ai_config(path)

    def test_invalid_yaml(self):
        """Verify malformed YAML surfaces as a YAML error."""
        path = os.path.join(self.temp_dir, "bad.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("features: [unclosed")
        with pytest.raises(yaml.YAMLError):
            load_ai_config(path)


class TestConfigValidation:
    """Test validation against registered providers."""

    def test_no_providers_is_an_error(self):
        """Verify an empty registry is invalid."""
        result = validate_ai_config(DEFAULT_AI_CONFIG, [])
        assert result.valid is False
        assert "No AI provider is configured" in result.errors[0]

    def test_unconfigured_default_provider_warns(self):
        """Verify features defaulting to a missing provider produce warnings."""
        result = validate_ai_config(DEFAULT_AI_CONFIG, [AIProvider.OPENAI])
        assert result.valid is True
        assert any("chat" in w and "anthropic" in w for w in result.warnings)

    def test_all_providers_clean(self):
        """Verify a fully configured registry has no warnings."""
        result = validate_ai_config(DEFAULT_AI_CONFIG, list(AIProvider))
        assert result.valid is True
        assert result.warnings == []

    def test_zero_quota_warns(self):
        """Verify a disabled feature is flagged."""
        config = DEFAULT_AI_CONFIG.with_quota(FeatureType.CHAT, QuotaLimit(max_requests=0, max_tokens=None))
        result = validate_ai_config(config, list(AIProvider))
        assert any("zero quota" in w for w in result.warnings)


class TestSettings:
    """Test environment-driven settings."""

    def test_defaults(self):
        """Verify defaults without environment."""
        settings = Settings()
        assert settings.AI_USE_MOCK is False
        assert settings.AI_DB_PATH == "ai_service.db"
        assert settings.OPENAI_API_KEY is None

    def test_load_from_environment(self, monkeypatch):
        """Verify values are read from the process environment."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("AI_USE_MOCK", "true")
        monkeypatch.setenv("AI_DB_PATH", "/tmp/ai.db")
        monkeypatch.setenv("AI_REQUEST_TIMEOUT", "15")
        monkeypatch.setenv("CHATBASE_API_KEY", "")

        settings = load_settings()

        assert settings.OPENAI_API_KEY == "sk-test"
        assert settings.AI_USE_MOCK is True
        assert settings.AI_DB_PATH == "/tmp/ai.db"
        assert settings.REQUEST_TIMEOUT_SECONDS == 15.0
        assert settings.CHATBASE_API_KEY is None
