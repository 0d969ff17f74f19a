"""
Configuration management and loading.

Per-feature model/option/cache defaults and per-feature quota limits, with
optional overrides from a YAML file.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ai_service.core.errors import ConfigurationError
from ai_service.core.types import AIModel, FeatureType

DAY = 24 * 60 * 60
WEEK = 7 * DAY


@dataclass(frozen=True)
class FeatureConfig:
    """Defaults applied to every request of one feature type."""
    model: AIModel
    temperature: float
    max_tokens: int
    top_p: Optional[float] = None
    cache_ttl: int = 0
    cache_enabled: bool = False

    def __post_init__(self):
        """Validate option ranges."""
        if not 0.0 <= self.temperature <= 2.0:
            raise ConfigurationError("temperature must be between 0.0 and 2.0")
        if self.max_tokens <= 0:
            raise ConfigurationError("max_tokens must be > 0")
        if self.top_p is not None and not 0.0 <= self.top_p <= 1.0:
            raise ConfigurationError("top_p must be between 0.0 and 1.0")
        if self.cache_ttl < 0:
            raise ConfigurationError("cache_ttl cannot be negative")


@dataclass(frozen=True)
class QuotaLimit:
    """Per-window ceiling for one feature. ``None`` means unlimited."""
    max_requests: Optional[int]
    max_tokens: Optional[int]
    window_seconds: int = DAY

    def __post_init__(self):
        """Validate limit values."""
        if self.max_requests is not None and self.max_requests < 0:
            raise ConfigurationError("max_requests cannot be negative")
        if self.max_tokens is not None and self.max_tokens < 0:
            raise ConfigurationError("max_tokens cannot be negative")
        if self.window_seconds <= 0:
            raise ConfigurationError("window_seconds must be > 0")


@dataclass(frozen=True)
class AIConfig:
    """Complete AI service configuration."""
    features: Dict[FeatureType, FeatureConfig]
    quotas: Dict[FeatureType, QuotaLimit] = field(default_factory=dict)
    default_quota: QuotaLimit = QuotaLimit(max_requests=100, max_tokens=100000, window_seconds=30 * DAY)

    def __post_init__(self):
        missing = [ft.value for ft in FeatureType if ft not in self.features]
        if missing:
            raise ConfigurationError(f"Missing feature configuration for: {missing}")

    def get_feature_config(self, feature_type: FeatureType) -> FeatureConfig:
        return self.features[feature_type]

    def get_quota_limit(self, feature_type: FeatureType) -> QuotaLimit:
        """Get the quota for a feature, using the default if not specified."""
        return self.quotas.get(feature_type, self.default_quota)

    def with_feature(self, feature_type: FeatureType, **overrides: Any) -> "AIConfig":
        """Return a copy with one feature's defaults overridden."""
        features = dict(self.features)
        features[feature_type] = replace(features[feature_type], **overrides)
        return replace(self, features=features)

    def with_quota(self, feature_type: FeatureType, limit: QuotaLimit) -> "AIConfig":
        quotas = dict(self.quotas)
        quotas[feature_type] = limit
        return replace(self, quotas=quotas)


def _feature(model: AIModel, temperature: float, max_tokens: int,
             cache_ttl: int, top_p: Optional[float] = None) -> FeatureConfig:
    return FeatureConfig(
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        top_p=top_p,
        cache_ttl=cache_ttl,
        cache_enabled=cache_ttl > 0,
    )


DEFAULT_AI_CONFIG = AIConfig(
    features={
        FeatureType.STUDY_COACH: _feature(AIModel.CLAUDE_3_SONNET, 0.7, 2000, 1800, top_p=0.9),
        FeatureType.SCHEDULING_ASSISTANT: _feature(AIModel.CLAUDE_3_SONNET, 0.3, 1000, 300),
        FeatureType.COURSE_TUTOR: _feature(AIModel.CLAUDE_3_SONNET, 0.5, 2000, 7200),
        FeatureType.GRADE_PROJECTION: _feature(AIModel.CLAUDE_3_HAIKU, 0.1, 1000, 3600),
        FeatureType.FEEDBACK_ANALYZER: _feature(AIModel.CLAUDE_3_HAIKU, 0.3, 1500, 3600),
        # Conversations are always fresh
        FeatureType.CHAT: _feature(AIModel.CLAUDE_3_SONNET, 0.7, 1500, 0),
        FeatureType.QUIZ_GENERATOR: _feature(AIModel.CLAUDE_3_SONNET, 0.8, 2000, 7200),
        FeatureType.SUMMARIZER: _feature(AIModel.CLAUDE_3_HAIKU, 0.3, 1000, 3600),
        FeatureType.WEEKLY_SUMMARY: _feature(AIModel.CLAUDE_3_SONNET, 0.4, 3000, WEEK),
        FeatureType.STUDENT_BRIEF: _feature(AIModel.CLAUDE_3_SONNET, 0.4, 2000, DAY),
        FeatureType.TEACHER_ASSISTANT: _feature(AIModel.CLAUDE_3_SONNET, 0.6, 2000, 0, top_p=0.9),
        FeatureType.PROACTIVE_SUGGESTION: _feature(AIModel.CLAUDE_3_HAIKU, 0.5, 800, 3600),
    },
    quotas={
        FeatureType.STUDY_COACH: QuotaLimit(max_requests=5, max_tokens=None),
        FeatureType.SCHEDULING_ASSISTANT: QuotaLimit(max_requests=10, max_tokens=None),
        FeatureType.COURSE_TUTOR: QuotaLimit(max_requests=20, max_tokens=None),
        FeatureType.GRADE_PROJECTION: QuotaLimit(max_requests=10, max_tokens=None),
        FeatureType.FEEDBACK_ANALYZER: QuotaLimit(max_requests=5, max_tokens=None),
        FeatureType.WEEKLY_SUMMARY: QuotaLimit(max_requests=3, max_tokens=None, window_seconds=WEEK),
        FeatureType.STUDENT_BRIEF: QuotaLimit(max_requests=10, max_tokens=None, window_seconds=WEEK),
        FeatureType.TEACHER_ASSISTANT: QuotaLimit(max_requests=100, max_tokens=None, window_seconds=WEEK),
        FeatureType.PROACTIVE_SUGGESTION: QuotaLimit(max_requests=1000, max_tokens=None, window_seconds=WEEK),
    },
)


_FEATURE_KEYS = {'model', 'temperature', 'max_tokens', 'top_p', 'cache_ttl', 'cache_enabled'}
_QUOTA_KEYS = {'max_requests', 'max_tokens', 'window_seconds'}


def load_ai_config(path: str, base: AIConfig = DEFAULT_AI_CONFIG) -> AIConfig:
    """Load AI configuration overrides from a YAML file.

    The file only lists what differs from ``base``; every feature keeps its
    built-in defaults unless overridden. Unknown keys are rejected so a typo
    can't silently fall back to a default.

    Args:
        path: Path to YAML configuration file
        base: Configuration the overrides apply to

    Returns:
        Validated AIConfig

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ConfigurationError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"AI config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ConfigurationError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ConfigurationError("Configuration root must be a dictionary")

    allowed_top_keys = {'features', 'quotas', 'default_quota'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ConfigurationError(f"Unknown configuration keys: {unknown_keys}")

    features = dict(base.features)
    for name, data in _section(raw_config, 'features').items():
        feature_type = _parse_feature_type(name, "features")
        features[feature_type] = _parse_feature_config(
            data, features[feature_type], f"features.{name}"
        )

    quotas = dict(base.quotas)
    for name, data in _section(raw_config, 'quotas').items():
        feature_type = _parse_feature_type(name, "quotas")
        quotas[feature_type] = _parse_quota_limit(
            data, base.get_quota_limit(feature_type), f"quotas.{name}"
        )

    default_quota = base.default_quota
    if 'default_quota' in raw_config:
        default_quota = _parse_quota_limit(
            raw_config['default_quota'], base.default_quota, "default_quota"
        )

    return AIConfig(features=features, quotas=quotas, default_quota=default_quota)


def _section(raw_config: Dict, key: str) -> Dict:
    data = raw_config.get(key) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"'{key}' must be a dictionary")
    return data


def _parse_feature_type(name: str, path: str) -> FeatureType:
    try:
        return FeatureType(name)
    except ValueError:
        valid = [ft.value for ft in FeatureType]
        raise ConfigurationError(f"Unknown feature '{name}' in {path}; must be one of: {valid}")


def _parse_feature_config(data: Any, base: FeatureConfig, path: str) -> FeatureConfig:
    """Parse and validate one feature's overrides.

    Args:
        data: Feature override data
        base: Defaults the overrides apply to
        path: Path for error messages

    Returns:
        Validated FeatureConfig

    Raises:
        ConfigurationError: If configuration is invalid
    """
    if not isinstance(data, dict):
        raise ConfigurationError(f"'{path}' must be a dictionary")

    unknown_keys = set(data.keys()) - _FEATURE_KEYS
    if unknown_keys:
        raise ConfigurationError(f"Unknown keys in {path}: {unknown_keys}")

    overrides: Dict[str, Any] = {}
    if 'model' in data:
        try:
            overrides['model'] = AIModel(data['model'])
        except ValueError:
            valid_models = [m.value for m in AIModel]
            raise ConfigurationError(f"'model' in {path} must be one of: {valid_models}")
    for key in ('temperature', 'top_p'):
        if key in data:
            value = data[key]
            if value is not None and not isinstance(value, (int, float)):
                raise ConfigurationError(f"'{key}' in {path} must be a number")
            overrides[key] = None if value is None else float(value)
    for key in ('max_tokens', 'cache_ttl'):
        if key in data:
            if not isinstance(data[key], int) or isinstance(data[key], bool):
                raise ConfigurationError(f"'{key}' in {path} must be an integer")
            overrides[key] = data[key]
    if 'cache_enabled' in data:
        if not isinstance(data['cache_enabled'], bool):
            raise ConfigurationError(f"'cache_enabled' in {path} must be a boolean")
        overrides['cache_enabled'] = data['cache_enabled']

    if overrides.get('temperature', base.temperature) is None:
        raise ConfigurationError(f"'temperature' in {path} cannot be null")

    try:
        return replace(base, **overrides)
    except ConfigurationError as e:
        raise ConfigurationError(f"Invalid {path}: {e}")


def _parse_quota_limit(data: Any, base: QuotaLimit, path: str) -> QuotaLimit:
    if not isinstance(data, dict):
        raise ConfigurationError(f"'{path}' must be a dictionary")

    unknown_keys = set(data.keys()) - _QUOTA_KEYS
    if unknown_keys:
        raise ConfigurationError(f"Unknown keys in {path}: {unknown_keys}")

    overrides: Dict[str, Any] = {}
    for key in _QUOTA_KEYS:
        if key not in data:
            continue
        value = data[key]
        nullable = key != 'window_seconds'
        if value is None and nullable:
            overrides[key] = None
        elif isinstance(value, int) and not isinstance(value, bool):
            overrides[key] = value
        else:
            raise ConfigurationError(f"'{key}' in {path} must be an integer")

    try:
        return replace(base, **overrides)
    except ConfigurationError as e:
        raise ConfigurationError(f"Invalid {path}: {e}")


@dataclass(frozen=True)
class ConfigValidation:
    valid: bool
    errors: List[str]
    warnings: List[str]


def validate_ai_config(config: AIConfig, registered_providers) -> ConfigValidation:
    """Check a configuration against the providers actually registered.

    Args:
        config: Configuration to check
        registered_providers: Iterable of AIProvider with an adapter

    Returns:
        ConfigValidation; ``valid`` is False only for hard errors
    """
    available = set(registered_providers)
    errors: List[str] = []
    warnings: List[str] = []

    if not available:
        errors.append("No AI provider is configured. Set provider API keys or enable the mock provider.")

    for feature_type, feature in config.features.items():
        provider = feature.model.provider
        if available and provider not in available:
            warnings.append(
                f"Feature '{feature_type.value}' defaults to {feature.model.value} "
                f"but provider '{provider.value}' is not configured."
            )

    for feature_type in FeatureType:
        limit = config.get_quota_limit(feature_type)
        if limit.max_requests == 0 or limit.max_tokens == 0:
            warnings.append(f"Feature '{feature_type.value}' has a zero quota and is effectively disabled.")

    return ConfigValidation(valid=not errors, errors=errors, warnings=warnings)
