import pytest

from rib.config import Settings, _env_int, load_rate_limit_config
from rib.services.rate_limiter import RateLimitConfigError, RateLimitRule, Scope


def test_default_rules():
    rules = load_rate_limit_config(Settings())

    assert rules[Scope.CREATE_THREAD] == RateLimitRule(1, 300.0)
    assert rules[Scope.CREATE_REPLY] == RateLimitRule(10, 60.0)
    assert rules[Scope.UPLOAD_FILE] == RateLimitRule(5, 3600.0)


def test_rejects_zero_limit():
    config = Settings()
    config.RL_REPLY_LIMIT = 0

    with pytest.raises(RateLimitConfigError, match="create-reply"):
        load_rate_limit_config(config)


def test_rejects_non_positive_window():
    config = Settings()
    config.RL_IMAGE_WINDOW = 0

    with pytest.raises(RateLimitConfigError, match="upload-file"):
        load_rate_limit_config(config)


def test_upload_ceiling_is_25mb():
    assert Settings.MAX_FILE_SIZE == 25 * 1024 * 1024


def test_malformed_integer_fails_at_startup(monkeypatch):
    monkeypatch.setenv("RL_REPLY_LIMIT", "abc")

    with pytest.raises(ValueError, match="RL_REPLY_LIMIT"):
        _env_int("RL_REPLY_LIMIT", 10)


def test_missing_integer_uses_default(monkeypatch):
    monkeypatch.delenv("RL_REPLY_LIMIT", raising=False)

    assert _env_int("RL_REPLY_LIMIT", 10) == 10
