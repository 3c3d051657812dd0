import pytest

from clipinsight.pipeline.retry import DEFAULT_RETRY_CONFIG, RetryConfig, calculate_retry_delay


def test_default_backoff_curve():
    assert [calculate_retry_delay(a) for a in (1, 2, 3, 4)] == [1000, 2000, 4000, 8000]


def test_backoff_is_capped():
    assert calculate_retry_delay(10) == 30000
    assert calculate_retry_delay(6) == 30000  # 32000 before the cap


def test_custom_config():
    config = RetryConfig(max_attempts=5, base_delay_ms=250, max_delay_ms=1500, multiplier=3)
    assert [calculate_retry_delay(a, config) for a in (1, 2, 3)] == [250, 750, 1500]


def test_defaults():
    assert DEFAULT_RETRY_CONFIG == RetryConfig(max_attempts=3, base_delay_ms=1000, max_delay_ms=30000, multiplier=2)


def test_from_config_section():
    config = RetryConfig.from_config({"retry": {"max_attempts": 5, "base_delay_ms": 10}})
    assert config.max_attempts == 5
    assert config.base_delay_ms == 10
    assert config.max_delay_ms == 30000
    assert RetryConfig.from_config(None) == DEFAULT_RETRY_CONFIG


def test_invalid_config_rejected():
    with pytest.raises(ValueError):
        RetryConfig(max_attempts=0)
    with pytest.raises(ValueError):
        RetryConfig(base_delay_ms=-1)
