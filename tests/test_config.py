import logging

import pytest
from pydantic import ValidationError

from exphe.config import GroupOrder, SchemeConfig, Variant, configure_logging, settings_from_env
from exphe.errors import ConfigurationError


def test_defaults():
    config = SchemeConfig()
    assert config.variant is Variant.VALIDATED
    assert config.group_order is GroupOrder.LAMBDA
    assert config.max_attempts == 100
    assert config.probe_count == 5
    assert config.max_order_iterations == 100_000
    config.check_bounds()


def test_message_size_must_fit_under_half_p():
    SchemeConfig(prime_bits=64, message_bits=62).check_bounds()
    with pytest.raises(ConfigurationError):
        SchemeConfig(prime_bits=64, message_bits=63).check_bounds()
    with pytest.raises(ConfigurationError):
        SchemeConfig(prime_bits=10, message_range=(2, 256)).check_bounds()
    with pytest.raises(ConfigurationError):
        SchemeConfig(prime_bits=10, message_range=(-1, 1)).check_bounds()


@pytest.mark.parametrize(
    "fields",
    [
        {"prime_bits": 4},
        {"max_attempts": 0},
        {"z_range": (5, 2)},
        {"w_range": (0, 10)},
        {"variant": "strict"},
    ],
)
def test_invalid_fields(fields):
    with pytest.raises(ValidationError):
        SchemeConfig(**fields)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("EXPHE_PRIME_BITS", "128")
    monkeypatch.setenv("EXPHE_MESSAGE_BITS", "32")
    monkeypatch.setenv("EXPHE_VARIANT", "relaxed")
    monkeypatch.setenv("EXPHE_GROUP_ORDER", "phi")
    monkeypatch.setenv("EXPHE_Z_RANGE", "100,200")
    monkeypatch.setenv("EXPHE_MAX_FACTOR_ITERATIONS", "5000")
    config = settings_from_env()
    assert config.prime_bits == 128
    assert config.message_bits == 32
    assert config.variant is Variant.RELAXED
    assert config.group_order is GroupOrder.PHI
    assert config.z_range == (100, 200)
    assert config.max_factor_iterations == 5000


def test_settings_from_env_rejects_oversized_messages(monkeypatch):
    monkeypatch.setenv("EXPHE_PRIME_BITS", "16")
    monkeypatch.setenv("EXPHE_MESSAGE_BITS", "20")
    with pytest.raises(ConfigurationError):
        settings_from_env()


def test_configure_logging(monkeypatch):
    monkeypatch.setenv("EXPHE_LOG_LEVEL", "debug")
    logger = configure_logging()
    assert logger.name == "exphe"
    assert logger.level == logging.DEBUG
    handlers = len(logger.handlers)
    configure_logging("warning")
    assert len(logger.handlers) == handlers
    assert logger.level == logging.WARNING
