import pytest

from tierwatch.config import Config
from tierwatch.errors import ValidationError

WALLET = "0x" + "a" * 40


def test_defaults_from_empty_environment():
    config = Config.from_env(environ={})

    assert config.wallet_address is None
    assert config.holdings_check_interval == 300
    assert config.price_check_interval == 60
    assert config.base_token_check_interval == 60
    assert config.holdings_threshold == 1000
    assert config.price_change_threshold == 2
    assert config.api_base_url == "https://app.iqai.com/api"
    assert config.log_level == "INFO"
    assert not config.telegram_configured


def test_reads_environment(tmp_path):
    config = Config.from_env(environ={
        "WALLET_ADDRESS": WALLET,
        "HOLDINGS_CHECK_INTERVAL": "600",
        "DEFAULT_HOLDINGS_THRESHOLD": "2500.5",
        "DEFAULT_PRICE_CHANGE_THRESHOLD": "1.5",
        "TELEGRAM_BOT_TOKEN": "token",
        "TELEGRAM_CHAT_ID": "42",
        "LOG_LEVEL": "debug",
        "DATA_DIR": str(tmp_path),
    })

    assert config.wallet_address == WALLET
    assert config.holdings_check_interval == 600
    assert config.holdings_threshold == 2500.5
    assert config.log_level == "DEBUG"
    assert config.telegram_configured
    assert config.db_path == tmp_path / "tierwatch.db"

    tiers = config.default_tiers()
    assert (tiers.minor, tiers.major, tiers.critical) == (1.5, 4.5, 7.5)


@pytest.mark.parametrize("env", [
    {"WALLET_ADDRESS": "0x123"},
    {"HOLDINGS_CHECK_INTERVAL": "abc"},
    {"PRICE_CHECK_INTERVAL": "5"},
    {"DEFAULT_HOLDINGS_THRESHOLD": "-1"},
    {"DEFAULT_PRICE_CHANGE_THRESHOLD": "zero"},
    {"IQ_API_BASE_URL": "ftp://example.com"},
    {"LOG_LEVEL": "verbose"},
])
def test_invalid_environment_rejected(env):
    with pytest.raises(ValidationError):
        Config.from_env(environ=env)


def test_preferences_overlay(settings):
    merged = settings.with_preferences({
        "holdings_threshold": "5000",
        "base_check_interval": "120",
        "base_minor_threshold": "3",
        "unrelated": "x",
    })

    assert merged.holdings_threshold == 5000
    assert merged.base_token_check_interval == 120
    assert merged.base_minor_threshold == 3
    # original untouched
    assert settings.holdings_threshold == 1000


def test_invalid_preferences_skipped(settings):
    merged = settings.with_preferences({
        "holdings_check_interval": "5",
        "base_minor_threshold": "50",
        "price_change_threshold": "oops",
    })

    assert merged.holdings_check_interval == settings.holdings_check_interval
    assert merged.base_minor_threshold == settings.base_minor_threshold
    assert merged.price_change_threshold == settings.price_change_threshold
