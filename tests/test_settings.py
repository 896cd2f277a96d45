"""Tests for configuration settings."""

import pytest


def test_settings_loads_from_env():
    """Test that settings loads from environment variables."""
    # Import after env vars are set in conftest
    from monthend.config.settings import get_settings

    # Clear the cache to force reload
    get_settings.cache_clear()

    settings = get_settings()

    assert settings.qbo_client_id == "test-client-id"
    assert settings.qbo_client_secret.get_secret_value() == "test-client-secret"
    assert settings.qbo_access_token is not None
    assert settings.qbo_access_token.get_secret_value() == "test-access-token"
    assert settings.qbo_realm_id == "9130000000000001"


def test_settings_has_defaults():
    """Test that settings has sensible defaults."""
    from monthend.config.settings import get_settings

    get_settings.cache_clear()
    settings = get_settings()

    assert settings.qbo_minor_version == "65"
    assert settings.qbo_timeout == 30.0
    assert settings.accrual_noise_floor == 10.0
    assert settings.accrual_present_tolerance == 0.10
    assert settings.accrual_debug_example_limit == 5
    assert settings.log_format in ("json", "console")


def test_settings_are_cached():
    """Test that get_settings returns cached instance."""
    from monthend.config.settings import get_settings

    get_settings.cache_clear()

    settings1 = get_settings()
    settings2 = get_settings()

    assert settings1 is settings2


@pytest.mark.parametrize(
    ("env", "base_url", "expected"),
    [
        ("sandbox", None, "https://sandbox-quickbooks.api.intuit.com"),
        ("production", None, "https://quickbooks.api.intuit.com"),
        ("production", "http://localhost:9999/", "http://localhost:9999"),
    ],
)
def test_qbo_host(monkeypatch, env, base_url, expected):
    """Test host selection from QBO_ENV and QBO_BASE_URL."""
    from monthend.config.settings import Settings

    monkeypatch.setenv("QBO_ENV", env)
    if base_url:
        monkeypatch.setenv("QBO_BASE_URL", base_url)
    else:
        monkeypatch.delenv("QBO_BASE_URL", raising=False)

    assert Settings().qbo_host == expected


def test_secret_is_not_rendered():
    """Test that secrets do not leak through repr."""
    from monthend.config.settings import get_settings

    get_settings.cache_clear()
    assert "test-client-secret" not in repr(get_settings())
