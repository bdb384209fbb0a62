import pytest
from pydantic import ValidationError

from sessionauth.config import Environment, Settings, get_settings, reset_settings_cache


def test_defaults_match_session_contract():
    settings = Settings()
    assert settings.session_cookie_name == "connect.sid"
    assert settings.session_max_age_seconds == 86400
    assert settings.session_renewal_threshold_seconds == 900
    assert settings.registration_token_ttl_seconds == 7200
    assert settings.resend_limit == 3


def test_short_session_secret_rejected():
    with pytest.raises(ValidationError):
        Settings(session_secret="abcd")


def test_cors_origins_split_from_env_string():
    settings = Settings(cors_allow_origins="http://a.test, http://b.test,")
    assert settings.cors_allow_origins == ["http://a.test", "http://b.test"]


def test_from_env_reads_node_style_names(monkeypatch):
    monkeypatch.setenv("NODE_ENV", "production")
    monkeypatch.setenv("SMTP_PASS", "pw")
    monkeypatch.setenv("APP_DOMAIN", "https://auth.example.com")
    reset_settings_cache()

    settings = get_settings()

    assert settings.env is Environment.PRODUCTION
    assert settings.is_production
    assert settings.smtp_password == "pw"
    assert settings.google_redirect_uri == "https://auth.example.com/auth/google/redirect"
    reset_settings_cache()


def test_settings_are_cached():
    reset_settings_cache()
    assert get_settings() is get_settings()


def test_every_setting_is_bound_to_an_env_name():
    for name, field in Settings.model_fields.items():
        assert (field.json_schema_extra or {}).get("env"), name
