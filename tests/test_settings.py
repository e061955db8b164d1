from backend.app.core.settings import get_settings, reset_settings


def test_settings_defaults():
    settings = get_settings()
    assert settings.app_name == "SmartHands Billing"
    assert isinstance(settings.secret_key, str) and settings.secret_key
    assert isinstance(settings.database_url, str) and settings.database_url
    assert settings.incomplete_invoice_grace_seconds >= 0
    assert settings.company_name == "911-DC"


def test_settings_read_mail_environment(monkeypatch):
    monkeypatch.setenv("MAIL_HOST", "smtp.example.com")
    monkeypatch.setenv("MAIL_PORT", "587")
    monkeypatch.setenv("MAIL_USE_SSL", "no")
    reset_settings()
    try:
        settings = get_settings()
        assert settings.mail_host == "smtp.example.com"
        assert settings.mail_port == 587
        assert settings.mail_use_ssl is False
    finally:
        monkeypatch.undo()
        reset_settings()


def test_get_settings_is_cached():
    assert get_settings() is get_settings()
