import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    def __init__(self):
        self.app_name = "SmartHands Billing"
        self.api_version = "1.0.0"
        self.environment = os.getenv("ENVIRONMENT", "development")
        self.secret_key = os.getenv("SECRET_KEY", "CHANGE_ME")
        self.access_token_expire_minutes = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./billing.db")
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        self.log_format = os.getenv("LOG_FORMAT", "console")

        # Outbound mail; an empty host means no SMTP transport is configured
        self.mail_host = os.getenv("MAIL_HOST", "")
        self.mail_port = int(os.getenv("MAIL_PORT", "465"))
        self.mail_user = os.getenv("MAIL_USER", "")
        self.mail_password = os.getenv("MAIL_PASSWORD", "")
        self.mail_from = os.getenv("MAIL_FROM", "billing@911dc.us")
        self.mail_use_ssl = _env_bool("MAIL_USE_SSL", True)
        self.mail_timeout = int(os.getenv("MAIL_TIMEOUT", "10"))
        self.billing_contact_email = os.getenv("BILLING_CONTACT_EMAIL", "billing@911dc.us")

        self.incomplete_invoice_grace_seconds = int(os.getenv("INCOMPLETE_INVOICE_GRACE_SECONDS", "300"))

        self.company_name = "911-DC"
        self.company_tagline = "Datacenter Operations & SmartHands Services"
        self.company_address = "100 NE 2nd St, Miami, FL 33138"
        self.company_contact_line = "info@911dc.us  |  www.911dc.us"
        self.company_location = "Miami, FL"


_settings_instance = None


def get_settings():
    """Return a singleton Settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


def reset_settings() -> None:
    """Drop the cached instance so the next get_settings() re-reads the environment."""
    global _settings_instance
    _settings_instance = None
