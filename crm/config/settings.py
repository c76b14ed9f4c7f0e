"""
Application configuration using Pydantic Settings.

Loads all environment variables from .env file with validation and type safety.
Every field has a default so the CRM starts without any .env present.
"""

from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Automatically loads from .env file in project root.
    """

    # Redis Configuration (client records + notified set)
    redis_url: str = Field('redis://localhost:6379/0', alias='REDIS_URL')
    clients_storage_key: str = Field('crm_clients', alias='CLIENTS_STORAGE_KEY')
    notified_storage_key: str = Field(
        'notified_followups_due', alias='NOTIFIED_STORAGE_KEY'
    )

    # Follow-up scheduling
    sweep_interval_seconds: int = Field(60, alias='SWEEP_INTERVAL_SECONDS')
    warmup_delay_seconds: float = Field(3, alias='WARMUP_DELAY_SECONDS')
    suspension_grace_hours: int = Field(24, alias='SUSPENSION_GRACE_HOURS')
    default_followup_business_days: int = Field(
        7, alias='DEFAULT_FOLLOWUP_BUSINESS_DAYS'
    )

    # Client defaults
    default_country_code: str = Field('+54', alias='DEFAULT_COUNTRY_CODE')
    default_phone_region: str = Field('AR', alias='DEFAULT_PHONE_REGION')

    # Notification delivery
    notifications_enabled: bool = Field(True, alias='NOTIFICATIONS_ENABLED')
    smtp_server: str = Field('smtp.gmail.com', alias='SMTP_SERVER')
    smtp_port: int = Field(587, alias='SMTP_PORT')
    smtp_username: Optional[str] = Field(None, alias='SMTP_USERNAME')
    smtp_password: Optional[str] = Field(None, alias='SMTP_PASSWORD')
    notify_from_email: Optional[str] = Field(None, alias='NOTIFY_FROM_EMAIL')
    notify_to_email: Optional[str] = Field(None, alias='NOTIFY_TO_EMAIL')
    app_base_url: str = Field('http://localhost:8000/', alias='APP_BASE_URL')

    # System Configuration
    log_level: str = Field('INFO', alias='LOG_LEVEL')
    log_file: str = Field('logs/application.log', alias='LOG_FILE')

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        populate_by_name=True,
        extra='ignore'
    )

    @field_validator('sweep_interval_seconds', 'warmup_delay_seconds')
    @classmethod
    def _positive_interval(cls, value):
        if value <= 0:
            raise ValueError("Scheduler intervals must be positive")
        return value

    @field_validator('suspension_grace_hours', 'default_followup_business_days')
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Value must not be negative")
        return value

    @field_validator('default_country_code')
    @classmethod
    def _normalize_country_code(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith('+'):
            value = f"+{value}"
        return value

    @property
    def smtp_configured(self) -> bool:
        """True when every value needed to send a notification email is set."""
        return all([
            self.smtp_server,
            self.smtp_username,
            self.smtp_password,
            self.notify_from_email,
            self.notify_to_email
        ])


# Global settings instance
settings = Settings()
