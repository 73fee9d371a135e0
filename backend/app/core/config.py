"""
Application settings

All environment variables are managed through Pydantic Settings.
Values are read from the .env file at the repository root, with type
validation and defaults.

Key groups:
- Database: PostgreSQL connection (or a DATABASE_URL override)
- Telegram: bot token and the chats the bot manages
- Mercado Pago: API token and webhook signing secret
- Membership: trial, subscription and grace period lengths
- Webhook queue: polling cadence, batch size and retry limits
"""
import warnings
from typing import Literal

from pydantic import HttpUrl, PostgresDsn, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self


class Settings(BaseSettings):
    """
    Application settings

    Loaded from environment variables and the .env file.

    Source priority:
    1. environment variables (highest)
    2. .env file
    3. defaults below (lowest)
    """
    model_config = SettingsConfigDict(
        # .env at the repository root (one level above backend/)
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    PROJECT_NAME: str
    SENTRY_DSN: HttpUrl | None = None

    POSTGRES_SERVER: str
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""
    # Full URL override (sqlite:// in tests, managed DSNs in deployments)
    DATABASE_URL: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return str(
            PostgresDsn.build(
                scheme="postgresql+psycopg",
                username=self.POSTGRES_USER,
                password=self.POSTGRES_PASSWORD,
                host=self.POSTGRES_SERVER,
                port=self.POSTGRES_PORT,
                path=self.POSTGRES_DB,
            )
        )

    # Telegram Bot API
    TELEGRAM_BOT_TOKEN: str | None = None
    TELEGRAM_API_URL: str = "https://api.telegram.org"
    TELEGRAM_ADMIN_GROUP_ID: int | None = None  # operator chat for alerts
    TELEGRAM_PUBLIC_GROUP_ID: int | None = None  # member chat in single-tenant mode

    # Mercado Pago
    MP_ACCESS_TOKEN: str | None = None
    MP_WEBHOOK_SECRET: str | None = None
    MP_API_URL: str = "https://api.mercadopago.com"
    SKIP_WEBHOOK_VALIDATION: bool = False  # honoured only when ENVIRONMENT == "local"

    # Membership
    MEMBERSHIP_GROUP_ID: str | None = None  # active tenant; None = single-tenant mode
    MEMBERSHIP_TRIAL_DAYS: int = 7
    MEMBERSHIP_SUBSCRIPTION_DAYS: int = 30
    MEMBERSHIP_GRACE_PERIOD_DAYS: int = 2
    MEMBERSHIP_CHECKOUT_URL: str | None = None

    # Webhook queue
    WEBHOOK_POLL_INTERVAL_SECONDS: int = 30
    WEBHOOK_BATCH_SIZE: int = 10
    WEBHOOK_MAX_ATTEMPTS: int = 5
    WEBHOOK_STUCK_TIMEOUT_MINUTES: int = 5

    # Outbound calls
    EXTERNAL_HTTP_TIMEOUT_SECONDS: float = 10.0
    RECONCILIATION_RATE_LIMIT_MS: int = 100

    # Scheduler
    SCHEDULER_TIMEZONE: str = "America/Sao_Paulo"
    GRACE_PERIOD_CRON_HOUR: int = 0
    GRACE_PERIOD_CRON_MINUTE: int = 1
    RECONCILIATION_CRON_HOUR: int = 3
    RECONCILIATION_CRON_MINUTE: int = 0
    TRIAL_REMINDERS_CRON_HOUR: int = 9
    TRIAL_REMINDERS_CRON_MINUTE: int = 0
    RENEWAL_REMINDERS_CRON_HOUR: int = 10
    RENEWAL_REMINDERS_CRON_MINUTE: int = 0

    @property
    def webhook_validation_disabled(self) -> bool:
        return self.ENVIRONMENT == "local" and self.SKIP_WEBHOOK_VALIDATION

    def _check_default_secret(self, var_name: str, value: str | None) -> None:
        """
        Reject placeholder secrets

        A value of "changethis" only warns in the local environment and
        raises everywhere else.

        Args:
            var_name: setting name
            value: setting value

        Raises:
            ValueError: placeholder used outside local
        """
        if value == "changethis":
            message = (
                f'The value of {var_name} is "changethis", '
                "for security, please change it, at least for deployments."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        self._check_default_secret("POSTGRES_PASSWORD", self.POSTGRES_PASSWORD)
        self._check_default_secret("MP_WEBHOOK_SECRET", self.MP_WEBHOOK_SECRET)
        self._check_default_secret("MP_ACCESS_TOKEN", self.MP_ACCESS_TOKEN)
        self._check_default_secret("TELEGRAM_BOT_TOKEN", self.TELEGRAM_BOT_TOKEN)

        return self


settings = Settings()  # type: ignore
