# notifier/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "notifier"
    pg_pool_min: int = 2
    pg_pool_max: int = 10
    pg_connect_timeout: int = 5

    # Subscription dispatch
    dispatch_enabled: bool = True                  # Master switch for the fixed-rate dispatcher
    dispatch_interval_seconds: float = 60.0        # Tick period; also the latency floor for LIVE subscriptions
    dispatch_delivery_timeout_seconds: float = 30.0  # Upper bound for a single handler delivery
    enabled_handlers: str = "email,logfile"        # Comma-separated handler names offered to the registry

    # Email handler (SMTP)
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_sender: str | None = None                 # From address; falls back to smtp_user
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 20.0
    email_subject: str = "New notifications"

    # Log file handler
    # If set, subscriptions may only write below this directory.
    logfile_directory: str | None = None

    # HTTP surface
    allowed_origins: list[str] = ["*"]
    enable_request_logging: bool = True
    default_page_size: int = 20
    max_page_size: int = 100

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def email_sender(self) -> str | None:
        """Effective From address for outgoing mail"""
        return self.smtp_sender or self.smtp_user

    @property
    def email_enabled(self) -> bool:
        """Check if SMTP delivery is configured"""
        return bool(self.smtp_host and self.email_sender)

    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url

        return (
            f"postgresql://{self.pguser}:{self.pgpassword}"
            f"@{self.pghost}:{self.pgport}/{self.pgdatabase}"
        )

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []
        if not self.database_url:
            missing.append("database_url")
        if "email" in parse_handler_names(self.enabled_handlers) and not self.email_enabled:
            missing.append("smtp_host/smtp_sender")
        return missing


def parse_handler_names(raw: str) -> list[str]:
    """Split a comma-separated handler list, dropping blanks and duplicates."""
    names: list[str] = []
    for part in raw.split(","):
        name = part.strip()
        if name and name not in names:
            names.append(name)
    return names


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if s.dispatch_delivery_timeout_seconds >= s.dispatch_interval_seconds:
        warnings.append(
            "dispatch_delivery_timeout_seconds >= dispatch_interval_seconds: "
            "a single slow handler can make ticks overrun their period."
        )

    if not parse_handler_names(s.enabled_handlers):
        warnings.append("enabled_handlers is empty: no subscription will ever be dispatched.")

    if "email" in parse_handler_names(s.enabled_handlers) and not s.email_enabled:
        warnings.append("email handler enabled but smtp_host/smtp_sender are missing (it will not be endorsed).")

    if s.smtp_host and not s.smtp_use_tls:
        warnings.append("smtp_use_tls=False: credentials are sent in clear text.")

    if "logfile" in parse_handler_names(s.enabled_handlers) and not s.logfile_directory:
        warnings.append("logfile handler enabled without logfile_directory: subscriptions may write anywhere.")

    return warnings


def validate_or_warn(s: "Settings") -> list[str]:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.

    Returns the list of warnings so the caller can log them.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    return warn_on_risky_config(s)

settings = Settings()
