"""
Configuration module - loads all env vars using pydantic-settings.
This is the SINGLE SOURCE OF TRUTH for all config values.
"""

from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database (DATABASE_URL wins over the postgres_* parts)
    database_url: str = ""
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "irefair"
    postgres_password: str = "password"
    postgres_db: str = "irefair"

    # MongoDB (resume documents)
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "irefair_docs"

    # Redis (rate limiting). Empty disables limiting.
    redis_url: str = ""

    # Rate limit buckets: requests per window (seconds)
    rate_limit_applicant: int = 10
    rate_limit_referrer: int = 10
    rate_limit_apply: int = 10
    rate_limit_chatgpt: int = 5
    rate_limit_founder_login: int = 5
    rate_limit_applicant_window_seconds: int = 60
    rate_limit_referrer_window_seconds: int = 60
    rate_limit_apply_window_seconds: int = 60
    rate_limit_chatgpt_window_seconds: int = 60
    rate_limit_founder_login_window_seconds: int = 60
    portal_link_requests_per_hour: int = 3

    # Token secrets
    founder_auth_secret: str = ""
    applicant_portal_token_secret: str = ""
    applicant_token_secret: str = ""
    referrer_portal_token_secret: str = ""
    jwt_algorithm: str = "HS256"

    # Token lifetimes (seconds)
    founder_session_ttl_seconds: int = 7 * 24 * 60 * 60
    referrer_portal_token_ttl_seconds: int = 7 * 24 * 60 * 60
    applicant_update_token_ttl_seconds: int = 7 * 24 * 60 * 60
    mobile_access_token_ttl_seconds: int = 15 * 60
    mobile_refresh_token_ttl_seconds: int = 30 * 24 * 60 * 60
    mobile_session_ttl_seconds: int = 30 * 24 * 60 * 60

    # Founder console
    founder_email: str = ""
    founder_password_hash: str = ""

    # Scheduled jobs
    cron_secret: str = ""

    # Mail (SMTP)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from_email: str = ""
    smtp_from_name: str = "iRefair"
    smtp_timeout_seconds: int = 20

    # Routing / recipients
    app_base_url: str = "https://irefair.com"
    application_fallback_referrer_email: str = ""
    application_fallback_referrer_name: str = ""
    referral_reward_email: str = ""
    founder_meet_link: str = ""

    # OpenAI
    openai_api_key: str = ""
    openai_model: str = "gpt-4.1-mini"

    # VirusTotal
    virustotal_api_key: str = ""
    virustotal_poll_attempts: int = 6
    virustotal_poll_interval_seconds: float = 2.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # App
    debug: bool = False
    cookie_secure: bool = True
    cors_origins: str = "*"

    @property
    def sqlalchemy_url(self) -> str:
        """Construct database connection URL"""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def applicant_portal_secret(self) -> Optional[str]:
        return (
            self.applicant_portal_token_secret
            or self.applicant_token_secret
            or self.founder_auth_secret
            or None
        )

    @property
    def applicant_update_secret(self) -> Optional[str]:
        return self.applicant_token_secret or self.founder_auth_secret or None

    @property
    def reward_recipient(self) -> str:
        return self.referral_reward_email or self.founder_email or self.smtp_from_email

    # Pydantic v2 config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
