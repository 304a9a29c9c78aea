"""
Configuration management for the billing service.

Uses Pydantic Settings for type-safe configuration with multiple sources:
- Environment variables (highest priority)
- .env file
- Defaults (lowest priority)
"""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from scribeledger.models.subscription import BillingInterval, SubscriptionTier


class StripeConfig(BaseSettings):
    """
    Stripe configuration.

    Price ids are mapped to tiers once, at load time. Empty price ids are
    skipped so that two unset prices never collide on the empty string.

    Security: API key and webhook secret are never logged or exposed in errors.
    """

    model_config = SettingsConfigDict(
        env_prefix="STRIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_key: str = Field(default="", description="Stripe secret key (sk_...)")
    webhook_secret: str = Field(default="", description="Webhook signing secret (whsec_...)")
    webhook_tolerance_seconds: int = Field(
        default=300, ge=0, description="Maximum accepted age of a signed webhook"
    )
    currency: str = Field(default="usd", min_length=3, max_length=3)

    price_pro_monthly: str = Field(default="")
    price_pro_annual: str = Field(default="")
    price_team_monthly: str = Field(default="")
    price_team_annual: str = Field(default="")

    checkout_success_url: str = Field(
        default="http://localhost:5173/settings?success=true",
        description="Where Stripe Checkout returns after a completed subscription",
    )
    checkout_cancel_url: str = Field(
        default="http://localhost:5173/pricing",
        description="Where Stripe Checkout returns when the customer backs out",
    )

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.lower()

    @model_validator(mode="after")
    def validate_price_ids_unique(self) -> "StripeConfig":
        """Reject a price id configured for two different tiers."""
        seen: dict[str, SubscriptionTier] = {}
        for price_id, tier in self._price_pairs():
            if price_id in seen and seen[price_id] != tier:
                raise ValueError(
                    f"Price id configured for both {seen[price_id].value} and {tier.value}"
                )
            seen[price_id] = tier
        return self

    def _price_pairs(self) -> list[tuple[str, SubscriptionTier]]:
        pairs = [
            (self.price_pro_monthly, SubscriptionTier.PRO),
            (self.price_pro_annual, SubscriptionTier.PRO),
            (self.price_team_monthly, SubscriptionTier.TEAM),
            (self.price_team_annual, SubscriptionTier.TEAM),
        ]
        return [(price_id, tier) for price_id, tier in pairs if price_id]

    @property
    def price_to_tier(self) -> dict[str, SubscriptionTier]:
        """Price id -> tier lookup (unset prices excluded)."""
        return dict(self._price_pairs())

    def tier_for_price(self, price_id: str | None) -> SubscriptionTier:
        """Resolve a tier from a price id. Unmapped or missing ids are free."""
        if not price_id:
            return SubscriptionTier.FREE
        return self.price_to_tier.get(price_id, SubscriptionTier.FREE)

    def price_for(self, tier: SubscriptionTier, interval: BillingInterval) -> str:
        """Price id for a paid tier and interval; empty when not configured."""
        prices = {
            (SubscriptionTier.PRO, BillingInterval.MONTH): self.price_pro_monthly,
            (SubscriptionTier.PRO, BillingInterval.YEAR): self.price_pro_annual,
            (SubscriptionTier.TEAM, BillingInterval.MONTH): self.price_team_monthly,
            (SubscriptionTier.TEAM, BillingInterval.YEAR): self.price_team_annual,
        }
        return prices.get((tier, interval), "")

    @property
    def is_configured(self) -> bool:
        """Check if Stripe API access is configured."""
        return bool(self.api_key)


class QuotaConfig(BaseSettings):
    """Included minutes per subscription tier."""

    model_config = SettingsConfigDict(env_prefix="QUOTA_", extra="ignore")

    free_minutes: int = Field(default=60, ge=0)
    pro_minutes: int = Field(default=500, ge=0)
    team_minutes: int = Field(default=2000, ge=0)

    def minutes_for_tier(self, tier: SubscriptionTier) -> int:
        mapping = {
            SubscriptionTier.FREE: self.free_minutes,
            SubscriptionTier.PRO: self.pro_minutes,
            SubscriptionTier.TEAM: self.team_minutes,
        }
        return mapping[tier]


class StorageConfig(BaseSettings):
    """Billing database location."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_", extra="ignore")

    db_path: str = Field(default="./data/billing.db")


class AuthConfig(BaseSettings):
    """
    Identity headers set by the upstream authentication gateway.

    Identity resolution itself happens outside this service.
    """

    model_config = SettingsConfigDict(env_prefix="AUTH_", extra="ignore")

    user_id_header: str = Field(default="X-User-Id")
    external_id_header: str = Field(default="X-External-Id")


class RateLimitConfig(BaseSettings):
    """Rate limits (slowapi limit strings)."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_", extra="ignore")

    enabled: bool = Field(default=True)
    purchase_limit: str = Field(default="10/minute")


class ServiceConfig(BaseSettings):
    """uvicorn process settings for the console entry point."""

    model_config = SettingsConfigDict(env_prefix="SERVICE_", extra="ignore")

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)
    reload: bool = Field(default=False)
    workers: int = Field(default=1, ge=1)


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class CORSConfig(BaseSettings):
    """
    Browser access to the API.

    The purchase flow runs in the browser (Stripe.js confirms the intent), so
    the dashboard origin must be listed here in production.
    """

    model_config = SettingsConfigDict(env_prefix="CORS_", extra="ignore")

    allowed_origins: str = Field(default="*", description="Comma-separated origins, * for any")
    allow_credentials: bool = Field(default=True)
    allowed_methods: str = Field(default="GET,POST,OPTIONS")
    allowed_headers: str = Field(default="*")

    @property
    def origins_list(self) -> list[str]:
        return _split_csv(self.allowed_origins)

    @property
    def methods_list(self) -> list[str]:
        return _split_csv(self.allowed_methods)

    @property
    def headers_list(self) -> list[str]:
        return _split_csv(self.allowed_headers)


class LoggingConfig(BaseSettings):
    """structlog output settings; service fields are stamped on every event."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_", extra="ignore")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    json_output: bool = Field(default=True, description="JSON lines; console rendering when false")
    colorized: bool = Field(default=False, description="Console rendering only")
    service_name: str = Field(default="scribeledger")
    service_version: str = Field(default="0.1.0")
    environment: Literal["development", "staging", "production"] = Field(default="development")


class Settings(BaseSettings):
    """Root configuration for the billing service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    stripe: StripeConfig = Field(default_factory=StripeConfig)
    quota: QuotaConfig = Field(default_factory=QuotaConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    cors: CORSConfig = Field(default_factory=CORSConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def validate_configuration(self) -> None:
        """
        Log warnings for configuration that degrades the service.
        Called at application startup.
        """
        if not self.stripe.is_configured:
            logging.warning("Stripe API key not configured - credit purchases will fail")

        if not self.stripe.webhook_secret:
            logging.warning("Stripe webhook secret not configured - webhooks will be rejected")

        if not self.stripe.price_to_tier:
            logging.warning(
                "No Stripe price ids configured - all subscriptions resolve to the free tier "
                "unless the event metadata carries a tier"
            )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load settings once per process.

    Returns:
        Settings: Application configuration
    """
    settings = Settings()
    settings.validate_configuration()
    return settings
