"""Engine configuration loaded from environment variables.

Secrets (Stripe keys) are not stored here; they are fetched from SSM
Parameter Store by the gateway service. The STRIPE_* variables only exist
as local-development overrides.

Usage:
    from booking_engine.config import get_settings

    settings = get_settings()
    settings.quote_ttl_minutes
"""

import os
from decimal import Decimal
from enum import Enum
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_ACTION_ROLES: dict[str, str] = {
    "conflicts:check": "viewer",
    "reconciliation:run": "admin",
    "refunds:create": "admin",
    "webhooks:replay": "admin",
}


class ConflictFailurePolicy(str, Enum):
    """What the conflict checker does when the datastore cannot be read."""

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


class TaxRule(BaseModel):
    """A named tax applied to the discounted subtotal."""

    name: str
    rate: Decimal


class EngineSettings(BaseModel):
    """Runtime settings for the booking engine."""

    model_config = ConfigDict(frozen=True)

    environment: str = "dev"
    table_prefix: str | None = None
    currency: str = "EUR"
    quote_ttl_minutes: int = Field(default=30, ge=1)
    # Stripe needs expires_at at least 30 minutes after it receives the request
    checkout_session_ttl_minutes: int = Field(default=31, ge=31)
    tax_rules: list[TaxRule] = Field(
        default_factory=lambda: [TaxRule(name="Sales Tax", rate=Decimal("0.08"))]
    )
    tax_rounding_increment: int = Field(default=1, ge=1)
    tax_rounding_mode: str = "ROUND_HALF_UP"
    conflict_failure_policy: ConflictFailurePolicy = ConflictFailurePolicy.FAIL_OPEN
    gateway_timeout_seconds: float = Field(default=10.0, gt=0)
    gateway_max_network_retries: int = Field(default=2, ge=0)
    webhook_lease_seconds: int = Field(default=60, ge=1)
    reconciliation_window_days: int = Field(default=30, ge=1)
    reconciliation_default_limit: int = Field(default=100, ge=1)
    reconciliation_max_limit: int = Field(default=1000, ge=1)
    amount_tolerance_minor: int = Field(default=1, ge=0)
    auth_roles_claim: str = "cognito:groups"
    auth_action_roles: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_ACTION_ROLES)
    )
    cors_allowed_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"]
    )
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None

    @property
    def ssm_prefix(self) -> str:
        """SSM parameter path prefix for this environment."""
        return f"/booking/{self.environment}"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from the process environment.

        Returns:
            EngineSettings with defaults for unset variables.
        """
        env = os.environ
        values: dict = {"environment": env.get("ENVIRONMENT", "dev")}

        simple = {
            "DYNAMODB_TABLE_PREFIX": "table_prefix",
            "BOOKING_CURRENCY": "currency",
            "QUOTE_TTL_MINUTES": "quote_ttl_minutes",
            "CHECKOUT_SESSION_TTL_MINUTES": "checkout_session_ttl_minutes",
            "TAX_ROUNDING_INCREMENT": "tax_rounding_increment",
            "TAX_ROUNDING_MODE": "tax_rounding_mode",
            "CONFLICT_FAILURE_POLICY": "conflict_failure_policy",
            "GATEWAY_TIMEOUT_SECONDS": "gateway_timeout_seconds",
            "GATEWAY_MAX_NETWORK_RETRIES": "gateway_max_network_retries",
            "WEBHOOK_LEASE_SECONDS": "webhook_lease_seconds",
            "RECONCILIATION_WINDOW_DAYS": "reconciliation_window_days",
            "RECONCILIATION_MAX_LIMIT": "reconciliation_max_limit",
            "AMOUNT_TOLERANCE_MINOR": "amount_tolerance_minor",
            "AUTH_ROLES_CLAIM": "auth_roles_claim",
            "STRIPE_SECRET_KEY": "stripe_secret_key",
            "STRIPE_WEBHOOK_SECRET": "stripe_webhook_secret",
        }
        for var, field in simple.items():
            if env.get(var):
                values[field] = env[var]

        if env.get("TAX_RULES"):
            values["tax_rules"] = parse_tax_rules(env["TAX_RULES"])
        if env.get("AUTH_ACTION_ROLES"):
            values["auth_action_roles"] = {
                **DEFAULT_ACTION_ROLES,
                **parse_pairs(env["AUTH_ACTION_ROLES"], "="),
            }
        if env.get("CORS_ALLOWED_ORIGINS"):
            values["cors_allowed_origins"] = [
                origin.strip()
                for origin in env["CORS_ALLOWED_ORIGINS"].split(",")
                if origin.strip()
            ]

        return cls.model_validate(values)


def parse_pairs(raw: str, separator: str) -> dict[str, str]:
    """Parse "a=b,c=d" style configuration strings."""
    pairs: dict[str, str] = {}
    for chunk in raw.split(","):
        if not chunk.strip():
            continue
        key, _, value = chunk.partition(separator)
        if not value:
            raise ValueError(f"Malformed configuration entry: {chunk!r}")
        pairs[key.strip()] = value.strip()
    return pairs


def parse_tax_rules(raw: str) -> list[TaxRule]:
    """Parse TAX_RULES, e.g. "Sales Tax:0.08,City Tax:0.01"."""
    return [
        TaxRule(name=name, rate=Decimal(rate))
        for name, rate in parse_pairs(raw, ":").items()
    ]


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Get the shared settings instance."""
    return EngineSettings.from_env()


def reset_settings() -> None:
    """Drop cached settings (for testing only)."""
    get_settings.cache_clear()
