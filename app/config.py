"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES AT CALL SITES - the price table is exposed as an immutable
ToolPriceTable, never as a loose dict.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from collections.abc import Iterator, Mapping
from functools import cached_property
from types import MappingProxyType

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.models.domain import CreditPackage, PackageKind, ToolType


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


DEFAULT_TOOL_COSTS: dict[str, int] = {
    ToolType.ROADMAP.value: 5,
    ToolType.PRD.value: 10,
    ToolType.PITCH_DECK.value: 15,
    ToolType.PERSONA.value: 5,
    ToolType.COMPETITIVE_ANALYSIS.value: 10,
}

CREDIT_PACKAGES: Mapping[str, CreditPackage] = MappingProxyType(
    {
        "credits_100": CreditPackage(
            package_id="credits_100",
            name="100 Credits",
            credits=100,
            price_minor=900,
            kind=PackageKind.ONE_TIME,
        ),
        "credits_500": CreditPackage(
            package_id="credits_500",
            name="500 Credits",
            credits=500,
            price_minor=2900,
            kind=PackageKind.ONE_TIME,
        ),
        "unlimited": CreditPackage(
            package_id="unlimited",
            name="Unlimited",
            credits=0,
            price_minor=7900,
            kind=PackageKind.SUBSCRIPTION,
        ),
    }
)


def get_credit_package(package_id: str) -> CreditPackage | None:
    """Look up a credit package by id."""
    return CREDIT_PACKAGES.get(package_id)


class ToolPriceTable(Mapping[ToolType, int]):
    """
    Immutable per-tool credit cost table.

    Built once at process start and shared by the balance check and the debit,
    so both always agree on what a tool costs.
    """

    def __init__(self, costs: Mapping[str, int]) -> None:
        resolved: dict[ToolType, int] = {}
        for tool in ToolType:
            cost = costs.get(tool.value)
            if cost is None:
                raise ConfigurationError(f"Missing credit cost for tool: {tool.value}")
            if cost <= 0:
                raise ConfigurationError(f"Credit cost must be positive for {tool.value}: {cost}")
            resolved[tool] = cost
        unknown = set(costs) - {tool.value for tool in ToolType}
        if unknown:
            raise ConfigurationError(f"Unknown tool types in cost table: {sorted(unknown)}")
        self._costs = MappingProxyType(resolved)

    def __getitem__(self, tool: ToolType) -> int:
        return self._costs[tool]

    def __iter__(self) -> Iterator[ToolType]:
        return iter(self._costs)

    def __len__(self) -> int:
        return len(self._costs)

    def cost_of(self, tool: ToolType) -> int:
        """Credit cost for a single invocation of `tool`."""
        return self._costs[tool]

    def as_public_dict(self) -> dict[str, int]:
        """Serializable view for API responses."""
        return {tool.value: cost for tool, cost in self._costs.items()}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Storage backend - "sql" (real database) or "memory" (no persistence configured)
    storage_backend: str = "sql"

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = True

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "1Lab Tools API"
    api_version: str = "0.1.0"
    api_description: str = "Credit-metered AI product tools"
    cors_allowed_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Ledger
    initial_credits: int = Field(default=25, ge=0)
    tool_costs: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_TOOL_COSTS))

    # API keys
    api_key_namespace: str = "1lab"

    # Generations listing
    generations_default_limit: int = 50
    generations_max_limit: int = 100

    # Identity provider (session tokens)
    session_jwks_url: str = ""  # RS256 via JWKS (e.g. Clerk frontend API /.well-known/jwks.json)
    session_jwt_secret: str = ""  # HS256 shared secret (local development)
    session_jwt_issuer: str | None = None
    session_jwt_audience: str | None = None
    session_cookie_name: str = "__session"

    # LLM provider
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 60.0
    openai_temperature: float = 0.7

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # Stripe secret key (sk_test_... or sk_live_...)
    stripe_webhook_secret: str = ""  # Stripe webhook signing secret (whsec_...)

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "onelab-tools-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        This prevents silent failures that only manifest at runtime.
        """
        errors: list[str] = []

        if self.storage_backend not in ("sql", "memory"):
            errors.append(f"STORAGE_BACKEND must be 'sql' or 'memory', got: {self.storage_backend}")
        elif self.storage_backend == "sql" and not self.database_url:
            errors.append("DATABASE_URL is required when STORAGE_BACKEND=sql")

        try:
            ToolPriceTable(self.tool_costs)
        except ConfigurationError as exc:
            errors.append(f"TOOL_COSTS invalid: {exc}")

        if not self.api_key_namespace.isalnum():
            errors.append(f"API_KEY_NAMESPACE must be alphanumeric, got: {self.api_key_namespace}")

        if not 1 <= self.generations_default_limit <= self.generations_max_limit:
            errors.append("GENERATIONS_DEFAULT_LIMIT must be between 1 and GENERATIONS_MAX_LIMIT")

        # If we have errors, fail immediately with clear messaging
        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @cached_property
    def price_table(self) -> ToolPriceTable:
        """Immutable tool price table built from TOOL_COSTS."""
        return ToolPriceTable(self.tool_costs)


# Global settings instance - validates at import time
settings = Settings()
