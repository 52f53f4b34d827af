from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the rate-card engine.

These are the typed shapes produced by ``ratecard_recon.config.loader``.
Every field has a default so that ``AppConfig()`` is a usable in-memory
configuration for tests and mock mode.
"""

__all__ = [
    "DatabaseConfig",
    "SessionConfig",
    "SettlementConfig",
    "DefaultsConfig",
    "LabelConfig",
    "AppConfig",
]

DEFAULT_PLATFORM_LABELS = {
    "amazon": "Amazon",
    "flipkart": "Flipkart",
    "myntra": "Myntra",
    "ajio": "AJIO",
    "quick": "Quick Commerce",
}

DEFAULT_CATEGORY_LABELS = {
    "apparel": "Apparel",
    "electronics": "Electronics",
    "beauty": "Beauty",
    "home": "Home",
}


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None

    @property
    def configured(self) -> bool:
        return bool(self.dsn or self.host or self.database)


@dataclass(frozen=True)
class SessionConfig:
    ttl_seconds: float = 30 * 60
    capacity: int = 25
    sweep_interval_seconds: float = 60


@dataclass(frozen=True)
class SettlementConfig:
    mismatch_tolerance: float = 10.0


@dataclass(frozen=True)
class DefaultsConfig:
    """Values applied on write when a card leaves them blank."""
    gst_percent: float = 18.0
    tcs_percent: float = 1.0
    grace_days: float = 0.0


@dataclass(frozen=True)
class LabelConfig:
    platforms: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PLATFORM_LABELS))
    categories: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_CATEGORY_LABELS))


@dataclass(frozen=True)
class AppConfig:
    """Root configuration object."""
    sessions: SessionConfig = field(default_factory=SessionConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    labels: LabelConfig = field(default_factory=LabelConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    error_log_dir: str | None = None  # None disables the row-issue log file
