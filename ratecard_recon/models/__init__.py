"""Domain models for the rate-card engine.

Configuration shapes, the normalized rate card, upload / import batch
models, settlement predictions and the row-issue log record.
"""

from .config_models import AppConfig, DatabaseConfig, DefaultsConfig, LabelConfig, SessionConfig, SettlementConfig
from .error_record import ErrorRecord
from .rate_card import Fee, NormalizedRateCard, Slab
from .settlement import SettlementBreakdown, SettlementPrediction, SettlementRequest
from .upload import (
    ImportReport,
    ImportRowResult,
    ParsedRow,
    ParseResult,
    ParseSummary,
    RowStatus,
    SkipReason,
    UploadSession,
)

__all__ = [
    # Configuration models
    "AppConfig",
    "DatabaseConfig",
    "DefaultsConfig",
    "LabelConfig",
    "SessionConfig",
    "SettlementConfig",
    # Rate cards
    "Fee",
    "NormalizedRateCard",
    "Slab",
    # Upload workflow
    "ImportReport",
    "ImportRowResult",
    "ParsedRow",
    "ParseResult",
    "ParseSummary",
    "RowStatus",
    "SkipReason",
    "UploadSession",
    # Settlement
    "SettlementBreakdown",
    "SettlementPrediction",
    "SettlementRequest",
    # Error log
    "ErrorRecord",
]
