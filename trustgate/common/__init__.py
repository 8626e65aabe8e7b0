"""
Common Utilities

Shared modules used across all services:
- config.py - Settings and tunables
- exceptions.py - Custom exception classes
- hashing.py - Canonical serialization and content hash
- logging_setup.py - Structured logging setup
- models.py - Event records and trend points
- timestamp.py - Timestamp normalization
"""

from .config import (
    Settings,
    AnalysisSettings,
    QueueSettings,
    GatewayConfig,
    get_settings,
    load_gateway_config,
    load_gateway_config_file,
)
from .exceptions import (
    GatewayError,
    ConfigError,
    AuthError,
    IntegrityComputeError,
    HistoryFetchError,
    AnalysisError,
    LedgerSubmitError,
    StorageError,
    QueueFullError,
)
from .hashing import canonical_json, content_hash
from .logging_setup import (
    setup_logging,
    configure_logging,
    get_service_logger,
    LogContext,
    log_decision,
    log_system_alert,
)
from .models import EventRecord, TrendPoint, Stage, PointSource, NEUTRAL_TRUST
