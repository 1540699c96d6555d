"""
Core Infrastructure - Logging, Sanitization, Run Tracking

Usage:
    from governance_collector.core import create_logger, sanitize_object

    logger = create_logger(config)
    logger.info("Collection started", {"workspaces": 12})
"""

from governance_collector.config_loader import ConfigurationError
from governance_collector.core.collection_metrics import (
    CollectionRunTracker,
    get_current_tracker,
    track_collection_run,
)
from governance_collector.core.logging_config import (
    GovernanceLogger,
    LoggingConfig,
    SanitizingFormatter,
    create_logger,
)
from governance_collector.core.sanitizer import mask_sensitive_data, sanitize_log_entry, sanitize_object

__all__ = [
    # Configuration
    "ConfigurationError",
    # Logging
    "GovernanceLogger",
    "LoggingConfig",
    "SanitizingFormatter",
    "create_logger",
    # Sanitization
    "mask_sensitive_data",
    "sanitize_object",
    "sanitize_log_entry",
    # Run tracking
    "CollectionRunTracker",
    "get_current_tracker",
    "track_collection_run",
]
