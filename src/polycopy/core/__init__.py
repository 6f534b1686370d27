"""Core framework infrastructure - config, errors, events, logging, cache."""

from polycopy.core.bot_state import BotState
from polycopy.core.cache import CacheKeys, ResponseCache
from polycopy.core.config import ConfigManager, PolycopySettings
from polycopy.core.errors import (
    ConfigurationError,
    ErrorCategory,
    ErrorKind,
    FeeUnavailableError,
    InvalidArgumentError,
    OrderError,
    OrderErrorCode,
    PolycopyError,
    TransportFailure,
)
from polycopy.core.events import FALLBACK_EVENT, TRADE_EVENT, EventEmitter, invoke_listener
from polycopy.core.logging import setup_logging

__all__ = [
    # Config
    "ConfigManager",
    "PolycopySettings",
    # State
    "BotState",
    # Cache
    "CacheKeys",
    "ResponseCache",
    # Events
    "EventEmitter",
    "TRADE_EVENT",
    "FALLBACK_EVENT",
    "invoke_listener",
    # Logging
    "setup_logging",
    # Errors
    "PolycopyError",
    "ErrorCategory",
    "ErrorKind",
    "ConfigurationError",
    "TransportFailure",
    "InvalidArgumentError",
    "FeeUnavailableError",
    "OrderError",
    "OrderErrorCode",
]
