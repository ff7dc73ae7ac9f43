"""QSL Confirm core module.

Shared components used across all services:
- Configuration management
- Logging setup
"""

from qslconfirm.core.config import (
    ConfigurationError,
    DatabaseSettings,
    Environment,
    Settings,
    TokenSettings,
)
from qslconfirm.core.settings import (
    clear_settings_cache,
    configure_logging,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "ConfigurationError",
    "DatabaseSettings",
    "Environment",
    "Settings",
    "TokenSettings",
    "clear_settings_cache",
    "configure_logging",
    "get_settings",
    "get_settings_safe",
]
