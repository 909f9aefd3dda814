"""
Client configuration module.

Manages client configuration including server URL, API token, the
active session identity and polling policy. Configuration can be loaded
from a YAML file or environment variables.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from platformdirs import user_config_dir, user_data_dir


# ============================================================================
# Constants
# ============================================================================

APP_NAME = "servicefinder-sync"
APP_AUTHOR = "ServiceFinder"
CONFIG_FILENAME = "client-config.yaml"
STATE_DIRNAME = "state"

# Environment variable names
ENV_SERVER_URL = "SERVICEFINDER_SERVER_URL"
ENV_API_TOKEN = "SERVICEFINDER_API_TOKEN"
ENV_LOG_LEVEL = "SERVICEFINDER_LOG_LEVEL"
ENV_CONFIG_PATH = "SERVICEFINDER_CONFIG_PATH"
ENV_DATA_DIR = "SERVICEFINDER_DATA_DIR"

# Default values
DEFAULT_BOOKING_POLL_INTERVAL = 10  # seconds
DEFAULT_RATING_POLL_INTERVAL = 15  # seconds
DEFAULT_NOTIFICATION_EXPIRY = 10  # seconds
DEFAULT_PAGE_SIZE = 10
DEFAULT_CANCELLED_BY = "customer"
DEFAULT_LOG_LEVEL = "INFO"

VALID_ROLES = frozenset(["CUSTOMER", "SERVICE_PROVIDER", "ADMIN"])
VALID_CANCELLED_BY = frozenset(["customer", "provider"])
VALID_LOG_LEVELS = frozenset(["DEBUG", "INFO", "WARNING", "ERROR"])

# Keys accepted by `config set`, mapped to their value parser
SETTABLE_KEYS = {
    "server_url": str,
    "api_token": str,
    "user_id": int,
    "role": str,
    "booking_poll_interval_seconds": float,
    "rating_poll_interval_seconds": float,
    "notification_expiry_seconds": float,
    "page_size": int,
    "default_cancelled_by": str,
    "log_level": str,
}

# URL validation regex
URL_PATTERN = re.compile(
    r"^https?://"
    r"(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+[A-Z]{2,6}\.?|"
    r"localhost|"
    r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})"
    r"(?::\d+)?"
    r"(?:/?|[/?]\S+)$",
    re.IGNORECASE,
)


# ============================================================================
# Exceptions
# ============================================================================


class ConfigError(Exception):
    """Base exception for configuration errors."""

    pass


class ConfigValidationError(ConfigError):
    """Raised when configuration validation fails."""

    pass


# ============================================================================
# Helper Functions
# ============================================================================


def get_default_config_dir() -> Path:
    """
    Get the default configuration directory for the current platform.

    Returns:
        Path to the platform-appropriate config directory
    """
    return Path(user_config_dir(APP_NAME, APP_AUTHOR))


def get_default_data_dir() -> Path:
    """
    Get the data directory, honouring the SERVICEFINDER_DATA_DIR override.

    Returns:
        Path to the platform-appropriate data directory
    """
    env_dir = os.environ.get(ENV_DATA_DIR)
    if env_dir:
        return Path(env_dir)
    return Path(user_data_dir(APP_NAME, APP_AUTHOR))


def get_state_dir() -> Path:
    """Get the directory holding persisted de-duplication state."""
    return get_default_data_dir() / STATE_DIRNAME


# ============================================================================
# ClientConfig Class
# ============================================================================


class ClientConfig:
    """
    Client configuration manager.

    Configuration sources (in priority order):
    1. Environment variables (server URL, API token, log level)
    2. Configuration file
    3. Default values

    Attributes:
        server_url: Marketplace server URL
        api_token: Bearer token of the signed-in user
        user_id: Id of the signed-in user
        role: Role of the signed-in user
        booking_poll_interval_seconds: Interval of the booking pollers
        rating_poll_interval_seconds: Interval of the rating poller
        notification_expiry_seconds: Delay before transient notifications expire
        page_size: Snapshot page size
        default_cancelled_by: Who a cancellation is attributed to when the
            server does not say
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config_dir: Optional[Path] = None,
    ):
        """
        Initialize client configuration.

        Args:
            config_path: Explicit path to config file (takes precedence)
            config_dir: Directory containing config file
        """
        if config_path:
            self._config_path = Path(config_path)
            self._config_dir = self._config_path.parent
        elif config_dir:
            self._config_dir = Path(config_dir)
            self._config_path = self._config_dir / CONFIG_FILENAME
        else:
            env_path = os.environ.get(ENV_CONFIG_PATH)
            if env_path:
                self._config_path = Path(env_path)
                self._config_dir = self._config_path.parent
            else:
                self._config_dir = get_default_config_dir()
                self._config_path = self._config_dir / CONFIG_FILENAME

        self._server_url: str = ""
        self._api_token: str = ""
        self.user_id: Optional[int] = None
        self.role: str = ""
        self.booking_poll_interval_seconds: float = DEFAULT_BOOKING_POLL_INTERVAL
        self.rating_poll_interval_seconds: float = DEFAULT_RATING_POLL_INTERVAL
        self.notification_expiry_seconds: float = DEFAULT_NOTIFICATION_EXPIRY
        self.page_size: int = DEFAULT_PAGE_SIZE
        self.default_cancelled_by: str = DEFAULT_CANCELLED_BY
        self._log_level: str = DEFAULT_LOG_LEVEL

        self._load()

    @property
    def config_path(self) -> Path:
        """Get the configuration file path."""
        return self._config_path

    @property
    def config_dir(self) -> Path:
        """Get the configuration directory."""
        return self._config_dir

    # -------------------------------------------------------------------------
    # Environment-overridable Properties
    # -------------------------------------------------------------------------

    @property
    def server_url(self) -> str:
        """Get the server URL."""
        return os.environ.get(ENV_SERVER_URL, self._server_url)

    @server_url.setter
    def server_url(self, value: str) -> None:
        self._server_url = value

    @property
    def api_token(self) -> str:
        """Get the API token."""
        return os.environ.get(ENV_API_TOKEN, self._api_token)

    @api_token.setter
    def api_token(self, value: str) -> None:
        self._api_token = value

    @property
    def log_level(self) -> str:
        """Get the log level."""
        return os.environ.get(ENV_LOG_LEVEL, self._log_level)

    @log_level.setter
    def log_level(self, value: str) -> None:
        self._log_level = value

    # -------------------------------------------------------------------------
    # Computed Properties
    # -------------------------------------------------------------------------

    @property
    def is_configured(self) -> bool:
        """Check if a server URL is configured."""
        return bool(self.server_url)

    @property
    def has_session(self) -> bool:
        """Check if a signed-in user is configured."""
        return bool(self.api_token and self.user_id is not None and self.role)

    # -------------------------------------------------------------------------
    # Configuration Management
    # -------------------------------------------------------------------------

    def _load(self) -> None:
        """Load configuration from file."""
        if not self._config_path.exists():
            return

        try:
            with open(self._config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse config file: {e}")

        self._server_url = data.get("server_url", "")
        self._api_token = data.get("api_token", "")
        self.user_id = data.get("user_id")
        self.role = data.get("role", "")
        self.booking_poll_interval_seconds = data.get(
            "booking_poll_interval_seconds", DEFAULT_BOOKING_POLL_INTERVAL
        )
        self.rating_poll_interval_seconds = data.get(
            "rating_poll_interval_seconds", DEFAULT_RATING_POLL_INTERVAL
        )
        self.notification_expiry_seconds = data.get(
            "notification_expiry_seconds", DEFAULT_NOTIFICATION_EXPIRY
        )
        self.page_size = data.get("page_size", DEFAULT_PAGE_SIZE)
        self.default_cancelled_by = data.get(
            "default_cancelled_by", DEFAULT_CANCELLED_BY
        )
        self._log_level = data.get("log_level", DEFAULT_LOG_LEVEL)

    def to_dict(self) -> Dict[str, Any]:
        """Get the file-backed values as a plain dictionary."""
        return {
            "server_url": self._server_url,
            "api_token": self._api_token,
            "user_id": self.user_id,
            "role": self.role,
            "booking_poll_interval_seconds": self.booking_poll_interval_seconds,
            "rating_poll_interval_seconds": self.rating_poll_interval_seconds,
            "notification_expiry_seconds": self.notification_expiry_seconds,
            "page_size": self.page_size,
            "default_cancelled_by": self.default_cancelled_by,
            "log_level": self._log_level,
        }

    def save(self) -> None:
        """Save configuration to file."""
        self._config_dir.mkdir(parents=True, exist_ok=True)
        with open(self._config_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)

    def set_value(self, key: str, raw_value: str) -> None:
        """
        Set a configuration value from its string form.

        Args:
            key: One of SETTABLE_KEYS
            raw_value: Value as typed on the command line

        Raises:
            ConfigError: If the key is unknown or the value cannot be parsed
        """
        parser = SETTABLE_KEYS.get(key)
        if parser is None:
            raise ConfigError(
                f"Unknown key '{key}'. Must be one of: {sorted(SETTABLE_KEYS)}"
            )
        try:
            value = parser(raw_value)
        except ValueError:
            raise ConfigError(f"Invalid value for {key}: {raw_value!r}")
        setattr(self, key, value)

    def validate(self) -> None:
        """
        Validate the current configuration.

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        if self.server_url and not URL_PATTERN.match(self.server_url):
            raise ConfigValidationError(
                f"Invalid server_url format: {self.server_url}"
            )

        if self.role and self.role not in VALID_ROLES:
            raise ConfigValidationError(
                f"Invalid role '{self.role}'. Must be one of: {sorted(VALID_ROLES)}"
            )

        for name in (
            "booking_poll_interval_seconds",
            "rating_poll_interval_seconds",
            "notification_expiry_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ConfigValidationError(
                    f"{name} must be positive, got: {getattr(self, name)}"
                )

        if self.page_size <= 0:
            raise ConfigValidationError(
                f"page_size must be positive, got: {self.page_size}"
            )

        if self.default_cancelled_by not in VALID_CANCELLED_BY:
            raise ConfigValidationError(
                f"default_cancelled_by must be one of: {sorted(VALID_CANCELLED_BY)}"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ConfigValidationError(f"Invalid log_level: {self.log_level}")

    def clear_session(self) -> None:
        """
        Clear the signed-in user.

        Does not automatically save - call save() explicitly.
        """
        self._api_token = ""
        self.user_id = None
        self.role = ""
