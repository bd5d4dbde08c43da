"""
Configuration and logging setup for the Matrix-Mastodon bridge.

Configuration is read once at startup from a YAML file; environment
variables (optionally from a .env file) override individual values.
"""
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

DEFAULT_CONFIG_PATH = "config.yaml"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


@dataclass
class Config:
    homeserver_url: str
    domain: str
    bot_user_id: str
    bridged_room_id: str
    mastodon_api_url: str
    mastodon_access_token: str
    # Appservice listener
    port: int = 8090
    # Users the bridge owns; events from them are never relayed
    user_namespace_regex: str = "@masto_.*"
    # Notification polling
    poll_interval: float = 60.0
    poll_initial_delay: Optional[float] = None
    notification_limit: int = 20
    # Upper bound for every outbound call (Matrix and Mastodon)
    request_timeout: float = 30.0
    log_level: str = "INFO"

    def __post_init__(self):
        missing = [
            name for name in (
                "homeserver_url", "domain", "bot_user_id", "bridged_room_id",
                "mastodon_api_url", "mastodon_access_token",
            )
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(f"Missing required configuration fields: {', '.join(missing)}")
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if self.notification_limit <= 0:
            raise ConfigurationError("notification_limit must be positive")
        if self.poll_initial_delay is None:
            self.poll_initial_delay = self.poll_interval

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build from the parsed YAML layout, applying environment overrides"""
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be a mapping")
        matrix = data.get("matrix")
        mastodon = data.get("mastodon")
        if not isinstance(matrix, dict) or not isinstance(mastodon, dict):
            raise ConfigurationError(
                "Invalid configuration structure. 'matrix' or 'mastodon' section is missing."
            )
        bridge = data.get("bridge") or {}

        try:
            return cls(
                homeserver_url=_pick("MATRIX_HOMESERVER_URL", matrix, "homeserverUrl"),
                domain=_pick("MATRIX_DOMAIN", matrix, "domain"),
                bot_user_id=_pick("MATRIX_BOT_USER_ID", matrix, "botUserId"),
                bridged_room_id=_pick("MATRIX_ROOM_ID", matrix, "roomId"),
                mastodon_api_url=_pick("MASTODON_API_URL", mastodon, "apiUrl"),
                mastodon_access_token=_pick("MASTODON_ACCESS_TOKEN", mastodon, "accessToken"),
                port=int(_pick("BRIDGE_PORT", bridge, "port", 8090)),
                user_namespace_regex=_pick("BRIDGE_USER_NAMESPACE", bridge, "userNamespace", "@masto_.*"),
                poll_interval=float(_pick("POLL_INTERVAL", bridge, "pollInterval", 60.0)),
                poll_initial_delay=_optional_float(_pick("POLL_INITIAL_DELAY", bridge, "pollInitialDelay")),
                notification_limit=int(_pick("NOTIFICATION_LIMIT", bridge, "notificationLimit", 20)),
                request_timeout=float(_pick("REQUEST_TIMEOUT", bridge, "requestTimeout", 30.0)),
                log_level=_pick("LOG_LEVEL", data, "logLevel", "INFO"),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_PATH) -> "Config":
        """Load configuration from a YAML file"""
        load_dotenv()
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load configuration from {path}: {e}")
        return cls.from_dict(data or {})

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables"""
        load_dotenv()
        return cls.from_dict({"matrix": {}, "mastodon": {}})

    def redacted(self) -> Dict[str, Any]:
        """Config summary that is safe to log"""
        return {
            "homeserver_url": self.homeserver_url,
            "domain": self.domain,
            "bot_user_id": self.bot_user_id,
            "room_id": self.bridged_room_id,
            "mastodon_api_url": self.mastodon_api_url,
            "port": self.port,
            "poll_interval": self.poll_interval,
            "log_level": self.log_level,
        }


def _pick(env_key: str, section: Dict[str, Any], key: str, default: Any = None) -> Any:
    value = os.getenv(env_key)
    if value:
        return value
    return section.get(key, default)


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


# ============================================================================
# Logging
# ============================================================================

_RESERVED_RECORD_KEYS = {
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "created", "msecs", "relativeCreated", "thread", "threadName",
    "processName", "process", "getMessage", "taskName",
}


class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created))
                         + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(config: Config) -> logging.Logger:
    """Setup structured JSON logging"""
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    logger = logging.getLogger("masto_bridge")
    logger.setLevel(level)

    # Remove existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)

    return logger
