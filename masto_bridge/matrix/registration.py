"""
Application service registration file.

The homeserver needs this file to route events for the bridge's users to our
HTTP listener. It is generated once with ``--generate-registration`` and
then referenced from the homeserver config (``app_service_config_files``).
"""
import logging
import os
import secrets
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

import yaml

from masto_bridge.config import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_REGISTRATION_PATH = "mastodon-registration.yaml"
SENDER_LOCALPART = "mastobot"
USER_NAMESPACE_REGEX = "@masto_.*"


def generate_token() -> str:
    return secrets.token_hex(32)


@dataclass
class Registration:
    id: str
    url: str
    as_token: str
    hs_token: str
    sender_localpart: str = SENDER_LOCALPART
    namespaces: Dict[str, List[Dict[str, Any]]] = field(default_factory=lambda: {
        "users": [{"exclusive": True, "regex": USER_NAMESPACE_REGEX}],
        "aliases": [],
        "rooms": [],
    })
    rate_limited: bool = False

    @property
    def user_regexes(self) -> List[str]:
        return [ns["regex"] for ns in self.namespaces.get("users", []) if "regex" in ns]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def generate_registration(url: str, user_regex: str = USER_NAMESPACE_REGEX) -> Registration:
    """Create a registration with fresh random tokens"""
    registration = Registration(
        id=generate_token(),
        url=url,
        as_token=generate_token(),
        hs_token=generate_token(),
    )
    registration.namespaces["users"] = [{"exclusive": True, "regex": user_regex}]
    return registration


def write_registration(registration: Registration, path: str = DEFAULT_REGISTRATION_PATH) -> None:
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(registration.to_dict(), f, default_flow_style=False, sort_keys=False)
    logger.info("Wrote appservice registration", extra={"path": path, "url": registration.url})


def load_registration(path: str = DEFAULT_REGISTRATION_PATH) -> Registration:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load registration from {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Registration file {path} is not a mapping")

    missing = [key for key in ("id", "url", "as_token", "hs_token", "sender_localpart") if not data.get(key)]
    if missing:
        raise ConfigurationError(f"Registration file {path} is missing: {', '.join(missing)}")

    return Registration(
        id=data["id"],
        url=data["url"],
        as_token=data["as_token"],
        hs_token=data["hs_token"],
        sender_localpart=data["sender_localpart"],
        namespaces=data.get("namespaces") or {"users": [], "aliases": [], "rooms": []},
        rate_limited=bool(data.get("rate_limited", False)),
    )
