# pharmaqms/config.py

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .auth import User

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"

DEFAULT_USERS = [
    {"username": "admin", "full_name": "QA Administrator", "role": "admin", "department": "Quality Assurance"},
    {"username": "analyst", "full_name": "QC Analyst", "role": "user", "department": "Quality Control"},
]


@dataclass
class StorageConfig:
    backend: str = "file"
    directory: str = ".pharmaqms_data"


@dataclass
class AIConfig:
    enabled: bool = True
    model: str = "gemini-2.0-flash"


@dataclass
class AppConfig:
    title: str = "PharmaQMS"
    version: str = "2.0.0"
    storage: StorageConfig = field(default_factory=StorageConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    audit_max_entries: int = 5000
    notifications_max_entries: int = 50
    ipqc_max_entries: int = 500
    log_level: str = "INFO"
    users: List[User] = field(default_factory=lambda: [User.from_dict(u) for u in DEFAULT_USERS])


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name)
    return value if isinstance(value, dict) else {}


def parse_config(raw: Optional[Dict[str, Any]]) -> AppConfig:
    """Builds an AppConfig from the parsed YAML mapping; absent keys keep their defaults."""
    raw = raw or {}
    defaults = AppConfig()
    app = _section(raw, "app")
    storage = _section(raw, "storage")
    ai = _section(raw, "ai")
    users = raw.get("users") or DEFAULT_USERS
    return AppConfig(
        title=app.get("title", defaults.title),
        version=str(app.get("version", defaults.version)),
        storage=StorageConfig(
            backend=storage.get("backend", defaults.storage.backend),
            directory=storage.get("directory", defaults.storage.directory),
        ),
        ai=AIConfig(
            enabled=bool(ai.get("enabled", defaults.ai.enabled)),
            model=ai.get("model", defaults.ai.model),
        ),
        audit_max_entries=int(_section(raw, "audit").get("max_entries", defaults.audit_max_entries)),
        notifications_max_entries=int(_section(raw, "notifications").get("max_entries",
                                                                          defaults.notifications_max_entries)),
        ipqc_max_entries=int(_section(raw, "ipqc").get("max_entries", defaults.ipqc_max_entries)),
        log_level=str(_section(raw, "logging").get("level", defaults.log_level)).upper(),
        users=[User.from_dict(u) for u in users],
    )


def load_config(path: str = DEFAULT_CONFIG_PATH) -> AppConfig:
    if not os.path.exists(path):
        logger.info(f"No configuration file at {path}, using defaults")
        return AppConfig()
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    return parse_config(raw)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
