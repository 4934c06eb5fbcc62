"""
CONFIG.PY: SINGLE SOURCE OF TRUTH (SSOT)

This module is the ONLY place allowed to read environment variables.

Required variables MUST exist. If a required variable is missing or any
variable holds an invalid value, loading fails early with ConfigError.

Config is loaded ONCE on first access and cached in a single in-memory
Config object. To use a config value, import:

    from eta_exporter.config import config

Do not access os.getenv directly from any other module.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parents[1]

# Load variables from .env if it exists; OS env overrides these automatically
load_dotenv(PROJECT_ROOT / ".env")


logger = logging.getLogger(__name__)

REQUIRED_ENV_KEYS = [
    "ETA_PORTAL_URL",
    "ETA_STORAGE_STATE",
]

OPTIONAL_ENV_DEFAULTS: Dict[str, str] = {
    "RUN_ENV": "local",
    "JSON_LOG_FILE": "",
    "ETA_DOCUMENTS_PATH": "/documents",
    "ETA_DETAIL_PATH_TEMPLATE": "/documents/{invoice_id}",
    "ETA_HEADLESS": "true",
    "ETA_CHROME_EXECUTABLE": "",
    "ETA_LOAD_TIMEOUT_MS": "20000",
    "ETA_DETAIL_TIMEOUT_MS": "30000",
    "ETA_SETTLE_DELAY_MS": "1000",
    "ETA_RESCAN_QUIET_MS": "800",
}

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


def _require_env(key: str) -> str:
    value = os.getenv(key)
    if value is None:
        message = f"Missing required environment variable: {key}"
        logger.error(message)
        raise ConfigError(message)
    stripped = value.strip()
    if not stripped:
        message = f"Environment variable {key} cannot be blank"
        logger.error(message)
        raise ConfigError(message)
    return stripped


def _load_env_values() -> Dict[str, str]:
    values = {key: _require_env(key) for key in REQUIRED_ENV_KEYS}
    for key, default in OPTIONAL_ENV_DEFAULTS.items():
        raw = os.getenv(key)
        values[key] = default if raw is None else raw.strip()
    return values


def _parse_bool(value: str, *, key: str) -> bool:
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    message = f"Config key {key} must be a boolean string; got {value!r}"
    logger.error(message)
    raise ConfigError(message)


def _parse_int(value: str, *, key: str, minimum: int = 0) -> int:
    try:
        parsed = int(value.strip())
    except (TypeError, ValueError):
        message = f"Config key {key} must be an integer; got {value!r}"
        logger.error(message)
        raise ConfigError(message)
    if parsed < minimum:
        message = f"Config key {key} must be >= {minimum}; got {parsed}"
        logger.error(message)
        raise ConfigError(message)
    return parsed


def _clean_url(value: str, *, key: str) -> str:
    stripped = value.strip().rstrip("/")
    if not stripped.startswith(("http://", "https://")):
        message = f"Config key {key} must be an http(s) URL; got {value!r}"
        logger.error(message)
        raise ConfigError(message)
    return stripped


def _clean_path(value: str, *, key: str) -> str:
    stripped = value.strip()
    if not stripped.startswith("/"):
        message = f"Config key {key} must start with '/'; got {value!r}"
        logger.error(message)
        raise ConfigError(message)
    return stripped


@dataclass(slots=True, frozen=True)
class Config:
    run_env: str
    json_log_file: str
    portal_url: str
    storage_state: str
    documents_path: str
    detail_path_template: str
    headless: bool
    chrome_executable: str
    load_timeout_ms: int
    detail_timeout_ms: int
    settle_delay_ms: int
    rescan_quiet_ms: int

    @property
    def documents_url(self) -> str:
        return f"{self.portal_url}{self.documents_path}"

    @classmethod
    def load_from_env(cls) -> Config:
        env_values = _load_env_values()

        detail_template = _clean_path(
            env_values["ETA_DETAIL_PATH_TEMPLATE"], key="ETA_DETAIL_PATH_TEMPLATE"
        )
        if "{invoice_id}" not in detail_template:
            message = "Config key ETA_DETAIL_PATH_TEMPLATE must contain '{invoice_id}'"
            logger.error(message)
            raise ConfigError(message)

        return cls(
            run_env=env_values["RUN_ENV"] or "local",
            json_log_file=env_values["JSON_LOG_FILE"],
            portal_url=_clean_url(env_values["ETA_PORTAL_URL"], key="ETA_PORTAL_URL"),
            storage_state=env_values["ETA_STORAGE_STATE"],
            documents_path=_clean_path(env_values["ETA_DOCUMENTS_PATH"], key="ETA_DOCUMENTS_PATH"),
            detail_path_template=detail_template,
            headless=_parse_bool(env_values["ETA_HEADLESS"], key="ETA_HEADLESS"),
            chrome_executable=env_values["ETA_CHROME_EXECUTABLE"],
            load_timeout_ms=_parse_int(env_values["ETA_LOAD_TIMEOUT_MS"], key="ETA_LOAD_TIMEOUT_MS"),
            detail_timeout_ms=_parse_int(env_values["ETA_DETAIL_TIMEOUT_MS"], key="ETA_DETAIL_TIMEOUT_MS"),
            settle_delay_ms=_parse_int(env_values["ETA_SETTLE_DELAY_MS"], key="ETA_SETTLE_DELAY_MS"),
            rescan_quiet_ms=_parse_int(env_values["ETA_RESCAN_QUIET_MS"], key="ETA_RESCAN_QUIET_MS"),
        )


_CONFIG: Config | None = None


def __getattr__(name: str) -> Any:
    global _CONFIG
    if name == "config":
        if _CONFIG is None:
            _CONFIG = Config.load_from_env()
        return _CONFIG
    raise AttributeError(name)
