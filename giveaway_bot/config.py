from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

SNOWFLAKE_RE = re.compile(r"^\d{17,20}$")
ENV_PATH = Path(".env")


class ConfigError(RuntimeError):
    """Raised when the configuration file is invalid."""


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    logger_channel_id: Optional[int] = None


@dataclass(slots=True)
class GiveawayDefaults:
    channel_id: Optional[int] = None
    min_server_age_days: int = 0
    min_account_age_days: int = 0


@dataclass(slots=True)
class PermissionsConfig:
    manager_roles: List[int] = field(default_factory=list)
    development_guild_id: Optional[int] = None


@dataclass(slots=True)
class StorageConfig:
    path: Path = Path("data") / "giveaways.sqlite"


@dataclass(slots=True)
class Config:
    token: str
    application_id: int
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    defaults: GiveawayDefaults = field(default_factory=GiveawayDefaults)
    permissions: PermissionsConfig = field(default_factory=PermissionsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


def load_env_file(path: Path = ENV_PATH) -> None:
    """Load ``KEY=value`` lines into the environment without overriding."""
    if not path.exists():
        return
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if value and ((value[0] == value[-1]) and value.startswith(("'", '"'))):
            value = value[1:-1]
        os.environ.setdefault(key, value)


def parse_snowflake(value: Any, key: str) -> int:
    """Validate a Discord ID, ignoring any trailing ``# comment``."""
    text = str(value).split("#", 1)[0].strip()
    if not SNOWFLAKE_RE.match(text):
        raise ConfigError(f"{key} is invalid: {value!r}")
    return int(text)


def _optional_snowflake(value: Any, key: str) -> Optional[int]:
    if value in (None, "", 0):
        return None
    return parse_snowflake(value, key)


def _require(data: Dict[str, Any], key: str) -> Any:
    if key not in data:
        raise ConfigError(f"Missing required config key: {key}")
    return data[key]


def _resolve_env_value(value: str, key: str) -> str:
    trimmed = value.strip()
    if trimmed.startswith("${") and trimmed.endswith("}"):
        env_name = trimmed[2:-1].strip()
        if not env_name:
            raise ConfigError(f"Environment reference for '{key}' is empty.")
        env_value = os.getenv(env_name)
        if env_value is None:
            raise ConfigError(
                f"Environment variable '{env_name}' referenced by '{key}' is not set."
            )
        return env_value
    return value


def _non_negative_int(value: Any, key: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be an integer.") from exc
    if number < 0:
        raise ConfigError(f"{key} must be zero or greater.")
    return number


def _parse_logging(data: Dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO"))
    logger_channel_id = _optional_snowflake(
        data.get("logger_channel_id"), "logging.logger_channel_id"
    )
    return LoggingConfig(level=level, logger_channel_id=logger_channel_id)


def _parse_defaults(data: Dict[str, Any]) -> GiveawayDefaults:
    return GiveawayDefaults(
        channel_id=_optional_snowflake(data.get("channel_id"), "defaults.channel_id"),
        min_server_age_days=_non_negative_int(
            data.get("min_server_age_days", 0), "defaults.min_server_age_days"
        ),
        min_account_age_days=_non_negative_int(
            data.get("min_account_age_days", 0), "defaults.min_account_age_days"
        ),
    )


def _parse_permissions(data: Dict[str, Any]) -> PermissionsConfig:
    roles_raw = data.get("manager_roles", [])
    if not isinstance(roles_raw, list):
        raise ConfigError("permissions.manager_roles must be a list of role IDs.")
    manager_roles = [
        parse_snowflake(role_id, "permissions.manager_roles") for role_id in roles_raw
    ]
    development_guild_id = _optional_snowflake(
        data.get("development_guild_id"), "permissions.development_guild_id"
    )
    return PermissionsConfig(
        manager_roles=manager_roles, development_guild_id=development_guild_id
    )


def _parse_storage(data: Dict[str, Any]) -> StorageConfig:
    raw_path = data.get("path")
    if raw_path in (None, ""):
        return StorageConfig()
    return StorageConfig(path=Path(str(raw_path)))


def load_config(path: Path) -> Config:
    if not path.exists():
        raise ConfigError(f"Config file {path} does not exist.")

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping at the root.")

    token_raw = str(_require(data, "token"))
    token = _resolve_env_value(token_raw, "token").strip()
    if not token:
        raise ConfigError("token must not be empty.")
    try:
        application_id = int(_require(data, "application_id"))
    except (TypeError, ValueError) as exc:
        raise ConfigError("application_id must be an integer.") from exc

    return Config(
        token=token,
        application_id=application_id,
        logging=_parse_logging(data.get("logging") or {}),
        defaults=_parse_defaults(data.get("defaults") or {}),
        permissions=_parse_permissions(data.get("permissions") or {}),
        storage=_parse_storage(data.get("storage") or {}),
    )
