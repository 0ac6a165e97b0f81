from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import os
import yaml


class ConfigError(RuntimeError):
    """Raised when the configuration file is invalid."""


@dataclass(slots=True)
class LoggingConfig:
    level: str
    logger_channel_id: Optional[int]


@dataclass(slots=True)
class GiveawayConfig:
    data_path: Path = Path("data") / "giveaways.json"
    min_duration_minutes: int = 1
    overdue_grace_seconds: float = 5.0
    reaction_emoji: str = "🎉"


@dataclass(slots=True)
class BackendConfig:
    base_url: Optional[str] = None
    api_token: Optional[str] = None
    timeout_seconds: float = 10.0
    retry_attempts: int = 3

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)


@dataclass(slots=True)
class PermissionsConfig:
    development_guild_id: Optional[int] = None


@dataclass(slots=True)
class Config:
    token: str
    application_id: int
    logging: LoggingConfig
    giveaways: GiveawayConfig
    backend: BackendConfig
    permissions: PermissionsConfig


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


def _optional_str(data: Dict[str, Any], key: str, section: str) -> Optional[str]:
    raw = data.get(key)
    if raw in (None, ""):
        return None
    value = _resolve_env_value(str(raw), f"{section}.{key}").strip()
    return value or None


def _parse_logging(data: Dict[str, Any]) -> LoggingConfig:
    level = data.get("level", "INFO")
    logger_channel_id = data.get("logger_channel_id")
    if logger_channel_id is not None and not isinstance(logger_channel_id, int):
        raise ConfigError(
            "logging.logger_channel_id must be an integer channel ID or null."
        )
    return LoggingConfig(level=level, logger_channel_id=logger_channel_id)


def _parse_giveaways(data: Dict[str, Any]) -> GiveawayConfig:
    defaults = GiveawayConfig()
    data_path = Path(str(data.get("data_path", defaults.data_path)))

    min_minutes = data.get("min_duration_minutes", defaults.min_duration_minutes)
    if not isinstance(min_minutes, int) or min_minutes <= 0:
        raise ConfigError("giveaways.min_duration_minutes must be a positive integer.")

    grace = data.get("overdue_grace_seconds", defaults.overdue_grace_seconds)
    if isinstance(grace, bool) or not isinstance(grace, (int, float)) or grace < 0:
        raise ConfigError("giveaways.overdue_grace_seconds must be zero or greater.")

    emoji = str(data.get("reaction_emoji", defaults.reaction_emoji)).strip()
    if not emoji:
        raise ConfigError("giveaways.reaction_emoji must not be empty.")

    return GiveawayConfig(
        data_path=data_path,
        min_duration_minutes=min_minutes,
        overdue_grace_seconds=float(grace),
        reaction_emoji=emoji,
    )


def _parse_backend(data: Dict[str, Any]) -> BackendConfig:
    base_url = _optional_str(data, "base_url", "backend")
    api_token = _optional_str(data, "api_token", "backend")
    try:
        timeout = float(data.get("timeout_seconds", 10))
        retry_attempts = int(data.get("retry_attempts", 3))
    except (TypeError, ValueError) as exc:
        raise ConfigError("backend.timeout_seconds and backend.retry_attempts must be numbers.") from exc
    if timeout <= 0:
        raise ConfigError("backend.timeout_seconds must be greater than zero.")
    if retry_attempts <= 0:
        raise ConfigError("backend.retry_attempts must be a positive integer.")
    return BackendConfig(
        base_url=base_url,
        api_token=api_token,
        timeout_seconds=timeout,
        retry_attempts=retry_attempts,
    )


def _parse_permissions(data: Dict[str, Any]) -> PermissionsConfig:
    dev_guild_raw = data.get("development_guild_id")
    development_guild_id: Optional[int]
    if dev_guild_raw in (None, "", 0):
        development_guild_id = None
    else:
        try:
            development_guild_id = int(dev_guild_raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                "permissions.development_guild_id must be an integer guild ID or null."
            ) from exc
        if development_guild_id <= 0:
            raise ConfigError(
                "permissions.development_guild_id must be a positive integer."
            )
    return PermissionsConfig(development_guild_id=development_guild_id)


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
        giveaways=_parse_giveaways(data.get("giveaways") or {}),
        backend=_parse_backend(data.get("backend") or {}),
        permissions=_parse_permissions(data.get("permissions") or {}),
    )
