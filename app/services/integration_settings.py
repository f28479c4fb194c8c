"""
Typed integration settings and store-integration sync configuration.

Integration.settings is stored as JSON tagged by "type"; it is validated at the boundary
into the matching settings model (only Contífico today). API keys are encrypted at rest.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cryptography.fernet import InvalidToken
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from app.services.credentials import decrypt_token, encrypt_token
from app.services.platform_client import SyncConfigurationError

logger = logging.getLogger(__name__)

PULL_INTERVAL_MINUTES = {
    "5min": 5,
    "30min": 30,
    "hourly": 60,
    "daily": 1440,
    "weekly": 10080,
}

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class ContificoApiKeys(BaseModel):
    test: Optional[str] = None
    prod: Optional[str] = None


class ContificoSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["contifico"] = "contifico"
    env: Literal["test", "prod"] = "prod"
    api_keys: ContificoApiKeys = Field(default_factory=ContificoApiKeys, alias="apiKeys")
    warehouse_primary: Optional[str] = Field(None, alias="warehousePrimary")

    @field_validator("warehouse_primary")
    @classmethod
    def blank_warehouse_is_global(cls, v):
        if v is not None and not str(v).strip():
            return None
        return v

    @model_validator(mode="after")
    def require_key_for_env(self):
        key = getattr(self.api_keys, self.env)
        if not key or not key.strip():
            raise ValueError(f"API key for environment '{self.env}' is required")
        return self

    @property
    def api_key(self) -> str:
        return getattr(self.api_keys, self.env)


SETTINGS_TYPES: dict[str, type[BaseModel]] = {
    "contifico": ContificoSettings,
}


def validate_integration_settings(data: dict[str, Any]) -> ContificoSettings:
    """Validate plaintext settings (API input) into the model selected by "type"."""
    data = dict(data or {})
    itype = data.setdefault("type", "contifico")
    model = SETTINGS_TYPES.get(itype)
    if model is None:
        raise SyncConfigurationError(f"Unsupported integration type: {itype}")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise SyncConfigurationError(f"Invalid integration settings: {e.errors()[0].get('msg')}") from e


def dump_integration_settings(model: ContificoSettings) -> dict[str, Any]:
    """Serialize for storage with API keys encrypted."""
    data = model.model_dump(by_alias=True)
    data["apiKeys"] = {
        env: encrypt_token(key) if key else None
        for env, key in data.get("apiKeys", {}).items()
    }
    return data


def parse_integration_settings(stored: dict[str, Any]) -> ContificoSettings:
    """Load stored settings (encrypted API keys) into a validated model."""
    data = dict(stored or {})
    keys = dict(data.get("apiKeys") or data.get("api_keys") or {})
    decrypted = {}
    for env, enc in keys.items():
        if not enc:
            continue
        try:
            decrypted[env] = decrypt_token(enc)
        except InvalidToken as e:
            raise SyncConfigurationError(f"Stored API key for '{env}' cannot be decrypted") from e
    data.pop("api_keys", None)
    data["apiKeys"] = decrypted
    return validate_integration_settings(data)


def merge_integration_settings(stored: dict[str, Any], update: dict[str, Any]) -> ContificoSettings:
    """
    Apply a plaintext update on top of stored settings. API keys omitted (or null) in the
    update keep their stored value; an empty string clears the key.
    """
    stored = stored or {}
    keys: dict[str, Optional[str]] = {}
    for env, enc in (stored.get("apiKeys") or {}).items():
        if enc:
            try:
                keys[env] = decrypt_token(enc)
            except InvalidToken:
                logger.warning("Dropping undecryptable stored API key for '%s'", env)
    for env, key in (update.get("apiKeys") or {}).items():
        if key is not None:
            keys[env] = key or None
    data = {
        "type": update.get("type") or stored.get("type") or "contifico",
        "env": update.get("env") or stored.get("env") or "prod",
        "apiKeys": keys,
        "warehousePrimary": update["warehousePrimary"] if "warehousePrimary" in update else stored.get("warehousePrimary"),
    }
    return validate_integration_settings(data)


def public_integration_settings(stored: dict[str, Any]) -> dict[str, Any]:
    """Settings safe to return to clients: key presence only, never key material."""
    keys = (stored or {}).get("apiKeys") or {}
    return {
        "type": (stored or {}).get("type", "contifico"),
        "env": (stored or {}).get("env", "prod"),
        "warehousePrimary": (stored or {}).get("warehousePrimary"),
        "apiKeys": {env: bool(keys.get(env)) for env in ("test", "prod")},
    }


# Store-integration sync configuration
class ActiveHours(BaseModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def validate_hhmm(cls, v):
        if not _HHMM.match(v or ""):
            raise ValueError("Time must be HH:mm")
        return v


class PullConfig(BaseModel):
    enabled: bool = False
    interval: Literal["5min", "30min", "hourly", "daily", "weekly"] = "hourly"
    warehouse: Optional[str] = None


class ScheduleConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    active_hours: Optional[ActiveHours] = Field(None, alias="activeHours")
    timezone: Optional[str] = None


class SyncConfig(BaseModel):
    pull: PullConfig = Field(default_factory=PullConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def parse_sync_config(data: Optional[dict[str, Any]]) -> SyncConfig:
    try:
        return SyncConfig.model_validate(data or {})
    except ValidationError as e:
        raise SyncConfigurationError(f"Invalid sync configuration: {e.errors()[0].get('msg')}") from e


def _minutes(hhmm: str) -> int:
    h, m = hhmm.split(":")
    return int(h) * 60 + int(m)


def is_within_active_hours(config: SyncConfig, now: datetime) -> bool:
    """
    True when no window is configured or now falls inside [start, end] (inclusive).
    now is naive UTC; the window is read in schedule.timezone when one is set.
    """
    window = config.schedule.active_hours
    if window is None:
        return True
    if config.schedule.timezone:
        try:
            now = now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(config.schedule.timezone))
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown schedule timezone %s, using UTC", config.schedule.timezone)
    current = now.hour * 60 + now.minute
    start, end = _minutes(window.start), _minutes(window.end)
    if start <= end:
        return start <= current <= end
    # Overnight window, e.g. 22:00-06:00
    return current >= start or current <= end


def is_pull_due(config: SyncConfig, last_pull_at: Optional[datetime], now: datetime) -> bool:
    if last_pull_at is None:
        return True
    minutes = PULL_INTERVAL_MINUTES[config.pull.interval]
    return (now - last_pull_at).total_seconds() / 60 >= minutes
