"""
Pydantic schemas for request validation (Http/Requests).
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Sync Schemas
class PullRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dry_run: bool = Field(False, alias="dryRun")
    limit: Optional[int] = Field(None, ge=1)


class SelectivePullRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    skus: List[str]
    dry_run: bool = Field(False, alias="dryRun")

    @field_validator("skus")
    @classmethod
    def validate_skus(cls, v):
        cleaned = [s.strip() for s in v if s and s.strip()]
        if not cleaned:
            raise ValueError("At least one SKU is required")
        return cleaned


# Store-integration link Schemas
class StoreIntegrationCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sync_config: Dict[str, Any] = Field(default_factory=dict, alias="syncConfig")
    is_active: bool = Field(True, alias="isActive")


class StoreIntegrationUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sync_config: Optional[Dict[str, Any]] = Field(None, alias="syncConfig")
    is_active: Optional[bool] = Field(None, alias="isActive")


# Integration Schemas
class IntegrationSettingsUpdate(BaseModel):
    """Plaintext settings; "type" selects the settings model. Keys are encrypted before storage."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str = "contifico"
    env: Optional[str] = None
    api_keys: Optional[Dict[str, Optional[str]]] = Field(None, alias="apiKeys")
    warehouse_primary: Optional[str] = Field(None, alias="warehousePrimary")
