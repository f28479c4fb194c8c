from app.http.requests.schemas import (
    IntegrationSettingsUpdate,
    PullRequest,
    SelectivePullRequest,
    StoreIntegrationCreate,
    StoreIntegrationUpdate,
)

__all__ = [
    "IntegrationSettingsUpdate",
    "PullRequest",
    "SelectivePullRequest",
    "StoreIntegrationCreate",
    "StoreIntegrationUpdate",
]
