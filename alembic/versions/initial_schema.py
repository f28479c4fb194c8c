"""Initial schema: tenants, stores, integrations, catalog snapshot, movement queue, sync logs.

Revision ID: initial_schema
Revises:
Create Date: 2026-10-18

Tables come from the SQLAlchemy models so the migration and create_all never drift.
"""
from alembic import op


revision = "initial_schema"
down_revision = None
branch_labels = None
depends_on = None

TABLES = (
    "tenants",
    "users",
    "stores",
    "integrations",
    "store_integrations",
    "store_products",
    "inventory_movements_queue",
    "unmapped_skus",
    "sync_logs",
    "sync_log_items",
    "sync_locks",
    "notifications",
)


def upgrade() -> None:
    from app.database import Base
    from app import models  # noqa: F401 - register models with Base

    connection = op.get_bind()
    Base.metadata.create_all(bind=connection, tables=[Base.metadata.tables[name] for name in TABLES])


def downgrade() -> None:
    from app.database import Base
    from app import models  # noqa: F401

    connection = op.get_bind()
    Base.metadata.drop_all(bind=connection, tables=[Base.metadata.tables[name] for name in TABLES])
