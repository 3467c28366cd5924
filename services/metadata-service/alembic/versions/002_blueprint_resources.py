"""add blueprint resources and finder indexes

Revision ID: 002_blueprint_resources
Revises: 001_initial_schema
Create Date: 2026-10-19 14:00:00.000000

"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision = "002_blueprint_resources"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None

FINDER_INDEXES = (
    ("resource_types", "enabled"),
    ("resource_type_cloud_mappings", "enabled"),
    ("stack_resources", "cloud_provider_id"),
    ("api_keys", "key_type"),
    ("api_keys", "is_active"),
)


def upgrade():
    op.create_table(
        "blueprint_resources",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "resource_type_id", UUID(as_uuid=True), sa.ForeignKey("resource_types.id"), nullable=False
        ),
        sa.Column(
            "cloud_provider_id", UUID(as_uuid=True), sa.ForeignKey("cloud_providers.id"), nullable=False
        ),
        sa.Column("blueprint_id", UUID(as_uuid=True), sa.ForeignKey("blueprints.id"), nullable=True),
        sa.Column("configuration", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("cloud_type", sa.String(50), nullable=True),
        sa.Column(
            "cloud_specific_properties",
            JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    for column in ("resource_type_id", "cloud_provider_id", "blueprint_id", "is_active"):
        op.create_index(f"ix_blueprint_resources_{column}", "blueprint_resources", [column])

    for table, column in FINDER_INDEXES:
        op.create_index(f"ix_{table}_{column}", table, [column])


def downgrade():
    for table, column in FINDER_INDEXES:
        op.drop_index(f"ix_{table}_{column}", table_name=table)
    op.drop_table("blueprint_resources")
