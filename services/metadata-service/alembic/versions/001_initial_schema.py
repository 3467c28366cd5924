"""create provisioning metadata tables

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _uuid_pk():
    return sa.Column("id", UUID(as_uuid=True), primary_key=True)


def upgrade():
    op.create_table(
        "teams",
        _uuid_pk(),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "cloud_providers",
        _uuid_pk(),
        sa.Column("name", sa.String(50), nullable=False, unique=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "resource_types",
        _uuid_pk(),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("category", sa.String(40), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_resource_types_category", "resource_types", ["category"])

    op.create_table(
        "resource_type_cloud_mappings",
        _uuid_pk(),
        sa.Column(
            "resource_type_id", UUID(as_uuid=True), sa.ForeignKey("resource_types.id"), nullable=False
        ),
        sa.Column(
            "cloud_provider_id", UUID(as_uuid=True), sa.ForeignKey("cloud_providers.id"), nullable=False
        ),
        sa.Column("terraform_module_location", sa.String(500), nullable=False),
        sa.Column("module_location_type", sa.String(40), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint(
            "resource_type_id", "cloud_provider_id", name="uq_mapping_resource_type_cloud_provider"
        ),
    )
    op.create_index(
        "ix_resource_type_cloud_mappings_resource_type_id",
        "resource_type_cloud_mappings",
        ["resource_type_id"],
    )
    op.create_index(
        "ix_resource_type_cloud_mappings_cloud_provider_id",
        "resource_type_cloud_mappings",
        ["cloud_provider_id"],
    )

    op.create_table(
        "property_schemas",
        _uuid_pk(),
        sa.Column(
            "mapping_id",
            UUID(as_uuid=True),
            sa.ForeignKey("resource_type_cloud_mappings.id"),
            nullable=False,
        ),
        sa.Column("property_name", sa.String(100), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("data_type", sa.String(40), nullable=False),
        sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("default_value", JSONB(), nullable=True),
        sa.Column("validation_rules", JSONB(), nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("mapping_id", "property_name", name="uq_property_schema_mapping_name"),
    )
    op.create_index("ix_property_schemas_mapping_id", "property_schemas", ["mapping_id"])

    op.create_table(
        "blueprints",
        _uuid_pk(),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("configuration", JSONB(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "blueprint_cloud_providers",
        sa.Column(
            "blueprint_id",
            UUID(as_uuid=True),
            sa.ForeignKey("blueprints.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "cloud_provider_id",
            UUID(as_uuid=True),
            sa.ForeignKey("cloud_providers.id"),
            primary_key=True,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
    )

    op.create_table(
        "stacks",
        _uuid_pk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("created_by", sa.String(100), nullable=False),
        sa.Column("stack_type", sa.String(40), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("cloud_name", sa.String(100), nullable=True),
        sa.Column("route_path", sa.String(255), nullable=True),
        sa.Column("repository_url", sa.String(500), nullable=True),
        sa.Column("programming_language", sa.String(40), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("team_id", UUID(as_uuid=True), sa.ForeignKey("teams.id"), nullable=True),
        sa.Column(
            "cloud_provider_id", UUID(as_uuid=True), sa.ForeignKey("cloud_providers.id"), nullable=True
        ),
        sa.Column("blueprint_id", UUID(as_uuid=True), sa.ForeignKey("blueprints.id"), nullable=True),
        sa.Column("ephemeral_prefix", sa.String(50), nullable=True),
        sa.Column("configuration", JSONB(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("name", "created_by", name="uq_stacks_name_created_by"),
    )
    for column in ("created_by", "stack_type", "team_id", "cloud_provider_id", "blueprint_id", "ephemeral_prefix"):
        op.create_index(f"ix_stacks_{column}", "stacks", [column])
    op.create_index("idx_stacks_created_at", "stacks", ["created_at", "id"])

    op.create_table(
        "stack_resources",
        _uuid_pk(),
        sa.Column("stack_id", UUID(as_uuid=True), sa.ForeignKey("stacks.id"), nullable=False),
        sa.Column(
            "resource_type_id", UUID(as_uuid=True), sa.ForeignKey("resource_types.id"), nullable=False
        ),
        sa.Column(
            "cloud_provider_id", UUID(as_uuid=True), sa.ForeignKey("cloud_providers.id"), nullable=False
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("configuration", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        *_timestamps(),
    )
    op.create_index("ix_stack_resources_stack_id", "stack_resources", ["stack_id"])
    op.create_index("ix_stack_resources_resource_type_id", "stack_resources", ["resource_type_id"])

    op.create_table(
        "api_keys",
        _uuid_pk(),
        sa.Column("key_name", sa.String(100), nullable=False),
        sa.Column("key_hash", sa.String(255), nullable=False, unique=True),
        sa.Column("key_prefix", sa.String(20), nullable=False),
        sa.Column("key_type", sa.String(40), nullable=False),
        sa.Column("created_by_email", sa.String(255), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        sa.Column("revoked_by_email", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_api_keys_created_by_email", "api_keys", ["created_by_email"])
    op.create_index("ix_api_keys_user_email", "api_keys", ["user_email"])


def downgrade():
    for table in (
        "api_keys",
        "stack_resources",
        "stacks",
        "blueprint_cloud_providers",
        "blueprints",
        "property_schemas",
        "resource_type_cloud_mappings",
        "resource_types",
        "cloud_providers",
        "teams",
    ):
        op.drop_table(table)
