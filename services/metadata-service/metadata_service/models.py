"""
Database models for the metadata service.

Relational layout of the provisioning metadata: one table per entity,
UUID foreign-key columns for references and JSON (JSONB on PostgreSQL)
columns for the free-form configuration payloads.
"""

import uuid
from typing import Any

from sqlalchemy import (JSON, Boolean, Column, DateTime, Enum, ForeignKey,
                        Index, Integer, String, Text, UniqueConstraint, Uuid)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from .domain.entities import (ApiKeyType, ModuleLocationType,
                              ProgrammingLanguage, PropertyDataType,
                              ResourceCategory, StackType)

Base: Any = declarative_base()

Payload = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def enum_column(enum_cls, **kwargs) -> Column:
    return Column(
        Enum(
            enum_cls,
            native_enum=False,
            length=40,
            values_callable=lambda members: [m.value for m in members],
            validate_strings=True,
        ),
        **kwargs,
    )


class TimestampMixin:
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class TeamModel(TimestampMixin, Base):
    __tablename__ = "teams"

    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class CloudProviderModel(TimestampMixin, Base):
    __tablename__ = "cloud_providers"

    name = Column(String(50), nullable=False, unique=True)
    display_name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)


class ResourceTypeModel(TimestampMixin, Base):
    __tablename__ = "resource_types"

    name = Column(String(100), nullable=False, unique=True)
    display_name = Column(String(100), nullable=False)
    category = enum_column(ResourceCategory, nullable=False, index=True)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True, index=True)


class ResourceTypeCloudMappingModel(TimestampMixin, Base):
    """
    Terraform module location of a resource type on one cloud provider.

    At most one mapping per (resource type, cloud provider) pair.
    """

    __tablename__ = "resource_type_cloud_mappings"

    resource_type_id = Column(Uuid, ForeignKey("resource_types.id"), nullable=False, index=True)
    cloud_provider_id = Column(Uuid, ForeignKey("cloud_providers.id"), nullable=False, index=True)
    terraform_module_location = Column(String(500), nullable=False)
    module_location_type = enum_column(ModuleLocationType, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True, index=True)

    __table_args__ = (
        UniqueConstraint(
            "resource_type_id", "cloud_provider_id", name="uq_mapping_resource_type_cloud_provider"
        ),
    )


class PropertySchemaModel(TimestampMixin, Base):
    __tablename__ = "property_schemas"

    mapping_id = Column(
        Uuid, ForeignKey("resource_type_cloud_mappings.id"), nullable=False, index=True
    )
    property_name = Column(String(100), nullable=False)
    display_name = Column(String(100), nullable=False)
    data_type = enum_column(PropertyDataType, nullable=False)
    required = Column(Boolean, nullable=False, default=False)
    description = Column(Text, nullable=True)
    default_value = Column(Payload, nullable=True)
    validation_rules = Column(Payload, nullable=True)
    display_order = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("mapping_id", "property_name", name="uq_property_schema_mapping_name"),
    )


class BlueprintModel(TimestampMixin, Base):
    __tablename__ = "blueprints"

    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    configuration = Column(Payload, nullable=True)


class BlueprintCloudProviderModel(Base):
    """Ordered association between a blueprint and its supported cloud providers."""

    __tablename__ = "blueprint_cloud_providers"

    blueprint_id = Column(
        Uuid, ForeignKey("blueprints.id", ondelete="CASCADE"), primary_key=True
    )
    cloud_provider_id = Column(Uuid, ForeignKey("cloud_providers.id"), primary_key=True)
    position = Column(Integer, nullable=False)


class BlueprintResourceModel(TimestampMixin, Base):
    """Shared infrastructure provisioned by a blueprint."""

    __tablename__ = "blueprint_resources"

    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    resource_type_id = Column(Uuid, ForeignKey("resource_types.id"), nullable=False, index=True)
    cloud_provider_id = Column(Uuid, ForeignKey("cloud_providers.id"), nullable=False, index=True)
    blueprint_id = Column(Uuid, ForeignKey("blueprints.id"), nullable=True, index=True)
    configuration = Column(Payload, nullable=False, default=dict)
    cloud_type = Column(String(50), nullable=True)
    cloud_specific_properties = Column(Payload, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True, index=True)


class StackModel(TimestampMixin, Base):
    """
    Service definition.

    Attributes:
        name: Stack name, unique per owner
        created_by: Owner identifier
        ephemeral_prefix: Prefix shared by the stacks of one ephemeral environment
        configuration: Free-form payload whose shape depends on stack_type
    """

    __tablename__ = "stacks"

    name = Column(String(100), nullable=False)
    created_by = Column(String(100), nullable=False, index=True)
    stack_type = enum_column(StackType, nullable=False, index=True)
    description = Column(Text, nullable=True)
    cloud_name = Column(String(100), nullable=True)
    route_path = Column(String(255), nullable=True)
    repository_url = Column(String(500), nullable=True)
    programming_language = enum_column(ProgrammingLanguage, nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)
    team_id = Column(Uuid, ForeignKey("teams.id"), nullable=True, index=True)
    cloud_provider_id = Column(Uuid, ForeignKey("cloud_providers.id"), nullable=True, index=True)
    blueprint_id = Column(Uuid, ForeignKey("blueprints.id"), nullable=True, index=True)
    ephemeral_prefix = Column(String(50), nullable=True, index=True)
    configuration = Column(Payload, nullable=True)

    __table_args__ = (
        UniqueConstraint("name", "created_by", name="uq_stacks_name_created_by"),
        Index("idx_stacks_created_at", "created_at", "id"),
    )


class StackResourceModel(TimestampMixin, Base):
    __tablename__ = "stack_resources"

    stack_id = Column(Uuid, ForeignKey("stacks.id"), nullable=False, index=True)
    resource_type_id = Column(Uuid, ForeignKey("resource_types.id"), nullable=False, index=True)
    cloud_provider_id = Column(Uuid, ForeignKey("cloud_providers.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    configuration = Column(Payload, nullable=False, default=dict)


class ApiKeyModel(TimestampMixin, Base):
    __tablename__ = "api_keys"

    key_name = Column(String(100), nullable=False)
    key_hash = Column(String(255), nullable=False, unique=True)
    key_prefix = Column(String(20), nullable=False)
    key_type = enum_column(ApiKeyType, nullable=False, index=True)
    created_by_email = Column(String(255), nullable=False, index=True)
    user_email = Column(String(255), nullable=True, index=True)
    expires_at = Column(DateTime, nullable=True)
    last_used_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    revoked_by_email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
