"""
Domain entities for provisioning metadata.

Plain records shared by both storage backends. References to other
entities are held as identifiers only; callers fetch related records
explicitly through the matching repository.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID


def utc_now() -> datetime:
    """Naive UTC timestamp, the form stored by both backends."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StackType(str, Enum):
    """Kinds of service definition a stack can describe."""

    INFRASTRUCTURE = "INFRASTRUCTURE"
    RESTFUL_SERVERLESS = "RESTFUL_SERVERLESS"
    RESTFUL_API = "RESTFUL_API"
    JAVASCRIPT_WEB_APPLICATION = "JAVASCRIPT_WEB_APPLICATION"
    EVENT_DRIVEN_SERVERLESS = "EVENT_DRIVEN_SERVERLESS"
    EVENT_DRIVEN_API = "EVENT_DRIVEN_API"


class ProgrammingLanguage(str, Enum):
    QUARKUS = "QUARKUS"
    NODE_JS = "NODE_JS"
    REACT = "REACT"


class ResourceCategory(str, Enum):
    """Whether a resource type is shared across stacks."""

    SHARED = "SHARED"
    NON_SHARED = "NON_SHARED"
    BOTH = "BOTH"


class ModuleLocationType(str, Enum):
    GIT = "GIT"
    FILE_SYSTEM = "FILE_SYSTEM"
    REGISTRY = "REGISTRY"


class PropertyDataType(str, Enum):
    STRING = "STRING"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"
    LIST = "LIST"


class ApiKeyType(str, Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


@dataclass(kw_only=True)
class Entity:
    """
    Common identity and audit fields.

    ``id`` is None until the first save; repositories assign it and the
    timestamps, and return a stamped copy rather than mutating the input.
    """

    id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(kw_only=True)
class Team(Entity):
    name: str
    description: Optional[str] = None
    is_active: bool = True


@dataclass(kw_only=True)
class CloudProvider(Entity):
    name: str
    display_name: str
    description: Optional[str] = None
    enabled: bool = True


@dataclass(kw_only=True)
class ResourceType(Entity):
    name: str
    display_name: str
    category: ResourceCategory
    description: Optional[str] = None
    enabled: bool = True


@dataclass(kw_only=True)
class ResourceTypeCloudMapping(Entity):
    """Where the infrastructure module for a resource type lives on one cloud."""

    resource_type_id: UUID
    cloud_provider_id: UUID
    terraform_module_location: str
    module_location_type: ModuleLocationType
    enabled: bool = True


@dataclass(kw_only=True)
class PropertySchema(Entity):
    """
    One configurable property of a resource type on a cloud provider.

    ``default_value`` and ``validation_rules`` are opaque payloads; their
    shape depends on ``data_type``.
    """

    mapping_id: UUID
    property_name: str
    display_name: str
    data_type: PropertyDataType
    required: bool = False
    description: Optional[str] = None
    default_value: Any = None
    validation_rules: Optional[Dict[str, Any]] = None
    display_order: Optional[int] = None


@dataclass(kw_only=True)
class Blueprint(Entity):
    name: str
    description: Optional[str] = None
    is_active: bool = True
    supported_cloud_provider_ids: List[UUID] = field(default_factory=list)
    configuration: Optional[Dict[str, Any]] = None


@dataclass(kw_only=True)
class BlueprintResource(Entity):
    """
    Shared infrastructure a blueprint provisions, e.g. a container cluster.

    ``configuration`` is the resource type specific payload;
    ``cloud_specific_properties`` holds values validated against the
    property schemas of the matching resource type cloud mapping.
    """

    name: str
    resource_type_id: UUID
    cloud_provider_id: UUID
    blueprint_id: Optional[UUID] = None
    description: Optional[str] = None
    configuration: Dict[str, Any] = field(default_factory=dict)
    cloud_type: Optional[str] = None
    cloud_specific_properties: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True


@dataclass(kw_only=True)
class Stack(Entity):
    """
    A service definition owned by a user.

    Names are unique per owner (``created_by``).
    """

    name: str
    created_by: str
    stack_type: StackType
    description: Optional[str] = None
    cloud_name: Optional[str] = None
    route_path: Optional[str] = None
    repository_url: Optional[str] = None
    programming_language: Optional[ProgrammingLanguage] = None
    is_public: bool = False
    team_id: Optional[UUID] = None
    cloud_provider_id: Optional[UUID] = None
    blueprint_id: Optional[UUID] = None
    ephemeral_prefix: Optional[str] = None
    configuration: Optional[Dict[str, Any]] = None


@dataclass(kw_only=True)
class StackResource(Entity):
    stack_id: UUID
    resource_type_id: UUID
    cloud_provider_id: UUID
    name: str
    description: Optional[str] = None
    configuration: Dict[str, Any] = field(default_factory=dict)


@dataclass(kw_only=True)
class ApiKey(Entity):
    """
    An API key record. Only the hash of the secret is ever stored.
    """

    key_name: str
    key_hash: str
    key_prefix: str
    key_type: ApiKeyType
    created_by_email: str
    user_email: Optional[str] = None
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoked_by_email: Optional[str] = None
    is_active: bool = True

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utc_now()) >= self.expires_at

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return self.is_active and self.revoked_at is None and not self.is_expired(now)

    def revoke(self, revoked_by_email: str) -> None:
        self.is_active = False
        self.revoked_at = utc_now()
        self.revoked_by_email = revoked_by_email


ALL_ENTITY_TYPES = (
    Team,
    CloudProvider,
    ResourceType,
    ResourceTypeCloudMapping,
    PropertySchema,
    Blueprint,
    BlueprintResource,
    Stack,
    StackResource,
    ApiKey,
)
