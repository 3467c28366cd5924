"""
Repository interfaces (Abstract Base Classes).

Define the persistence contract for every metadata entity independent of
the storage backend. Both the relational and the DynamoDB implementations
honour the same rules:

- ``save`` inserts when the id is unset (or not yet stored) and otherwise
  overwrites the whole record; it returns a stamped copy and never
  mutates its argument
- ``created_at`` is fixed at insert; ``updated_at`` is refreshed on every save
- finders return results in creation order, ``(created_at, id)``, unless
  their name says otherwise
- related entities are never hydrated; callers fetch them by id
- ``delete`` is idempotent and never cascades
"""

import copy
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar
from uuid import UUID, uuid4

from ..domain.entities import (ApiKey, ApiKeyType, Blueprint,
                               BlueprintResource, CloudProvider, Entity,
                               PropertySchema, ResourceCategory, ResourceType,
                               ResourceTypeCloudMapping, Stack, StackResource,
                               StackType, Team)
from ..domain.exceptions import NotFoundError, ValidationError

E = TypeVar("E", bound=Entity)

UniqueRule = Tuple[str, ...]


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def stamp(entity: E, now: datetime, created_at: Optional[datetime]) -> E:
    """
    Copy of ``entity`` with id and audit timestamps set for a save.

    Args:
        entity: Entity passed to ``save``
        now: Timestamp of this save
        created_at: Creation timestamp to keep, None for a fresh insert
    """
    stamped = copy.deepcopy(entity)
    stamped.id = entity.id or uuid4()
    stamped.created_at = as_naive_utc(created_at) or now
    stamped.updated_at = now
    return stamped


def creation_order(entity: Entity):
    """Sort key shared by both backends."""
    return (entity.created_at, str(entity.id))


def display_order(entity: PropertySchema):
    """Explicit display order first, unset last, then creation order."""
    return (
        entity.display_order is None,
        entity.display_order or 0,
        entity.created_at,
        str(entity.id),
    )


def constraint_name(rule: UniqueRule) -> str:
    return "+".join(rule)


def is_blank(value) -> bool:
    """True for finder arguments that can never match a stored record."""
    return value is None or value == ""


class IRepository(ABC, Generic[E]):
    """
    Generic repository interface for one entity type.

    Subclasses declare ``unique_fields``: each tuple names a set of fields
    whose combined values must be unique across all records of the type.
    ``indexed_fields`` lists the fields finders look records up by; an
    empty string is not a valid value for any of them.
    """

    entity_cls: type
    unique_fields: Sequence[UniqueRule] = ()
    indexed_fields: Tuple[str, ...] = ()

    @property
    def entity_name(self) -> str:
        return self.entity_cls.__name__

    def _normalize(self, entity: E) -> E:
        """Canonical form of a stamped entity before it is written."""
        return entity

    def check_indexed(self, entity: E) -> None:
        """
        Reject values no finder could ever match.

        Raises:
            ValidationError: If an indexed field holds an empty string
        """
        for name in self.indexed_fields:
            if getattr(entity, name) == "":
                raise ValidationError(self.entity_name, name, "empty string cannot be indexed")

    @abstractmethod
    def save(self, entity: E) -> E:
        """
        Insert or fully overwrite an entity.

        Args:
            entity: Entity to persist; ``id`` None means insert

        Returns:
            The stored entity with id and timestamps set

        Raises:
            ConflictError: If a unique rule would be violated
            SizeLimitError: If the record exceeds the backend's size limit
        """
        pass

    @abstractmethod
    def find_by_id(self, entity_id: UUID) -> Optional[E]:
        """
        Find an entity by id.

        Returns:
            The entity if stored, None otherwise
        """
        pass

    def get_by_id(self, entity_id: UUID) -> E:
        """
        Like ``find_by_id`` but raise when the entity is absent.

        Raises:
            NotFoundError: If no entity has this id
        """
        entity = self.find_by_id(entity_id)
        if entity is None:
            raise NotFoundError(self.entity_name, entity_id)
        return entity

    @abstractmethod
    def find_by_ids(self, entity_ids: Iterable[UUID]) -> List[E]:
        """
        Fetch several entities by id, e.g. to resolve references.

        Returns:
            Entities in the order of ``entity_ids``; unknown ids are skipped
        """
        pass

    @abstractmethod
    def find_all(self) -> List[E]:
        """
        All entities in creation order.

        Reads the whole table on the key-value backend; meant for
        administrative tooling, not request handling.
        """
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def exists(self, entity_id: UUID) -> bool:
        pass

    @abstractmethod
    def delete_by_id(self, entity_id: UUID) -> None:
        """Delete the entity with this id; absent ids are ignored."""
        pass

    def delete(self, entity: E) -> None:
        """Delete an entity; deleting an unsaved or already deleted entity is a no-op."""
        if entity.id is not None:
            self.delete_by_id(entity.id)


class ITeamRepository(IRepository[Team]):
    entity_cls = Team
    unique_fields = (("name",),)
    indexed_fields = ("name",)

    @abstractmethod
    def find_by_name(self, name: str) -> Optional[Team]:
        pass


class ICloudProviderRepository(IRepository[CloudProvider]):
    entity_cls = CloudProvider
    unique_fields = (("name",),)
    indexed_fields = ("name",)

    @abstractmethod
    def find_by_name(self, name: str) -> Optional[CloudProvider]:
        pass


class IResourceTypeRepository(IRepository[ResourceType]):
    entity_cls = ResourceType
    unique_fields = (("name",),)
    indexed_fields = ("name", "category", "enabled")

    @abstractmethod
    def find_by_name(self, name: str) -> Optional[ResourceType]:
        pass

    @abstractmethod
    def find_by_category(self, category: ResourceCategory) -> List[ResourceType]:
        pass

    @abstractmethod
    def find_by_enabled(self, enabled: bool) -> List[ResourceType]:
        pass

    @abstractmethod
    def find_by_category_and_enabled(
        self, category: ResourceCategory, enabled: bool
    ) -> List[ResourceType]:
        pass


class IResourceTypeCloudMappingRepository(IRepository[ResourceTypeCloudMapping]):
    entity_cls = ResourceTypeCloudMapping
    unique_fields = (("resource_type_id", "cloud_provider_id"),)
    indexed_fields = ("resource_type_id", "cloud_provider_id", "enabled")

    @abstractmethod
    def find_by_resource_type_and_cloud_provider(
        self, resource_type_id: UUID, cloud_provider_id: UUID
    ) -> Optional[ResourceTypeCloudMapping]:
        pass

    @abstractmethod
    def find_by_resource_type(self, resource_type_id: UUID) -> List[ResourceTypeCloudMapping]:
        pass

    @abstractmethod
    def find_by_cloud_provider(self, cloud_provider_id: UUID) -> List[ResourceTypeCloudMapping]:
        pass

    @abstractmethod
    def find_by_enabled(self, enabled: bool) -> List[ResourceTypeCloudMapping]:
        pass

    @abstractmethod
    def find_by_resource_type_and_enabled(
        self, resource_type_id: UUID, enabled: bool
    ) -> List[ResourceTypeCloudMapping]:
        pass

    @abstractmethod
    def find_by_cloud_provider_and_enabled(
        self, cloud_provider_id: UUID, enabled: bool
    ) -> List[ResourceTypeCloudMapping]:
        pass


class IPropertySchemaRepository(IRepository[PropertySchema]):
    entity_cls = PropertySchema
    unique_fields = (("mapping_id", "property_name"),)
    indexed_fields = ("mapping_id",)

    @abstractmethod
    def find_by_mapping(self, mapping_id: UUID) -> List[PropertySchema]:
        pass

    @abstractmethod
    def find_by_mapping_ordered_by_display_order(self, mapping_id: UUID) -> List[PropertySchema]:
        """
        Property schemas of one mapping for form rendering.

        Returns:
            Schemas by ascending display order, unset order last
        """
        pass

    @abstractmethod
    def find_by_mapping_and_required(
        self, mapping_id: UUID, required: bool
    ) -> List[PropertySchema]:
        pass


class IBlueprintRepository(IRepository[Blueprint]):
    entity_cls = Blueprint
    unique_fields = (("name",),)
    indexed_fields = ("name",)

    def _normalize(self, entity: Blueprint) -> Blueprint:
        # Duplicate provider ids keep their first position
        entity.supported_cloud_provider_ids = list(
            dict.fromkeys(entity.supported_cloud_provider_ids)
        )
        return entity

    @abstractmethod
    def find_by_name(self, name: str) -> Optional[Blueprint]:
        pass


class IBlueprintResourceRepository(IRepository[BlueprintResource]):
    """Shared infrastructure resources, usually owned by a blueprint."""

    entity_cls = BlueprintResource
    indexed_fields = ("blueprint_id", "resource_type_id", "cloud_provider_id", "is_active")

    @abstractmethod
    def find_by_blueprint(self, blueprint_id: UUID) -> List[BlueprintResource]:
        pass

    @abstractmethod
    def find_by_blueprint_and_is_active(
        self, blueprint_id: UUID, is_active: bool
    ) -> List[BlueprintResource]:
        pass

    @abstractmethod
    def find_by_resource_type(self, resource_type_id: UUID) -> List[BlueprintResource]:
        pass

    @abstractmethod
    def find_by_cloud_provider(self, cloud_provider_id: UUID) -> List[BlueprintResource]:
        pass

    @abstractmethod
    def find_by_is_active(self, is_active: bool) -> List[BlueprintResource]:
        pass


class IStackRepository(IRepository[Stack]):
    """
    Stack repository interface.

    Stack names are unique per owner.
    """

    entity_cls = Stack
    unique_fields = (("name", "created_by"),)
    indexed_fields = (
        "created_by",
        "stack_type",
        "team_id",
        "cloud_provider_id",
        "blueprint_id",
        "ephemeral_prefix",
    )

    @abstractmethod
    def find_by_owner(self, created_by: str) -> List[Stack]:
        pass

    @abstractmethod
    def find_by_type(self, stack_type: StackType) -> List[Stack]:
        pass

    @abstractmethod
    def find_by_team(self, team_id: UUID) -> List[Stack]:
        pass

    @abstractmethod
    def find_by_cloud_provider(self, cloud_provider_id: UUID) -> List[Stack]:
        pass

    @abstractmethod
    def find_by_cloud_provider_and_owner(
        self, cloud_provider_id: UUID, created_by: str
    ) -> List[Stack]:
        pass

    @abstractmethod
    def find_by_blueprint(self, blueprint_id: UUID) -> List[Stack]:
        pass

    @abstractmethod
    def find_by_ephemeral_prefix(self, ephemeral_prefix: str) -> List[Stack]:
        pass

    @abstractmethod
    def exists_by_name_and_owner(self, name: str, created_by: str) -> bool:
        pass


class IStackResourceRepository(IRepository[StackResource]):
    entity_cls = StackResource
    indexed_fields = ("stack_id", "resource_type_id", "cloud_provider_id")

    @abstractmethod
    def find_by_stack(self, stack_id: UUID) -> List[StackResource]:
        pass

    @abstractmethod
    def find_by_resource_type(self, resource_type_id: UUID) -> List[StackResource]:
        pass

    @abstractmethod
    def find_by_cloud_provider(self, cloud_provider_id: UUID) -> List[StackResource]:
        pass

    @abstractmethod
    def find_by_stack_and_resource_type(
        self, stack_id: UUID, resource_type_id: UUID
    ) -> List[StackResource]:
        pass


class IApiKeyRepository(IRepository[ApiKey]):
    entity_cls = ApiKey
    unique_fields = (("key_hash",),)
    indexed_fields = ("key_hash", "user_email", "created_by_email", "key_type", "is_active")

    @abstractmethod
    def find_by_key_hash(self, key_hash: str) -> Optional[ApiKey]:
        pass

    @abstractmethod
    def find_by_user_email(self, user_email: str) -> List[ApiKey]:
        pass

    @abstractmethod
    def find_by_user_email_and_is_active(self, user_email: str, is_active: bool) -> List[ApiKey]:
        pass

    @abstractmethod
    def find_by_created_by_email(self, created_by_email: str) -> List[ApiKey]:
        pass

    @abstractmethod
    def find_by_key_type(self, key_type: ApiKeyType) -> List[ApiKey]:
        pass

    @abstractmethod
    def find_by_is_active(self, is_active: bool) -> List[ApiKey]:
        pass
