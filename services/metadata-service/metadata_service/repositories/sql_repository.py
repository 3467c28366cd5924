"""
Relational implementation of the metadata repositories.

Every repository maps one entity to one table (see ``models``). Uniqueness
is enforced by the database's unique constraints; violations are
translated into ConflictError. Blueprints keep their supported cloud
providers in an ordered association table, loaded with a follow-up query.
"""

import dataclasses
import json
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Type
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import BACKEND, Database
from ..domain.entities import (ApiKey, ApiKeyType, Blueprint,
                               BlueprintResource, CloudProvider,
                               PropertySchema, ResourceCategory, ResourceType,
                               ResourceTypeCloudMapping, Stack, StackResource,
                               StackType, Team, utc_now)
from ..domain.exceptions import ConflictError, SizeLimitError
from ..metrics import timed_operation, track_conflict
from ..models import (ApiKeyModel, BlueprintCloudProviderModel,
                      BlueprintModel, BlueprintResourceModel,
                      CloudProviderModel, PropertySchemaModel,
                      ResourceTypeCloudMappingModel, ResourceTypeModel,
                      StackModel, StackResourceModel, TeamModel)
from .base import (E, IApiKeyRepository, IBlueprintRepository,
                   IBlueprintResourceRepository, ICloudProviderRepository,
                   IPropertySchemaRepository, IRepository,
                   IResourceTypeCloudMappingRepository,
                   IResourceTypeRepository, IStackRepository,
                   IStackResourceRepository, ITeamRepository, constraint_name,
                   is_blank, stamp)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


class SqlRepository(IRepository[E]):
    """Generic SQLAlchemy repository; subclasses bind an entity to a model."""

    model_cls: Type

    def __init__(self, database: Database, max_record_bytes: Optional[int] = None):
        """
        Initialize repository.

        Args:
            database: Engine and session scopes of the relational backend
            max_record_bytes: Largest serialized record accepted by ``save``
        """
        self.database = database
        self.max_record_bytes = max_record_bytes
        self.columns = [
            f.name for f in dataclasses.fields(self.entity_cls) if hasattr(self.model_cls, f.name)
        ]

    def _to_entity(self, row) -> E:
        return self.entity_cls(**{name: getattr(row, name) for name in self.columns})

    def _load(self, session: Session, rows: Sequence) -> List[E]:
        return [self._to_entity(row) for row in rows]

    def _ordered(self, query):
        return query.order_by(self.model_cls.created_at, self.model_cls.id)

    def _check_size(self, entity: E) -> None:
        if self.max_record_bytes is None:
            return
        size = len(json.dumps(dataclasses.asdict(entity), default=str).encode("utf-8"))
        if size > self.max_record_bytes:
            raise SizeLimitError(self.entity_name, size, self.max_record_bytes)

    # Write primitives, shared with the transaction coordinator

    def _write(self, session: Session, entity: E) -> E:
        """Stage an insert or full overwrite in ``session`` and flush it."""
        now = utc_now()
        row = session.get(self.model_cls, entity.id) if entity.id is not None else None
        if row is None:
            saved = self._normalize(stamp(entity, now, entity.created_at))
            self._check_size(saved)
            row = self.model_cls()
            session.add(row)
        else:
            saved = self._normalize(stamp(entity, now, row.created_at))
            self._check_size(saved)
        self.check_indexed(saved)
        for name in self.columns:
            setattr(row, name, getattr(saved, name))
        session.flush()
        self._write_related(session, saved)
        return saved

    def _write_related(self, session: Session, entity: E) -> None:
        pass

    def _delete_in(self, session: Session, entity_id: UUID) -> None:
        session.query(self.model_cls).filter(self.model_cls.id == entity_id).delete(
            synchronize_session=False
        )

    def _names_primary_key(self, message: str) -> bool:
        table = self.model_cls.__tablename__
        return (
            f"{table}_pkey" in message
            or f"{table}.id" in message
            or "Key (id)=" in message
        )

    def conflict_from(self, exc: IntegrityError, entity: E) -> Optional[ConflictError]:
        """
        Translate an IntegrityError raised while writing ``entity``.

        Returns:
            ConflictError for unique or foreign-key violations, None for
            anything else (the caller re-raises the original error)
        """
        message = str(exc.orig)
        code = getattr(exc.orig, "pgcode", None)
        lowered = message.lower()
        if code == UNIQUE_VIOLATION or "unique" in lowered:
            if self._names_primary_key(message):
                rule = ("id",)
            else:
                rule = next(
                    (r for r in self.unique_fields if all(f in message for f in r)),
                    self.unique_fields[0] if self.unique_fields else ("id",),
                )
            constraint = constraint_name(rule)
            track_conflict(BACKEND, self.entity_name, constraint)
            logger.warning(f"Unique constraint {constraint} violated for {self.entity_name}")
            return ConflictError(
                self.entity_name, constraint, [getattr(entity, f) for f in rule]
            )
        if code == FOREIGN_KEY_VIOLATION or "foreign key" in lowered:
            track_conflict(BACKEND, self.entity_name, "reference")
            logger.warning(f"Reference violated for {self.entity_name}: {message}")
            return ConflictError(self.entity_name, "reference", reason=message.splitlines()[0])
        return None

    # Contract

    def save(self, entity: E) -> E:
        with timed_operation(BACKEND, self.entity_name, "save"):
            try:
                with self.database.transaction() as session:
                    return self._write(session, entity)
            except IntegrityError as e:
                conflict = self.conflict_from(e, entity)
                if conflict is None:
                    logger.error(f"Error saving {self.entity_name}: {e.orig}")
                    raise
                raise conflict from e

    def find_by_id(self, entity_id: UUID) -> Optional[E]:
        with timed_operation(BACKEND, self.entity_name, "find_by_id"):
            with self.database.session() as session:
                row = session.get(self.model_cls, entity_id)
                if row is None:
                    return None
                return self._load(session, [row])[0]

    def find_by_ids(self, entity_ids: Iterable[UUID]) -> List[E]:
        entity_ids = list(entity_ids)
        if not entity_ids:
            return []
        with timed_operation(BACKEND, self.entity_name, "find_by_ids"):
            with self.database.session() as session:
                rows = (
                    session.query(self.model_cls)
                    .filter(self.model_cls.id.in_(set(entity_ids)))
                    .all()
                )
                found = {entity.id: entity for entity in self._load(session, rows)}
        return [found[i] for i in entity_ids if i in found]

    def find_all(self) -> List[E]:
        with timed_operation(BACKEND, self.entity_name, "find_all"):
            with self.database.session() as session:
                rows = self._ordered(session.query(self.model_cls)).all()
                return self._load(session, rows)

    def count(self) -> int:
        with timed_operation(BACKEND, self.entity_name, "count"):
            with self.database.session() as session:
                return session.query(func.count(self.model_cls.id)).scalar() or 0

    def exists(self, entity_id: UUID) -> bool:
        with timed_operation(BACKEND, self.entity_name, "exists"):
            with self.database.session() as session:
                return (
                    session.query(self.model_cls.id)
                    .filter(self.model_cls.id == entity_id)
                    .first()
                    is not None
                )

    def delete_by_id(self, entity_id: UUID) -> None:
        with timed_operation(BACKEND, self.entity_name, "delete"):
            with self.database.transaction() as session:
                self._delete_in(session, entity_id)

    # Finder helpers

    def _find_by(self, **criteria) -> List[E]:
        # NULL and "" are never indexed values, so they match nothing
        if any(is_blank(value) for value in criteria.values()):
            return []
        with timed_operation(BACKEND, self.entity_name, "find_by"):
            with self.database.session() as session:
                rows = self._ordered(session.query(self.model_cls).filter_by(**criteria)).all()
                return self._load(session, rows)

    def _find_one_by(self, **criteria) -> Optional[E]:
        results = self._find_by(**criteria)
        return results[0] if results else None


class SqlTeamRepository(SqlRepository[Team], ITeamRepository):
    model_cls = TeamModel

    def find_by_name(self, name: str) -> Optional[Team]:
        return self._find_one_by(name=name)


class SqlCloudProviderRepository(SqlRepository[CloudProvider], ICloudProviderRepository):
    model_cls = CloudProviderModel

    def find_by_name(self, name: str) -> Optional[CloudProvider]:
        return self._find_one_by(name=name)


class SqlResourceTypeRepository(SqlRepository[ResourceType], IResourceTypeRepository):
    model_cls = ResourceTypeModel

    def find_by_name(self, name: str) -> Optional[ResourceType]:
        return self._find_one_by(name=name)

    def find_by_category(self, category: ResourceCategory) -> List[ResourceType]:
        return self._find_by(category=self._category(category))

    def find_by_enabled(self, enabled: bool) -> List[ResourceType]:
        return self._find_by(enabled=enabled)

    def find_by_category_and_enabled(
        self, category: ResourceCategory, enabled: bool
    ) -> List[ResourceType]:
        return self._find_by(category=self._category(category), enabled=enabled)

    @staticmethod
    def _category(category):
        return None if is_blank(category) else ResourceCategory(category)


class SqlResourceTypeCloudMappingRepository(
    SqlRepository[ResourceTypeCloudMapping], IResourceTypeCloudMappingRepository
):
    model_cls = ResourceTypeCloudMappingModel

    def find_by_resource_type_and_cloud_provider(
        self, resource_type_id: UUID, cloud_provider_id: UUID
    ) -> Optional[ResourceTypeCloudMapping]:
        return self._find_one_by(
            resource_type_id=resource_type_id, cloud_provider_id=cloud_provider_id
        )

    def find_by_resource_type(self, resource_type_id: UUID) -> List[ResourceTypeCloudMapping]:
        return self._find_by(resource_type_id=resource_type_id)

    def find_by_cloud_provider(self, cloud_provider_id: UUID) -> List[ResourceTypeCloudMapping]:
        return self._find_by(cloud_provider_id=cloud_provider_id)

    def find_by_enabled(self, enabled: bool) -> List[ResourceTypeCloudMapping]:
        return self._find_by(enabled=enabled)

    def find_by_resource_type_and_enabled(
        self, resource_type_id: UUID, enabled: bool
    ) -> List[ResourceTypeCloudMapping]:
        return self._find_by(resource_type_id=resource_type_id, enabled=enabled)

    def find_by_cloud_provider_and_enabled(
        self, cloud_provider_id: UUID, enabled: bool
    ) -> List[ResourceTypeCloudMapping]:
        return self._find_by(cloud_provider_id=cloud_provider_id, enabled=enabled)


class SqlPropertySchemaRepository(SqlRepository[PropertySchema], IPropertySchemaRepository):
    model_cls = PropertySchemaModel

    def find_by_mapping(self, mapping_id: UUID) -> List[PropertySchema]:
        return self._find_by(mapping_id=mapping_id)

    def find_by_mapping_ordered_by_display_order(self, mapping_id: UUID) -> List[PropertySchema]:
        if is_blank(mapping_id):
            return []
        model = self.model_cls
        with timed_operation(BACKEND, self.entity_name, "find_by"):
            with self.database.session() as session:
                rows = (
                    session.query(model)
                    .filter(model.mapping_id == mapping_id)
                    .order_by(
                        model.display_order.is_(None),
                        model.display_order,
                        model.created_at,
                        model.id,
                    )
                    .all()
                )
                return self._load(session, rows)

    def find_by_mapping_and_required(
        self, mapping_id: UUID, required: bool
    ) -> List[PropertySchema]:
        return self._find_by(mapping_id=mapping_id, required=required)


class SqlBlueprintRepository(SqlRepository[Blueprint], IBlueprintRepository):
    """Blueprints plus their ordered supported cloud provider ids."""

    model_cls = BlueprintModel

    def _load(self, session: Session, rows: Sequence) -> List[Blueprint]:
        blueprints = [self._to_entity(row) for row in rows]
        if not blueprints:
            return blueprints
        links = (
            session.query(BlueprintCloudProviderModel)
            .filter(BlueprintCloudProviderModel.blueprint_id.in_([b.id for b in blueprints]))
            .order_by(BlueprintCloudProviderModel.position)
            .all()
        )
        providers: Dict[UUID, List[UUID]] = {}
        for link in links:
            providers.setdefault(link.blueprint_id, []).append(link.cloud_provider_id)
        for blueprint in blueprints:
            blueprint.supported_cloud_provider_ids = providers.get(blueprint.id, [])
        return blueprints

    def _write_related(self, session: Session, entity: Blueprint) -> None:
        session.query(BlueprintCloudProviderModel).filter(
            BlueprintCloudProviderModel.blueprint_id == entity.id
        ).delete(synchronize_session=False)
        session.add_all(
            BlueprintCloudProviderModel(
                blueprint_id=entity.id, cloud_provider_id=provider_id, position=position
            )
            for position, provider_id in enumerate(entity.supported_cloud_provider_ids)
        )
        session.flush()

    def _delete_in(self, session: Session, entity_id: UUID) -> None:
        session.query(BlueprintCloudProviderModel).filter(
            BlueprintCloudProviderModel.blueprint_id == entity_id
        ).delete(synchronize_session=False)
        super()._delete_in(session, entity_id)

    def find_by_name(self, name: str) -> Optional[Blueprint]:
        return self._find_one_by(name=name)


class SqlBlueprintResourceRepository(
    SqlRepository[BlueprintResource], IBlueprintResourceRepository
):
    model_cls = BlueprintResourceModel

    def find_by_blueprint(self, blueprint_id: UUID) -> List[BlueprintResource]:
        return self._find_by(blueprint_id=blueprint_id)

    def find_by_blueprint_and_is_active(
        self, blueprint_id: UUID, is_active: bool
    ) -> List[BlueprintResource]:
        return self._find_by(blueprint_id=blueprint_id, is_active=is_active)

    def find_by_resource_type(self, resource_type_id: UUID) -> List[BlueprintResource]:
        return self._find_by(resource_type_id=resource_type_id)

    def find_by_cloud_provider(self, cloud_provider_id: UUID) -> List[BlueprintResource]:
        return self._find_by(cloud_provider_id=cloud_provider_id)

    def find_by_is_active(self, is_active: bool) -> List[BlueprintResource]:
        return self._find_by(is_active=is_active)


class SqlStackRepository(SqlRepository[Stack], IStackRepository):
    model_cls = StackModel

    def find_by_owner(self, created_by: str) -> List[Stack]:
        return self._find_by(created_by=created_by)

    def find_by_type(self, stack_type: StackType) -> List[Stack]:
        return self._find_by(stack_type=None if is_blank(stack_type) else StackType(stack_type))

    def find_by_team(self, team_id: UUID) -> List[Stack]:
        return self._find_by(team_id=team_id)

    def find_by_cloud_provider(self, cloud_provider_id: UUID) -> List[Stack]:
        return self._find_by(cloud_provider_id=cloud_provider_id)

    def find_by_cloud_provider_and_owner(
        self, cloud_provider_id: UUID, created_by: str
    ) -> List[Stack]:
        return self._find_by(cloud_provider_id=cloud_provider_id, created_by=created_by)

    def find_by_blueprint(self, blueprint_id: UUID) -> List[Stack]:
        return self._find_by(blueprint_id=blueprint_id)

    def find_by_ephemeral_prefix(self, ephemeral_prefix: str) -> List[Stack]:
        return self._find_by(ephemeral_prefix=ephemeral_prefix)

    def exists_by_name_and_owner(self, name: str, created_by: str) -> bool:
        if is_blank(name) or is_blank(created_by):
            return False
        with timed_operation(BACKEND, self.entity_name, "exists"):
            with self.database.session() as session:
                return (
                    session.query(StackModel.id)
                    .filter(StackModel.name == name, StackModel.created_by == created_by)
                    .first()
                    is not None
                )


class SqlStackResourceRepository(SqlRepository[StackResource], IStackResourceRepository):
    model_cls = StackResourceModel

    def find_by_stack(self, stack_id: UUID) -> List[StackResource]:
        return self._find_by(stack_id=stack_id)

    def find_by_resource_type(self, resource_type_id: UUID) -> List[StackResource]:
        return self._find_by(resource_type_id=resource_type_id)

    def find_by_cloud_provider(self, cloud_provider_id: UUID) -> List[StackResource]:
        return self._find_by(cloud_provider_id=cloud_provider_id)

    def find_by_stack_and_resource_type(
        self, stack_id: UUID, resource_type_id: UUID
    ) -> List[StackResource]:
        return self._find_by(stack_id=stack_id, resource_type_id=resource_type_id)


class SqlApiKeyRepository(SqlRepository[ApiKey], IApiKeyRepository):
    model_cls = ApiKeyModel

    def find_by_key_hash(self, key_hash: str) -> Optional[ApiKey]:
        return self._find_one_by(key_hash=key_hash)

    def find_by_user_email(self, user_email: str) -> List[ApiKey]:
        return self._find_by(user_email=user_email)

    def find_by_user_email_and_is_active(self, user_email: str, is_active: bool) -> List[ApiKey]:
        return self._find_by(user_email=user_email, is_active=is_active)

    def find_by_created_by_email(self, created_by_email: str) -> List[ApiKey]:
        return self._find_by(created_by_email=created_by_email)

    def find_by_key_type(self, key_type: ApiKeyType) -> List[ApiKey]:
        return self._find_by(key_type=None if is_blank(key_type) else ApiKeyType(key_type))

    def find_by_is_active(self, is_active: bool) -> List[ApiKey]:
        return self._find_by(is_active=is_active)


SQL_REPOSITORIES = (
    SqlTeamRepository,
    SqlCloudProviderRepository,
    SqlResourceTypeRepository,
    SqlResourceTypeCloudMappingRepository,
    SqlPropertySchemaRepository,
    SqlBlueprintRepository,
    SqlBlueprintResourceRepository,
    SqlStackRepository,
    SqlStackResourceRepository,
    SqlApiKeyRepository,
)
