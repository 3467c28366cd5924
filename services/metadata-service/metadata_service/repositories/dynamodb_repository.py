"""
DynamoDB implementation of the metadata repositories.

Each entity lives in its own table keyed by ``id``; every finder reads a
global secondary index, never a scan. DynamoDB has no unique constraints,
so uniqueness is enforced in two steps:

1. a pre-check against the secondary index rejects an obvious duplicate
   before anything is written;
2. the entity is written in one TransactWriteItems call together with a
   guard item in the ``unique_values`` table. The guard's key encodes the
   unique value and its condition only lets the current owner overwrite
   it, which closes the race between the pre-check and the write.

Writes are planned first (``plan_save`` / ``plan_delete``) so the
transaction coordinator can merge several plans into one request. Every
planned entity write is conditioned on the state it was planned from; when
another writer got there first the plan is rebuilt and applied again, so
concurrent saves still resolve as last-write-wins and guards always follow
the stored values.
"""

import dataclasses
import json
from typing import (Any, Callable, Collection, Dict, Iterable, Iterator, List,
                    Mapping, Optional, Sequence, Tuple, TypeVar)
from uuid import UUID

import structlog
from botocore.exceptions import ClientError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from ..domain.entities import (ApiKey, ApiKeyType, Blueprint,
                               BlueprintResource, CloudProvider,
                               PropertySchema, ResourceCategory, ResourceType,
                               ResourceTypeCloudMapping, Stack, StackResource,
                               StackType, Team, utc_now)
from ..domain.exceptions import CapacityError, ConflictError, SizeLimitError
from ..infrastructure import dynamodb_tables as tables
from ..infrastructure.dynamodb_client import (BACKEND, DynamoDBClient,
                                              cancellation_codes, error_code)
from ..infrastructure.dynamodb_tables import (GUARD_OWNER, PARTITION_KEY,
                                              TableDefinition, flag_attribute,
                                              flag_value, index_name)
from ..metrics import timed_operation, track_conflict
from .base import (E, IApiKeyRepository, IBlueprintRepository,
                   IBlueprintResourceRepository, ICloudProviderRepository,
                   IPropertySchemaRepository, IRepository,
                   IResourceTypeCloudMappingRepository,
                   IResourceTypeRepository, IStackRepository,
                   IStackResourceRepository, ITeamRepository, UniqueRule,
                   constraint_name, creation_order, display_order, is_blank,
                   stamp)
from .item_mapper import MAX_ITEM_BYTES, ItemMapper, item_size

logger = structlog.get_logger(__name__)

T = TypeVar("T")

BATCH_GET_LIMIT = 100

GUARD_CONDITION = "attribute_not_exists(#pk) OR #owner = :owner"


class StaleWriteError(Exception):
    """A planned write found the stored state changed since it was read."""


class GuardConflictError(ConflictError):
    """ConflictError raised by a guard item's condition inside a transaction."""

    def __init__(self, guard_key: str, entity: str, constraint: str, values: List[Any]):
        super().__init__(entity, constraint, values)
        self.guard_key = guard_key


@dataclasses.dataclass
class TransactItem:
    """
    One element of a TransactWriteItems request.

    ``conflict`` holds the ConflictError arguments raised when this item's
    condition fails. A failed condition on an item without one means the
    write was planned from stale state.
    """

    request: Dict[str, Any]
    table: str
    key: str
    conflict: Optional[Tuple[str, str, List[Any]]] = None


@dataclasses.dataclass
class WritePlan:
    """Planned writes for one save or delete."""

    entity: Optional[Any]
    items: List[TransactItem]


def run_transaction(client: DynamoDBClient, items: Sequence[TransactItem]) -> None:
    """
    Submit ``items`` as one atomic TransactWriteItems request.

    Raises:
        StaleWriteError: If an entity changed since the items were planned
        GuardConflictError: If a uniqueness guard's condition failed
    """
    try:
        client.call("transact_write_items", TransactItems=[item.request for item in items])
    except ClientError as e:
        if error_code(e) != "TransactionCanceledException":
            raise
        failed = [
            item
            for item, code in zip(items, cancellation_codes(e))
            if code == "ConditionalCheckFailed"
        ]
        if any(item.conflict is None for item in failed):
            raise StaleWriteError(failed[0].key) from e
        if failed:
            entity, constraint, values = failed[0].conflict
            raise GuardConflictError(failed[0].key, entity, constraint, values) from e
        raise


def write_with_retry(
    client: DynamoDBClient,
    attempt: Callable[[], T],
    owners: Mapping[str, "DynamoRepository"],
) -> T:
    """
    Plan and apply a write until it lands on the state it was planned from.

    A guard that blocks the write but is no longer backed by its owner's
    stored values is released and the write planned again.

    Args:
        client: Shared DynamoDB client; its attempt budget bounds the retries
        attempt: Plans and applies the write once
        owners: Repositories by entity name, for guard ownership checks

    Raises:
        ConflictError: If a unique value is held by another entity
        CapacityError: If the records kept changing for every attempt
    """

    def once() -> T:
        try:
            return attempt()
        except GuardConflictError as e:
            owner = owners.get(e.entity)
            if owner is not None and owner.release_stale_guard(e.guard_key):
                raise StaleWriteError(e.guard_key) from e
            track_conflict(BACKEND, e.entity, e.constraint)
            logger.warning("unique_guard_rejected", entity=e.entity, constraint=e.constraint)
            raise

    retrying = Retrying(
        retry=retry_if_exception_type(StaleWriteError),
        stop=stop_after_attempt(client.max_attempts),
        reraise=True,
    )
    try:
        return retrying(once)
    except StaleWriteError as e:
        logger.error("dynamodb_write_contended", key=str(e), attempts=client.max_attempts)
        raise CapacityError(
            BACKEND, "records kept changing during the write", attempts=client.max_attempts
        ) from e


class DynamoRepository(IRepository[E]):
    """Generic DynamoDB repository; subclasses bind an entity to a table."""

    table: TableDefinition

    def __init__(self, client: DynamoDBClient, table_prefix: str):
        """
        Initialize repository.

        Args:
            client: Shared DynamoDB client
            table_prefix: Prefix of every table name, e.g. ``idp``
        """
        self.client = client
        self.table_name = self.table.table_name(table_prefix)
        self.guard_table = tables.UNIQUE_VALUES.table_name(table_prefix)
        self.mapper = ItemMapper(self.entity_cls)

    # Planning

    def _plain(self, field: str, value: Any) -> str:
        (inner,) = self.mapper.serialize_value(field, value).values()
        return str(inner)

    def guard_key(self, rule: UniqueRule, entity: E) -> Optional[str]:
        values = [getattr(entity, f) for f in rule]
        if any(v is None for v in values):
            return None
        return json.dumps(
            [self.table.suffix, constraint_name(rule)]
            + [self._plain(f, v) for f, v in zip(rule, values)]
        )

    def _guard_put(self, rule: UniqueRule, key: str, entity: E) -> TransactItem:
        return TransactItem(
            request={
                "Put": {
                    "TableName": self.guard_table,
                    "Item": {
                        PARTITION_KEY: {"S": key},
                        GUARD_OWNER: {"S": str(entity.id)},
                        "entity": {"S": self.entity_name},
                    },
                    "ConditionExpression": GUARD_CONDITION,
                    "ExpressionAttributeNames": {"#pk": PARTITION_KEY, "#owner": GUARD_OWNER},
                    "ExpressionAttributeValues": {":owner": {"S": str(entity.id)}},
                }
            },
            table=self.guard_table,
            key=key,
            conflict=(
                self.entity_name,
                constraint_name(rule),
                [getattr(entity, f) for f in rule],
            ),
        )

    def _guard_delete(self, key: str, owner_id: UUID) -> TransactItem:
        return TransactItem(
            request={
                "Delete": {
                    "TableName": self.guard_table,
                    "Key": {PARTITION_KEY: {"S": key}},
                    "ConditionExpression": GUARD_CONDITION,
                    "ExpressionAttributeNames": {"#pk": PARTITION_KEY, "#owner": GUARD_OWNER},
                    "ExpressionAttributeValues": {":owner": {"S": str(owner_id)}},
                }
            },
            table=self.guard_table,
            key=key,
        )

    def _unchanged_condition(self, existing: Optional[E]) -> Dict[str, Any]:
        """Condition that holds while the stored item is still ``existing``."""
        if existing is None:
            return {
                "ConditionExpression": "attribute_not_exists(#id)",
                "ExpressionAttributeNames": {"#id": PARTITION_KEY},
            }
        return {
            "ConditionExpression": "#updatedAt = :seen",
            "ExpressionAttributeNames": {"#updatedAt": self.mapper.attribute("updated_at")},
            "ExpressionAttributeValues": {
                ":seen": self.mapper.serialize_value("updated_at", existing.updated_at)
            },
        }

    def _to_item(self, entity: E) -> Dict[str, Any]:
        item = self.mapper.to_item(entity)
        for attribute in self.table.flag_attributes:
            if attribute in item:
                item[flag_attribute(attribute)] = flag_value(item[attribute]["BOOL"])
        size = item_size(item)
        if size > MAX_ITEM_BYTES:
            raise SizeLimitError(self.entity_name, size, MAX_ITEM_BYTES)
        return item

    def _precheck(self, rule: UniqueRule, entity: E, released: Collection[UUID] = ()) -> None:
        """Reject a duplicate visible in the secondary index, without writing."""
        indexed = next(
            f for f in rule if self.mapper.attribute(f) in self.table.indexed_attributes
        )
        candidates = self._query(
            indexed,
            getattr(entity, indexed),
            {f: getattr(entity, f) for f in rule if f != indexed},
        )
        for candidate in candidates:
            if candidate.id == entity.id or candidate.id in released:
                continue
            # Indexes are eventually consistent; confirm against the table
            current = self.find_by_id(candidate.id)
            if current is not None and all(
                getattr(current, f) == getattr(entity, f) for f in rule
            ):
                track_conflict(BACKEND, self.entity_name, constraint_name(rule))
                logger.info(
                    "unique_precheck_rejected",
                    entity=self.entity_name,
                    constraint=constraint_name(rule),
                )
                raise ConflictError(
                    self.entity_name, constraint_name(rule), [getattr(entity, f) for f in rule]
                )

    def plan_save(self, entity: E, released: Collection[UUID] = ()) -> WritePlan:
        """
        Stamp ``entity`` and plan its writes: the entity item plus guard swaps.

        Runs the uniqueness pre-check, so it can raise ConflictError.
        """
        existing = self.find_by_id(entity.id) if entity.id is not None else None
        now = utc_now()
        created_at = existing.created_at if existing is not None else entity.created_at
        saved = self._normalize(stamp(entity, now, created_at))
        self.check_indexed(saved)
        item = self._to_item(saved)

        items = [
            TransactItem(
                request={
                    "Put": {
                        "TableName": self.table_name,
                        "Item": item,
                        **self._unchanged_condition(existing),
                    }
                },
                table=self.table_name,
                key=str(saved.id),
            )
        ]
        for rule in self.unique_fields:
            new_key = self.guard_key(rule, saved)
            old_key = self.guard_key(rule, existing) if existing is not None else None
            if new_key is not None:
                self._precheck(rule, saved, released)
                items.append(self._guard_put(rule, new_key, saved))
            if old_key is not None and old_key != new_key:
                items.append(self._guard_delete(old_key, saved.id))
        return WritePlan(entity=saved, items=items)

    def plan_delete(self, entity_id: UUID) -> WritePlan:
        """Plan deleting the entity and its guards; nothing to do when absent."""
        existing = self.find_by_id(entity_id)
        if existing is None:
            return WritePlan(entity=None, items=[])
        items = [
            TransactItem(
                request={
                    "Delete": {
                        "TableName": self.table_name,
                        "Key": self.mapper.key(entity_id),
                        **self._unchanged_condition(existing),
                    }
                },
                table=self.table_name,
                key=str(entity_id),
            )
        ]
        for rule in self.unique_fields:
            key = self.guard_key(rule, existing)
            if key is not None:
                items.append(self._guard_delete(key, entity_id))
        return WritePlan(entity=None, items=items)

    def _apply(self, plan: WritePlan) -> None:
        """
        Write a plan.

        Raises:
            StaleWriteError: If the stored item changed since planning
            GuardConflictError: If a unique value is held by another entity
        """
        if len(plan.items) > 1:
            run_transaction(self.client, plan.items)
            return
        (item,) = plan.items
        try:
            if "Put" in item.request:
                self.client.call("put_item", **item.request["Put"])
            else:
                self.client.call("delete_item", **item.request["Delete"])
        except ClientError as e:
            if error_code(e) == "ConditionalCheckFailedException":
                raise StaleWriteError(item.key) from e
            raise

    def release_stale_guard(self, key: str) -> bool:
        """
        Delete a guard whose owner no longer holds its value.

        The delete is conditioned on the owner being unchanged, so a guard
        its owner reclaims in the meantime survives.

        Returns:
            True if the guard is gone and the blocked write can be planned
            again, False if its owner still holds the value
        """
        response = self.client.call(
            "get_item",
            TableName=self.guard_table,
            Key={PARTITION_KEY: {"S": key}},
            ConsistentRead=True,
        )
        guard = response.get("Item")
        if not guard:
            return True
        owner_id = guard[GUARD_OWNER]["S"]
        owner = self.find_by_id(UUID(owner_id))
        if owner is not None and any(
            self.guard_key(rule, owner) == key for rule in self.unique_fields
        ):
            return False

        try:
            self.client.call(
                "transact_write_items",
                TransactItems=[
                    {
                        "ConditionCheck": {
                            "TableName": self.table_name,
                            "Key": {PARTITION_KEY: {"S": owner_id}},
                            **self._unchanged_condition(owner),
                        }
                    },
                    {
                        "Delete": {
                            "TableName": self.guard_table,
                            "Key": {PARTITION_KEY: {"S": key}},
                            "ConditionExpression": "#owner = :owner",
                            "ExpressionAttributeNames": {"#owner": GUARD_OWNER},
                            "ExpressionAttributeValues": {":owner": {"S": owner_id}},
                        }
                    },
                ],
            )
        except ClientError as e:
            if error_code(e) != "TransactionCanceledException":
                raise
            # Owner or guard changed meanwhile; the next plan sees the new state
            return True
        logger.warning("stale_unique_guard_released", entity=self.entity_name, owner=owner_id)
        return True

    # Reads

    def _paginate(self, operation: str, params: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        params = dict(params)
        while True:
            response = self.client.call(operation, **params)
            yield response
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return
            params["ExclusiveStartKey"] = last_key

    def _index_key(self, field: str, value: Any) -> Tuple[str, Dict[str, Any]]:
        """Index partition attribute and key value for a finder on ``field``."""
        attribute = self.mapper.attribute(field)
        if attribute in self.table.flag_attributes:
            return flag_attribute(attribute), flag_value(value)
        if attribute in self.table.indexed_attributes:
            return attribute, self.mapper.serialize_value(field, value)
        raise ValueError(f"{self.table_name} has no index on {attribute}")

    def _query(self, field: str, value: Any, filters: Optional[Dict[str, Any]] = None) -> List[E]:
        """Query the secondary index of ``field``, optionally filtering on more fields."""
        attribute, key_value = self._index_key(field, value)
        names = {"#k": attribute}
        values = {":k": key_value}
        params = {
            "TableName": self.table_name,
            "IndexName": index_name(attribute),
            "KeyConditionExpression": "#k = :k",
        }
        clauses = []
        for i, (name, filter_value) in enumerate((filters or {}).items()):
            names[f"#f{i}"] = self.mapper.attribute(name)
            values[f":f{i}"] = self.mapper.serialize_value(name, filter_value)
            clauses.append(f"#f{i} = :f{i}")
        if clauses:
            params["FilterExpression"] = " AND ".join(clauses)
        params["ExpressionAttributeNames"] = names
        params["ExpressionAttributeValues"] = values

        entities = [
            self.mapper.from_item(item)
            for page in self._paginate("query", params)
            for item in page.get("Items", [])
        ]
        return sorted(entities, key=creation_order)

    def _find_by(self, field: str, value: Any, **filters) -> List[E]:
        if is_blank(value) or any(is_blank(v) for v in filters.values()):
            return []
        with timed_operation(BACKEND, self.entity_name, "find_by"):
            return self._query(field, value, filters)

    def _find_one_by(self, field: str, value: Any, **filters) -> Optional[E]:
        results = self._find_by(field, value, **filters)
        return results[0] if results else None

    # Contract

    def save(self, entity: E) -> E:
        with timed_operation(BACKEND, self.entity_name, "save"):

            def attempt() -> E:
                plan = self.plan_save(entity)
                self._apply(plan)
                return plan.entity

            saved = write_with_retry(self.client, attempt, {self.entity_name: self})
            logger.debug("entity_saved", entity=self.entity_name, id=str(saved.id))
            return saved

    def find_by_id(self, entity_id: UUID) -> Optional[E]:
        with timed_operation(BACKEND, self.entity_name, "find_by_id"):
            response = self.client.call(
                "get_item",
                TableName=self.table_name,
                Key=self.mapper.key(entity_id),
                ConsistentRead=True,
            )
            item = response.get("Item")
            return self.mapper.from_item(item) if item else None

    def find_by_ids(self, entity_ids: Iterable[UUID]) -> List[E]:
        entity_ids = list(entity_ids)
        unique_ids = list(dict.fromkeys(entity_ids))
        found: Dict[UUID, E] = {}
        with timed_operation(BACKEND, self.entity_name, "find_by_ids"):
            for start in range(0, len(unique_ids), BATCH_GET_LIMIT):
                chunk = unique_ids[start:start + BATCH_GET_LIMIT]
                request = {
                    self.table_name: {
                        "Keys": [self.mapper.key(i) for i in chunk],
                        "ConsistentRead": True,
                    }
                }
                attempts = 0
                while request:
                    attempts += 1
                    if attempts > self.client.max_attempts:
                        raise CapacityError(
                            BACKEND, "batch_get_item left keys unprocessed", attempts=attempts - 1
                        )
                    response = self.client.call("batch_get_item", RequestItems=request)
                    for item in response.get("Responses", {}).get(self.table_name, []):
                        entity = self.mapper.from_item(item)
                        found[entity.id] = entity
                    request = response.get("UnprocessedKeys") or {}
        return [found[i] for i in entity_ids if i in found]

    def find_all(self) -> List[E]:
        with timed_operation(BACKEND, self.entity_name, "find_all"):
            params = {"TableName": self.table_name, "ConsistentRead": True}
            entities = [
                self.mapper.from_item(item)
                for page in self._paginate("scan", params)
                for item in page.get("Items", [])
            ]
            return sorted(entities, key=creation_order)

    def count(self) -> int:
        with timed_operation(BACKEND, self.entity_name, "count"):
            params = {"TableName": self.table_name, "Select": "COUNT", "ConsistentRead": True}
            return sum(page.get("Count", 0) for page in self._paginate("scan", params))

    def exists(self, entity_id: UUID) -> bool:
        with timed_operation(BACKEND, self.entity_name, "exists"):
            response = self.client.call(
                "get_item",
                TableName=self.table_name,
                Key=self.mapper.key(entity_id),
                ProjectionExpression="#id",
                ExpressionAttributeNames={"#id": PARTITION_KEY},
                ConsistentRead=True,
            )
            return "Item" in response

    def delete_by_id(self, entity_id: UUID) -> None:
        with timed_operation(BACKEND, self.entity_name, "delete"):

            def attempt() -> None:
                plan = self.plan_delete(entity_id)
                if plan.items:
                    self._apply(plan)

            write_with_retry(self.client, attempt, {self.entity_name: self})


class DynamoTeamRepository(DynamoRepository[Team], ITeamRepository):
    table = tables.TEAMS

    def find_by_name(self, name: str) -> Optional[Team]:
        return self._find_one_by("name", name)


class DynamoCloudProviderRepository(DynamoRepository[CloudProvider], ICloudProviderRepository):
    table = tables.CLOUD_PROVIDERS

    def find_by_name(self, name: str) -> Optional[CloudProvider]:
        return self._find_one_by("name", name)


class DynamoResourceTypeRepository(DynamoRepository[ResourceType], IResourceTypeRepository):
    table = tables.RESOURCE_TYPES

    def find_by_name(self, name: str) -> Optional[ResourceType]:
        return self._find_one_by("name", name)

    def find_by_category(self, category: ResourceCategory) -> List[ResourceType]:
        return self._find_by("category", category)

    def find_by_enabled(self, enabled: bool) -> List[ResourceType]:
        return self._find_by("enabled", enabled)

    def find_by_category_and_enabled(
        self, category: ResourceCategory, enabled: bool
    ) -> List[ResourceType]:
        return self._find_by("category", category, enabled=enabled)


class DynamoResourceTypeCloudMappingRepository(
    DynamoRepository[ResourceTypeCloudMapping], IResourceTypeCloudMappingRepository
):
    table = tables.RESOURCE_TYPE_CLOUD_MAPPINGS

    def find_by_resource_type_and_cloud_provider(
        self, resource_type_id: UUID, cloud_provider_id: UUID
    ) -> Optional[ResourceTypeCloudMapping]:
        return self._find_one_by(
            "resource_type_id", resource_type_id, cloud_provider_id=cloud_provider_id
        )

    def find_by_resource_type(self, resource_type_id: UUID) -> List[ResourceTypeCloudMapping]:
        return self._find_by("resource_type_id", resource_type_id)

    def find_by_cloud_provider(self, cloud_provider_id: UUID) -> List[ResourceTypeCloudMapping]:
        return self._find_by("cloud_provider_id", cloud_provider_id)

    def find_by_enabled(self, enabled: bool) -> List[ResourceTypeCloudMapping]:
        return self._find_by("enabled", enabled)

    def find_by_resource_type_and_enabled(
        self, resource_type_id: UUID, enabled: bool
    ) -> List[ResourceTypeCloudMapping]:
        return self._find_by("resource_type_id", resource_type_id, enabled=enabled)

    def find_by_cloud_provider_and_enabled(
        self, cloud_provider_id: UUID, enabled: bool
    ) -> List[ResourceTypeCloudMapping]:
        return self._find_by("cloud_provider_id", cloud_provider_id, enabled=enabled)


class DynamoPropertySchemaRepository(DynamoRepository[PropertySchema], IPropertySchemaRepository):
    table = tables.PROPERTY_SCHEMAS

    def find_by_mapping(self, mapping_id: UUID) -> List[PropertySchema]:
        return self._find_by("mapping_id", mapping_id)

    def find_by_mapping_ordered_by_display_order(self, mapping_id: UUID) -> List[PropertySchema]:
        return sorted(self._find_by("mapping_id", mapping_id), key=display_order)

    def find_by_mapping_and_required(
        self, mapping_id: UUID, required: bool
    ) -> List[PropertySchema]:
        return self._find_by("mapping_id", mapping_id, required=required)


class DynamoBlueprintRepository(DynamoRepository[Blueprint], IBlueprintRepository):
    table = tables.BLUEPRINTS

    def find_by_name(self, name: str) -> Optional[Blueprint]:
        return self._find_one_by("name", name)


class DynamoBlueprintResourceRepository(
    DynamoRepository[BlueprintResource], IBlueprintResourceRepository
):
    table = tables.BLUEPRINT_RESOURCES

    def find_by_blueprint(self, blueprint_id: UUID) -> List[BlueprintResource]:
        return self._find_by("blueprint_id", blueprint_id)

    def find_by_blueprint_and_is_active(
        self, blueprint_id: UUID, is_active: bool
    ) -> List[BlueprintResource]:
        return self._find_by("blueprint_id", blueprint_id, is_active=is_active)

    def find_by_resource_type(self, resource_type_id: UUID) -> List[BlueprintResource]:
        return self._find_by("resource_type_id", resource_type_id)

    def find_by_cloud_provider(self, cloud_provider_id: UUID) -> List[BlueprintResource]:
        return self._find_by("cloud_provider_id", cloud_provider_id)

    def find_by_is_active(self, is_active: bool) -> List[BlueprintResource]:
        return self._find_by("is_active", is_active)


class DynamoStackRepository(DynamoRepository[Stack], IStackRepository):
    table = tables.STACKS

    def find_by_owner(self, created_by: str) -> List[Stack]:
        return self._find_by("created_by", created_by)

    def find_by_type(self, stack_type: StackType) -> List[Stack]:
        return self._find_by("stack_type", stack_type)

    def find_by_team(self, team_id: UUID) -> List[Stack]:
        return self._find_by("team_id", team_id)

    def find_by_cloud_provider(self, cloud_provider_id: UUID) -> List[Stack]:
        return self._find_by("cloud_provider_id", cloud_provider_id)

    def find_by_cloud_provider_and_owner(
        self, cloud_provider_id: UUID, created_by: str
    ) -> List[Stack]:
        return self._find_by("cloud_provider_id", cloud_provider_id, created_by=created_by)

    def find_by_blueprint(self, blueprint_id: UUID) -> List[Stack]:
        return self._find_by("blueprint_id", blueprint_id)

    def find_by_ephemeral_prefix(self, ephemeral_prefix: str) -> List[Stack]:
        return self._find_by("ephemeral_prefix", ephemeral_prefix)

    def exists_by_name_and_owner(self, name: str, created_by: str) -> bool:
        return bool(self._find_by("created_by", created_by, name=name))


class DynamoStackResourceRepository(DynamoRepository[StackResource], IStackResourceRepository):
    table = tables.STACK_RESOURCES

    def find_by_stack(self, stack_id: UUID) -> List[StackResource]:
        return self._find_by("stack_id", stack_id)

    def find_by_resource_type(self, resource_type_id: UUID) -> List[StackResource]:
        return self._find_by("resource_type_id", resource_type_id)

    def find_by_cloud_provider(self, cloud_provider_id: UUID) -> List[StackResource]:
        return self._find_by("cloud_provider_id", cloud_provider_id)

    def find_by_stack_and_resource_type(
        self, stack_id: UUID, resource_type_id: UUID
    ) -> List[StackResource]:
        return self._find_by("stack_id", stack_id, resource_type_id=resource_type_id)


class DynamoApiKeyRepository(DynamoRepository[ApiKey], IApiKeyRepository):
    table = tables.API_KEYS

    def find_by_key_hash(self, key_hash: str) -> Optional[ApiKey]:
        return self._find_one_by("key_hash", key_hash)

    def find_by_user_email(self, user_email: str) -> List[ApiKey]:
        return self._find_by("user_email", user_email)

    def find_by_user_email_and_is_active(self, user_email: str, is_active: bool) -> List[ApiKey]:
        return self._find_by("user_email", user_email, is_active=is_active)

    def find_by_created_by_email(self, created_by_email: str) -> List[ApiKey]:
        return self._find_by("created_by_email", created_by_email)

    def find_by_key_type(self, key_type: ApiKeyType) -> List[ApiKey]:
        return self._find_by("key_type", key_type)

    def find_by_is_active(self, is_active: bool) -> List[ApiKey]:
        return self._find_by("is_active", is_active)


DYNAMO_REPOSITORIES = (
    DynamoTeamRepository,
    DynamoCloudProviderRepository,
    DynamoResourceTypeRepository,
    DynamoResourceTypeCloudMappingRepository,
    DynamoPropertySchemaRepository,
    DynamoBlueprintRepository,
    DynamoBlueprintResourceRepository,
    DynamoStackRepository,
    DynamoStackResourceRepository,
    DynamoApiKeyRepository,
)
