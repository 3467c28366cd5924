"""
Transaction coordinator: atomic multi-entity units of work.

Both implementations take the same list of write operations and either
apply all of them or none.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Sequence, Set, Type
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError

from ..database import Database
from ..domain.entities import Entity
from ..domain.exceptions import ConflictError, UnitOfWorkError
from ..infrastructure.dynamodb_client import DynamoDBClient
from ..metrics import track_transaction
from .dynamodb_repository import (DynamoRepository, TransactItem, run_transaction,
                                  write_with_retry)
from .sql_repository import SqlRepository

logger = structlog.get_logger(__name__)

# DynamoDB's ceiling on items per TransactWriteItems request
MAX_TRANSACTION_ITEMS = 100


class WriteKind(str, Enum):
    PUT = "put"
    DELETE = "delete"


@dataclass(frozen=True)
class WriteOperation:
    """
    One write in a unit of work.

    ``put`` inserts or fully overwrites, with the same semantics as
    ``Repository.save``; ``delete`` removes the entity if it exists.
    """

    kind: WriteKind
    entity: Entity

    @classmethod
    def put(cls, entity: Entity) -> "WriteOperation":
        return cls(WriteKind.PUT, entity)

    @classmethod
    def delete(cls, entity: Entity) -> "WriteOperation":
        if entity.id is None:
            raise UnitOfWorkError("cannot delete an entity without an id")
        return cls(WriteKind.DELETE, entity)


class TransactionCoordinator(ABC):
    """Executes a list of writes as a single atomic unit."""

    backend: str

    def __init__(self, repositories: Dict[Type[Entity], Any]):
        self.repositories = repositories

    def _repository_for(self, entity: Entity):
        try:
            return self.repositories[type(entity)]
        except KeyError:
            raise UnitOfWorkError(f"no repository for {type(entity).__name__}") from None

    def execute(self, operations: Sequence[WriteOperation]) -> List[Entity]:
        """
        Apply ``operations`` atomically.

        Args:
            operations: Writes in application order

        Returns:
            The stored entities of the put operations, in order

        Raises:
            UnitOfWorkError: If the unit is malformed or too large
            ConflictError: If any write violates a unique rule; nothing
                of the unit is persisted
        """
        operations = list(operations)
        if not operations:
            return []
        ids = [op.entity.id for op in operations if op.entity.id is not None]
        if len(ids) != len(set(ids)):
            raise UnitOfWorkError("an entity appears more than once in the unit of work")
        start = time.perf_counter()
        try:
            saved = self._execute(operations)
        except Exception as e:
            track_transaction(self.backend, len(operations), success=False)
            logger.warning(
                "unit_of_work_failed",
                backend=self.backend,
                size=len(operations),
                error_type=type(e).__name__,
            )
            raise
        track_transaction(self.backend, len(operations), success=True)
        logger.debug(
            "unit_of_work_committed",
            backend=self.backend,
            size=len(operations),
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return saved

    @abstractmethod
    def _execute(self, operations: List[WriteOperation]) -> List[Entity]:
        pass


class SqlTransactionCoordinator(TransactionCoordinator):
    """All writes share one native transaction; any exception rolls back the lot."""

    backend = "postgresql"

    def __init__(self, database: Database, repositories: Dict[Type[Entity], SqlRepository]):
        super().__init__(repositories)
        self.database = database

    def _execute(self, operations: List[WriteOperation]) -> List[Entity]:
        saved = []
        current = None
        try:
            with self.database.transaction() as session:
                for operation in operations:
                    current = operation
                    repository = self._repository_for(operation.entity)
                    if operation.kind is WriteKind.PUT:
                        saved.append(repository._write(session, operation.entity))
                    else:
                        repository._delete_in(session, operation.entity.id)
        except IntegrityError as e:
            conflict = self._repository_for(current.entity).conflict_from(e, current.entity)
            if conflict is None:
                raise
            raise conflict from e
        return saved


class DynamoTransactionCoordinator(TransactionCoordinator):
    """
    Merges the write plans of every operation into one TransactWriteItems call.

    Units larger than DynamoDB's item limit are rejected, never split.
    """

    backend = "dynamodb"

    def __init__(self, client: DynamoDBClient, repositories: Dict[Type[Entity], DynamoRepository]):
        super().__init__(repositories)
        self.client = client

    def _execute(self, operations: List[WriteOperation]) -> List[Entity]:
        owners = {
            repository.entity_name: repository for repository in self.repositories.values()
        }
        return write_with_retry(self.client, lambda: self._attempt(operations), owners)

    def _attempt(self, operations: List[WriteOperation]) -> List[Entity]:
        saved = []
        items: List[TransactItem] = []
        # Entities written earlier in the unit no longer hold their old unique values
        released: Set[UUID] = set()
        for operation in operations:
            repository = self._repository_for(operation.entity)
            if operation.kind is WriteKind.PUT:
                plan = repository.plan_save(operation.entity, released)
                saved.append(plan.entity)
                released.add(plan.entity.id)
            else:
                plan = repository.plan_delete(operation.entity.id)
                released.add(operation.entity.id)
            items.extend(plan.items)

        items = self._merge_guards(items)
        if len(items) > MAX_TRANSACTION_ITEMS:
            raise UnitOfWorkError(
                f"{len(items)} writes exceed the limit of {MAX_TRANSACTION_ITEMS} per transaction",
                size=len(items),
            )
        if items:
            run_transaction(self.client, items)
        return saved

    def _merge_guards(self, items: List[TransactItem]) -> List[TransactItem]:
        """
        Collapse guard writes that hit the same unique value.

        DynamoDB rejects a transaction touching one item twice. A value
        released by one write and claimed by a later one becomes a single
        guard put that accepts either owner; two claims on one value are a
        conflict, as they would be on the relational backend.
        """
        merged: List[TransactItem] = []
        positions: Dict[tuple, int] = {}
        for item in items:
            position = positions.get((item.table, item.key))
            if position is None:
                positions[(item.table, item.key)] = len(merged)
                merged.append(item)
                continue
            previous = merged[position]
            if item.conflict is None:
                # Releasing a value claimed earlier in the unit: the claim wins
                if previous.conflict is not None:
                    continue
                raise UnitOfWorkError(f"item {item.key} in {item.table} is written more than once")
            if previous.conflict is not None:
                entity, constraint, values = item.conflict
                raise ConflictError(
                    entity, constraint, values, reason="claimed twice in one unit of work"
                )
            merged[position] = self._claim_released(item, previous)
        return merged

    def _claim_released(self, claim: TransactItem, release: TransactItem) -> TransactItem:
        put = dict(claim.request["Put"])
        previous_owner = release.request["Delete"]["ExpressionAttributeValues"][":owner"]
        put["ConditionExpression"] = f"{put['ConditionExpression']} OR #owner = :released"
        put["ExpressionAttributeValues"] = {
            **put["ExpressionAttributeValues"],
            ":released": previous_owner,
        }
        return TransactItem(
            request={"Put": put}, table=claim.table, key=claim.key, conflict=claim.conflict
        )
