"""
Tests for the transaction coordinator.

Covers:
- Atomic commit of mixed entity writes
- Rollback when any write conflicts
- Unique value hand-over inside one unit
- Malformed units
"""

import uuid

import pytest

from metadata_service.domain.entities import Stack, StackType
from metadata_service.domain.exceptions import ConflictError, UnitOfWorkError
from metadata_service.repositories.transactions import (MAX_TRANSACTION_ITEMS,
                                                        WriteKind,
                                                        WriteOperation)


class TestWriteOperation:
    """Test write operation construction."""

    def test_put(self, make_team):
        """Test put operation."""
        team = make_team()
        operation = WriteOperation.put(team)

        assert operation.kind is WriteKind.PUT
        assert operation.entity is team

    def test_delete_requires_id(self, make_team):
        """Test that deleting an unsaved entity is rejected."""
        with pytest.raises(UnitOfWorkError):
            WriteOperation.delete(make_team())


class TestUnitOfWork:
    """Test units of work on both backends."""

    def test_commit_all(self, storage, make_team, make_stack, make_stack_resource):
        """Test that every write of a unit is persisted."""
        repos = storage.repositories
        team = make_team(id=uuid.uuid4())
        stack = make_stack(id=uuid.uuid4(), team_id=team.id)
        resource = make_stack_resource(stack_id=stack.id)

        saved = storage.transactions.execute(
            [WriteOperation.put(team), WriteOperation.put(stack), WriteOperation.put(resource)]
        )

        assert [type(e).__name__ for e in saved] == ["Team", "Stack", "StackResource"]
        assert all(e.id is not None and e.created_at is not None for e in saved)
        assert repos.teams.find_by_id(team.id) == saved[0]
        assert repos.stacks.find_by_id(stack.id) == saved[1]
        assert repos.stack_resources.find_by_stack(stack.id) == [saved[2]]

    def test_last_write_conflict_rolls_back_everything(self, storage, make_team, make_stack):
        """Test that a unit whose last write conflicts persists nothing."""
        repos = storage.repositories
        repos.stacks.save(make_stack(name="taken", created_by="u1"))
        team = make_team()
        first = make_stack(name="fresh", created_by="u1")

        with pytest.raises(ConflictError):
            storage.transactions.execute(
                [
                    WriteOperation.put(team),
                    WriteOperation.put(first),
                    WriteOperation.put(make_stack(name="taken", created_by="u1")),
                ]
            )

        assert repos.teams.count() == 0
        assert repos.teams.find_by_name(team.name) is None
        assert [s.name for s in repos.stacks.find_by_owner("u1")] == ["taken"]

    def test_update_and_delete_in_one_unit(self, storage, make_team, make_stack):
        """Test mixing updates and deletes."""
        repos = storage.repositories
        stack = repos.stacks.save(make_stack())
        doomed = repos.teams.save(make_team())
        stack.description = "updated in unit"

        storage.transactions.execute(
            [WriteOperation.put(stack), WriteOperation.delete(doomed)]
        )

        assert repos.stacks.find_by_id(stack.id).description == "updated in unit"
        assert repos.teams.find_by_id(doomed.id) is None

    def test_delete_then_reuse_name(self, storage, make_team):
        """Test that a value freed earlier in a unit can be claimed later in it."""
        repos = storage.repositories
        old = repos.teams.save(make_team(name="platform"))

        saved = storage.transactions.execute(
            [WriteOperation.delete(old), WriteOperation.put(make_team(name="platform"))]
        )

        current = repos.teams.find_by_name("platform")
        assert current.id == saved[0].id
        assert current.id != old.id
        with pytest.raises(ConflictError):
            repos.teams.save(make_team(name="platform"))

    def test_swap_names(self, storage, make_team):
        """Test renaming away from a value that a later write takes."""
        repos = storage.repositories
        a = repos.teams.save(make_team(name="a"))
        a.name = "a-renamed"

        storage.transactions.execute(
            [WriteOperation.put(a), WriteOperation.put(make_team(name="a"))]
        )

        assert repos.teams.find_by_name("a-renamed").id == a.id
        assert repos.teams.find_by_name("a").id != a.id

    def test_two_claims_on_one_value(self, storage, make_team):
        """Test that two new entities claiming one value in a unit conflict."""
        repos = storage.repositories

        with pytest.raises(ConflictError):
            storage.transactions.execute(
                [WriteOperation.put(make_team(name="dup")), WriteOperation.put(make_team(name="dup"))]
            )

        assert repos.teams.count() == 0

    def test_entity_twice_rejected(self, storage, make_team):
        """Test that one entity may appear only once per unit."""
        team = storage.repositories.teams.save(make_team())

        with pytest.raises(UnitOfWorkError):
            storage.transactions.execute([WriteOperation.put(team), WriteOperation.delete(team)])

    def test_empty_unit(self, storage):
        """Test that an empty unit is a no-op."""
        assert storage.transactions.execute([]) == []

    def test_delete_of_absent_entity(self, storage, make_team):
        """Test that deleting an unknown id inside a unit is a no-op."""
        saved = storage.transactions.execute(
            [
                WriteOperation.delete(make_team(id=uuid.uuid4())),
                WriteOperation.put(make_team(name="survivor")),
            ]
        )

        assert storage.repositories.teams.find_by_name("survivor") == saved[0]


class TestDynamoLimits:
    """Test DynamoDB-specific unit limits."""

    def test_oversized_unit_rejected(self, dynamodb_storage):
        """Test that units above the transaction item limit are rejected whole."""
        stacks = [
            Stack(name=f"svc-{i}", created_by="u1", stack_type=StackType.INFRASTRUCTURE)
            for i in range(MAX_TRANSACTION_ITEMS // 2 + 1)
        ]

        with pytest.raises(UnitOfWorkError) as exc_info:
            dynamodb_storage.transactions.execute([WriteOperation.put(s) for s in stacks])

        assert exc_info.value.details["size"] > MAX_TRANSACTION_ITEMS
        assert dynamodb_storage.repositories.stacks.count() == 0

    def test_unit_at_limit_commits(self, dynamodb_storage, make_stack_resource):
        """Test that a unit of exactly the item limit is accepted."""
        resources = [make_stack_resource() for _ in range(MAX_TRANSACTION_ITEMS)]

        dynamodb_storage.transactions.execute([WriteOperation.put(r) for r in resources])

        assert dynamodb_storage.repositories.stack_resources.count() == MAX_TRANSACTION_ITEMS

    def test_large_unit_commits_on_relational_backend(self, postgresql_storage):
        """Test that the relational backend has no item limit."""
        stacks = [
            Stack(name=f"svc-{i}", created_by="u1", stack_type=StackType.INFRASTRUCTURE)
            for i in range(MAX_TRANSACTION_ITEMS)
        ]

        postgresql_storage.transactions.execute([WriteOperation.put(s) for s in stacks])

        assert postgresql_storage.repositories.stacks.count() == MAX_TRANSACTION_ITEMS


class TestDynamoGuardFailures:
    """Test guard conditions that fail inside the transaction itself."""

    def test_last_guard_fails_in_transaction(
        self, dynamodb_storage, make_team, make_stack, monkeypatch
    ):
        """Test that a guard rejected by DynamoDB rolls back the whole unit."""
        repos = dynamodb_storage.repositories
        boto = repos.stacks.client.client
        repos.stacks.save(make_stack(name="taken", created_by="u1"))
        before = boto.scan(TableName="test_unique_values")["Items"]
        # The index does not show the duplicate yet; only the guard can catch it
        monkeypatch.setattr(repos.stacks, "_precheck", lambda rule, entity, released=(): None)
        team = make_team()

        with pytest.raises(ConflictError) as exc_info:
            dynamodb_storage.transactions.execute(
                [
                    WriteOperation.put(team),
                    WriteOperation.put(make_stack(name="fresh", created_by="u1")),
                    WriteOperation.put(make_stack(name="taken", created_by="u1")),
                ]
            )

        assert exc_info.value.constraint == "name+created_by"
        assert repos.teams.count() == 0
        assert [s.name for s in repos.stacks.find_all()] == ["taken"]
        after = boto.scan(TableName="test_unique_values")["Items"]
        assert sorted(i["id"]["S"] for i in after) == sorted(i["id"]["S"] for i in before)
