"""
Relational-specific repository tests.

Covers error translation, finder indexes, record size limits and
connection pool exhaustion on a SQLite file database.
"""

import uuid

import pytest
from sqlalchemy.exc import IntegrityError

from metadata_service.database import Database, get_connect_args
from metadata_service.domain.entities import Team
from metadata_service.domain.exceptions import (CapacityError, ConflictError,
                                                SizeLimitError)
from metadata_service.repositories.sql_repository import (
    SQL_REPOSITORIES, SqlStackRepository, SqlTeamRepository)


@pytest.fixture
def database(sql_settings):
    database = Database(sql_settings)
    database.create_all()
    yield database
    database.dispose()


def integrity_error(message, pgcode=None):
    orig = Exception(message)
    orig.pgcode = pgcode
    return IntegrityError("INSERT ...", {}, orig)


class TestConflictTranslation:
    """Test IntegrityError translation."""

    def test_postgres_unique_violation(self, database, make_stack):
        """Test a unique violation reported by PostgreSQL."""
        repository = SqlStackRepository(database)
        error = integrity_error(
            'duplicate key value violates unique constraint "uq_stacks_name_created_by"\n'
            "DETAIL:  Key (name, created_by)=(svc-a, u1) already exists.",
            pgcode="23505",
        )

        conflict = repository.conflict_from(error, make_stack(name="svc-a", created_by="u1"))

        assert isinstance(conflict, ConflictError)
        assert conflict.constraint == "name+created_by"
        assert conflict.values == ["svc-a", "u1"]

    def test_sqlite_unique_violation(self, database, make_team):
        """Test a unique violation reported by SQLite."""
        repository = SqlTeamRepository(database)
        error = integrity_error("UNIQUE constraint failed: teams.name")

        conflict = repository.conflict_from(error, make_team(name="platform"))

        assert conflict.constraint == "name"

    @pytest.mark.parametrize(
        "message,pgcode",
        [
            (
                'duplicate key value violates unique constraint "teams_pkey"\n'
                "DETAIL:  Key (id)=(5f0c6b1e-2a43-4c5e-9a49-0d7f3a1c2b10) already exists.",
                "23505",
            ),
            ("UNIQUE constraint failed: teams.id", None),
        ],
    )
    def test_primary_key_violation(self, database, make_team, message, pgcode):
        """Test that a duplicate id is reported on the id, not on the name."""
        repository = SqlTeamRepository(database)
        team = make_team(id=uuid.uuid4(), name="platform")

        conflict = repository.conflict_from(integrity_error(message, pgcode), team)

        assert conflict.constraint == "id"
        assert conflict.values == [str(team.id)]

    def test_foreign_key_violation(self, database, make_stack):
        """Test that a dangling reference is a conflict on the reference."""
        repository = SqlStackRepository(database)
        error = integrity_error(
            'insert or update on table "stacks" violates foreign key constraint '
            '"stacks_team_id_fkey"',
            pgcode="23503",
        )

        conflict = repository.conflict_from(error, make_stack(team_id=uuid.uuid4()))

        assert conflict.constraint == "reference"

    def test_other_integrity_errors_pass_through(self, database, make_team):
        """Test that unrelated integrity errors are not translated."""
        repository = SqlTeamRepository(database)
        error = integrity_error('null value in column "name" violates not-null constraint', "23502")

        assert repository.conflict_from(error, make_team()) is None


class TestFinderIndexes:
    """Test that finder columns are indexed."""

    @pytest.mark.parametrize("repository_cls", SQL_REPOSITORIES)
    def test_indexed_fields_have_indexes(self, repository_cls):
        """Test that every column a finder filters on carries an index."""
        table = repository_cls.model_cls.__table__

        for name in repository_cls.indexed_fields:
            column = table.c[name]
            assert column.index or column.unique, f"{table.name}.{name}"


class TestRecordSize:
    """Test the configurable record size limit."""

    def test_oversized_record_rejected(self, database):
        """Test that records above the limit are rejected."""
        repository = SqlTeamRepository(database, max_record_bytes=256)

        with pytest.raises(SizeLimitError):
            repository.save(Team(name="big", description="x" * 1024))

        assert repository.count() == 0

    def test_record_within_limit(self, database):
        """Test that records below the limit are stored."""
        repository = SqlTeamRepository(database, max_record_bytes=1024)

        assert repository.save(Team(name="small")).id is not None


class TestConnectionPool:
    """Test connection pool behaviour."""

    def test_pool_exhaustion(self, sql_settings):
        """Test that waiting past the pool timeout raises CapacityError."""
        settings = sql_settings.model_copy(
            update={"DB_POOL_SIZE": 1, "DB_MAX_OVERFLOW": 0, "DB_POOL_TIMEOUT": 0.1}
        )
        database = Database(settings)
        database.create_all()
        repository = SqlTeamRepository(database)
        held = database.connect()

        try:
            assert database.pool_stats() == {"active": 1, "available": 0, "awaiting": 0, "max": 1}
            with pytest.raises(CapacityError):
                repository.count()
        finally:
            held.close()
            database.dispose()

        assert database.pool_stats()["active"] == 0

    def test_sqlite_connect_args(self):
        """Test driver arguments per URL."""
        assert get_connect_args("sqlite:///x.db") == {"check_same_thread": False, "timeout": 30}
        assert get_connect_args("postgresql://u:p@db/idp") == {}

    def test_rollback_on_error(self, database):
        """Test that a failed transaction leaves no partial writes."""
        with pytest.raises(RuntimeError):
            with database.transaction() as session:
                SqlTeamRepository(database)._write(session, Team(name="ghost"))
                raise RuntimeError("abort")

        assert SqlTeamRepository(database).find_by_name("ghost") is None

    def test_slow_query_logged(self, sql_settings, caplog):
        """Test that statements above the threshold are logged."""
        settings = sql_settings.model_copy(update={"QUERY_LOG_THRESHOLD_MS": 0})
        database = Database(settings)
        database.create_all()

        try:
            with caplog.at_level("WARNING", logger="metadata_service.database"):
                SqlTeamRepository(database).count()
        finally:
            database.dispose()

        assert any("Slow query" in record.getMessage() for record in caplog.records)


class TestSafeUrl:
    """Test credential masking."""

    def test_credentials_hidden(self, sql_settings):
        """Test that credentials never reach the logs."""
        settings = sql_settings.model_copy(
            update={"DATABASE_URL": "postgresql://idp:secret@db:5432/idp"}
        )

        assert settings.safe_database_url == "postgresql://...@db:5432/idp"
        assert "secret" not in settings.safe_database_url
