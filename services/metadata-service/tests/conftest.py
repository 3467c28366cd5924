"""
Test configuration and fixtures.

Every contract test runs twice: against the relational backend on a
SQLite file and against DynamoDB emulated by moto.
"""

import functools
import threading
import uuid

import pytest
from moto import mock_aws
from moto.dynamodb.models import DynamoDBBackend

from metadata_service.config import Settings
from metadata_service.domain.entities import (ApiKey, ApiKeyType, Blueprint,
                                              BlueprintResource, CloudProvider,
                                              ModuleLocationType,
                                              PropertyDataType,
                                              PropertySchema,
                                              ResourceCategory, ResourceType,
                                              ResourceTypeCloudMapping, Stack,
                                              StackResource, StackType, Team)
from metadata_service.providers import build_storage

# moto keeps its tables in plain dicts; concurrent tests serialize access here
MOTO_BACKEND_METHODS = (
    "create_table",
    "describe_table",
    "list_tables",
    "put_item",
    "get_item",
    "batch_get_item",
    "update_item",
    "delete_item",
    "query",
    "scan",
    "transact_write_items",
)


def _serialized(method, lock):
    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        with lock:
            return method(*args, **kwargs)

    return wrapper


@pytest.fixture
def sql_settings(tmp_path):
    """Relational settings on a throwaway SQLite file."""
    return Settings(
        _env_file=None,
        DATABASE_PROVIDER="postgresql",
        DATABASE_URL=f"sqlite:///{tmp_path / 'metadata.db'}",
        DB_CREATE_SCHEMA=True,
        DB_POOL_SIZE=5,
        DB_MAX_OVERFLOW=20,
        QUERY_LOG_THRESHOLD_MS=1000,
    )


@pytest.fixture
def dynamodb_settings():
    """DynamoDB settings with tables created on startup and a short backoff."""
    return Settings(
        _env_file=None,
        DATABASE_PROVIDER="dynamodb",
        DYNAMODB_REGION="us-east-1",
        DYNAMODB_ENDPOINT=None,
        DYNAMODB_TABLE_PREFIX="test",
        DYNAMODB_CREATE_TABLES=True,
        DYNAMODB_BACKOFF_BASE_SECONDS=0.001,
        DYNAMODB_BACKOFF_MAX_SECONDS=0.01,
    )


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def serialized_moto(monkeypatch):
    lock = threading.RLock()
    for name in MOTO_BACKEND_METHODS:
        method = getattr(DynamoDBBackend, name, None)
        if method is not None:
            monkeypatch.setattr(DynamoDBBackend, name, _serialized(method, lock))


@pytest.fixture
def aws(aws_credentials, serialized_moto):
    """Active moto mock for the duration of a test."""
    with mock_aws():
        yield


@pytest.fixture
def postgresql_storage(sql_settings):
    """Storage context on the relational backend."""
    storage = build_storage(sql_settings)
    yield storage
    storage.close()


@pytest.fixture
def dynamodb_storage(aws, dynamodb_settings):
    """Storage context on the DynamoDB backend."""
    storage = build_storage(dynamodb_settings)
    yield storage
    storage.close()


@pytest.fixture(params=["postgresql", "dynamodb"])
def storage(request):
    """Storage context, once per backend."""
    return request.getfixturevalue(f"{request.param}_storage")


@pytest.fixture
def repos(storage):
    return storage.repositories


@pytest.fixture
def make_team():
    def factory(**overrides):
        fields = {"name": f"team-{uuid.uuid4().hex[:8]}", "description": "Platform team"}
        fields.update(overrides)
        return Team(**fields)

    return factory


@pytest.fixture
def make_cloud_provider():
    def factory(**overrides):
        fields = {"name": f"cloud-{uuid.uuid4().hex[:8]}", "display_name": "Cloud"}
        fields.update(overrides)
        return CloudProvider(**fields)

    return factory


@pytest.fixture
def make_resource_type():
    def factory(**overrides):
        fields = {
            "name": f"rt-{uuid.uuid4().hex[:8]}",
            "display_name": "Relational Database",
            "category": ResourceCategory.NON_SHARED,
        }
        fields.update(overrides)
        return ResourceType(**fields)

    return factory


@pytest.fixture
def make_mapping():
    def factory(**overrides):
        fields = {
            "resource_type_id": uuid.uuid4(),
            "cloud_provider_id": uuid.uuid4(),
            "terraform_module_location": "git::https://example.com/modules/rds.git",
            "module_location_type": ModuleLocationType.GIT,
        }
        fields.update(overrides)
        return ResourceTypeCloudMapping(**fields)

    return factory


@pytest.fixture
def make_property_schema():
    def factory(**overrides):
        fields = {
            "mapping_id": uuid.uuid4(),
            "property_name": f"prop_{uuid.uuid4().hex[:8]}",
            "display_name": "Property",
            "data_type": PropertyDataType.STRING,
        }
        fields.update(overrides)
        return PropertySchema(**fields)

    return factory


@pytest.fixture
def make_blueprint():
    def factory(**overrides):
        fields = {"name": f"bp-{uuid.uuid4().hex[:8]}", "description": "Web app blueprint"}
        fields.update(overrides)
        return Blueprint(**fields)

    return factory


@pytest.fixture
def make_blueprint_resource():
    def factory(**overrides):
        fields = {
            "name": f"shared-{uuid.uuid4().hex[:8]}",
            "resource_type_id": uuid.uuid4(),
            "cloud_provider_id": uuid.uuid4(),
            "configuration": {"nodes": 3},
            "cloud_type": "eks",
        }
        fields.update(overrides)
        return BlueprintResource(**fields)

    return factory


@pytest.fixture
def make_stack():
    def factory(**overrides):
        fields = {
            "name": f"svc-{uuid.uuid4().hex[:8]}",
            "created_by": "u1",
            "stack_type": StackType.RESTFUL_API,
        }
        fields.update(overrides)
        return Stack(**fields)

    return factory


@pytest.fixture
def make_stack_resource():
    def factory(**overrides):
        fields = {
            "stack_id": uuid.uuid4(),
            "resource_type_id": uuid.uuid4(),
            "cloud_provider_id": uuid.uuid4(),
            "name": "orders-db",
            "configuration": {"engine": "postgres", "size": "small"},
        }
        fields.update(overrides)
        return StackResource(**fields)

    return factory


@pytest.fixture
def make_api_key():
    def factory(**overrides):
        fields = {
            "key_name": "ci",
            "key_hash": uuid.uuid4().hex,
            "key_prefix": "idp_",
            "key_type": ApiKeyType.USER,
            "created_by_email": "admin@example.com",
        }
        fields.update(overrides)
        return ApiKey(**fields)

    return factory
