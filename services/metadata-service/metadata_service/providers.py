"""
Database provider selection.

``build_storage`` runs once at startup: it resolves ``DATABASE_PROVIDER``,
validates the matching configuration bundle and wires the repositories,
the transaction coordinator and the health reporter of that backend into
one ``StorageContext``. The context is handed to dependents explicitly;
there is no process-wide provider state.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Type

import structlog

from .config import Settings
from .database import Database
from .domain.entities import (ApiKey, Blueprint, BlueprintResource,
                              CloudProvider, Entity, PropertySchema,
                              ResourceType, ResourceTypeCloudMapping, Stack,
                              StackResource, Team)
from .domain.exceptions import ConfigurationError
from .health import DynamoHealthReporter, HealthReporter, SqlHealthReporter
from .infrastructure.dynamodb_client import DynamoDBClient
from .infrastructure.dynamodb_tables import STACKS, ensure_tables
from .repositories import dynamodb_repository as dynamo
from .repositories import sql_repository as sql
from .repositories.base import (IApiKeyRepository, IBlueprintRepository,
                                IBlueprintResourceRepository,
                                ICloudProviderRepository,
                                IPropertySchemaRepository, IRepository,
                                IResourceTypeCloudMappingRepository,
                                IResourceTypeRepository, IStackRepository,
                                IStackResourceRepository, ITeamRepository)
from .repositories.transactions import (DynamoTransactionCoordinator,
                                        SqlTransactionCoordinator,
                                        TransactionCoordinator)

logger = structlog.get_logger(__name__)


class DatabaseProvider(str, Enum):
    """Supported storage backends, by their configuration value."""

    POSTGRESQL = "postgresql"
    DYNAMODB = "dynamodb"


def resolve_provider(value: Optional[str]) -> DatabaseProvider:
    """
    Map the configured provider string to a backend.

    Matching is exact: surrounding whitespace or a different case is
    rejected like any other unknown value.

    Raises:
        ConfigurationError: If the value is not one of the supported providers
    """
    for provider in DatabaseProvider:
        if value == provider.value:
            return provider
    options = ", ".join(f"'{p.value}'" for p in DatabaseProvider)
    raise ConfigurationError(
        f"Invalid database provider '{value or ''}'. Valid options are: {options}",
        setting="DATABASE_PROVIDER",
        value=value,
    )


@dataclass
class RepositoryRegistry:
    """The repositories of one backend."""

    teams: ITeamRepository
    cloud_providers: ICloudProviderRepository
    resource_types: IResourceTypeRepository
    resource_type_cloud_mappings: IResourceTypeCloudMappingRepository
    property_schemas: IPropertySchemaRepository
    blueprints: IBlueprintRepository
    blueprint_resources: IBlueprintResourceRepository
    stacks: IStackRepository
    stack_resources: IStackResourceRepository
    api_keys: IApiKeyRepository

    def by_entity(self) -> Dict[Type[Entity], IRepository]:
        return {
            Team: self.teams,
            CloudProvider: self.cloud_providers,
            ResourceType: self.resource_types,
            ResourceTypeCloudMapping: self.resource_type_cloud_mappings,
            PropertySchema: self.property_schemas,
            Blueprint: self.blueprints,
            BlueprintResource: self.blueprint_resources,
            Stack: self.stacks,
            StackResource: self.stack_resources,
            ApiKey: self.api_keys,
        }

    def for_entity(self, entity_cls: Type[Entity]) -> IRepository:
        try:
            return self.by_entity()[entity_cls]
        except KeyError:
            raise KeyError(f"No repository for {entity_cls.__name__}") from None


@dataclass
class StorageContext:
    """Everything the service layer needs from the storage layer."""

    provider: DatabaseProvider
    repositories: RepositoryRegistry
    transactions: TransactionCoordinator
    health: HealthReporter
    _closers: List[Callable[[], None]] = field(default_factory=list, repr=False)

    def close(self) -> None:
        for closer in self._closers:
            closer()
        self._closers.clear()


def _validate(provider: DatabaseProvider, settings: Settings) -> None:
    if provider is DatabaseProvider.POSTGRESQL and not settings.DATABASE_URL:
        raise ConfigurationError(
            "DATABASE_URL is required when DATABASE_PROVIDER is 'postgresql'",
            setting="DATABASE_URL",
        )
    if provider is DatabaseProvider.DYNAMODB:
        if not settings.DYNAMODB_REGION:
            raise ConfigurationError(
                "DYNAMODB_REGION is required when DATABASE_PROVIDER is 'dynamodb'",
                setting="DYNAMODB_REGION",
            )
        if not settings.DYNAMODB_TABLE_PREFIX:
            raise ConfigurationError(
                "DYNAMODB_TABLE_PREFIX must not be empty", setting="DYNAMODB_TABLE_PREFIX"
            )


def _build_sql(settings: Settings) -> StorageContext:
    database = Database(settings)
    if settings.DB_CREATE_SCHEMA:
        database.create_all()

    def make(repository_cls):
        return repository_cls(database, max_record_bytes=settings.DB_MAX_RECORD_BYTES)

    repositories = RepositoryRegistry(
        teams=make(sql.SqlTeamRepository),
        cloud_providers=make(sql.SqlCloudProviderRepository),
        resource_types=make(sql.SqlResourceTypeRepository),
        resource_type_cloud_mappings=make(sql.SqlResourceTypeCloudMappingRepository),
        property_schemas=make(sql.SqlPropertySchemaRepository),
        blueprints=make(sql.SqlBlueprintRepository),
        blueprint_resources=make(sql.SqlBlueprintResourceRepository),
        stacks=make(sql.SqlStackRepository),
        stack_resources=make(sql.SqlStackResourceRepository),
        api_keys=make(sql.SqlApiKeyRepository),
    )
    return StorageContext(
        provider=DatabaseProvider.POSTGRESQL,
        repositories=repositories,
        transactions=SqlTransactionCoordinator(database, repositories.by_entity()),
        health=SqlHealthReporter(
            database, repositories.stacks, timeout=settings.HEALTH_CHECK_TIMEOUT_SECONDS
        ),
        _closers=[database.dispose],
    )


def _build_dynamo(settings: Settings, client=None) -> StorageContext:
    dynamodb = DynamoDBClient(settings, client=client)
    prefix = settings.DYNAMODB_TABLE_PREFIX
    if settings.DYNAMODB_CREATE_TABLES:
        ensure_tables(dynamodb, prefix)

    def make(repository_cls):
        return repository_cls(dynamodb, prefix)

    repositories = RepositoryRegistry(
        teams=make(dynamo.DynamoTeamRepository),
        cloud_providers=make(dynamo.DynamoCloudProviderRepository),
        resource_types=make(dynamo.DynamoResourceTypeRepository),
        resource_type_cloud_mappings=make(dynamo.DynamoResourceTypeCloudMappingRepository),
        property_schemas=make(dynamo.DynamoPropertySchemaRepository),
        blueprints=make(dynamo.DynamoBlueprintRepository),
        blueprint_resources=make(dynamo.DynamoBlueprintResourceRepository),
        stacks=make(dynamo.DynamoStackRepository),
        stack_resources=make(dynamo.DynamoStackResourceRepository),
        api_keys=make(dynamo.DynamoApiKeyRepository),
    )
    return StorageContext(
        provider=DatabaseProvider.DYNAMODB,
        repositories=repositories,
        transactions=DynamoTransactionCoordinator(dynamodb, repositories.by_entity()),
        health=DynamoHealthReporter(
            dynamodb,
            STACKS.table_name(prefix),
            timeout=settings.HEALTH_CHECK_TIMEOUT_SECONDS,
        ),
        _closers=[dynamodb.client.close],
    )


def build_storage(settings: Settings, dynamodb_client=None) -> StorageContext:
    """
    Build the storage layer for the configured provider.

    Args:
        settings: Service settings, read once here
        dynamodb_client: Pre-built boto3 client for the DynamoDB backend (tests)

    Returns:
        Storage context wired for exactly one backend

    Raises:
        ConfigurationError: If the provider or its settings are invalid
    """
    provider = resolve_provider(settings.DATABASE_PROVIDER)
    _validate(provider, settings)
    logger.info("storage_provider_selected", provider=provider.value)

    if provider is DatabaseProvider.POSTGRESQL:
        return _build_sql(settings)
    return _build_dynamo(settings, client=dynamodb_client)
