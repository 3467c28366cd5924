"""
DynamoDB table layout.

One table per entity, keyed by ``id``. Every finder has a global
secondary index ``<attribute>-createdAt-index`` whose sort key is the
creation timestamp, so index queries come back in creation order.
DynamoDB cannot index booleans, so a boolean finder attribute gets a
string shadow ``<attribute>Flag`` (``"true"`` / ``"false"``) that is indexed
instead.
Uniqueness guards live in a separate ``<prefix>_unique_values`` table.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

import structlog

from .dynamodb_client import DynamoDBClient

logger = structlog.get_logger(__name__)

PARTITION_KEY = "id"
SORT_KEY = "createdAt"

UNIQUE_VALUES_SUFFIX = "unique_values"
GUARD_OWNER = "ownerId"


def index_name(attribute: str) -> str:
    return f"{attribute}-{SORT_KEY}-index"


def flag_attribute(attribute: str) -> str:
    return f"{attribute}Flag"


def flag_value(value: bool) -> Dict[str, str]:
    return {"S": "true" if value else "false"}


@dataclass(frozen=True)
class TableDefinition:
    suffix: str
    indexed_attributes: Tuple[str, ...] = ()
    flag_attributes: Tuple[str, ...] = ()

    @property
    def index_keys(self) -> Tuple[str, ...]:
        """Partition key attribute of every secondary index."""
        return self.indexed_attributes + tuple(flag_attribute(a) for a in self.flag_attributes)

    def table_name(self, prefix: str) -> str:
        return f"{prefix}_{self.suffix}"

    def create_params(self, prefix: str) -> Dict:
        """Arguments for ``CreateTable``, on-demand billing."""
        attributes = [{"AttributeName": PARTITION_KEY, "AttributeType": "S"}]
        params = {
            "TableName": self.table_name(prefix),
            "KeySchema": [{"AttributeName": PARTITION_KEY, "KeyType": "HASH"}],
            "BillingMode": "PAY_PER_REQUEST",
        }
        if self.index_keys:
            attributes.append({"AttributeName": SORT_KEY, "AttributeType": "S"})
            attributes.extend(
                {"AttributeName": attr, "AttributeType": "S"} for attr in self.index_keys
            )
            params["GlobalSecondaryIndexes"] = [
                {
                    "IndexName": index_name(attr),
                    "KeySchema": [
                        {"AttributeName": attr, "KeyType": "HASH"},
                        {"AttributeName": SORT_KEY, "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                }
                for attr in self.index_keys
            ]
        params["AttributeDefinitions"] = attributes
        return params


TEAMS = TableDefinition("teams", ("name",))
CLOUD_PROVIDERS = TableDefinition("cloud_providers", ("name",))
RESOURCE_TYPES = TableDefinition("resource_types", ("name", "category"), ("enabled",))
RESOURCE_TYPE_CLOUD_MAPPINGS = TableDefinition(
    "resource_type_cloud_mappings", ("resourceTypeId", "cloudProviderId"), ("enabled",)
)
PROPERTY_SCHEMAS = TableDefinition("property_schemas", ("mappingId",))
BLUEPRINTS = TableDefinition("blueprints", ("name",))
BLUEPRINT_RESOURCES = TableDefinition(
    "blueprint_resources", ("blueprintId", "resourceTypeId", "cloudProviderId"), ("isActive",)
)
STACKS = TableDefinition(
    "stacks",
    ("createdBy", "stackType", "teamId", "cloudProviderId", "blueprintId", "ephemeralPrefix"),
)
STACK_RESOURCES = TableDefinition(
    "stack_resources", ("stackId", "resourceTypeId", "cloudProviderId")
)
API_KEYS = TableDefinition(
    "api_keys", ("keyHash", "userEmail", "createdByEmail", "keyType"), ("isActive",)
)
UNIQUE_VALUES = TableDefinition(UNIQUE_VALUES_SUFFIX)

ALL_TABLES = (
    TEAMS,
    CLOUD_PROVIDERS,
    RESOURCE_TYPES,
    RESOURCE_TYPE_CLOUD_MAPPINGS,
    PROPERTY_SCHEMAS,
    BLUEPRINTS,
    BLUEPRINT_RESOURCES,
    STACKS,
    STACK_RESOURCES,
    API_KEYS,
    UNIQUE_VALUES,
)


def list_table_names(client: DynamoDBClient) -> List[str]:
    names: List[str] = []
    params: Dict = {}
    while True:
        response = client.call("list_tables", **params)
        names.extend(response.get("TableNames", []))
        last = response.get("LastEvaluatedTableName")
        if not last:
            return names
        params["ExclusiveStartTableName"] = last


def ensure_tables(client: DynamoDBClient, prefix: str) -> List[str]:
    """
    Create any missing table and wait until it is active.

    Returns:
        Names of the tables that were created
    """
    existing = set(list_table_names(client))
    created = []
    for definition in ALL_TABLES:
        name = definition.table_name(prefix)
        if name in existing:
            continue
        client.call("create_table", **definition.create_params(prefix))
        created.append(name)
        logger.info("dynamodb_table_created", table=name)

    waiter = client.client.get_waiter("table_exists")
    for name in created:
        waiter.wait(TableName=name, WaiterConfig={"Delay": 1, "MaxAttempts": 60})
    return created
