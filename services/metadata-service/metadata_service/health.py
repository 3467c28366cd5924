"""
Storage health reporting.

Each check runs one cheap read-only probe against the active backend in a
short-lived worker thread with a sub-second deadline, then adds the
backend's saturation counters. The body follows the MicroProfile health
format; downstream alerting depends on the exact field names.
"""

import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Dict

import structlog

from .database import Database
from .infrastructure.dynamodb_client import DynamoDBClient
from .metrics import update_pool_stats
from .repositories.base import IStackRepository

logger = structlog.get_logger(__name__)

STATUS_UP = "UP"
STATUS_DOWN = "DOWN"


class HealthReporter(ABC):
    """Liveness/readiness of one storage backend."""

    provider: str

    def __init__(self, timeout: float = 0.8):
        self.timeout = timeout

    @property
    def check_name(self) -> str:
        return f"database-{self.provider}"

    @abstractmethod
    def _probe(self) -> Dict[str, Any]:
        """One read-only backend call; returns data fields for the body."""
        pass

    @abstractmethod
    def _saturation(self) -> Dict[str, Any]:
        """In-process saturation counters; must not touch the backend."""
        pass

    def check(self) -> Dict[str, Any]:
        """
        Run the probe and build the health body.

        Returns:
            ``{"status": ..., "checks": [{"name", "status", "data"}]}``
        """
        start = time.perf_counter()
        data: Dict[str, Any] = {"provider": self.provider}
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="health-probe")
        try:
            data.update(executor.submit(self._probe).result(timeout=self.timeout))
            status = STATUS_UP
        except FutureTimeoutError:
            status = STATUS_DOWN
            data["error"] = f"probe exceeded {self.timeout}s"
            data["errorType"] = "TimeoutError"
            logger.warning("health_probe_timeout", provider=self.provider, timeout=self.timeout)
        except Exception as e:
            status = STATUS_DOWN
            data["error"] = str(e)
            data["errorType"] = type(e).__name__
            logger.warning("health_probe_failed", provider=self.provider, error=str(e))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        data.update(self._saturation())
        data["durationMs"] = round((time.perf_counter() - start) * 1000, 2)
        return {
            "status": status,
            "checks": [{"name": self.check_name, "status": status, "data": data}],
        }


class SqlHealthReporter(HealthReporter):
    """Counts stacks and reports connection pool occupancy."""

    provider = "postgresql"

    def __init__(self, database: Database, stacks: IStackRepository, timeout: float = 0.8):
        super().__init__(timeout)
        self.database = database
        self.stacks = stacks

    def _probe(self) -> Dict[str, Any]:
        return {"stackCount": self.stacks.count()}

    def _saturation(self) -> Dict[str, Any]:
        stats = self.database.pool_stats()
        update_pool_stats(stats)
        return {f"connectionPool.{name}": value for name, value in stats.items()}


class DynamoHealthReporter(HealthReporter):
    """Describes the stacks table and reports consumed throughput and throttling."""

    provider = "dynamodb"

    def __init__(self, client: DynamoDBClient, table_name: str, timeout: float = 0.8):
        super().__init__(timeout)
        self.client = client
        self.table_name = table_name

    def _probe(self) -> Dict[str, Any]:
        table = self.client.call("describe_table", TableName=self.table_name)["Table"]
        return {
            "tableName": self.table_name,
            "tableStatus": table.get("TableStatus"),
            "itemCount": table.get("ItemCount", 0),
        }

    def _saturation(self) -> Dict[str, Any]:
        return {
            f"throughput.{name}": value for name, value in self.client.stats.snapshot().items()
        }
