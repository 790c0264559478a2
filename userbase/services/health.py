import asyncio
import logging
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from userbase.core.errors import UserbaseError
from userbase.db.base import utcnow
from userbase.db.session import Database
from userbase.services.hive_client import HiveClient

logger = logging.getLogger(__name__)


@dataclass
class ServiceHealth:
    id: str
    name: str
    is_healthy: bool
    last_checked: datetime
    response_time_ms: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_checked"] = self.last_checked.isoformat()
        return data


class HealthChecker:
    """
    Probes the service's dependencies with a hard timeout and caches results.

    The cache is process-local and keyed by probe id; it is the only state
    shared between requests.
    """

    def __init__(
        self,
        database: Database,
        hive_client: HiveClient,
        timeout: float = 5.0,
        cache_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.database = database
        self.hive_client = hive_client
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.clock = clock
        self._cache: Dict[str, tuple] = {}

    async def _probe_hive(self) -> None:
        await self.hive_client.get_dynamic_global_properties()

    async def _probe_database(self) -> None:
        await run_in_threadpool(self.database.ping)

    async def _run(self, probe_id: str, name: str, probe: Callable[[], Awaitable[None]]) -> ServiceHealth:
        cached = self._cache.get(probe_id)
        if cached and self.clock() - cached[0] < self.cache_ttl:
            return cached[1]

        started = self.clock()
        error = None
        try:
            await asyncio.wait_for(probe(), timeout=self.timeout)
        except asyncio.TimeoutError:
            error = f"Timed out after {self.timeout:g}s"
        except (UserbaseError, SQLAlchemyError) as e:
            error = str(e)

        if error:
            logger.warning(f"Health probe {probe_id} failed: {error}")
        result = ServiceHealth(
            id=probe_id,
            name=name,
            is_healthy=error is None,
            last_checked=utcnow(),
            response_time_ms=int((self.clock() - started) * 1000),
            error=error,
        )
        self._cache[probe_id] = (self.clock(), result)
        return result

    async def check_all(self) -> List[ServiceHealth]:
        return list(await asyncio.gather(
            self._run("hive-api", "Hive API", self._probe_hive),
            self._run("database", "Database", self._probe_database),
        ))

    def clear(self) -> None:
        self._cache.clear()
