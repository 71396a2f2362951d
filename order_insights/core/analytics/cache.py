import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from order_insights.core.config import settings
from order_insights.core.schemas import QueryParams


logger = logging.getLogger(__name__)


def make_cache_key(function_name: str, params: QueryParams, tenant_id: str) -> str:
    """
    Stable key: same function, same effective params, same tenant.

    Example:
        make_cache_key("totalSales", QueryParams(status="paid"), "t1")
        -> '{"fn": "totalSales", "params": {"order": "best", "status": "paid"}, "tenant_id": "t1"}'
    """
    return json.dumps(
        {
            "fn": function_name,
            "params": params.model_dump(exclude_none=True, mode="json"),
            "tenant_id": tenant_id,
        },
        sort_keys=True,
    )


class ResultCache:
    """
    Short-lived result cache keyed by make_cache_key().

    Expired entries are removed when they are next looked up. Failed
    computations are never stored.
    """

    def __init__(
        self,
        ttl_seconds: float = settings.RESULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, computed_at = entry
        if self.clock() - computed_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (value, self.clock())

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_compute(self, key: str, compute: Callable[[], Awaitable[Any]]) -> Any:
        cached = self.get(key)
        if cached is not None:
            logger.info(f"Cache hit: {key}")
            return cached

        # Exceptions propagate before set(), so errors are never cached
        value = await compute()
        self.set(key, value)
        return value


class MetadataCache:
    """
    Per-tenant status / marketplace vocabulary, refreshed every few minutes.

    When a refresh fails the previous value keeps being served.
    """

    def __init__(
        self,
        loader: Callable[[str], Awaitable[Dict[str, List[str]]]],
        ttl_seconds: float = settings.METADATA_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.loader = loader
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[Dict[str, List[str]], float]] = {}

    async def get(self, tenant_id: str) -> Dict[str, List[str]]:
        entry = self._entries.get(tenant_id)
        if entry is not None and self.clock() - entry[1] < self.ttl_seconds:
            return entry[0]

        try:
            value = await self.loader(tenant_id)
        except Exception as error:
            logger.warning(f"Metadata refresh failed for tenant {tenant_id}: {error}")
            if entry is not None:
                return entry[0]
            return {"statuses": [], "marketplaces": []}

        self._entries[tenant_id] = (value, self.clock())
        return value
