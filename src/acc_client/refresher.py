"""Background invalidation of cached entities and options.

A :class:`CacheRefresher` periodically asks the server which entities of a
given type changed since its previous poll (``xtk:session#GetModifiedEntities``)
and evicts them from the matching cache. Scheduling is done by a
:class:`RefreshScheduler`: one asyncio task alternating ``sleep`` and
``tick``, so that two ticks never overlap and nothing runs after ``stop()``.
"""

from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET
from typing import Any, Awaitable, Callable, Optional

from . import dom
from .cache import Cache, EntityCache
from .errors import CampaignError

logger = logging.getLogger(__name__)

# Server answer when GetModifiedEntities does not exist (older builds)
METHOD_NOT_FOUND_FAULT = "SOP-330006"


class RefreshScheduler:
    """Runs ``tick`` every ``interval`` seconds on the running event loop."""

    def __init__(
        self,
        tick: Callable[[], Awaitable[Any]],
        name: str,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._tick = tick
        self.name = name
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._stopped = True
        self.interval: Optional[float] = None

    def is_running(self) -> bool:
        return self._task is not None and not self._stopped

    def start(self, interval: float) -> None:
        if self.is_running():
            self.stop()
        self.interval = interval
        self._stopped = False
        self._task = asyncio.create_task(self._run(interval))
        logger.info(f"Started cache refresher '{self.name}' (every {interval}s)")

    def stop(self) -> None:
        if self._task is None:
            return
        self._stopped = True
        task, self._task = self._task, None
        task.cancel()
        logger.info(f"Stopped cache refresher '{self.name}'")

    async def _run(self, interval: float) -> None:
        while not self._stopped:
            await self._sleep(interval)
            if self._stopped:
                break
            try:
                await self._tick()
            except CampaignError as e:
                logger.warning(f"Cache refresher '{self.name}' failed: {e}")
            except Exception as e:
                logger.warning(f"Cache refresher '{self.name}' failed unexpectedly: {e!r}")


class CacheRefresher:
    """Evicts entries of ``cache`` modified on the server since the last poll.

    Args:
        client: Owning client; provides ``invoke_internal``, ``build_number``
            and ``notify_cache_change_listeners``.
        cache: Cache to invalidate.
        entity_type: Entity type polled for (``xtk:schema``, ``xtk:option``).
        name: Label used in logs.
    """

    def __init__(self, client: Any, cache: Cache, entity_type: str, name: str, sleep=asyncio.sleep) -> None:
        self._client = client
        self._cache = cache
        self.entity_type = entity_type
        self.name = name
        self.last_time: Optional[str] = None
        self._scheduler = RefreshScheduler(self.refresh, name, sleep=sleep)

    def start(self, interval: float) -> None:
        self._scheduler.start(interval)

    def stop(self) -> None:
        self._scheduler.stop()

    def is_running(self) -> bool:
        return self._scheduler.is_running()

    def _request(self) -> ET.Element:
        document = ET.Element("cache")
        build_number = self._client.build_number
        if build_number:
            document.set("buildNumber", str(build_number))
        if self.last_time:
            document.set("time", self.last_time)
        entity_type = ET.SubElement(document, "entityType")
        entity_type.set("name", self.entity_type)
        return document

    def _invalidate(self, key: str) -> None:
        if isinstance(self._cache, EntityCache):
            self._cache.remove(self.entity_type, key)
        else:
            self._cache.remove(key)
        if self.entity_type == "xtk:schema":
            self._client.notify_cache_change_listeners(key)

    async def refresh(self) -> None:
        """Poll the server once and apply the invalidations it reports."""
        try:
            result = await self._client.invoke_internal(
                "xtk:session", "GetModifiedEntities", [self._request()]
            )
        except CampaignError as e:
            if e.error_code == METHOD_NOT_FOUND_FAULT or METHOD_NOT_FOUND_FAULT in (e.fault_string or ""):
                logger.info(
                    f"Server does not support GetModifiedEntities, stopping cache refresher '{self.name}'"
                )
                self.stop()
                return
            raise
        if result is None:
            return
        if isinstance(result, (list, tuple)):
            result = result[0] if result else None
            if result is None:
                return
        self.last_time = result.get("time") or self.last_time
        if result.get("emptyCache") == "true":
            logger.debug(f"Cache refresher '{self.name}' clears the whole cache")
            if self.entity_type == "xtk:schema":
                self._client.clear_entity_cache()
            else:
                self._cache.clear()
            return
        for entity in dom.iter_child_elements(result, "entity"):
            pk = entity.get("pk", "")
            if not pk:
                continue
            key = pk.split("|", 1)[1] if "|" in pk else pk
            self._invalidate(key)
