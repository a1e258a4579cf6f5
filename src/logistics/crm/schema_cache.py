"""Time-bounded cache of HubSpot property schemas.

One instance is built at startup and injected into the sync orchestrator.
Each object kind is fetched lazily on first use and refreshed inline on the
first read after its TTL lapses. If a refresh fails and an older copy exists,
the stale copy is served and the failure is logged; with nothing cached the
error propagates to the caller.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from src.logistics.crm.schemas import ObjectKind, PropertyDefinition, SchemaCacheStatus

logger = structlog.get_logger(__name__)

SchemaFetcher = Callable[[ObjectKind], Awaitable[list[PropertyDefinition]]]


@dataclass
class _Entry:
    definitions: list[PropertyDefinition]
    fetched_at: float
    last_error: str | None = None


class PropertySchemaCache:
    """Per-object-kind property schema cache with TTL and stale fallback.

    Args:
        fetcher: Coroutine returning the live definitions for a kind.
        ttl_seconds: Freshness window (default one hour).
        enabled: When False every read goes to the fetcher.
        clock: Wall-clock seconds source; injectable for tests.
    """

    def __init__(
        self,
        fetcher: SchemaFetcher,
        ttl_seconds: int = 3600,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._fetcher = fetcher
        self._ttl = ttl_seconds
        self._enabled = enabled
        self._clock = clock
        self._entries: dict[ObjectKind, _Entry] = {}

    def _is_fresh(self, entry: _Entry) -> bool:
        return (self._clock() - entry.fetched_at) < self._ttl

    async def get(self, kind: ObjectKind) -> list[PropertyDefinition]:
        """Definitions for `kind`, fetching if missing or expired."""
        entry = self._entries.get(kind)
        if self._enabled and entry is not None and self._is_fresh(entry):
            return entry.definitions

        try:
            definitions = await self._fetcher(kind)
        except Exception as exc:
            if entry is None:
                raise
            entry.last_error = str(exc)
            logger.warning(
                "schema_cache.refresh_failed_serving_stale",
                object_kind=kind.value,
                age_seconds=round(self._clock() - entry.fetched_at, 1),
                error=str(exc),
            )
            return entry.definitions

        self._entries[kind] = _Entry(definitions=definitions, fetched_at=self._clock())
        logger.info(
            "schema_cache.refreshed",
            object_kind=kind.value,
            property_count=len(definitions),
        )
        return definitions

    def invalidate(self, kind: ObjectKind | None = None) -> None:
        """Drop one kind, or everything when kind is None."""
        if kind is None:
            self._entries.clear()
        else:
            self._entries.pop(kind, None)
        logger.info("schema_cache.invalidated", object_kind=kind.value if kind else "all")

    def status(self) -> list[SchemaCacheStatus]:
        """Snapshot of every object kind, cached or not."""
        now = self._clock()
        statuses: list[SchemaCacheStatus] = []
        for kind in ObjectKind:
            entry = self._entries.get(kind)
            if entry is None:
                statuses.append(SchemaCacheStatus(object_kind=kind, cached=False))
                continue
            statuses.append(
                SchemaCacheStatus(
                    object_kind=kind,
                    cached=True,
                    property_count=len(entry.definitions),
                    fetched_at=datetime.fromtimestamp(entry.fetched_at, tz=timezone.utc),
                    age_seconds=round(now - entry.fetched_at, 1),
                    expired=not self._is_fresh(entry),
                    last_error=entry.last_error,
                )
            )
        return statuses
