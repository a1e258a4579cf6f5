"""Event ledger repository -- idempotent append and timeline reads.

Duplicate detection is delegated entirely to the (source, event_id) unique
constraint. On PostgreSQL and SQLite the insert uses ON CONFLICT DO NOTHING so
a duplicate never aborts the caller's transaction; on other backends the insert
runs inside a SAVEPOINT and a unique-violation IntegrityError is converted.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.logistics.ledger.models import DispatchEventModel
from src.logistics.ledger.schemas import DispatchEventRecord, DuplicateEvent

logger = structlog.get_logger(__name__)

_CONFLICT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _enum_value(value: str | Enum) -> str:
    return value.value if isinstance(value, Enum) else value


def _is_unique_violation(exc: IntegrityError) -> bool:
    """True for unique-constraint violations, False for FK/NOT NULL failures."""
    pgcode = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    if pgcode is not None:
        return pgcode == "23505"
    message = str(exc.orig).lower()
    return "unique" in message or "duplicate" in message


def _model_to_record(model: DispatchEventModel) -> DispatchEventRecord:
    return DispatchEventRecord(
        id=model.id,
        order_id=model.order_id,
        actor=model.actor,
        event_type=model.event_type,
        payload=model.payload or {},
        source=model.source,
        event_id=model.event_id,
        created_at=model.created_at,
    )


async def insert_event(
    session: AsyncSession,
    *,
    source: str | Enum,
    event_id: str,
    actor: str,
    event_type: str,
    order_id: str | None = None,
    payload: dict[str, Any] | None = None,
) -> DispatchEventRecord | None:
    """Insert a ledger row inside the caller's transaction.

    Does not commit. Returns None when (source, event_id) already exists.
    """
    values: dict[str, Any] = {
        "order_id": order_id,
        "actor": actor,
        "event_type": event_type,
        "payload": payload or {},
        "source": _enum_value(source),
        "event_id": event_id,
        "created_at": datetime.now(timezone.utc),
    }

    dialect = session.get_bind().dialect.name
    conflict_insert = _CONFLICT_INSERTS.get(dialect)

    if conflict_insert is not None:
        stmt = (
            conflict_insert(DispatchEventModel)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["source", "event_id"])
            .returning(DispatchEventModel.id)
        )
        result = await session.execute(stmt)
        new_id = result.scalar_one_or_none()
    else:
        model = DispatchEventModel(**values)
        try:
            async with session.begin_nested():
                session.add(model)
                await session.flush()
        except IntegrityError as exc:
            if not _is_unique_violation(exc):
                raise
            new_id = None
        else:
            new_id = model.id

    if new_id is None:
        return None
    return DispatchEventRecord(id=new_id, **values)


class EventLedger:
    """Append-only ledger of dispatch events.

    Exposes no update or delete. Uses the session_factory callable pattern
    shared by all repositories.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def record(
        self,
        source: str | Enum,
        event_id: str,
        *,
        actor: str,
        event_type: str,
        order_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> DispatchEventRecord | DuplicateEvent:
        """Record an occurrence once per (source, event_id).

        Returns:
            The committed DispatchEventRecord, or DuplicateEvent if the pair
            was already recorded (including by a concurrent writer).
        """
        async for session in self._session_factory():
            record = await insert_event(
                session,
                source=source,
                event_id=event_id,
                actor=actor,
                event_type=event_type,
                order_id=order_id,
                payload=payload,
            )
            if record is None:
                await session.rollback()
                logger.info(
                    "ledger.duplicate_event",
                    source=_enum_value(source),
                    event_id=event_id,
                )
                return DuplicateEvent(source=_enum_value(source), event_id=event_id)

            await session.commit()
            logger.debug(
                "ledger.event_recorded",
                source=record.source,
                event_id=event_id,
                event_type=event_type,
                order_id=order_id,
            )
            return record

        raise RuntimeError("session_factory yielded no session")

    async def list_for_order(self, order_id: str) -> list[DispatchEventRecord]:
        """All events for an order, oldest first (timeline order)."""
        async for session in self._session_factory():
            stmt = (
                select(DispatchEventModel)
                .where(DispatchEventModel.order_id == order_id)
                .order_by(DispatchEventModel.created_at.asc(), DispatchEventModel.id.asc())
            )
            result = await session.execute(stmt)
            return [_model_to_record(m) for m in result.scalars().all()]

        return []
