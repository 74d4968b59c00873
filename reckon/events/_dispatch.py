"""
Dispatch — fire-and-forget delivery of events and incidents to sinks.

Sinks are called on background tasks so a slow or failing notifier never
blocks or rolls back the request that produced the event. Failures are
logged, never raised into the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Protocol

from combinators import lift as L, parallel as C_parallel
from sqlalchemy.ext.asyncio import AsyncSession

from reckon.db import IncidentTable
from reckon.events._types import DomainEvent, Incident

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Sink Protocols
# ═══════════════════════════════════════════════════════════════════════════════

class NotificationSink(Protocol):
    async def publish(self, event: DomainEvent) -> None: ...


class AuditSink(Protocol):
    async def record(self, incident: Incident) -> None: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Memory Sink — For Testing
# ═══════════════════════════════════════════════════════════════════════════════

class MemorySink:
    """Collects everything it receives. Implements both sink protocols."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []
        self.incidents: list[Incident] = []

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    async def record(self, incident: Incident) -> None:
        self.incidents.append(incident)


# ═══════════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═══════════════════════════════════════════════════════════════════════════════

class Dispatcher:
    def __init__(
        self,
        notifications: NotificationSink | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self._notifications = notifications
        self._audit = audit
        self._tasks: set[asyncio.Task[None]] = set()

    def emit(self, event: DomainEvent) -> None:
        logger.info("event %s order=%s", event.type, event.order_number)
        if self._notifications is not None:
            self._spawn(self._notifications.publish(event), f"publish {event.type}")

    def report(self, incident: Incident) -> None:
        logger.warning(
            "incident %s severity=%s reference=%s: %s",
            incident.kind, incident.severity, incident.reference, incident.message,
        )
        if self._audit is not None:
            self._spawn(self._audit.record(incident), f"audit {incident.kind}")

    async def drain(self) -> None:
        """Wait for in-flight deliveries. Used at shutdown and in tests."""
        while self._tasks:
            pending = tuple(self._tasks)
            # Shielded: a failed delivery must not cancel its siblings
            await C_parallel(*[
                L.catching_async(lambda t=task: asyncio.shield(t), on_error=repr)
                for task in pending
            ])
            self._tasks.difference_update(t for t in pending if t.done())

    def _spawn(self, coro: Awaitable[None], label: str) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task[None]) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and (exc := t.exception()) is not None:
                logger.error("%s failed: %r", label, exc)

        task.add_done_callback(_done)


def incident_row(incident: Incident) -> IncidentTable:
    """Row for persisting an incident inside the caller's transaction."""
    return IncidentTable(
        kind=incident.kind.value,
        severity=incident.severity.value,
        reference=incident.reference,
        order_id=incident.order_id,
        detail={"message": incident.message, **incident.detail},
        created_at=incident.occurred_at,
    )


def add_incident(session: AsyncSession, incident: Incident) -> None:
    session.add(incident_row(incident))
