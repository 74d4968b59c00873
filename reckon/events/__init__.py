"""
Events — domain events, incidents and their fire-and-forget delivery.

Usage:
    dispatcher = Dispatcher(notifications=sink, audit=sink)

    async with session.begin():
        add_incident(session, incident)   # persisted with the transaction
    dispatcher.report(incident)           # forwarded after commit
"""

from reckon.events._dispatch import (
    AuditSink,
    Dispatcher,
    MemorySink,
    NotificationSink,
    add_incident,
    incident_row,
)
from reckon.events._types import DomainEvent, EventType, Incident, IncidentKind, Severity

__all__ = (
    "AuditSink",
    "Dispatcher",
    "MemorySink",
    "NotificationSink",
    "add_incident",
    "incident_row",
    "DomainEvent",
    "EventType",
    "Incident",
    "IncidentKind",
    "Severity",
)
