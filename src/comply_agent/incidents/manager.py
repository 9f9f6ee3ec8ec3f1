"""
Incident Lifecycle Manager

Owns incidents once created. All timeline and field mutation goes through
this class so that updated_at stays consistent with the timeline.
"""

import threading
from dataclasses import fields
from typing import Any, Optional

import structlog

from comply_agent.store.models import (
    SEVERITY_TO_PRIORITY,
    Incident,
    IncidentEvent,
    IncidentEventType,
    IncidentStatus,
    Priority,
    Severity,
    Violation,
    advance,
    utcnow,
)

logger = structlog.get_logger(__name__)

DEFAULT_ACTOR = "ComplianceAgent"

# Fields the update API may not overwrite
_PROTECTED_FIELDS = {"id", "timeline", "created_at", "updated_at", "resolved_at"}

_ENUM_FIELDS = {
    "status": IncidentStatus,
    "priority": Priority,
    "severity": Severity,
}


def severity_to_priority(severity: Severity) -> Priority:
    """Map a violation severity onto an incident priority."""
    return SEVERITY_TO_PRIORITY[severity]


class IncidentManager:
    """Store and lifecycle operations for incidents."""

    def __init__(self, actor: str = DEFAULT_ACTOR):
        self.actor = actor
        self._lock = threading.RLock()
        self._incidents: dict[str, Incident] = {}

    def create_from_violation(self, violation: Violation) -> Incident:
        """
        Open a new incident for a violation.

        The incident inherits the violation's title, description and severity,
        gets its priority from the severity, and starts with a single
        ``created`` timeline event.
        """
        now = utcnow()
        incident = Incident(
            title=violation.title,
            description=violation.description,
            severity=violation.severity,
            priority=severity_to_priority(violation.severity),
            reporter=self.actor,
            violation_ids=[violation.id],
            timeline=[
                IncidentEvent(
                    type=IncidentEventType.CREATED,
                    description="Incident created from violation",
                    actor=self.actor,
                    timestamp=now,
                )
            ],
            created_at=now,
            updated_at=now,
        )

        with self._lock:
            self._incidents[incident.id] = incident

        logger.info(
            "Incident created",
            incident_id=incident.id,
            violation_id=violation.id,
            priority=incident.priority.value,
        )
        return incident

    def add_event(
        self,
        incident: Incident,
        event_type: IncidentEventType,
        description: str,
        actor: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> IncidentEvent:
        """Append an event to an incident's timeline."""
        with self._lock:
            event = IncidentEvent(
                type=event_type,
                description=description,
                actor=actor or self.actor,
                data=data,
            )
            incident.timeline.append(event)
            incident.updated_at = advance(incident.updated_at)
            return event

    def update_incident(self, incident_id: str, **updates: Any) -> Optional[Incident]:
        """
        Shallow-merge fields into an incident.

        No timeline event is recorded; callers wanting an audit entry call
        ``add_event`` as well. Closing sets resolved_at; reopening clears it.

        Returns:
            The updated incident, or None if it does not exist.

        Raises:
            ValueError: If an update names an unknown or protected field, or
                sets status, priority or severity to None or an invalid value.
        """
        allowed = {f.name for f in fields(Incident)} - _PROTECTED_FIELDS
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"Cannot update incident fields: {sorted(unknown)}")

        coerced = {}
        for name, value in updates.items():
            enum_type = _ENUM_FIELDS.get(name)
            if enum_type is not None:
                if value is None:
                    raise ValueError(f"Incident field {name} cannot be None")
                value = enum_type(value)
            coerced[name] = value

        with self._lock:
            incident = self._incidents.get(incident_id)
            if incident is None:
                return None

            for name, value in coerced.items():
                setattr(incident, name, value)

            incident.updated_at = advance(incident.updated_at)
            if incident.status != IncidentStatus.CLOSED:
                incident.resolved_at = None
            elif incident.resolved_at is None:
                incident.resolved_at = incident.updated_at
            return incident

    def link_violation(self, incident_id: str, violation_id: str) -> Optional[Incident]:
        """Attach another violation to an existing incident."""
        with self._lock:
            incident = self._incidents.get(incident_id)
            if incident is None:
                return None
            if violation_id not in incident.violation_ids:
                incident.violation_ids.append(violation_id)
                self.add_event(
                    incident,
                    IncidentEventType.UPDATED,
                    "Violation linked to incident",
                    data={"violation_id": violation_id},
                )
            return incident

    def get_incident(self, incident_id: str) -> Optional[Incident]:
        return self._incidents.get(incident_id)

    def get_all_incidents(self) -> list[Incident]:
        with self._lock:
            return list(self._incidents.values())

    def get_incidents_by_status(self, status: IncidentStatus) -> list[Incident]:
        return [i for i in self.get_all_incidents() if i.status == status]
