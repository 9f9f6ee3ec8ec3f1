"""
Data Models

Defines the data structures used throughout the compliance engine for
policies, violations, evidence, remediation actions and incidents.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional
import uuid


class Severity(str, Enum):
    """Violation severity levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class AssetType(str, Enum):
    """Types of monitored assets."""
    DOMAIN = "domain"
    IP = "ip"
    CERTIFICATE = "certificate"
    CLOUD_RESOURCE = "cloud_resource"


class ComplianceFramework(str, Enum):
    """Compliance frameworks a policy or rule belongs to."""
    SOC2 = "SOC2"
    ISO27001 = "ISO27001"
    HIPAA = "HIPAA"
    GDPR = "GDPR"
    PCI_DSS = "PCI-DSS"
    CUSTOM = "CUSTOM"


class PolicyStatus(str, Enum):
    """Lifecycle status of a policy document."""
    ACTIVE = "active"
    DRAFT = "draft"
    ARCHIVED = "archived"
    SUPERSEDED = "superseded"


class ViolationStatus(str, Enum):
    """Violation lifecycle status."""
    OPEN = "open"
    INVESTIGATING = "investigating"
    REMEDIATING = "remediating"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


class EvidenceType(str, Enum):
    """Kinds of evidence attached to a violation."""
    SCREENSHOT = "screenshot"
    LOG = "log"
    API_RESPONSE = "api_response"
    CONFIG = "config"
    CERTIFICATE = "certificate"
    OTHER = "other"


class RemediationType(str, Enum):
    MANUAL = "manual"
    AUTOMATED = "automated"


class RemediationStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class IncidentStatus(str, Enum):
    """Incident lifecycle status."""
    OPEN = "open"
    INVESTIGATING = "investigating"
    MITIGATED = "mitigated"
    CLOSED = "closed"


class Priority(str, Enum):
    """Incident priority (P1 is most urgent)."""
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    P4 = "P4"


class IncidentEventType(str, Enum):
    """Types of incident timeline events."""
    CREATED = "created"
    UPDATED = "updated"
    COMMENT = "comment"
    STATUS_CHANGE = "status_change"
    ASSIGNMENT = "assignment"
    ESCALATION = "escalation"


SYSTEM_POLICY_ID = "system"

SEVERITY_TO_PRIORITY = {
    Severity.CRITICAL: Priority.P1,
    Severity.HIGH: Priority.P2,
    Severity.MEDIUM: Priority.P3,
    Severity.LOW: Priority.P4,
    Severity.INFO: Priority.P4,
}


def generate_id() -> str:
    """Generate a unique identifier."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Get the current UTC time."""
    return datetime.now(timezone.utc)


def advance(previous: datetime) -> datetime:
    """Get a timestamp strictly later than ``previous``."""
    now = utcnow()
    if now > previous:
        return now
    return previous + timedelta(microseconds=1)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Policy:
    """A parsed compliance policy, reduced to what violation linkage needs."""
    id: str
    name: str
    framework: ComplianceFramework = ComplianceFramework.CUSTOM
    status: PolicyStatus = PolicyStatus.ACTIVE
    description: str = ""
    version: str = "1.0"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "framework": self.framework.value,
            "status": self.status.value,
            "description": self.description,
            "version": self.version,
        }


@dataclass
class ViolationEvidence:
    """Evidence snapshot supporting a violation."""
    type: EvidenceType
    description: str
    data: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "description": self.description,
            "data": self.data,
            "timestamp": _iso(self.timestamp),
        }


@dataclass
class RemediationAction:
    """A manual or automated remediation step for a violation."""
    description: str
    type: RemediationType = RemediationType.MANUAL
    status: RemediationStatus = RemediationStatus.PENDING
    id: str = field(default_factory=generate_id)
    assigned_to: Optional[str] = None
    completed_at: Optional[datetime] = None
    automation_script: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "description": self.description,
            "assigned_to": self.assigned_to,
            "completed_at": _iso(self.completed_at),
            "automation_script": self.automation_script,
        }


@dataclass
class Violation:
    """A detected deviation between observed state and a compliance expectation."""
    policy_id: str
    policy_name: str
    asset_id: str
    asset_type: AssetType
    asset_identifier: str
    severity: Severity
    title: str
    description: str
    id: str = field(default_factory=generate_id)
    status: ViolationStatus = ViolationStatus.OPEN
    requirement_id: Optional[str] = None
    control_id: Optional[str] = None
    detected_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    evidence: list[ViolationEvidence] = field(default_factory=list)
    remediation: list[RemediationAction] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.status in (
            ViolationStatus.OPEN,
            ViolationStatus.INVESTIGATING,
            ViolationStatus.REMEDIATING,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "policy_id": self.policy_id,
            "policy_name": self.policy_name,
            "requirement_id": self.requirement_id,
            "control_id": self.control_id,
            "asset_id": self.asset_id,
            "asset_type": self.asset_type.value,
            "asset_identifier": self.asset_identifier,
            "severity": self.severity.value,
            "status": self.status.value,
            "title": self.title,
            "description": self.description,
            "detected_at": _iso(self.detected_at),
            "updated_at": _iso(self.updated_at),
            "resolved_at": _iso(self.resolved_at),
            "evidence": [e.to_dict() for e in self.evidence],
            "remediation": [r.to_dict() for r in self.remediation],
        }


@dataclass
class IncidentEvent:
    """An entry in an incident's timeline."""
    type: IncidentEventType
    description: str
    actor: str
    id: str = field(default_factory=generate_id)
    timestamp: datetime = field(default_factory=utcnow)
    data: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "actor": self.actor,
            "timestamp": _iso(self.timestamp),
            "data": self.data,
        }


@dataclass
class Incident:
    """A tracked response record created from one or more violations."""
    title: str
    description: str
    severity: Severity
    priority: Priority
    reporter: str
    id: str = field(default_factory=generate_id)
    status: IncidentStatus = IncidentStatus.OPEN
    assignee: Optional[str] = None
    violation_ids: list[str] = field(default_factory=list)
    timeline: list[IncidentEvent] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "severity": self.severity.value,
            "status": self.status.value,
            "priority": self.priority.value,
            "assignee": self.assignee,
            "reporter": self.reporter,
            "violation_ids": list(self.violation_ids),
            "timeline": [e.to_dict() for e in self.timeline],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "resolved_at": _iso(self.resolved_at),
        }
