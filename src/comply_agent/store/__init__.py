"""
Data model module.

Dataclasses and enums shared by detection, orchestration and incident
management.
"""

from comply_agent.store.models import (
    SEVERITY_TO_PRIORITY,
    SYSTEM_POLICY_ID,
    AssetType,
    ComplianceFramework,
    EvidenceType,
    Incident,
    IncidentEvent,
    IncidentEventType,
    IncidentStatus,
    Policy,
    PolicyStatus,
    Priority,
    RemediationAction,
    RemediationStatus,
    RemediationType,
    Severity,
    Violation,
    ViolationEvidence,
    ViolationStatus,
    generate_id,
    utcnow,
)

__all__ = [
    "SEVERITY_TO_PRIORITY",
    "SYSTEM_POLICY_ID",
    "AssetType",
    "ComplianceFramework",
    "EvidenceType",
    "Incident",
    "IncidentEvent",
    "IncidentEventType",
    "IncidentStatus",
    "Policy",
    "PolicyStatus",
    "Priority",
    "RemediationAction",
    "RemediationStatus",
    "RemediationType",
    "Severity",
    "Violation",
    "ViolationEvidence",
    "ViolationStatus",
    "generate_id",
    "utcnow",
]
