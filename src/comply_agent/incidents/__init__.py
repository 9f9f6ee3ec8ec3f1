"""Incident lifecycle module."""

from comply_agent.incidents.manager import IncidentManager, severity_to_priority

__all__ = ["IncidentManager", "severity_to_priority"]
