"""
Violation Detection Module

Provides:
- Declarative, toggleable detection rules
- Asset-type checks for certificates, domains and IP addresses
- The violation store and its lifecycle operations
"""

from comply_agent.detection.detector import ViolationDetector, find_policy
from comply_agent.detection.rules import (
    DetectionRule,
    RuleCondition,
    RuleOperator,
    default_rules,
)

__all__ = [
    "DetectionRule",
    "RuleCondition",
    "RuleOperator",
    "ViolationDetector",
    "default_rules",
    "find_policy",
]
