"""
Detection Rule Definitions

Declarative rules describing which asset facts constitute a violation.
Built-in rules gate the dedicated checks in the detector; any other enabled
rule is evaluated generically against an asset's fact map.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from comply_agent.store.models import AssetType, ComplianceFramework, Severity


class RuleOperator(str, Enum):
    """Operators for rule condition evaluation."""
    EQUALS = "equals"
    CONTAINS = "contains"
    REGEX = "regex"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


# Rule ids bound to the detector's dedicated checks
CERT_EXPIRY_CRITICAL = "cert-expiry-critical"
CERT_EXPIRY_HIGH = "cert-expiry-high"
CERT_EXPIRY_MEDIUM = "cert-expiry-medium"
CERT_INVALID = "cert-invalid"
DOMAIN_MISSING_SPF = "domain-missing-spf"
DOMAIN_MISSING_DMARC = "domain-missing-dmarc"
IP_MALICIOUS = "ip-malicious"
IP_TOR_EXIT = "ip-tor-exit"

CHECKED_RULE_IDS = frozenset({
    CERT_EXPIRY_CRITICAL,
    CERT_EXPIRY_HIGH,
    CERT_EXPIRY_MEDIUM,
    CERT_INVALID,
    DOMAIN_MISSING_SPF,
    DOMAIN_MISSING_DMARC,
    IP_MALICIOUS,
    IP_TOR_EXIT,
})


@dataclass
class RuleCondition:
    """Condition over a named field of an asset's facts."""
    asset_type: AssetType
    operator: RuleOperator
    field: str
    value: Any

    def evaluate(self, facts: dict[str, Any]) -> bool:
        """Evaluate condition against a fact map."""
        # Navigate nested fields (e.g., "registrant.country")
        actual_value: Any = facts
        for part in self.field.split("."):
            if isinstance(actual_value, dict):
                actual_value = actual_value.get(part)
            else:
                return False

        if actual_value is None:
            return False

        try:
            if self.operator == RuleOperator.EQUALS:
                return actual_value == self.value
            elif self.operator == RuleOperator.CONTAINS:
                if isinstance(actual_value, (list, tuple)):
                    return self.value in actual_value
                return str(self.value) in str(actual_value)
            elif self.operator == RuleOperator.REGEX:
                return re.search(str(self.value), str(actual_value)) is not None
            elif self.operator == RuleOperator.IN:
                return actual_value in self.value
            elif self.operator == RuleOperator.NOT_IN:
                if isinstance(actual_value, (list, tuple)):
                    return not any(v in actual_value for v in self.value)
                return actual_value not in self.value
            elif self.operator == RuleOperator.GREATER_THAN:
                return actual_value > self.value
            elif self.operator == RuleOperator.LESS_THAN:
                return actual_value < self.value
        except (TypeError, re.error):
            return False

        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_type": self.asset_type.value,
            "operator": self.operator.value,
            "field": self.field,
            "value": self.value,
        }


@dataclass
class DetectionRule:
    """A toggleable detection rule."""
    id: str
    name: str
    description: str
    condition: RuleCondition
    severity: Severity
    enabled: bool = True
    framework: ComplianceFramework = ComplianceFramework.CUSTOM

    @property
    def asset_type(self) -> AssetType:
        return self.condition.asset_type

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "condition": self.condition.to_dict(),
            "severity": self.severity.value,
            "enabled": self.enabled,
            "framework": self.framework.value,
        }


def default_rules() -> list[DetectionRule]:
    """Build a fresh copy of the built-in rule set."""
    return [
        # Certificate expiration
        DetectionRule(
            id=CERT_EXPIRY_CRITICAL,
            name="Certificate Expiring Within 7 Days",
            description="SSL/TLS certificate will expire within 7 days - critical",
            condition=RuleCondition(AssetType.CERTIFICATE, RuleOperator.LESS_THAN, "days_until_expiry", 8),
            severity=Severity.CRITICAL,
        ),
        DetectionRule(
            id=CERT_EXPIRY_HIGH,
            name="Certificate Expiring Within 30 Days",
            description="SSL/TLS certificate will expire within 30 days",
            condition=RuleCondition(AssetType.CERTIFICATE, RuleOperator.LESS_THAN, "days_until_expiry", 31),
            severity=Severity.HIGH,
        ),
        DetectionRule(
            id=CERT_EXPIRY_MEDIUM,
            name="Certificate Expiring Within 60 Days",
            description="SSL/TLS certificate will expire within 60 days",
            condition=RuleCondition(AssetType.CERTIFICATE, RuleOperator.LESS_THAN, "days_until_expiry", 61),
            severity=Severity.MEDIUM,
        ),
        DetectionRule(
            id=CERT_INVALID,
            name="Invalid Certificate",
            description="SSL/TLS certificate failed signature or chain validation",
            condition=RuleCondition(AssetType.CERTIFICATE, RuleOperator.EQUALS, "is_valid", False),
            severity=Severity.CRITICAL,
        ),
        # Domain email security
        DetectionRule(
            id=DOMAIN_MISSING_SPF,
            name="Domain Missing SPF Record",
            description="Domain is missing SPF record - email spoofing risk",
            condition=RuleCondition(AssetType.DOMAIN, RuleOperator.NOT_IN, "security", ["spf"]),
            severity=Severity.HIGH,
        ),
        DetectionRule(
            id=DOMAIN_MISSING_DMARC,
            name="Domain Missing DMARC Record",
            description="Domain is missing DMARC record - email spoofing risk",
            condition=RuleCondition(AssetType.DOMAIN, RuleOperator.NOT_IN, "security", ["dmarc"]),
            severity=Severity.HIGH,
        ),
        # IP reputation
        DetectionRule(
            id=IP_MALICIOUS,
            name="Malicious IP Address",
            description="IP address has malicious reputation",
            condition=RuleCondition(AssetType.IP, RuleOperator.EQUALS, "reputation", "malicious"),
            severity=Severity.CRITICAL,
        ),
        DetectionRule(
            id="ip-suspicious",
            name="Suspicious IP Address",
            description="IP address has suspicious reputation",
            condition=RuleCondition(AssetType.IP, RuleOperator.EQUALS, "reputation", "suspicious"),
            severity=Severity.HIGH,
            enabled=False,
        ),
        DetectionRule(
            id=IP_TOR_EXIT,
            name="Tor Exit Node",
            description="IP address is a known Tor exit node",
            condition=RuleCondition(AssetType.IP, RuleOperator.EQUALS, "is_tor", True),
            severity=Severity.HIGH,
        ),
    ]
