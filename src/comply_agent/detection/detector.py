"""
Violation Detector

Runs asset-type checks over the inventory's cached facts and keeps the
resulting violations. Checks are fail-open: an asset without cached facts
yields no violations.
"""

import json
import threading
from typing import Any, Optional

import structlog

from comply_agent.detection.rules import (
    CERT_EXPIRY_CRITICAL,
    CERT_EXPIRY_HIGH,
    CERT_EXPIRY_MEDIUM,
    CERT_INVALID,
    CHECKED_RULE_IDS,
    DOMAIN_MISSING_DMARC,
    DOMAIN_MISSING_SPF,
    IP_MALICIOUS,
    IP_TOR_EXIT,
    DetectionRule,
    default_rules,
)
from comply_agent.errors import InvalidStatusTransition
from comply_agent.monitor.inventory import (
    AssetInventory,
    CertificateInfo,
    DomainRecord,
    IPRecord,
    IPReputation,
    MonitoredAsset,
    snapshot,
)
from comply_agent.store.models import (
    SYSTEM_POLICY_ID,
    AssetType,
    ComplianceFramework,
    EvidenceType,
    Policy,
    RemediationAction,
    Severity,
    Violation,
    ViolationEvidence,
    ViolationStatus,
    advance,
)

logger = structlog.get_logger(__name__)


EXPIRY_RULES = {
    Severity.CRITICAL: CERT_EXPIRY_CRITICAL,
    Severity.HIGH: CERT_EXPIRY_HIGH,
    Severity.MEDIUM: CERT_EXPIRY_MEDIUM,
}

# Forward order of the violation lifecycle; false_positive sits outside it
STATUS_ORDER = [
    ViolationStatus.OPEN,
    ViolationStatus.INVESTIGATING,
    ViolationStatus.REMEDIATING,
    ViolationStatus.RESOLVED,
]


def find_policy(
    policies: list[Policy],
    framework: ComplianceFramework,
) -> Optional[Policy]:
    """Get the first policy belonging to a framework."""
    for policy in policies:
        if policy.framework == framework:
            return policy
    return None


class ViolationDetector:
    """
    Detects violations on monitored assets.

    Owns the violation store and the rule set. Built-in checks are gated by
    their rule's enabled flag; rules without a built-in check are evaluated
    against the asset's fact map.
    """

    def __init__(self, inventory: AssetInventory, rules: Optional[list[DetectionRule]] = None):
        self.inventory = inventory
        self._lock = threading.RLock()
        self._violations: dict[str, Violation] = {}
        self._rules: list[DetectionRule] = rules if rules is not None else default_rules()

    # === Detection ===

    def run_detection(self, policies: list[Policy]) -> list[Violation]:
        """
        Check every monitored asset.

        Args:
            policies: Active policies used for best-effort violation linkage.

        Returns:
            Violations detected in this pass, in asset order.
        """
        detected: list[Violation] = []
        for asset in self.inventory.get_assets():
            detected.extend(self.check_asset(asset, policies))

        logger.info(
            "Detection pass complete",
            assets=len(self.inventory.get_assets()),
            violations=len(detected),
        )
        return detected

    def check_asset(self, asset: MonitoredAsset, policies: list[Policy]) -> list[Violation]:
        """Check a single asset and store what it yields."""
        violations: list[Violation] = []

        if asset.type == AssetType.CERTIFICATE:
            cert = self.inventory.get_certificate_info(asset.identifier)
            if cert:
                violations.extend(self._check_certificate(asset, cert, policies))
        elif asset.type == AssetType.DOMAIN:
            domain = self.inventory.get_domain_info(asset.identifier)
            if domain:
                violations.extend(self._check_domain(asset, domain, policies))
        elif asset.type == AssetType.IP:
            ip_record = self.inventory.get_ip_info(asset.identifier)
            if ip_record:
                violations.extend(self._check_ip(asset, ip_record, policies))

        violations.extend(self._check_generic_rules(asset, policies))

        with self._lock:
            for violation in violations:
                self._violations[violation.id] = violation

        if violations:
            logger.debug(
                "Asset violations detected",
                asset=asset.identifier,
                asset_type=asset.type.value,
                count=len(violations),
            )
        return violations

    def _rule_enabled(self, rule_id: str) -> bool:
        rule = self.get_rule(rule_id)
        return rule is not None and rule.enabled

    def _build_violation(
        self,
        asset: MonitoredAsset,
        policy: Optional[Policy],
        fallback_policy_name: str,
        severity: Severity,
        title: str,
        description: str,
        evidence_type: EvidenceType,
        evidence_description: str,
        evidence_data: Any,
        remediation: str,
    ) -> Violation:
        return Violation(
            policy_id=policy.id if policy else SYSTEM_POLICY_ID,
            policy_name=policy.name if policy else fallback_policy_name,
            asset_id=asset.identifier,
            asset_type=asset.type,
            asset_identifier=asset.identifier,
            severity=severity,
            title=title,
            description=description,
            evidence=[
                ViolationEvidence(
                    type=evidence_type,
                    description=evidence_description,
                    data=json.dumps(evidence_data),
                )
            ],
            remediation=[RemediationAction(description=remediation)],
        )

    def _check_certificate(
        self,
        asset: MonitoredAsset,
        cert: CertificateInfo,
        policies: list[Policy],
    ) -> list[Violation]:
        violations = []
        facts = snapshot(cert)

        expiry = self.inventory.check_certificate_expiry(cert)
        if expiry.is_expiring and self._rule_enabled(EXPIRY_RULES[expiry.severity]):
            violations.append(self._build_violation(
                asset,
                find_policy(policies, ComplianceFramework.SOC2),
                "Certificate Policy",
                expiry.severity,
                f"Certificate Expiring in {expiry.days_left} Days",
                f"SSL/TLS certificate for {cert.domain} will expire in {expiry.days_left} days. "
                "Immediate renewal is required.",
                EvidenceType.CERTIFICATE,
                "Certificate expiration info",
                facts,
                "Renew SSL/TLS certificate",
            ))

        if not cert.is_valid and self._rule_enabled(CERT_INVALID):
            violations.append(self._build_violation(
                asset,
                None,
                "Certificate Policy",
                Severity.CRITICAL,
                "Invalid SSL/TLS Certificate",
                f"SSL/TLS certificate for {cert.domain} is invalid. "
                "This may cause security warnings and service disruptions.",
                EvidenceType.CERTIFICATE,
                "Certificate validation failure",
                facts,
                "Replace with valid certificate",
            ))

        return violations

    def _check_domain(
        self,
        asset: MonitoredAsset,
        domain: DomainRecord,
        policies: list[Policy],
    ) -> list[Violation]:
        violations = []
        security = self.inventory.check_domain_security(domain.domain)
        if security is None:
            return violations

        policy = find_policy(policies, ComplianceFramework.SOC2)
        txt_snapshot = [snapshot(r) for r in domain.txt_records]

        missing = [
            (security.has_spf, DOMAIN_MISSING_SPF, "SPF"),
            (security.has_dmarc, DOMAIN_MISSING_DMARC, "DMARC"),
        ]
        for present, rule_id, label in missing:
            if present or not self._rule_enabled(rule_id):
                continue
            violations.append(self._build_violation(
                asset,
                policy,
                "Email Security Policy",
                Severity.HIGH,
                f"Missing {label} Record",
                f"Domain {domain.domain} is missing {label} record. "
                "This increases the risk of email spoofing and phishing attacks.",
                EvidenceType.CONFIG,
                "DNS TXT records",
                txt_snapshot,
                f"Add {label} record to domain DNS",
            ))

        return violations

    def _check_ip(
        self,
        asset: MonitoredAsset,
        ip_record: IPRecord,
        policies: list[Policy],
    ) -> list[Violation]:
        violations = []
        policy = find_policy(policies, ComplianceFramework.CUSTOM)
        facts = snapshot(ip_record)

        if ip_record.reputation == IPReputation.MALICIOUS and self._rule_enabled(IP_MALICIOUS):
            violations.append(self._build_violation(
                asset,
                policy,
                "IP Reputation Policy",
                Severity.CRITICAL,
                "Malicious IP Address Detected",
                f"IP address {ip_record.ip} has a malicious reputation. Immediate investigation required.",
                EvidenceType.API_RESPONSE,
                "IP reputation data",
                facts,
                "Block IP at firewall level",
            ))

        if ip_record.is_tor and self._rule_enabled(IP_TOR_EXIT):
            violations.append(self._build_violation(
                asset,
                policy,
                "Network Security Policy",
                Severity.HIGH,
                "Tor Exit Node Detected",
                f"IP address {ip_record.ip} is a known Tor exit node. "
                "This may indicate attempts to hide the source of network traffic.",
                EvidenceType.API_RESPONSE,
                "IP classification data",
                facts,
                "Review and potentially block Tor traffic",
            ))

        return violations

    def _check_generic_rules(self, asset: MonitoredAsset, policies: list[Policy]) -> list[Violation]:
        rules = [
            r for r in self.get_rules()
            if r.id not in CHECKED_RULE_IDS and r.asset_type == asset.type
        ]
        if not rules:
            return []

        facts = self.inventory.get_facts(asset)
        if facts is None:
            return []

        violations = []
        for rule in rules:
            if not rule.condition.evaluate(facts):
                continue
            violations.append(self._build_violation(
                asset,
                find_policy(policies, rule.framework),
                rule.name,
                rule.severity,
                rule.name,
                f"{rule.description} ({asset.identifier})",
                EvidenceType.OTHER,
                f"Facts matched by rule {rule.id}",
                facts,
                "Review and remediate violation",
            ))
        return violations

    # === Violation Management ===

    def create_violation(
        self,
        policy_id: str,
        policy_name: str,
        asset_id: str,
        asset_type: AssetType,
        asset_identifier: str,
        severity: Severity,
        title: str,
        description: str,
        evidence: Optional[list[ViolationEvidence]] = None,
    ) -> Violation:
        """Record a manually reported violation."""
        violation = Violation(
            policy_id=policy_id,
            policy_name=policy_name,
            asset_id=asset_id,
            asset_type=asset_type,
            asset_identifier=asset_identifier,
            severity=severity,
            title=title,
            description=description,
            evidence=list(evidence or []),
            remediation=[RemediationAction(description="Review and remediate violation")],
        )
        with self._lock:
            self._violations[violation.id] = violation
        logger.info("Violation created", violation_id=violation.id, severity=severity.value)
        return violation

    def update_violation_status(self, violation_id: str, status: ViolationStatus) -> Optional[Violation]:
        """
        Move a violation through its lifecycle.

        Statuses only move forward, except false_positive which is reachable
        from anywhere. Re-applying the current status refreshes updated_at.

        Returns:
            The updated violation, or None if it does not exist.

        Raises:
            InvalidStatusTransition: If the change would move backwards.
        """
        with self._lock:
            violation = self._violations.get(violation_id)
            if violation is None:
                return None

            current = violation.status
            if status != current and status != ViolationStatus.FALSE_POSITIVE:
                if current == ViolationStatus.FALSE_POSITIVE or (
                    STATUS_ORDER.index(status) < STATUS_ORDER.index(current)
                ):
                    raise InvalidStatusTransition(violation_id, current.value, status.value)

            violation.status = status
            violation.updated_at = advance(violation.updated_at)
            if status == ViolationStatus.RESOLVED and violation.resolved_at is None:
                violation.resolved_at = violation.updated_at
            return violation

    def add_remediation(self, violation_id: str, remediation: RemediationAction) -> Optional[RemediationAction]:
        """Append a remediation action to a violation."""
        with self._lock:
            violation = self._violations.get(violation_id)
            if violation is None:
                return None
            violation.remediation.append(remediation)
            violation.updated_at = advance(violation.updated_at)
            return remediation

    def get_violation(self, violation_id: str) -> Optional[Violation]:
        return self._violations.get(violation_id)

    def get_all_violations(self) -> list[Violation]:
        with self._lock:
            return list(self._violations.values())

    def get_violations_by_status(self, status: ViolationStatus) -> list[Violation]:
        return [v for v in self.get_all_violations() if v.status == status]

    def get_violations_by_severity(self, severity: Severity) -> list[Violation]:
        return [v for v in self.get_all_violations() if v.severity == severity]

    def get_open_violations(self) -> list[Violation]:
        return [v for v in self.get_all_violations() if v.is_open]

    def delete_violation(self, violation_id: str) -> bool:
        with self._lock:
            return self._violations.pop(violation_id, None) is not None

    def get_stats(self) -> dict[str, Any]:
        """Get violation counts by status and severity."""
        violations = self.get_all_violations()
        by_status = {s.value: 0 for s in ViolationStatus}
        by_severity = {s.value: 0 for s in Severity}
        for v in violations:
            by_status[v.status.value] += 1
            by_severity[v.severity.value] += 1

        return {
            "total": len(violations),
            "by_status": by_status,
            "by_severity": by_severity,
            "open_count": (
                by_status["open"] + by_status["investigating"] + by_status["remediating"]
            ),
            "resolved_count": by_status["resolved"],
        }

    # === Rule Management ===

    def get_rules(self) -> list[DetectionRule]:
        """Get enabled detection rules."""
        with self._lock:
            return [r for r in self._rules if r.enabled]

    def get_all_rules(self) -> list[DetectionRule]:
        with self._lock:
            return list(self._rules)

    def get_rule(self, rule_id: str) -> Optional[DetectionRule]:
        with self._lock:
            for rule in self._rules:
                if rule.id == rule_id:
                    return rule
        return None

    def add_rule(self, rule: DetectionRule) -> None:
        with self._lock:
            self._rules.append(rule)

    def toggle_rule(self, rule_id: str, enabled: bool) -> bool:
        """Enable or disable a rule. Returns False if it does not exist."""
        rule = self.get_rule(rule_id)
        if rule is None:
            return False
        rule.enabled = enabled
        logger.info("Detection rule toggled", rule_id=rule_id, enabled=enabled)
        return True
