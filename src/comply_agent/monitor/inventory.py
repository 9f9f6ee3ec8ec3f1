"""
Asset Inventory

Maintains the set of monitored assets and the latest cached fact snapshot
for each of them. Fact acquisition (DNS, WHOIS, TLS, IP reputation) happens
outside the engine; lookups push their results in through the ``set_*``
methods and detection only reads the cache.
"""

import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from comply_agent.store.models import AssetType, Severity, generate_id, utcnow


class DNSRecordType(str, Enum):
    A = "A"
    AAAA = "AAAA"
    CNAME = "CNAME"
    MX = "MX"
    TXT = "TXT"
    NS = "NS"
    SOA = "SOA"


class IPReputation(str, Enum):
    GOOD = "good"
    SUSPICIOUS = "suspicious"
    MALICIOUS = "malicious"
    UNKNOWN = "unknown"


SPF_MARKER = "v=spf1"
DMARC_MARKER = "v=DMARC1"
DKIM_MARKER = "v=DKIM1"


@dataclass
class MonitoredAsset:
    """An asset under continuous monitoring."""
    type: AssetType
    identifier: str
    organization_id: str = "default"
    id: str = field(default_factory=generate_id)
    last_checked: Optional[datetime] = None
    status: str = "unknown"  # active|inactive|unknown
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "identifier": self.identifier,
            "organization_id": self.organization_id,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
            "status": self.status,
            "metadata": self.metadata,
        }


@dataclass
class DNSRecord:
    type: DNSRecordType
    name: str
    value: str
    ttl: int = 3600


@dataclass
class DomainRecord:
    """Cached registration and DNS facts for a domain."""
    domain: str
    dns_records: list[DNSRecord] = field(default_factory=list)
    registrar: str = ""
    nameservers: list[str] = field(default_factory=list)
    status: list[str] = field(default_factory=list)
    registration_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None

    @property
    def txt_records(self) -> list[DNSRecord]:
        return [r for r in self.dns_records if r.type == DNSRecordType.TXT]


@dataclass
class IPRecord:
    """Cached reputation and network facts for an IP address."""
    ip: str
    reputation: IPReputation = IPReputation.UNKNOWN
    is_tor: bool = False
    is_private: bool = False
    is_proxy: bool = False
    is_vpn: bool = False
    version: int = 4
    asn: int = 0
    asn_org: str = ""
    country: str = ""
    city: str = ""
    isp: str = ""
    hostname: Optional[str] = None


@dataclass
class CertificateInfo:
    """Cached TLS certificate facts for a domain."""
    domain: str
    days_until_expiry: int
    is_valid: bool = True
    issuer: str = ""
    subject: str = ""
    serial_number: str = ""
    signature_algorithm: str = ""
    key_algorithm: str = ""
    key_size: int = 0
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None


@dataclass
class ExpiryCheck:
    """Outcome of a certificate expiry evaluation."""
    is_expiring: bool
    days_left: int
    severity: Severity


@dataclass
class DomainSecurity:
    """Email security markers present in a domain's TXT records."""
    has_spf: bool
    has_dmarc: bool
    has_dkim: bool
    issues: list[str] = field(default_factory=list)

    @property
    def markers(self) -> list[str]:
        present = []
        if self.has_spf:
            present.append("spf")
        if self.has_dmarc:
            present.append("dmarc")
        if self.has_dkim:
            present.append("dkim")
        return present


def snapshot(fact: Any) -> dict[str, Any]:
    """Convert a fact dataclass into a JSON-friendly dict."""
    def convert(value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, list):
            return [convert(v) for v in value]
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        return value

    return convert(asdict(fact))


class AssetInventory:
    """
    In-process cache of monitored assets and their facts.

    Each cache is keyed by the asset identifier (domain name or IP).
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._assets: dict[str, MonitoredAsset] = {}
        self._domains: dict[str, DomainRecord] = {}
        self._ips: dict[str, IPRecord] = {}
        self._certificates: dict[str, CertificateInfo] = {}

    # === Asset Management ===

    def add_asset(
        self,
        asset_type: AssetType,
        identifier: str,
        organization_id: str = "default",
        metadata: Optional[dict[str, Any]] = None,
    ) -> MonitoredAsset:
        """Register an asset; re-adding the same type and identifier returns the existing one."""
        with self._lock:
            for asset in self._assets.values():
                if asset.type == asset_type and asset.identifier == identifier:
                    return asset
            asset = MonitoredAsset(
                type=asset_type,
                identifier=identifier,
                organization_id=organization_id,
                metadata=metadata or {},
            )
            self._assets[asset.id] = asset
            return asset

    def add_domain(self, domain: str, organization_id: str = "default") -> MonitoredAsset:
        return self.add_asset(AssetType.DOMAIN, domain, organization_id)

    def add_ip(self, ip: str, organization_id: str = "default") -> MonitoredAsset:
        return self.add_asset(AssetType.IP, ip, organization_id)

    def add_certificate(self, domain: str, organization_id: str = "default") -> MonitoredAsset:
        return self.add_asset(AssetType.CERTIFICATE, domain, organization_id)

    def get_asset(self, asset_id: str) -> Optional[MonitoredAsset]:
        return self._assets.get(asset_id)

    def get_assets(self) -> list[MonitoredAsset]:
        with self._lock:
            return list(self._assets.values())

    def remove_asset(self, asset_id: str) -> bool:
        with self._lock:
            return self._assets.pop(asset_id, None) is not None

    # === Fact Cache ===

    def _mark_checked(self, asset_type: AssetType, identifier: str) -> None:
        for asset in self._assets.values():
            if asset.type == asset_type and asset.identifier == identifier:
                asset.last_checked = utcnow()
                asset.status = "active"

    def set_domain_info(self, record: DomainRecord) -> None:
        with self._lock:
            self._domains[record.domain] = record
            self._mark_checked(AssetType.DOMAIN, record.domain)

    def set_ip_info(self, record: IPRecord) -> None:
        with self._lock:
            self._ips[record.ip] = record
            self._mark_checked(AssetType.IP, record.ip)

    def set_certificate_info(self, info: CertificateInfo) -> None:
        with self._lock:
            self._certificates[info.domain] = info
            self._mark_checked(AssetType.CERTIFICATE, info.domain)

    def get_domain_info(self, domain: str) -> Optional[DomainRecord]:
        return self._domains.get(domain)

    def get_ip_info(self, ip: str) -> Optional[IPRecord]:
        return self._ips.get(ip)

    def get_certificate_info(self, domain: str) -> Optional[CertificateInfo]:
        return self._certificates.get(domain)

    # === Fact Evaluation ===

    def check_certificate_expiry(self, cert: CertificateInfo) -> ExpiryCheck:
        """Bucket a certificate's remaining lifetime into a severity band."""
        days_left = cert.days_until_expiry
        if days_left <= 7:
            return ExpiryCheck(True, days_left, Severity.CRITICAL)
        if days_left <= 30:
            return ExpiryCheck(True, days_left, Severity.HIGH)
        if days_left <= 60:
            return ExpiryCheck(True, days_left, Severity.MEDIUM)
        return ExpiryCheck(False, days_left, Severity.LOW)

    def check_domain_security(self, domain: str) -> Optional[DomainSecurity]:
        """Inspect cached TXT records for SPF, DMARC and DKIM markers."""
        record = self._domains.get(domain)
        if record is None:
            return None

        values = [r.value for r in record.txt_records]
        has_spf = any(SPF_MARKER in v for v in values)
        has_dmarc = any(DMARC_MARKER in v for v in values)
        has_dkim = any(DKIM_MARKER in v for v in values)

        issues = []
        if not has_spf:
            issues.append("Missing SPF record")
        if not has_dmarc:
            issues.append("Missing DMARC record")
        if not has_dkim:
            issues.append("Missing DKIM record")

        return DomainSecurity(has_spf, has_dmarc, has_dkim, issues)

    def get_facts(self, asset: MonitoredAsset) -> Optional[dict[str, Any]]:
        """
        Get the flattened fact map for an asset.

        Returns None when nothing is cached for it. Domain fact maps also carry
        ``security`` (present email markers) and ``txt_records`` (TXT values).
        """
        if asset.type == AssetType.DOMAIN:
            record = self.get_domain_info(asset.identifier)
            if record is None:
                return None
            facts = snapshot(record)
            security = self.check_domain_security(asset.identifier)
            facts["security"] = security.markers if security else []
            facts["txt_records"] = [r.value for r in record.txt_records]
            return facts
        if asset.type == AssetType.IP:
            ip_record = self.get_ip_info(asset.identifier)
            return snapshot(ip_record) if ip_record else None
        if asset.type == AssetType.CERTIFICATE:
            cert = self.get_certificate_info(asset.identifier)
            return snapshot(cert) if cert else None
        return None
