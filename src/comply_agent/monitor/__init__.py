"""
Asset Monitoring Module

Holds monitored assets and the cached facts that detection consumes.
"""

from comply_agent.monitor.inventory import (
    AssetInventory,
    CertificateInfo,
    DNSRecord,
    DNSRecordType,
    DomainRecord,
    DomainSecurity,
    ExpiryCheck,
    IPRecord,
    IPReputation,
    MonitoredAsset,
)

__all__ = [
    "AssetInventory",
    "CertificateInfo",
    "DNSRecord",
    "DNSRecordType",
    "DomainRecord",
    "DomainSecurity",
    "ExpiryCheck",
    "IPRecord",
    "IPReputation",
    "MonitoredAsset",
]
