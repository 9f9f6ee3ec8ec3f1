"""
Comply Agent Test Configuration and Fixtures
"""

import os
import pytest

# Set test environment variables before importing modules
os.environ["COMPLY_LOG_LEVEL"] = "WARNING"
os.environ["COMPLY_NOTIFIER"] = "log"


@pytest.fixture
def test_settings():
    """Settings for testing."""
    from comply_agent.config.settings import Settings

    return Settings(
        log_level="WARNING",
        notifier="log",
        max_steps_per_run=50,
    )


@pytest.fixture
def make_violation():
    """Factory for violations with sensible defaults."""
    from comply_agent.store.models import AssetType, Severity, Violation

    def _make(
        severity=Severity.CRITICAL,
        asset_type=AssetType.CERTIFICATE,
        policy_id="system",
        title="Certificate Expiring in 3 Days",
        description="SSL/TLS certificate for example.com will expire in 3 days.",
    ):
        return Violation(
            policy_id=policy_id,
            policy_name="Certificate Policy",
            asset_id="example.com",
            asset_type=asset_type,
            asset_identifier="example.com",
            severity=severity,
            title=title,
            description=description,
        )

    return _make


@pytest.fixture
def notifier():
    """In-memory notifier."""
    from comply_agent.integrations.notifier import LogNotifier

    return LogNotifier()


@pytest.fixture
def executor(notifier):
    """Executor with an empty registry."""
    from comply_agent.orchestrator.executor import PlaybookExecutor

    return PlaybookExecutor(notifier=notifier, max_steps_per_run=50)


@pytest.fixture
def inventory():
    """Inventory with one asset of each checked type and their facts."""
    from comply_agent.monitor.inventory import (
        AssetInventory,
        CertificateInfo,
        DNSRecord,
        DNSRecordType,
        DomainRecord,
        IPRecord,
        IPReputation,
    )

    inv = AssetInventory()
    inv.add_certificate("expiring.example.com")
    inv.set_certificate_info(CertificateInfo(domain="expiring.example.com", days_until_expiry=5))

    inv.add_domain("example.com")
    inv.set_domain_info(DomainRecord(
        domain="example.com",
        dns_records=[
            DNSRecord(DNSRecordType.A, "example.com", "93.184.216.34"),
            DNSRecord(DNSRecordType.TXT, "example.com", "v=spf1 include:_spf.example.com ~all"),
        ],
    ))

    inv.add_ip("203.0.113.7")
    inv.set_ip_info(IPRecord(ip="203.0.113.7", reputation=IPReputation.GOOD))
    return inv
