"""
Compliance Agent

Ties the asset inventory, the violation detector and the playbook engine
together. A scan detects violations over the cached asset facts and runs
the response playbooks for each of them.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from comply_agent.config.settings import Settings
from comply_agent.detection.detector import ViolationDetector
from comply_agent.errors import ScanCancelled
from comply_agent.incidents.manager import IncidentManager
from comply_agent.integrations.notifier import BaseNotifier, create_notifier
from comply_agent.integrations.remediation import BaseRemediationRunner
from comply_agent.monitor.inventory import AssetInventory
from comply_agent.orchestrator.executor import CancellationToken, PlaybookExecutor
from comply_agent.orchestrator.ledger import ExecutionLedger
from comply_agent.orchestrator.playbooks import (
    Playbook,
    PlaybookRegistry,
    default_playbooks,
    load_playbooks,
)
from comply_agent.store.models import Incident, Policy, PolicyStatus, Violation

logger = structlog.get_logger(__name__)


@dataclass
class ScanResult:
    """Outcome of a detection scan."""
    violations: list[Violation] = field(default_factory=list)
    incidents: list[Incident] = field(default_factory=list)
    assets_checked: int = 0
    cancelled: bool = False
    timed_out: bool = False
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "violations": [v.to_dict() for v in self.violations],
            "incidents": [i.to_dict() for i in self.incidents],
            "assets_checked": self.assets_checked,
            "cancelled": self.cancelled,
            "timed_out": self.timed_out,
            "duration_ms": round(self.duration_ms, 1),
        }


class ComplianceAgent:
    """
    Compliance detection and response facade.

    Scans are serialized: a second scan waits for the one in flight.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        inventory: Optional[AssetInventory] = None,
        playbooks: Optional[list[Playbook]] = None,
        notifier: Optional[BaseNotifier] = None,
        remediation_runner: Optional[BaseRemediationRunner] = None,
    ):
        """
        Initialize the agent.

        Args:
            config: Settings (default: a fresh Settings()).
            inventory: Asset inventory (default: empty).
            playbooks: Playbooks to register (default: the standard set plus
                any found at ``playbooks_path``).
            notifier: Notification backend (default: from settings).
            remediation_runner: Remediation runner (default: recording runner).
        """
        self.config = config or Settings()
        self.inventory = inventory or AssetInventory()
        self.detector = ViolationDetector(self.inventory)
        self.incidents = IncidentManager(actor=self.config.actor)
        self.ledger = ExecutionLedger()

        if playbooks is None:
            playbooks = default_playbooks()
            if self.config.playbooks_path:
                playbooks.extend(load_playbooks(self.config.playbooks_path))

        self.executor = PlaybookExecutor(
            registry=PlaybookRegistry(playbooks),
            incidents=self.incidents,
            ledger=self.ledger,
            notifier=notifier or create_notifier(self.config),
            remediation_runner=remediation_runner,
            max_steps_per_run=self.config.max_steps_per_run,
        )

        self._policies: dict[str, Policy] = {}
        self._scan_lock = asyncio.Lock()
        self._current_token: Optional[CancellationToken] = None

    # === Policies ===

    def add_policy(self, policy: Policy) -> None:
        self._policies[policy.id] = policy

    def get_policies(self) -> list[Policy]:
        return list(self._policies.values())

    def get_active_policies(self) -> list[Policy]:
        return [p for p in self._policies.values() if p.status == PolicyStatus.ACTIVE]

    # === Scanning ===

    @property
    def scan_in_progress(self) -> bool:
        return self._scan_lock.locked()

    async def run_detection(self, cancel: Optional[CancellationToken] = None) -> list[Violation]:
        """Detect violations and run playbooks for each of them."""
        result = ScanResult()
        async with self._scan_lock:
            await self._detect_and_respond(result, cancel)
        return result.violations

    async def _detect_and_respond(
        self,
        result: ScanResult,
        cancel: Optional[CancellationToken],
    ) -> None:
        violations = self.detector.run_detection(self.get_active_policies())
        result.assets_checked = len(self.inventory.get_assets())

        for violation in violations:
            result.violations.append(violation)
            await self.executor.execute_playbooks(violation, cancel, collect=result.incidents)

    async def run_scan(self, timeout: Optional[float] = None) -> ScanResult:
        """
        Run a full scan under an overall deadline.

        Args:
            timeout: Deadline in seconds (default: ``scan_timeout_seconds``).

        Returns:
            ScanResult with whatever completed before a cancel or timeout.
        """
        if timeout is None:
            timeout = self.config.scan_timeout_seconds

        result = ScanResult()
        start_time = time.time()

        async with self._scan_lock:
            token = CancellationToken()
            self._current_token = token
            logger.info("Compliance scan started", assets=len(self.inventory.get_assets()))
            try:
                await asyncio.wait_for(self._detect_and_respond(result, token), timeout)
            except asyncio.TimeoutError:
                result.timed_out = True
                logger.warning("Compliance scan timed out", timeout=timeout)
            except ScanCancelled:
                result.cancelled = True
                logger.warning("Compliance scan cancelled")
            finally:
                self._current_token = None

        result.duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Compliance scan finished",
            violations=len(result.violations),
            incidents=len(result.incidents),
            duration_ms=round(result.duration_ms, 1),
        )
        return result

    def cancel_scan(self) -> bool:
        """Cancel the scan in flight. Returns False if none is running."""
        token = self._current_token
        if token is None:
            return False
        token.cancel()
        return True

    async def close(self) -> None:
        await self.executor.notifier.close()

    # === Statistics ===

    def get_stats(self) -> dict[str, Any]:
        return {
            "assets": len(self.inventory.get_assets()),
            "policies": len(self._policies),
            "violations": self.detector.get_stats(),
            "soar": self.executor.get_stats(),
        }
