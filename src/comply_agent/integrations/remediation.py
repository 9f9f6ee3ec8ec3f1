"""
Remediation Runners

Remediation steps hand a script reference to a runner. The engine never
executes remediation code itself.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import structlog

from comply_agent.store.models import Violation, utcnow

logger = structlog.get_logger(__name__)


@dataclass
class RemediationRequest:
    """A remediation handed to a runner."""
    script: str
    parameters: dict[str, str]
    violation_id: str
    requested_at: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "script": self.script,
            "parameters": self.parameters,
            "violation_id": self.violation_id,
            "requested_at": self.requested_at,
        }


class BaseRemediationRunner(ABC):
    """Interface for remediation executors."""

    @abstractmethod
    async def run(self, script: str, parameters: dict[str, str], violation: Violation) -> None:
        """Hand a remediation script to the runner."""
        ...


class RecordingRemediationRunner(BaseRemediationRunner):
    """Logs and records remediation requests without executing anything."""

    def __init__(self):
        self._requests: list[RemediationRequest] = []

    async def run(self, script: str, parameters: dict[str, str], violation: Violation) -> None:
        self._requests.append(RemediationRequest(script, dict(parameters), violation.id))
        logger.info(
            "Remediation requested",
            script=script,
            parameters=parameters,
            violation_id=violation.id,
        )

    def get_requests(self) -> list[RemediationRequest]:
        return self._requests.copy()
