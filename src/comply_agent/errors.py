"""
Exception hierarchy for the compliance engine.
"""

from typing import Optional


class ComplyAgentError(Exception):
    """Base exception for compliance engine errors."""


class PlaybookDefinitionError(ComplyAgentError):
    """Raised when a playbook definition cannot be parsed."""

    def __init__(self, message: str, playbook_id: Optional[str] = None):
        super().__init__(message)
        self.playbook_id = playbook_id


class InvalidStatusTransition(ComplyAgentError):
    """Raised when a violation status change would move backwards."""

    def __init__(self, violation_id: str, current: str, requested: str):
        super().__init__(
            f"Violation {violation_id} cannot move from {current} to {requested}"
        )
        self.violation_id = violation_id
        self.current = current
        self.requested = requested


class ScanCancelled(ComplyAgentError):
    """Raised when a scan is aborted through its cancellation token."""


class PlaybookExecutionError(ComplyAgentError):
    """Raised inside a playbook run that cannot continue."""

    def __init__(self, message: str, playbook_id: str, step_id: Optional[str] = None):
        super().__init__(message)
        self.playbook_id = playbook_id
        self.step_id = step_id
