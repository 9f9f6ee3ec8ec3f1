"""
Playbook Definitions

Defines automated response playbooks for compliance violations.
Playbooks specify a trigger and a graph of typed steps linked by
success/failure transitions.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import structlog
import yaml

from comply_agent.errors import PlaybookDefinitionError
from comply_agent.store.models import AssetType, Severity, Violation

logger = structlog.get_logger(__name__)


class TriggerType(str, Enum):
    """What kind of event starts a playbook."""
    VIOLATION = "violation"
    SCHEDULE = "schedule"
    MANUAL = "manual"
    WEBHOOK = "webhook"


class StepType(str, Enum):
    """Kinds of playbook steps."""
    ACTION = "action"
    NOTIFICATION = "notification"
    DELAY = "delay"
    CONDITION = "condition"
    REMEDIATION = "remediation"


class ActionKind(str, Enum):
    """Incident actions an action step can take."""
    CREATE_INCIDENT = "create_incident"
    UPDATE_STATUS = "update_status"
    ASSIGN = "assign"
    ESCALATE = "escalate"


class NotificationChannel(str, Enum):
    SLACK = "slack"
    EMAIL = "email"
    JIRA = "jira"
    PAGERDUTY = "pagerduty"
    WEBHOOK = "webhook"


@dataclass
class PlaybookTrigger:
    """
    Trigger condition for a playbook.

    Every configured predicate must hold; empty ones are ignored.
    """
    type: TriggerType = TriggerType.VIOLATION
    severity: list[Severity] = field(default_factory=list)
    asset_types: list[AssetType] = field(default_factory=list)
    policy_id: Optional[str] = None

    def matches(self, violation: Violation) -> bool:
        """Check if a violation matches this trigger."""
        if self.type != TriggerType.VIOLATION:
            return False

        if self.severity and violation.severity not in self.severity:
            return False

        if self.asset_types and violation.asset_type not in self.asset_types:
            return False

        if self.policy_id and violation.policy_id != self.policy_id:
            return False

        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "conditions": {
                "severity": [s.value for s in self.severity],
                "asset_type": [a.value for a in self.asset_types],
                "policy_id": self.policy_id,
            },
        }


@dataclass
class ActionConfig:
    action: ActionKind
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationConfig:
    channel: NotificationChannel
    template: str
    recipients: list[str] = field(default_factory=list)


@dataclass
class DelayConfig:
    seconds: float


@dataclass
class ConditionConfig:
    """Exact-equality test of a resolved field against a literal."""
    field: str
    value: Any
    operator: str = "equals"


@dataclass
class RemediationConfig:
    script: str
    parameters: dict[str, str] = field(default_factory=dict)


@dataclass
class StepConfig:
    """Typed step payload; the member matching the step type is used."""
    action: Optional[ActionConfig] = None
    notification: Optional[NotificationConfig] = None
    delay: Optional[DelayConfig] = None
    condition: Optional[ConditionConfig] = None
    remediation: Optional[RemediationConfig] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.action:
            result["action"] = self.action.action.value
            if self.action.params:
                result["params"] = self.action.params
        if self.notification:
            result["notification"] = {
                "channel": self.notification.channel.value,
                "template": self.notification.template,
                "recipients": self.notification.recipients,
            }
        if self.delay:
            result["delay"] = {"seconds": self.delay.seconds}
        if self.condition:
            result["condition"] = {
                "field": self.condition.field,
                "operator": self.condition.operator,
                "value": self.condition.value,
            }
        if self.remediation:
            result["remediation"] = {
                "script": self.remediation.script,
                "parameters": self.remediation.parameters,
            }
        return result


@dataclass
class PlaybookStep:
    """A node in a playbook's step graph."""
    id: str
    name: str
    type: StepType
    config: StepConfig = field(default_factory=StepConfig)
    on_success: Optional[str] = None
    on_failure: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value if isinstance(self.type, Enum) else self.type,
            "config": self.config.to_dict(),
            "on_success": self.on_success,
            "on_failure": self.on_failure,
        }


@dataclass
class Playbook:
    """
    Response playbook definition.

    Execution starts at the first declared step and follows transitions
    until one is absent or points at an unknown step.
    """
    id: str
    name: str
    description: str = ""
    trigger: PlaybookTrigger = field(default_factory=PlaybookTrigger)
    steps: list[PlaybookStep] = field(default_factory=list)
    enabled: bool = True
    last_run: Optional[datetime] = None

    @property
    def first_step(self) -> Optional[PlaybookStep]:
        return self.steps[0] if self.steps else None

    def get_step(self, step_id: str) -> Optional[PlaybookStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "trigger": self.trigger.to_dict(),
            "steps": [s.to_dict() for s in self.steps],
            "last_run": self.last_run.isoformat() if self.last_run else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Playbook":
        """
        Build a playbook from a plain mapping (e.g. parsed YAML).

        Raises:
            PlaybookDefinitionError: On missing fields, unknown tags or
                duplicate step ids.
        """
        if not isinstance(data, dict):
            raise PlaybookDefinitionError(f"Playbook definition must be a mapping, got {type(data).__name__}")

        playbook_id = data.get("id")
        if not playbook_id:
            raise PlaybookDefinitionError("Playbook is missing an id")

        try:
            trigger_data = _mapping(data.get("trigger"), "trigger")
            conditions = _mapping(trigger_data.get("conditions"), "trigger.conditions")
            trigger = PlaybookTrigger(
                type=TriggerType(trigger_data.get("type", "violation")),
                severity=[Severity(s) for s in conditions.get("severity") or []],
                asset_types=[AssetType(a) for a in conditions.get("asset_type") or []],
                policy_id=conditions.get("policy_id"),
            )

            steps = [_step_from_dict(s) for s in data.get("steps") or []]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise PlaybookDefinitionError(f"Invalid playbook {playbook_id}: {e}", playbook_id) from e

        step_ids = [s.id for s in steps]
        if len(step_ids) != len(set(step_ids)):
            raise PlaybookDefinitionError(f"Duplicate step ids in playbook {playbook_id}", playbook_id)

        return cls(
            id=playbook_id,
            name=data.get("name", playbook_id),
            description=data.get("description", ""),
            trigger=trigger,
            steps=steps,
            enabled=bool(data.get("enabled", True)),
        )


def _mapping(value: Any, name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"{name} must be a mapping, got {type(value).__name__}")
    return value


def _step_from_dict(data: Any) -> PlaybookStep:
    data = _mapping(data, "step")
    step_type = StepType(data["type"])
    raw = _mapping(data.get("config"), "step config")
    config = StepConfig()

    if "action" in raw:
        config.action = ActionConfig(ActionKind(raw["action"]), dict(raw.get("params") or {}))
    if "notification" in raw:
        n = raw["notification"]
        config.notification = NotificationConfig(
            channel=NotificationChannel(n["channel"]),
            template=n["template"],
            recipients=list(n.get("recipients") or []),
        )
    if "delay" in raw:
        config.delay = DelayConfig(seconds=float(raw["delay"]["seconds"]))
    if "condition" in raw:
        c = raw["condition"]
        config.condition = ConditionConfig(
            field=c["field"],
            value=c.get("value"),
            operator=c.get("operator", "equals"),
        )
    if "remediation" in raw:
        r = raw["remediation"]
        config.remediation = RemediationConfig(
            script=r["script"],
            parameters={str(k): str(v) for k, v in (r.get("parameters") or {}).items()},
        )

    return PlaybookStep(
        id=str(data["id"]),
        name=data.get("name", str(data["id"])),
        type=step_type,
        config=config,
        on_success=data.get("on_success"),
        on_failure=data.get("on_failure"),
    )


def load_playbooks(path: Union[str, Path]) -> list[Playbook]:
    """
    Load playbooks from a YAML file or a directory of YAML files.

    A file holds either one playbook mapping or a ``playbooks`` list.
    """
    path = Path(path)
    if path.is_dir():
        files = sorted(list(path.glob("*.yaml")) + list(path.glob("*.yml")))
    else:
        files = [path]

    playbooks: list[Playbook] = []
    for playbook_file in files:
        with open(playbook_file, "r") as f:
            document = yaml.safe_load(f) or {}

        entries = document.get("playbooks", [document]) if isinstance(document, dict) else document
        if not isinstance(entries, list):
            raise PlaybookDefinitionError(f"Unrecognized playbook document in {playbook_file}")

        for entry in entries:
            playbooks.append(Playbook.from_dict(entry))
        logger.info("Loaded playbooks", file=str(playbook_file), count=len(entries))

    return playbooks


class PlaybookRegistry:
    """
    Ordered playbook store.

    Iteration follows registration order; re-adding an existing id replaces
    the definition in place.
    """

    def __init__(self, playbooks: Optional[list[Playbook]] = None):
        self._lock = threading.RLock()
        self._playbooks: dict[str, Playbook] = {}
        for playbook in playbooks or []:
            self.add(playbook)

    def add(self, playbook: Playbook) -> None:
        with self._lock:
            self._playbooks[playbook.id] = playbook

    def get(self, playbook_id: str) -> Optional[Playbook]:
        return self._playbooks.get(playbook_id)

    def list_all(self) -> list[Playbook]:
        with self._lock:
            return list(self._playbooks.values())

    def list_enabled(self) -> list[Playbook]:
        return [p for p in self.list_all() if p.enabled]

    def toggle(self, playbook_id: str, enabled: bool) -> bool:
        """Enable or disable a playbook. Returns False if it does not exist."""
        with self._lock:
            playbook = self._playbooks.get(playbook_id)
            if playbook is None:
                return False
            playbook.enabled = enabled
            return True

    def delete(self, playbook_id: str) -> bool:
        with self._lock:
            return self._playbooks.pop(playbook_id, None) is not None

    def __len__(self) -> int:
        return len(self._playbooks)


# ============================================================================
# Standard Playbooks
# ============================================================================

def default_playbooks() -> list[Playbook]:
    """Build fresh copies of the standard playbooks."""
    return [
        Playbook(
            id="critical-alert",
            name="Critical Violation Alert",
            description="Automatically alert on critical severity violations",
            trigger=PlaybookTrigger(severity=[Severity.CRITICAL]),
            steps=[
                PlaybookStep(
                    id="step-1",
                    name="Create Incident",
                    type=StepType.ACTION,
                    config=StepConfig(action=ActionConfig(ActionKind.CREATE_INCIDENT)),
                    on_success="step-2",
                ),
                PlaybookStep(
                    id="step-2",
                    name="Send Slack Alert",
                    type=StepType.NOTIFICATION,
                    config=StepConfig(notification=NotificationConfig(
                        channel=NotificationChannel.SLACK,
                        template="Critical Violation Detected: {{violation.title}}",
                        recipients=["#security-alerts"],
                    )),
                    on_success="step-3",
                ),
                PlaybookStep(
                    id="step-3",
                    name="Escalate to On-Call",
                    type=StepType.ACTION,
                    config=StepConfig(action=ActionConfig(ActionKind.ESCALATE)),
                ),
            ],
        ),
        Playbook(
            id="high-severity-response",
            name="High Severity Response",
            description="Automated response for high severity violations",
            trigger=PlaybookTrigger(severity=[Severity.HIGH]),
            steps=[
                PlaybookStep(
                    id="step-1",
                    name="Create Incident",
                    type=StepType.ACTION,
                    config=StepConfig(action=ActionConfig(ActionKind.CREATE_INCIDENT)),
                ),
                PlaybookStep(
                    id="step-2",
                    name="Send Notification",
                    type=StepType.NOTIFICATION,
                    config=StepConfig(notification=NotificationConfig(
                        channel=NotificationChannel.SLACK,
                        template="High Severity Violation: {{violation.title}}",
                        recipients=["#security-team"],
                    )),
                ),
            ],
        ),
        Playbook(
            id="cert-expiry-alert",
            name="Certificate Expiry Alert",
            description="Alert when certificates are expiring",
            trigger=PlaybookTrigger(severity=[Severity.CRITICAL, Severity.HIGH]),
            # step-1 ends the run; the wait and escalation steps are unlinked
            steps=[
                PlaybookStep(
                    id="step-1",
                    name="Create Incident",
                    type=StepType.ACTION,
                    config=StepConfig(action=ActionConfig(ActionKind.CREATE_INCIDENT)),
                ),
                PlaybookStep(
                    id="step-2",
                    name="Wait for Acknowledgment",
                    type=StepType.DELAY,
                    config=StepConfig(delay=DelayConfig(seconds=300)),
                    on_success="step-3",
                ),
                PlaybookStep(
                    id="step-3",
                    name="Escalate if Unacknowledged",
                    type=StepType.CONDITION,
                    config=StepConfig(condition=ConditionConfig(field="acknowledged", value=False)),
                    on_failure="step-4",
                ),
                PlaybookStep(
                    id="step-4",
                    name="Send Escalation",
                    type=StepType.NOTIFICATION,
                    config=StepConfig(notification=NotificationConfig(
                        channel=NotificationChannel.SLACK,
                        template="Certificate Expiry Unacknowledged: {{violation.title}}",
                        recipients=["#security-alerts"],
                    )),
                ),
            ],
        ),
    ]
