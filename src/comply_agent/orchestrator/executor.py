"""
Playbook Executor

Executes response playbooks for violations. Each triggered playbook is
walked step by step from its first step, following success/failure
transitions, with failures isolated per playbook and every run recorded in
the execution ledger.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog

from comply_agent.errors import PlaybookExecutionError, ScanCancelled
from comply_agent.incidents.manager import IncidentManager
from comply_agent.integrations.notifier import BaseNotifier, LogNotifier
from comply_agent.integrations.remediation import (
    BaseRemediationRunner,
    RecordingRemediationRunner,
)
from comply_agent.orchestrator.ledger import (
    ExecutionLedger,
    ExecutionLedgerEntry,
    ExecutionOutcome,
)
from comply_agent.orchestrator.playbooks import (
    ActionKind,
    Playbook,
    PlaybookRegistry,
    PlaybookStep,
    StepType,
)
from comply_agent.store.models import (
    Incident,
    IncidentEventType,
    IncidentStatus,
    Priority,
    Violation,
    utcnow,
)

logger = structlog.get_logger(__name__)

NO_INCIDENT = "N/A"
DEFAULT_ASSIGNEE = "security-team"

# Resolved value for condition fields the engine does not know
_UNDEFINED = object()


class CancellationToken:
    """
    Cooperative cancellation for a scan.

    Delay steps wait on the token, so cancelling releases them immediately.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ScanCancelled("Scan cancelled")

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise ScanCancelled("Scan cancelled during delay")


@dataclass
class ExecutionContext:
    """State threaded through a single playbook run."""
    playbook: Playbook
    violation: Violation
    incident: Optional[Incident] = None
    cancel: Optional[CancellationToken] = None
    visited: list[str] = field(default_factory=list)


@dataclass
class StepResult:
    """Outcome of one step handler."""
    success: bool
    incident: Optional[Incident] = None
    detail: dict[str, Any] = field(default_factory=dict)


StepHandler = Callable[[PlaybookStep, ExecutionContext], Awaitable[StepResult]]


class PlaybookExecutor:
    """
    Executor for response playbooks.

    Evaluates violations against registered playbooks and runs every
    matching one, sequentially, in registration order.
    """

    def __init__(
        self,
        registry: Optional[PlaybookRegistry] = None,
        incidents: Optional[IncidentManager] = None,
        ledger: Optional[ExecutionLedger] = None,
        notifier: Optional[BaseNotifier] = None,
        remediation_runner: Optional[BaseRemediationRunner] = None,
        max_steps_per_run: int = 100,
    ):
        """
        Initialize the executor.

        Args:
            registry: Playbooks to evaluate (default: empty registry).
            incidents: Incident lifecycle manager.
            ledger: Execution ledger.
            notifier: Backend used by notification steps.
            remediation_runner: Runner used by remediation steps.
            max_steps_per_run: Step visits after which a run is aborted.
        """
        self.registry = registry if registry is not None else PlaybookRegistry()
        self.incidents = incidents if incidents is not None else IncidentManager()
        self.ledger = ledger if ledger is not None else ExecutionLedger()
        self.notifier = notifier if notifier is not None else LogNotifier()
        self.remediation_runner = (
            remediation_runner if remediation_runner is not None else RecordingRemediationRunner()
        )
        self.max_steps_per_run = max_steps_per_run

        self._step_handlers: dict[StepType, StepHandler] = {
            StepType.ACTION: self._handle_action,
            StepType.NOTIFICATION: self._handle_notification,
            StepType.DELAY: self._handle_delay,
            StepType.CONDITION: self._handle_condition,
            StepType.REMEDIATION: self._handle_remediation,
        }
        self._action_handlers: dict[ActionKind, StepHandler] = {
            ActionKind.CREATE_INCIDENT: self._action_create_incident,
            ActionKind.UPDATE_STATUS: self._action_update_status,
            ActionKind.ASSIGN: self._action_assign,
            ActionKind.ESCALATE: self._action_escalate,
        }

    # === Orchestration ===

    def should_trigger(self, playbook: Playbook, violation: Violation) -> bool:
        """Check if a playbook applies to a violation."""
        return playbook.trigger.matches(violation)

    async def execute_playbooks(
        self,
        violation: Violation,
        cancel: Optional[CancellationToken] = None,
        collect: Optional[list[Incident]] = None,
    ) -> list[Incident]:
        """
        Execute every enabled playbook triggered by a violation.

        Args:
            violation: The violation to respond to.
            cancel: Optional token that aborts the remaining work.
            collect: Optional list that receives each incident as its run
                finishes.

        Returns:
            Incidents bound at the end of each successful run.

        Raises:
            ScanCancelled: If the token is cancelled.
        """
        incidents: list[Incident] = []

        for playbook in self.registry.list_enabled():
            if not self.should_trigger(playbook, violation):
                continue

            incident = await self.run_playbook(playbook, violation, cancel)
            if incident is not None:
                incidents.append(incident)
                if collect is not None:
                    collect.append(incident)

        return incidents

    async def run_playbook(
        self,
        playbook: Playbook,
        violation: Violation,
        cancel: Optional[CancellationToken] = None,
    ) -> Optional[Incident]:
        """
        Run one playbook against a violation.

        Errors raised inside the run are logged and recorded as a failure;
        they never reach the caller. Cancellation is recorded and re-raised.
        """
        log = logger.bind(playbook_id=playbook.id, violation_id=violation.id)
        context = ExecutionContext(playbook=playbook, violation=violation, cancel=cancel)

        try:
            await self._walk(context)
        except (ScanCancelled, asyncio.CancelledError):
            self._finish(playbook, ExecutionOutcome.FAILURE, context, error="cancelled")
            log.warning("Playbook run cancelled", steps=context.visited)
            raise
        except Exception as e:
            self._finish(playbook, ExecutionOutcome.FAILURE, context, error=str(e))
            log.error("Playbook execution failed", playbook_name=playbook.name, exc_info=True)
            return None

        self._finish(playbook, ExecutionOutcome.SUCCESS, context)
        log.info(
            "Playbook executed",
            steps=context.visited,
            incident_id=context.incident.id if context.incident else None,
        )
        return context.incident

    def _finish(
        self,
        playbook: Playbook,
        outcome: ExecutionOutcome,
        context: ExecutionContext,
        error: Optional[str] = None,
    ) -> None:
        self.ledger.record(
            playbook.id,
            outcome,
            incident_id=context.incident.id if context.incident else None,
            error=error,
        )
        playbook.last_run = utcnow()

    async def _walk(self, context: ExecutionContext) -> None:
        playbook = context.playbook
        step = playbook.first_step

        while step is not None:
            if len(context.visited) >= self.max_steps_per_run:
                raise PlaybookExecutionError(
                    f"Step limit of {self.max_steps_per_run} exceeded",
                    playbook.id,
                    step.id,
                )
            if context.cancel is not None:
                context.cancel.raise_if_cancelled()

            context.visited.append(step.id)
            result = await self._execute_step(step, context)
            if result.incident is not None:
                context.incident = result.incident

            next_id = step.on_success if result.success else step.on_failure
            if not next_id:
                break

            step = playbook.get_step(next_id)
            if step is None:
                logger.warning(
                    "Unresolved step reference, ending run",
                    playbook_id=playbook.id,
                    step_id=next_id,
                )

    async def _execute_step(self, step: PlaybookStep, context: ExecutionContext) -> StepResult:
        handler = self._step_handlers.get(step.type)
        if handler is None:
            # Unknown step types pass through without side effects
            logger.warning(
                "Unrecognized step type, treating as success",
                playbook_id=context.playbook.id,
                step_id=step.id,
                step_type=str(step.type),
            )
            return StepResult(success=True)

        result = await handler(step, context)
        logger.debug(
            "Step executed",
            playbook_id=context.playbook.id,
            step_id=step.id,
            step_type=step.type.value,
            success=result.success,
        )
        return result

    # === Step Handlers ===

    async def _handle_action(self, step: PlaybookStep, context: ExecutionContext) -> StepResult:
        """Handle action step."""
        action = step.config.action
        if action is None:
            return StepResult(success=False)

        handler = self._action_handlers.get(action.action)
        if handler is None:
            return StepResult(success=False)
        return await handler(step, context)

    async def _action_create_incident(self, step: PlaybookStep, context: ExecutionContext) -> StepResult:
        incident = self.incidents.create_from_violation(context.violation)
        return StepResult(success=True, incident=incident)

    async def _action_update_status(self, step: PlaybookStep, context: ExecutionContext) -> StepResult:
        incident = context.incident
        if incident is None:
            return StepResult(success=False)

        status = IncidentStatus(step.config.action.params.get("status", IncidentStatus.INVESTIGATING.value))
        self.incidents.update_incident(incident.id, status=status)
        self.incidents.add_event(
            incident,
            IncidentEventType.STATUS_CHANGE,
            f"Status updated to {status.value}",
            data={"status": status.value, "playbook_id": context.playbook.id},
        )
        return StepResult(success=True)

    async def _action_assign(self, step: PlaybookStep, context: ExecutionContext) -> StepResult:
        incident = context.incident
        if incident is None:
            return StepResult(success=False)

        assignee = step.config.action.params.get("assignee", DEFAULT_ASSIGNEE)
        self.incidents.update_incident(incident.id, assignee=assignee)
        self.incidents.add_event(
            incident,
            IncidentEventType.ASSIGNMENT,
            f"Assigned to {assignee}",
            data={"assignee": assignee, "playbook_id": context.playbook.id},
        )
        return StepResult(success=True)

    async def _action_escalate(self, step: PlaybookStep, context: ExecutionContext) -> StepResult:
        incident = context.incident
        if incident is None:
            return StepResult(success=False)

        self.incidents.update_incident(incident.id, priority=Priority.P1)
        self.incidents.add_event(
            incident,
            IncidentEventType.ESCALATION,
            "Incident escalated to P1",
            data={"playbook_id": context.playbook.id},
        )
        return StepResult(success=True)

    async def _handle_notification(self, step: PlaybookStep, context: ExecutionContext) -> StepResult:
        """Handle notification step."""
        notification = step.config.notification
        if notification is None:
            return StepResult(success=False)

        message = render_template(notification.template, context.violation, context.incident)
        channel = notification.channel.value

        try:
            await self.notifier.notify(channel, message, list(notification.recipients))
        except Exception:
            # Delivery is fire-and-forget for the run
            logger.warning(
                "Notification delivery failed",
                playbook_id=context.playbook.id,
                step_id=step.id,
                channel=channel,
                exc_info=True,
            )

        return StepResult(success=True, detail={"channel": channel, "message": message})

    async def _handle_delay(self, step: PlaybookStep, context: ExecutionContext) -> StepResult:
        """Handle delay step."""
        delay = step.config.delay
        if delay is None:
            return StepResult(success=False)

        logger.info(
            "Delaying playbook run",
            playbook_id=context.playbook.id,
            step_id=step.id,
            seconds=delay.seconds,
        )
        if context.cancel is not None:
            await context.cancel.sleep(delay.seconds)
        else:
            await asyncio.sleep(delay.seconds)
        return StepResult(success=True)

    async def _handle_condition(self, step: PlaybookStep, context: ExecutionContext) -> StepResult:
        """Handle condition step."""
        condition = step.config.condition
        if condition is None:
            return StepResult(success=False)

        if condition.operator != "equals":
            logger.warning(
                "Unsupported condition operator",
                playbook_id=context.playbook.id,
                step_id=step.id,
                operator=condition.operator,
            )
            return StepResult(success=False)

        actual = resolve_condition_field(condition.field, context.violation, context.incident)
        return StepResult(success=strict_equals(actual, condition.value))

    async def _handle_remediation(self, step: PlaybookStep, context: ExecutionContext) -> StepResult:
        """Handle remediation step."""
        remediation = step.config.remediation
        if remediation is None:
            return StepResult(success=False)

        await self.remediation_runner.run(
            remediation.script,
            dict(remediation.parameters),
            context.violation,
        )
        return StepResult(success=True, detail={"script": remediation.script})

    # === Playbook Management ===

    def add_playbook(self, playbook: Playbook) -> None:
        self.registry.add(playbook)

    def get_playbook(self, playbook_id: str) -> Optional[Playbook]:
        return self.registry.get(playbook_id)

    def get_all_playbooks(self) -> list[Playbook]:
        return self.registry.list_all()

    def toggle_playbook(self, playbook_id: str, enabled: bool) -> bool:
        return self.registry.toggle(playbook_id, enabled)

    def delete_playbook(self, playbook_id: str) -> bool:
        return self.registry.delete(playbook_id)

    def get_execution_history(self, limit: int = 10) -> list[ExecutionLedgerEntry]:
        return self.ledger.recent(limit)

    def get_stats(self) -> dict[str, int]:
        """Get playbook, incident and execution counts."""
        incidents = self.incidents.get_all_incidents()
        playbooks = self.registry.list_all()
        return {
            "total_playbooks": len(playbooks),
            "enabled_playbooks": len([p for p in playbooks if p.enabled]),
            "total_incidents": len(incidents),
            "open_incidents": len([i for i in incidents if i.status != IncidentStatus.CLOSED]),
            "closed_incidents": len([i for i in incidents if i.status == IncidentStatus.CLOSED]),
            "recent_executions": len(self.ledger),
        }


def render_template(template: str, violation: Violation, incident: Optional[Incident]) -> str:
    """Substitute violation and incident placeholders in a message template."""
    return (
        template
        .replace("{{violation.title}}", violation.title)
        .replace("{{violation.description}}", violation.description)
        .replace("{{violation.severity}}", violation.severity.value)
        .replace("{{incident.id}}", incident.id if incident else NO_INCIDENT)
    )


def resolve_condition_field(name: str, violation: Violation, incident: Optional[Incident]) -> Any:
    """Resolve a condition field against the run state."""
    if name == "acknowledged":
        return bool(incident.assignee) if incident else False
    if name == "severity":
        return violation.severity.value
    return _UNDEFINED


def strict_equals(actual: Any, expected: Any) -> bool:
    """Equality without cross-type coercion (False does not equal 0)."""
    if actual is _UNDEFINED:
        return False
    return type(actual) is type(expected) and actual == expected
