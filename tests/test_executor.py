"""
Tests for the Playbook Executor

Covers step interpretation, transitions, failure isolation, the execution
ledger and cancellation.
"""

import asyncio

import pytest

from comply_agent.errors import ScanCancelled
from comply_agent.integrations.notifier import BaseNotifier
from comply_agent.integrations.remediation import BaseRemediationRunner
from comply_agent.orchestrator.executor import (
    CancellationToken,
    PlaybookExecutor,
    render_template,
    resolve_condition_field,
    strict_equals,
)
from comply_agent.orchestrator.ledger import ExecutionOutcome
from comply_agent.orchestrator.playbooks import (
    ActionConfig,
    ActionKind,
    ConditionConfig,
    DelayConfig,
    NotificationChannel,
    NotificationConfig,
    Playbook,
    PlaybookStep,
    PlaybookTrigger,
    RemediationConfig,
    StepConfig,
    StepType,
)
from comply_agent.store.models import (
    AssetType,
    IncidentEventType,
    IncidentStatus,
    Priority,
    Severity,
)


def action(step_id, kind, on_success=None, on_failure=None, **params):
    return PlaybookStep(
        id=step_id,
        name=kind.value,
        type=StepType.ACTION,
        config=StepConfig(action=ActionConfig(kind, params)),
        on_success=on_success,
        on_failure=on_failure,
    )


def notify(step_id, template, on_success=None, channel=NotificationChannel.SLACK):
    return PlaybookStep(
        id=step_id,
        name="notify",
        type=StepType.NOTIFICATION,
        config=StepConfig(notification=NotificationConfig(channel, template, ["#alerts"])),
        on_success=on_success,
    )


def condition(step_id, field, value, on_success=None, on_failure=None, operator="equals"):
    return PlaybookStep(
        id=step_id,
        name="check",
        type=StepType.CONDITION,
        config=StepConfig(condition=ConditionConfig(field, value, operator)),
        on_success=on_success,
        on_failure=on_failure,
    )


def delay(step_id, seconds, on_success=None):
    return PlaybookStep(
        id=step_id,
        name="wait",
        type=StepType.DELAY,
        config=StepConfig(delay=DelayConfig(seconds)),
        on_success=on_success,
    )


def remediate(step_id, script, on_success=None):
    return PlaybookStep(
        id=step_id,
        name="remediate",
        type=StepType.REMEDIATION,
        config=StepConfig(remediation=RemediationConfig(script, {"target": "fw-1"})),
        on_success=on_success,
    )


def playbook(playbook_id, *steps, trigger=None):
    return Playbook(
        id=playbook_id,
        name=playbook_id,
        trigger=trigger or PlaybookTrigger(),
        steps=list(steps),
    )


class FailingNotifier(BaseNotifier):
    async def notify(self, channel, message, recipients):
        raise RuntimeError("webhook down")


class ExplodingRunner(BaseRemediationRunner):
    def __init__(self):
        self.calls = 0

    async def run(self, script, parameters, violation):
        self.calls += 1
        raise RuntimeError(f"{script} failed")


class TestCriticalAlertFlow:
    """End-to-end run of a create/notify/escalate playbook."""

    @pytest.mark.asyncio
    async def test_create_notify_escalate(self, executor, notifier, make_violation):
        executor.add_playbook(playbook(
            "critical-alert",
            action("step-1", ActionKind.CREATE_INCIDENT, on_success="step-2"),
            notify("step-2", "Critical Violation Detected: {{violation.title}}", on_success="step-3"),
            action("step-3", ActionKind.ESCALATE),
            trigger=PlaybookTrigger(severity=[Severity.CRITICAL]),
        ))
        violation = make_violation(severity=Severity.CRITICAL)

        incidents = await executor.execute_playbooks(violation)

        assert len(incidents) == 1
        incident = incidents[0]
        assert incident.priority == Priority.P1
        assert incident.violation_ids == [violation.id]
        event_types = [e.type for e in incident.timeline]
        assert event_types == [IncidentEventType.CREATED, IncidentEventType.ESCALATION]

        sent = notifier.get_sent()
        assert len(sent) == 1
        assert sent[0].message == f"Critical Violation Detected: {violation.title}"

        history = executor.get_execution_history()
        assert len(history) == 1
        assert history[0].playbook_id == "critical-alert"
        assert history[0].result == ExecutionOutcome.SUCCESS
        assert history[0].incident_id == incident.id

    @pytest.mark.asyncio
    async def test_untriggered_playbook_is_skipped(self, executor, make_violation):
        executor.add_playbook(playbook(
            "ip-only",
            action("s", ActionKind.CREATE_INCIDENT),
            trigger=PlaybookTrigger(severity=[Severity.CRITICAL], asset_types=[AssetType.IP]),
        ))

        incidents = await executor.execute_playbooks(make_violation(asset_type=AssetType.DOMAIN))

        assert incidents == []
        assert executor.get_execution_history() == []

    @pytest.mark.asyncio
    async def test_disabled_playbook_is_skipped(self, executor, make_violation):
        executor.add_playbook(playbook("pb", action("s", ActionKind.CREATE_INCIDENT)))
        executor.toggle_playbook("pb", False)

        assert await executor.execute_playbooks(make_violation()) == []

    @pytest.mark.asyncio
    async def test_runs_in_registration_order(self, executor, make_violation):
        for name in ["first", "second", "third"]:
            executor.add_playbook(playbook(name, action("s", ActionKind.CREATE_INCIDENT)))

        incidents = await executor.execute_playbooks(make_violation())

        assert len(incidents) == 3
        assert [e.playbook_id for e in executor.get_execution_history()] == ["first", "second", "third"]


class TestActions:
    """Tests for action steps."""

    @pytest.mark.asyncio
    async def test_playbook_without_create_incident(self, executor, notifier, make_violation):
        executor.add_playbook(playbook("notify-only", notify("s", "{{violation.title}}")))

        incidents = await executor.execute_playbooks(make_violation())

        assert incidents == []
        assert len(notifier.get_sent()) == 1
        assert executor.get_execution_history()[0].result == ExecutionOutcome.SUCCESS
        assert executor.get_execution_history()[0].incident_id is None

    @pytest.mark.asyncio
    async def test_action_without_incident_fails(self, executor, notifier, make_violation):
        executor.add_playbook(playbook(
            "assign-first",
            action("assign", ActionKind.ASSIGN, on_success="done", on_failure="fallback"),
            notify("done", "assigned"),
            notify("fallback", "nothing to assign"),
        ))

        await executor.execute_playbooks(make_violation())

        assert [n.message for n in notifier.get_sent()] == ["nothing to assign"]

    @pytest.mark.asyncio
    async def test_failure_without_transition_ends_run(self, executor, notifier, make_violation):
        executor.add_playbook(playbook(
            "dead-end",
            action("escalate", ActionKind.ESCALATE, on_success="never"),
            notify("never", "unreachable"),
        ))

        incidents = await executor.execute_playbooks(make_violation())

        assert incidents == []
        assert notifier.get_sent() == []
        assert executor.get_execution_history()[0].result == ExecutionOutcome.SUCCESS

    @pytest.mark.asyncio
    async def test_update_status_and_assign(self, executor, make_violation):
        executor.add_playbook(playbook(
            "triage",
            action("open", ActionKind.CREATE_INCIDENT, on_success="status"),
            action("status", ActionKind.UPDATE_STATUS, on_success="assign", status="mitigated"),
            action("assign", ActionKind.ASSIGN, assignee="alice"),
        ))

        incident = (await executor.execute_playbooks(make_violation()))[0]

        assert incident.status == IncidentStatus.MITIGATED
        assert incident.assignee == "alice"
        assert [e.type for e in incident.timeline] == [
            IncidentEventType.CREATED,
            IncidentEventType.STATUS_CHANGE,
            IncidentEventType.ASSIGNMENT,
        ]

    @pytest.mark.asyncio
    async def test_action_defaults(self, executor, make_violation):
        executor.add_playbook(playbook(
            "defaults",
            action("open", ActionKind.CREATE_INCIDENT, on_success="status"),
            action("status", ActionKind.UPDATE_STATUS, on_success="assign"),
            action("assign", ActionKind.ASSIGN),
        ))

        incident = (await executor.execute_playbooks(make_violation()))[0]

        assert incident.status == IncidentStatus.INVESTIGATING
        assert incident.assignee == "security-team"

    @pytest.mark.asyncio
    async def test_duplicate_create_incident_rebinds(self, executor, make_violation):
        executor.add_playbook(playbook(
            "twice",
            action("a", ActionKind.CREATE_INCIDENT, on_success="b"),
            action("b", ActionKind.CREATE_INCIDENT, on_success="c"),
            action("c", ActionKind.ESCALATE),
        ))
        violation = make_violation(severity=Severity.LOW)

        incidents = await executor.execute_playbooks(violation)

        all_incidents = executor.incidents.get_all_incidents()
        assert len(all_incidents) == 2
        assert incidents == [all_incidents[1]]
        assert all_incidents[0].priority == Priority.P4
        assert all_incidents[1].priority == Priority.P1

    @pytest.mark.asyncio
    async def test_remediation_step(self, executor, make_violation):
        executor.add_playbook(playbook("fix", remediate("r", "block-ip.sh")))
        violation = make_violation()

        await executor.execute_playbooks(violation)

        requests = executor.remediation_runner.get_requests()
        assert len(requests) == 1
        assert requests[0].script == "block-ip.sh"
        assert requests[0].parameters == {"target": "fw-1"}
        assert requests[0].violation_id == violation.id


class TestConditions:
    """Tests for condition steps."""

    @pytest.mark.parametrize("value,expected", [
        ("critical", True),
        ("high", False),
        ("CRITICAL", False),
    ])
    @pytest.mark.asyncio
    async def test_severity_condition(self, executor, notifier, make_violation, value, expected):
        executor.add_playbook(playbook(
            "branch",
            condition("c", "severity", value, on_success="yes", on_failure="no"),
            notify("yes", "matched"),
            notify("no", "not matched"),
        ))

        await executor.execute_playbooks(make_violation(severity=Severity.CRITICAL))

        assert notifier.get_sent()[0].message == ("matched" if expected else "not matched")

    @pytest.mark.asyncio
    async def test_acknowledged_follows_assignee(self, executor, notifier, make_violation):
        executor.add_playbook(playbook(
            "ack",
            action("open", ActionKind.CREATE_INCIDENT, on_success="assign"),
            action("assign", ActionKind.ASSIGN, on_success="check"),
            condition("check", "acknowledged", True, on_success="yes", on_failure="no"),
            notify("yes", "acknowledged"),
            notify("no", "unacknowledged"),
        ))

        await executor.execute_playbooks(make_violation())

        assert [n.message for n in notifier.get_sent()] == ["acknowledged"]

    def test_no_type_coercion(self, make_violation):
        violation = make_violation()

        assert strict_equals(False, False)
        assert not strict_equals(False, 0)
        assert not strict_equals(1, True)
        assert not strict_equals("1", 1)
        assert resolve_condition_field("acknowledged", violation, None) is False
        assert not strict_equals(resolve_condition_field("unknown", violation, None), None)

    @pytest.mark.asyncio
    async def test_unsupported_operator_fails(self, executor, notifier, make_violation):
        executor.add_playbook(playbook(
            "op",
            condition("c", "severity", "critical", operator="not_equals", on_success="yes", on_failure="no"),
            notify("yes", "yes"),
            notify("no", "no"),
        ))

        await executor.execute_playbooks(make_violation())

        assert notifier.get_sent()[0].message == "no"


class TestNotifications:
    """Tests for notification steps and templates."""

    def test_render_template(self, make_violation):
        violation = make_violation(severity=Severity.HIGH, title="Missing SPF Record")
        template = "{{violation.severity}}: {{violation.title}} / {{violation.title}} ({{incident.id}})"

        assert render_template(template, violation, None) == (
            "high: Missing SPF Record / Missing SPF Record (N/A)"
        )

    @pytest.mark.asyncio
    async def test_incident_id_rendered_after_creation(self, executor, notifier, make_violation):
        executor.add_playbook(playbook(
            "with-id",
            action("open", ActionKind.CREATE_INCIDENT, on_success="tell"),
            notify("tell", "Incident {{incident.id}}"),
        ))

        incident = (await executor.execute_playbooks(make_violation()))[0]

        assert notifier.get_sent()[0].message == f"Incident {incident.id}"

    @pytest.mark.asyncio
    async def test_notifier_error_does_not_fail_step(self, make_violation):
        executor = PlaybookExecutor(notifier=FailingNotifier())
        executor.add_playbook(playbook(
            "loud",
            action("open", ActionKind.CREATE_INCIDENT, on_success="tell"),
            notify("tell", "hello", on_success="escalate"),
            action("escalate", ActionKind.ESCALATE),
        ))

        incidents = await executor.execute_playbooks(make_violation(severity=Severity.LOW))

        assert incidents[0].priority == Priority.P1
        assert executor.get_execution_history()[0].result == ExecutionOutcome.SUCCESS


class TestFailureIsolation:
    """A failing playbook never affects the others."""

    @pytest.mark.asyncio
    async def test_failing_playbook_isolated(self, make_violation):
        runner = ExplodingRunner()
        executor = PlaybookExecutor(remediation_runner=runner)
        executor.add_playbook(playbook(
            "broken",
            action("open", ActionKind.CREATE_INCIDENT, on_success="fix"),
            remediate("fix", "restart.sh"),
        ))
        executor.add_playbook(playbook("healthy", action("open", ActionKind.CREATE_INCIDENT)))

        incidents = await executor.execute_playbooks(make_violation())

        assert runner.calls == 1
        assert len(incidents) == 1

        history = executor.get_execution_history()
        assert [(e.playbook_id, e.result) for e in history] == [
            ("broken", ExecutionOutcome.FAILURE),
            ("healthy", ExecutionOutcome.SUCCESS),
        ]
        assert "restart.sh failed" in history[0].error
        # the incident created before the failure stays in the store
        assert len(executor.incidents.get_all_incidents()) == 2

    @pytest.mark.asyncio
    async def test_step_limit(self, make_violation):
        executor = PlaybookExecutor(max_steps_per_run=5)
        executor.add_playbook(playbook(
            "loop",
            condition("a", "severity", "low", on_failure="b"),
            condition("b", "severity", "low", on_failure="a"),
        ))

        incidents = await executor.execute_playbooks(make_violation(severity=Severity.CRITICAL))

        assert incidents == []
        entry = executor.get_execution_history()[0]
        assert entry.result == ExecutionOutcome.FAILURE
        assert "Step limit" in entry.error

    @pytest.mark.asyncio
    async def test_unresolved_step_reference_ends_run(self, executor, make_violation):
        executor.add_playbook(playbook(
            "dangling",
            action("open", ActionKind.CREATE_INCIDENT, on_success="ghost"),
        ))

        incidents = await executor.execute_playbooks(make_violation())

        assert len(incidents) == 1
        assert executor.get_execution_history()[0].result == ExecutionOutcome.SUCCESS

    @pytest.mark.asyncio
    async def test_unknown_step_type_passes_through(self, executor, notifier, make_violation):
        executor.add_playbook(playbook(
            "future",
            PlaybookStep(id="x", name="custom", type="webhook_call", on_success="tell"),
            notify("tell", "after custom step"),
        ))

        await executor.execute_playbooks(make_violation())

        assert [n.message for n in notifier.get_sent()] == ["after custom step"]

    @pytest.mark.asyncio
    async def test_empty_playbook(self, executor, make_violation):
        executor.add_playbook(playbook("empty"))

        assert await executor.execute_playbooks(make_violation()) == []
        assert executor.get_execution_history()[0].result == ExecutionOutcome.SUCCESS

    @pytest.mark.asyncio
    async def test_last_run_is_set(self, make_violation):
        executor = PlaybookExecutor(remediation_runner=ExplodingRunner())
        executor.add_playbook(playbook("ok", action("open", ActionKind.CREATE_INCIDENT)))
        executor.add_playbook(playbook("bad", remediate("fix", "restart.sh")))

        await executor.execute_playbooks(make_violation())

        assert executor.get_playbook("ok").last_run is not None
        assert executor.get_playbook("bad").last_run is not None


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_token_sleep_returns_after_timeout(self):
        token = CancellationToken()
        await token.sleep(0.01)
        assert not token.cancelled

    @pytest.mark.asyncio
    async def test_cancel_releases_delay(self, executor, make_violation):
        executor.add_playbook(playbook(
            "slow",
            action("open", ActionKind.CREATE_INCIDENT, on_success="wait"),
            delay("wait", 300),
        ))
        token = CancellationToken()

        async def cancel_soon():
            await asyncio.sleep(0.05)
            token.cancel()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(ScanCancelled):
            await asyncio.wait_for(executor.execute_playbooks(make_violation(), token), timeout=5)
        await canceller

        entry = executor.get_execution_history()[0]
        assert entry.result == ExecutionOutcome.FAILURE
        assert entry.error == "cancelled"
        assert entry.incident_id is not None

    @pytest.mark.asyncio
    async def test_cancelled_token_stops_before_first_step(self, executor, make_violation):
        executor.add_playbook(playbook("pb", action("open", ActionKind.CREATE_INCIDENT)))
        token = CancellationToken()
        token.cancel()

        with pytest.raises(ScanCancelled):
            await executor.execute_playbooks(make_violation(), token)

        assert executor.incidents.get_all_incidents() == []


class TestExecutorStats:
    """Tests for executor statistics."""

    @pytest.mark.asyncio
    async def test_stats(self, executor, make_violation):
        executor.add_playbook(playbook("a", action("open", ActionKind.CREATE_INCIDENT)))
        executor.add_playbook(playbook("b", action("open", ActionKind.CREATE_INCIDENT)))
        executor.toggle_playbook("b", False)

        incident = (await executor.execute_playbooks(make_violation()))[0]
        executor.incidents.update_incident(incident.id, status="closed")

        stats = executor.get_stats()
        assert stats["total_playbooks"] == 2
        assert stats["enabled_playbooks"] == 1
        assert stats["total_incidents"] == 1
        assert stats["open_incidents"] == 0
        assert stats["closed_incidents"] == 1
        assert stats["recent_executions"] == 1

    def test_history_limit(self, executor):
        for i in range(5):
            executor.ledger.record(f"pb-{i}", ExecutionOutcome.SUCCESS)

        assert [e.playbook_id for e in executor.get_execution_history(2)] == ["pb-3", "pb-4"]
        assert executor.get_execution_history(0) == []
