"""
Response Orchestrator Module

Provides automated response orchestration for compliance violations:
- Playbook definitions, triggers and the playbook registry
- The step-graph execution engine
- The execution ledger
"""

from comply_agent.orchestrator.executor import (
    CancellationToken,
    ExecutionContext,
    PlaybookExecutor,
    StepResult,
    render_template,
)
from comply_agent.orchestrator.ledger import (
    ExecutionLedger,
    ExecutionLedgerEntry,
    ExecutionOutcome,
)
from comply_agent.orchestrator.playbooks import (
    ActionConfig,
    ActionKind,
    ConditionConfig,
    DelayConfig,
    NotificationChannel,
    NotificationConfig,
    Playbook,
    PlaybookRegistry,
    PlaybookStep,
    PlaybookTrigger,
    RemediationConfig,
    StepConfig,
    StepType,
    TriggerType,
    default_playbooks,
    load_playbooks,
)

__all__ = [
    # Playbooks
    "ActionConfig",
    "ActionKind",
    "ConditionConfig",
    "DelayConfig",
    "NotificationChannel",
    "NotificationConfig",
    "Playbook",
    "PlaybookRegistry",
    "PlaybookStep",
    "PlaybookTrigger",
    "RemediationConfig",
    "StepConfig",
    "StepType",
    "TriggerType",
    "default_playbooks",
    "load_playbooks",
    # Ledger
    "ExecutionLedger",
    "ExecutionLedgerEntry",
    "ExecutionOutcome",
    # Executor
    "CancellationToken",
    "ExecutionContext",
    "PlaybookExecutor",
    "StepResult",
    "render_template",
]
