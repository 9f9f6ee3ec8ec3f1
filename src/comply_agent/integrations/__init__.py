"""
External collaborator interfaces: notification and remediation.
"""

from comply_agent.integrations.notifier import (
    BaseNotifier,
    LogNotifier,
    NotificationError,
    SentNotification,
    WebhookNotifier,
    create_notifier,
)
from comply_agent.integrations.remediation import (
    BaseRemediationRunner,
    RecordingRemediationRunner,
    RemediationRequest,
)

__all__ = [
    "BaseNotifier",
    "BaseRemediationRunner",
    "LogNotifier",
    "NotificationError",
    "RecordingRemediationRunner",
    "RemediationRequest",
    "SentNotification",
    "WebhookNotifier",
    "create_notifier",
]
