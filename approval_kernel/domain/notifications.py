"""
Notification hook types (``approval_kernel.domain.notifications``).

Delivery (push, e-mail, in-app) is outside the kernel.  The engine emits
``notify(recipient, event, context)`` calls through the ``Notifier``
protocol; recipients are ``Assignee`` values so a whole role or a single
actor can be addressed.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol

from approval_kernel.domain.workflow import Assignee


class NotificationEvent(str, Enum):
    """Events the workflow engine notifies about."""

    STEP_ACTIVATED = "step_activated"
    STEP_REVERTED = "step_reverted"
    STEP_ESCALATED = "step_escalated"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_CANCELLED = "workflow_cancelled"


class Notifier(Protocol):
    """Notification transport supplied by the host application."""

    def notify(
        self,
        recipient: Assignee,
        event: NotificationEvent,
        context: dict[str, Any],
    ) -> None:
        ...


class SubjectLookup(Protocol):
    """Read-only subject metadata (asset, contract) for notification context."""

    def describe(self, subject_ref: str) -> dict[str, Any]:
        ...


class NullNotifier:
    """Notifier that drops every notification."""

    def notify(self, recipient, event, context) -> None:
        return None


class RecordingNotifier:
    """Notifier that keeps every call in memory."""

    def __init__(self) -> None:
        self.sent: list[tuple[Assignee, NotificationEvent, dict[str, Any]]] = []

    def notify(self, recipient, event, context) -> None:
        self.sent.append((recipient, event, dict(context)))

    def events(self) -> list[NotificationEvent]:
        return [event for _, event, _ in self.sent]

    def for_event(self, event: NotificationEvent) -> list[tuple[Assignee, dict[str, Any]]]:
        return [(r, c) for r, e, c in self.sent if e == event]
