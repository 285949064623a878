"""
approval_kernel.services.notification_dispatcher -- Best-effort notifications.

Responsibility:
    Translates sequencer outcomes into ``Notifier.notify`` calls and shields
    workflow state from transport failures.

Architecture position:
    Kernel > Services.  May import from domain/.

Invariants enforced:
    - Fire-and-forget: a notifier exception is logged and swallowed here,
      never propagated into the decision or sweep that requested it.
    - An executor that refuses the work (shut down, saturated) is treated
      like a failed delivery.
    - When an executor is supplied, delivery runs off the caller's thread
      and the caller's transaction.
    - When bound to a session, notifications are held until that session
      commits.  A rollback (or a rolled-back SAVEPOINT) drops the ones
      requested inside it, so nobody hears about a transition that never
      happened.

Failure modes:
    - Subject lookup failures degrade to a context without subject data.
"""

from __future__ import annotations

from concurrent.futures import Executor
from typing import Any

from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session, SessionTransaction

from approval_kernel.domain.notifications import (
    NotificationEvent,
    Notifier,
    NullNotifier,
    SubjectLookup,
)
from approval_kernel.domain.workflow import (
    Assignee,
    HistoryAction,
    InstanceStatus,
    SequencerOutcome,
    WorkflowInstance,
    WorkflowStep,
)
from approval_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class NotificationDispatcher:
    """Sends workflow notifications without ever failing the caller."""

    def __init__(
        self,
        notifier: Notifier | None = None,
        subject_lookup: SubjectLookup | None = None,
        executor: Executor | None = None,
        session: Session | None = None,
    ) -> None:
        self._notifier = notifier or NullNotifier()
        self._subject_lookup = subject_lookup
        self._executor = executor
        self._session = session
        self._held: list[
            tuple[SessionTransaction, Assignee, NotificationEvent, dict[str, Any]]
        ] = []
        if session is not None:
            sa_event.listen(session, "after_commit", self._release)
            sa_event.listen(session, "after_soft_rollback", self._discard)

    @property
    def held_count(self) -> int:
        """Notifications waiting for the bound session to commit."""
        return len(self._held)

    def dispatch(
        self,
        recipient: Assignee,
        event: NotificationEvent,
        context: dict[str, Any],
    ) -> None:
        payload = dict(context)
        subject_ref = payload.get("subject_ref")
        if self._subject_lookup is not None and subject_ref:
            try:
                payload["subject"] = self._subject_lookup.describe(subject_ref)
            except Exception:
                logger.warning(
                    "subject_lookup_failed",
                    extra={"subject_ref": subject_ref},
                    exc_info=True,
                )

        if self._session is not None:
            transaction = (
                self._session.get_nested_transaction()
                or self._session.get_transaction()
            )
            if transaction is not None:
                self._held.append((transaction, recipient, event, payload))
                return

        self._deliver(recipient, event, payload)

    def _deliver(
        self,
        recipient: Assignee,
        event: NotificationEvent,
        payload: dict[str, Any],
    ) -> None:
        if self._executor is not None:
            try:
                self._executor.submit(self._send, recipient, event, payload)
            except Exception:
                logger.exception(
                    "notification_dispatch_failed",
                    extra={
                        "recipient": str(recipient),
                        "event": event.value,
                        "instance_id": payload.get("instance_id"),
                    },
                )
        else:
            self._send(recipient, event, payload)

    def dispatch_outcome(
        self,
        instance: WorkflowInstance,
        steps: list[WorkflowStep],
        outcome: SequencerOutcome,
        actor: str,
    ) -> None:
        """Notify everyone affected by one sequencer outcome."""
        by_id = {s.step_id: s for s in steps}
        base = {
            "instance_id": str(instance.instance_id),
            "workflow_type": instance.workflow_type,
            "subject_ref": instance.subject_ref,
            "due_date": instance.due_date.isoformat(),
            "actor": actor,
        }

        for transition in outcome.transitions:
            step = by_id.get(transition.step_id)
            if step is None:
                continue
            context = {**base, "step_id": str(step.step_id), "sequence": step.sequence}
            if transition.action == HistoryAction.ACTIVATED:
                self.dispatch(Assignee.role(step.role), NotificationEvent.STEP_ACTIVATED, context)
            elif transition.action == HistoryAction.REVERTED:
                self.dispatch(Assignee.role(step.role), NotificationEvent.STEP_REVERTED, context)
            elif transition.action == HistoryAction.ESCALATED:
                self.dispatch(Assignee.role(step.role), NotificationEvent.STEP_ESCALATED, context)

        if outcome.instance_status == InstanceStatus.COMPLETED:
            self.dispatch(
                Assignee.actor(instance.created_by),
                NotificationEvent.WORKFLOW_COMPLETED,
                base,
            )
        elif outcome.instance_status == InstanceStatus.CANCELLED:
            self.dispatch(
                Assignee.actor(instance.created_by),
                NotificationEvent.WORKFLOW_CANCELLED,
                base,
            )

    # -------------------------------------------------------------------------
    # Commit-bound delivery
    # -------------------------------------------------------------------------

    @staticmethod
    def _within(transaction: SessionTransaction, ancestor: SessionTransaction) -> bool:
        current: SessionTransaction | None = transaction
        while current is not None:
            if current is ancestor:
                return True
            current = current.parent
        return False

    def _release(self, session: Session) -> None:
        # after_commit also fires for SAVEPOINT commits; wait for the root.
        if session.get_nested_transaction() is not None:
            return
        root = session.get_transaction()
        held, self._held = self._held, []
        for transaction, recipient, event, payload in held:
            if root is None or self._within(transaction, root):
                self._deliver(recipient, event, payload)

    def _discard(
        self, session: Session, previous_transaction: SessionTransaction,
    ) -> None:
        kept = [
            item for item in self._held
            if not self._within(item[0], previous_transaction)
        ]
        dropped = len(self._held) - len(kept)
        self._held = kept
        if dropped:
            logger.debug(
                "notifications_discarded",
                extra={"dropped": dropped},
            )

    def _send(
        self,
        recipient: Assignee,
        event: NotificationEvent,
        context: dict[str, Any],
    ) -> None:
        try:
            self._notifier.notify(recipient, event, context)
        except Exception:
            logger.exception(
                "notification_dispatch_failed",
                extra={
                    "recipient": str(recipient),
                    "event": event.value,
                    "instance_id": context.get("instance_id"),
                },
            )
            return
        logger.debug(
            "notification_dispatched",
            extra={"recipient": str(recipient), "event": event.value},
        )
