"""
Tests for AuditTrail -- append-only workflow history.

History rows are numbered per instance and can be neither updated nor
deleted through the ORM.
"""

import pytest
from sqlalchemy import select

from approval_kernel.domain.workflow import HistoryAction, StepStatus
from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.models.workflow import WorkflowHistoryModel


def _history_models(session, instance_id):
    return session.execute(
        select(WorkflowHistoryModel)
        .where(WorkflowHistoryModel.instance_id == instance_id)
        .order_by(WorkflowHistoryModel.entry_seq)
    ).scalars().all()


class TestRecord:
    def test_entries_are_numbered_per_instance(self, session, create_instance, audit_trail):
        """Entry numbers run from 1 within each instance."""
        first = create_instance()
        second = create_instance()

        entry = audit_trail.record(
            first.instance.instance_id,
            HistoryAction.APPROVED,
            "alice",
            step_id=first.step(1).step_id,
            from_status=StepStatus.ACTION_PENDING,
            to_status=StepStatus.APPROVED,
            notes="fine",
        )

        seqs = [m.entry_seq for m in _history_models(session, first.instance.instance_id)]
        assert seqs == [1, 2, 3]
        assert [m.entry_seq for m in _history_models(session, second.instance.instance_id)] == [1, 2]
        assert entry.from_status == "action_pending"
        assert entry.to_status == "approved"
        assert entry.notes == "fine"

    def test_timestamp_defaults_to_clock(self, create_instance, audit_trail, deterministic_clock):
        """Entries without a timestamp take the clock's time."""
        snapshot = create_instance()
        deterministic_clock.advance(60)

        entry = audit_trail.record(snapshot.instance.instance_id, HistoryAction.APPROVED, "alice")
        assert entry.timestamp == deterministic_clock.now()

    def test_entries_for_step(self, create_instance, audit_trail):
        """Step history includes only that step's entries."""
        snapshot = create_instance()
        step_id = snapshot.step(1).step_id

        entries = audit_trail.entries_for_step(step_id)
        assert [e.action for e in entries] == [HistoryAction.ACTIVATED]


class TestImmutability:
    def test_update_rejected(self, session, create_instance):
        """History rows cannot be updated."""
        snapshot = create_instance()
        model = _history_models(session, snapshot.instance.instance_id)[0]

        model.notes = "rewritten"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "WorkflowHistory"
        session.rollback()

    def test_delete_rejected(self, session, create_instance):
        """History rows cannot be deleted."""
        snapshot = create_instance()
        model = _history_models(session, snapshot.instance.instance_id)[0]

        session.delete(model)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()
