"""
Database-level guards on the workflow schema.

The services check these rules before writing; the constraints catch the
writers that race past those checks.
"""

from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from approval_kernel.models.workflow import WorkflowInstanceModel, WorkflowStepModel
from tests.conftest import TEST_CREATOR, TEST_NOW, TEST_TENANT


def _instance_row(subject_ref: str, status: str = "in_progress") -> WorkflowInstanceModel:
    return WorkflowInstanceModel(
        tenant_id=TEST_TENANT,
        workflow_type="maintenance",
        subject_ref=subject_ref,
        due_date=date(2024, 3, 31),
        lead_time_days=5,
        cutoff_date=date(2024, 3, 26),
        status=status,
        created_at=TEST_NOW,
        created_by=TEST_CREATOR,
    )


class TestSinglePendingStep:
    def test_second_pending_step_rejected(self, session, create_instance):
        """The database refuses a second pending step in one instance."""
        snapshot = create_instance()
        step_two = session.get(WorkflowStepModel, snapshot.step(2).step_id)

        savepoint = session.begin_nested()
        step_two.status = "action_pending"
        with pytest.raises(IntegrityError):
            session.flush()
        savepoint.rollback()

    def test_pending_moves_once_previous_is_decided(self, session, create_instance):
        """Moving the pending marker in order satisfies the partial index."""
        snapshot = create_instance()
        step_one = session.get(WorkflowStepModel, snapshot.step(1).step_id)
        step_two = session.get(WorkflowStepModel, snapshot.step(2).step_id)

        step_one.status = "approved"
        session.flush()
        step_two.status = "action_pending"
        session.flush()

        assert step_two.status == "action_pending"


class TestInFlightUniqueness:
    def test_second_in_flight_instance_rejected(self, session):
        """The database refuses two open chains for one subject."""
        session.add(_instance_row("asset:CRANE-1"))
        session.flush()

        savepoint = session.begin_nested()
        session.add(_instance_row("asset:CRANE-1", status="initiated"))
        with pytest.raises(IntegrityError):
            session.flush()
        savepoint.rollback()

    def test_terminal_instance_does_not_block_a_new_chain(self, session):
        """Only in-progress instances count towards the in-flight index."""
        session.add(_instance_row("asset:CRANE-2", status="completed"))
        session.add(_instance_row("asset:CRANE-2", status="cancelled"))
        session.add(_instance_row("asset:CRANE-2"))
        session.flush()


class TestCheckConstraints:
    def test_unknown_instance_status_rejected(self, session):
        """The status check constraint rejects unknown values."""
        savepoint = session.begin_nested()
        session.add(_instance_row("asset:CRANE-3", status="paused"))
        with pytest.raises(IntegrityError):
            session.flush()
        savepoint.rollback()

    def test_duplicate_sequence_rejected(self, session, create_instance):
        """Sequences are unique within an instance."""
        snapshot = create_instance()

        savepoint = session.begin_nested()
        session.add(
            WorkflowStepModel(
                instance_id=snapshot.instance.instance_id,
                sequence=1,
                role="auditor",
                status="inactive",
            )
        )
        with pytest.raises(IntegrityError):
            session.flush()
        savepoint.rollback()
