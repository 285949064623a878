"""
SweepScheduler -- In-process polling loop for escalation sweeps.

Contract:
    Every ``tick_interval_seconds`` opens a fresh session, runs one
    escalation sweep and one completion retry pass, and commits.

Architecture: approval_batch.  Uses approval_batch.sweeper and
    approval_batch.completion_retry for the work itself.

Invariants enforced:
    - One transaction per tick; a failed tick rolls back and the loop
      keeps running.
    - All timestamps from injected Clock.
    - Graceful shutdown (respects stop signal between ticks).
"""

from __future__ import annotations

import threading
from typing import Callable

from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import SweepSummary
from approval_kernel.logging_config import get_logger

from approval_batch.completion_retry import CompletionRetrier
from approval_batch.sweeper import EscalationSweeper

logger = get_logger("batch.scheduler")


class SweepScheduler:
    """In-process polling scheduler for the escalation sweep.

    Contract:
        - ``tick()`` runs one sweep (and retry pass) and commits.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election).  Running two
          schedulers against one database is safe, since both go through
          the step CAS, but wasteful.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        sweeper_factory: Callable[[Session], EscalationSweeper],
        retrier_factory: Callable[[Session], CompletionRetrier] | None = None,
        clock: Clock | None = None,
        tick_interval_seconds: int = 300,
    ):
        self._session_factory = session_factory
        self._sweeper_factory = sweeper_factory
        self._retrier_factory = retrier_factory
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.last_summary: SweepSummary | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> SweepSummary | None:
        """Run one sweep (public for testing).

        Returns the sweep summary, or None if the tick failed.
        """
        session = self._session_factory()
        try:
            summary = self._sweeper_factory(session).run(self._clock.now())
            if self._retrier_factory is not None:
                self._retrier_factory(session).run()
            session.commit()
            self.last_summary = summary
            return summary
        except Exception:
            session.rollback()
            logger.exception("scheduler_tick_failed")
            return None
        finally:
            session.close()

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="escalation-sweep-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current tick to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._tick_interval)
