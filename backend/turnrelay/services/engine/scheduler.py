import json
import threading
from datetime import timedelta
from typing import Callable, Dict, Optional

from flask import current_app
from sqlalchemy import delete, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from turnrelay import db, socketio
from turnrelay.errors import SchedulingError
from turnrelay.models import ScheduledJob

AFTER_COMMIT_KEY = 'turnrelay_after_commit'


@event.listens_for(Session, 'after_commit')
def _run_after_commit(session):
    for callback in session.info.pop(AFTER_COMMIT_KEY, []):
        callback()


@event.listens_for(Session, 'after_rollback')
def _drop_after_commit(session):
    session.info.pop(AFTER_COMMIT_KEY, None)


def turn_job_id(phase: str, turn_id: str) -> str:
    return f"turn-{phase}-timeout-{turn_id}"


def season_job_id(season_id: str) -> str:
    return f"season-activation-{season_id}"


class _Timer:
    """In-process handle for one armed job. Identity marks the live timer."""

    __slots__ = ('job_id', 'run_at')

    def __init__(self, job_id, run_at):
        self.job_id = job_id
        self.run_at = run_at


class TimeoutScheduler:
    """Durable timers backed by ScheduledJob rows.

    - Every job is persisted before its in-process timer is armed
    - The timer map holds at most one live timer per job id; re-scheduling
      replaces the previous timer
    - One dispatcher task per process sleeps until the earliest armed job
      (at most TIMER_TICK_SEC) and runs whatever is due
    - Firing consumes the row with a conditional delete, so a job that was
      cancelled or already fired is a silent no-op
    - A cancel inside a larger transaction disarms only once that commits
    - No dispatcher in TESTING mode; tests advance time with run_due()
    """

    def __init__(self, clock):
        self.clock = clock
        self.app = None
        self._handlers: Dict[str, Callable[[dict], None]] = {}
        self._timers: Dict[str, _Timer] = {}
        self._lock = threading.Lock()
        self._started = False
        self._running = False
        self._dispatching = False

    def init_app(self, app):
        self.app = app

    def register_handler(self, phase: str, handler: Callable[[dict], None]) -> None:
        self._handlers[phase] = handler

    def armed_jobs(self) -> Dict[str, object]:
        with self._lock:
            return {job_id: t.run_at for job_id, t in self._timers.items()}

    @property
    def dispatching(self) -> bool:
        return self._dispatching

    def start(self, app) -> bool:
        """Recover persisted jobs and start the dispatcher, once per process.

        Does nothing when background scheduling is off. Returns whether the
        dispatcher was started by this call.
        """
        if self._started or not self._background_enabled(app):
            return False
        self._started = True
        with app.app_context():
            try:
                self.recover()
            except SQLAlchemyError as exc:
                # e.g. `flask db upgrade` on a fresh database
                db.session.rollback()
                app.logger.warning(f"[timer-recover] skipped, job store unavailable: {exc}")
        self._running = True
        self._dispatching = True
        socketio.start_background_task(self._dispatch, app)
        return True

    def shutdown(self) -> None:
        self._running = False

    def schedule(self, job_id: str, run_at, payload: dict, phase: str, commit: bool = True) -> ScheduledJob:
        self._check_capacity(job_id)
        try:
            job = db.session.get(ScheduledJob, job_id)
            if job is None:
                job = ScheduledJob(id=job_id)
                db.session.add(job)
            job.phase = phase
            job.run_at = run_at
            job.payload = json.dumps(payload or {})
            job.status = 'pending'
            db.session.flush()
            if commit:
                db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(f"[timer-error] job={job_id} persist failed: {exc}")
            raise SchedulingError(f"Could not persist job {job_id}") from exc

        self._arm(job_id, run_at)
        current_app.logger.info(f"[timer-set] job={job_id} phase={phase} run_at={run_at.isoformat()}")
        return job

    def cancel(self, job_id: str, commit: bool = True) -> bool:
        with self._lock:
            timer = self._timers.get(job_id)
        try:
            found = db.session.execute(
                delete(ScheduledJob).where(ScheduledJob.id == job_id)
            ).rowcount > 0
            if commit:
                db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(f"[timer-error] job={job_id} cancel failed: {exc}")
            raise SchedulingError(f"Could not cancel job {job_id}") from exc

        if timer is not None:
            if commit:
                self._disarm(timer)
            else:
                db.session.info.setdefault(AFTER_COMMIT_KEY, []).append(lambda: self._disarm(timer))
        if found or timer is not None:
            current_app.logger.info(f"[timer-cancel] job={job_id}")
        return found

    def fire(self, job_id: str, expected_run_at=None) -> bool:
        """Consume the persisted job and run its phase handler.

        Returns False when there was nothing to consume. Handler errors are
        logged and never propagate.
        """
        with self._lock:
            self._timers.pop(job_id, None)

        job = db.session.get(ScheduledJob, job_id)
        if job is None:
            current_app.logger.info(f"[timer-skip] job={job_id} no longer persisted")
            return False
        phase, payload = job.phase, job.data

        stmt = delete(ScheduledJob).where(ScheduledJob.id == job_id)
        if expected_run_at is not None:
            stmt = stmt.where(ScheduledJob.run_at == expected_run_at)
        try:
            consumed = db.session.execute(stmt).rowcount > 0
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.error(f"[timer-error] job={job_id} could not be consumed", exc_info=True)
            return False
        if not consumed:
            current_app.logger.info(f"[timer-skip] job={job_id} replaced or consumed elsewhere")
            return False

        current_app.logger.info(f"[timer-fire] job={job_id} phase={phase}")
        handler = self._handlers.get(phase)
        if handler is None:
            current_app.logger.error(f"[timer-error] job={job_id} no handler for phase={phase}")
            return True
        try:
            handler(payload)
        except Exception:
            db.session.rollback()
            current_app.logger.error(f"[timer-error] job={job_id} handler failed", exc_info=True)
        return True

    def run_due(self, now=None) -> int:
        """Fire every armed job whose run_at is at or before ``now``."""
        now = now or self.clock()
        with self._lock:
            due = sorted(
                (t for t in self._timers.values() if t.run_at <= now),
                key=lambda t: t.run_at,
            )
        fired = 0
        for timer in due:
            with self._lock:
                if self._timers.get(timer.job_id) is not timer:
                    continue
            if self.fire(timer.job_id, timer.run_at):
                fired += 1
        return fired

    def next_run_at(self):
        with self._lock:
            return min((t.run_at for t in self._timers.values()), default=None)

    def recover(self) -> dict:
        """Reconcile timers with persisted jobs; overdue jobs fire right away."""
        now = self.clock()
        rows = self._pending_rows()
        persisted = {job_id for job_id, _ in rows}

        with self._lock:
            stale = [job_id for job_id in self._timers if job_id not in persisted]
            for job_id in stale:
                self._timers.pop(job_id, None)

        upcoming = [(job_id, run_at) for job_id, run_at in rows if run_at > now]
        for job_id, run_at in upcoming:
            self._arm(job_id, run_at)
        fired = self._fire_rows([(job_id, run_at) for job_id, run_at in rows if run_at <= now])

        summary = {'armed': len(upcoming), 'fired': fired, 'dropped': len(stale)}
        current_app.logger.info(f"[timer-recover] armed={summary['armed']} fired={fired} dropped={len(stale)}")
        return summary

    def fire_overdue(self) -> int:
        """Fire persisted jobs that are already due. Upcoming jobs are left alone."""
        now = self.clock()
        fired = self._fire_rows([(job_id, run_at) for job_id, run_at in self._pending_rows() if run_at <= now])
        current_app.logger.info(f"[timer-catch-up] fired={fired}")
        return fired

    def _pending_rows(self):
        jobs = ScheduledJob.query.filter_by(status='pending').order_by(ScheduledJob.run_at).all()
        return [(j.id, j.run_at) for j in jobs]

    def _fire_rows(self, rows) -> int:
        fired = 0
        for job_id, run_at in rows:
            if self.fire(job_id, run_at):
                fired += 1
        return fired

    def _check_capacity(self, job_id: str) -> None:
        limit = int(current_app.config.get('SCHEDULER_MAX_TIMERS', 10000))
        with self._lock:
            if job_id not in self._timers and len(self._timers) >= limit:
                raise SchedulingError(f"Timer capacity reached ({limit}); refusing {job_id}")

    def _background_enabled(self, app=None) -> bool:
        config = (app or self.app or current_app).config
        return not (config.get('TESTING') and not config.get('ENABLE_SCHEDULER_IN_TESTS'))

    def _arm(self, job_id: str, run_at) -> None:
        with self._lock:
            self._timers[job_id] = _Timer(job_id, run_at)

    def _disarm(self, timer: _Timer) -> None:
        with self._lock:
            if self._timers.get(timer.job_id) is timer:
                del self._timers[timer.job_id]

    def _dispatch(self, app) -> None:
        tick = float(app.config.get('TIMER_TICK_SEC', 1.0))
        try:
            hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
        except (TypeError, ValueError):
            hb = 0
        app.logger.info(f"[timer-dispatch] started tick={tick}s")
        since_beat = 0.0
        try:
            while self._running:
                next_at = self.next_run_at()
                if next_at is not None and next_at <= self.clock():
                    with app.app_context():
                        try:
                            self.run_due()
                        except SQLAlchemyError:
                            db.session.rollback()
                            app.logger.error("[timer-error] dispatch failed", exc_info=True)
                    next_at = self.next_run_at()

                delay = tick
                if next_at is not None:
                    delay = min(tick, max(0.0, (next_at - self.clock()).total_seconds()))
                socketio.sleep(delay)

                since_beat += delay
                if hb > 0 and since_beat >= hb:
                    since_beat = 0.0
                    app.logger.info(f"[timer-heartbeat] armed={len(self.armed_jobs())}")
        finally:
            self._dispatching = False
            app.logger.info("[timer-dispatch] stopped")


def minutes_from(now, minutes: int):
    return now + timedelta(minutes=minutes)
