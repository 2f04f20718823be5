"""
Print Shop Fulfillment Core
Scheduler Service.

Background work is expressed as named jobs.  Each job is a plain function
taking the Flask app and returning a stats dict; ``run_job`` executes it
in a fresh app context and folds the outcome into the job's
``ScheduledJob`` row, so the admin portal can see when the reminder sweep
last ran, what it did and whether it is failing.

    @register_job("reminder_sweep", schedule_type="adaptive")
    def reminder_sweep(app): ...

    SchedulerService.run_job("reminder_sweep")
    # -> {"job_name": "reminder_sweep", "status": "success",
    #     "duration_ms": 12, "result": {"fired": 1, ...}, "error": None}
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from flask import Flask
from sqlalchemy.exc import SQLAlchemyError

from fulfillment.models import db
from fulfillment.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobSpec:
    name: str
    fn: Callable
    description: str
    schedule_type: str


_job_registry: dict[str, JobSpec] = {}


def register_job(name: str, *, schedule_type: str = "adaptive", description: str | None = None):
    """Decorator adding ``fn`` to the job registry under ``name``."""
    def decorator(fn: Callable) -> Callable:
        text = description or (fn.__doc__ or f"Scheduled job: {name}")
        _job_registry[name] = JobSpec(name, fn, " ".join(text.split())[:500], schedule_type)
        return fn
    return decorator


def _outcome(job_name, status, *, duration_ms=0, result=None, error=None) -> dict:
    return {
        "job_name": job_name,
        "status": status,
        "duration_ms": duration_ms,
        "result": result,
        "error": error,
    }


class SchedulerService:
    """Job registry bound to one Flask app."""

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService ready (%d jobs: %s)",
                    len(_job_registry), ", ".join(sorted(_job_registry)))

    @staticmethod
    def _row(job_name: str) -> ScheduledJob | None:
        return ScheduledJob.query.filter_by(job_name=job_name).first()

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Insert a ScheduledJob row for each registered job missing one."""
        if cls._app is None:
            return []
        with cls._app.app_context():
            known = {name for (name,) in db.session.query(ScheduledJob.job_name)}
            created = [
                ScheduledJob(
                    job_name=spec.name,
                    description=spec.description,
                    schedule_type=spec.schedule_type,
                    status="active",
                    is_enabled=True,
                )
                for spec in _job_registry.values()
                if spec.name not in known
            ]
            if created:
                db.session.add_all(created)
                db.session.commit()
                logger.info("Registered jobs: %s", ", ".join(j.job_name for j in created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Run ``job_name`` now and record the run.

        Unknown jobs and an unbound service report ``error``; a paused job
        reports ``skipped`` and is not counted as a run.
        """
        spec = _job_registry.get(job_name)
        if spec is None:
            return _outcome(job_name, "error", error=f"Unknown job: {job_name}")
        if cls._app is None:
            return _outcome(job_name, "error", error="Scheduler not initialized")

        with cls._app.app_context():
            row = cls._row(job_name)
            if row is not None and not row.is_enabled:
                logger.debug("Job %s is paused; skipping", job_name)
                return _outcome(job_name, "skipped")

        started = time.monotonic()
        try:
            with cls._app.app_context():
                result = spec.fn(cls._app)
            status, error = "success", None
        except Exception as exc:
            result, status, error = None, "failed", str(exc)
            logger.exception("Job %s failed", job_name, extra={"event_type": "job_failed"})
        duration_ms = int((time.monotonic() - started) * 1000)

        cls._record(job_name, status, duration_ms, result, error)
        return _outcome(job_name, status, duration_ms=duration_ms, result=result, error=error)

    @classmethod
    def _record(cls, job_name, status, duration_ms, result, error) -> None:
        try:
            with cls._app.app_context():
                row = cls._row(job_name)
                if row is None:
                    return
                row.record_run(
                    status=status,
                    duration_ms=duration_ms,
                    result=result if isinstance(result, dict) else {"output": str(result)},
                    error=error,
                )
                db.session.commit()
        except SQLAlchemyError:
            logger.exception("Could not record run of job %s", job_name)

    @classmethod
    def list_jobs(cls) -> list[dict]:
        out = []
        for name, spec in sorted(_job_registry.items()):
            row = cls._row(name)
            out.append({
                "job_name": name,
                "schedule_type": spec.schedule_type,
                "registered": True,
                "db_record": row.to_dict() if row else None,
            })
        return out

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        row = cls._row(job_name)
        return row.to_dict() if row else None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Pause or resume a job; None when it has no row."""
        row = cls._row(job_name)
        if row is None:
            return None
        row.set_enabled(enabled)
        db.session.commit()
        logger.info("Job %s %s", job_name, "resumed" if enabled else "paused")
        return row.to_dict()
