# backend/salesintel/services/history.py
from __future__ import annotations

from typing import Optional
from uuid import UUID
import logging
from datetime import datetime

from ..core.db import SessionLocal
from ..models.collection_run import CollectionRun, RunStatus
from .types import DataCollectionPlan, MultiSourceData

logger = logging.getLogger(__name__)


def record_collection_run(
    plan: DataCollectionPlan,
    data: MultiSourceData,
    *,
    run_id: UUID | None = None,
) -> Optional[UUID]:
    """
    Best-effort, fire-and-forget history writer.
    Failure must NEVER break the collection it describes.

    Updates the pending row when `run_id` is given (async runs), otherwise
    inserts a completed row. Returns the row id, or None if the write failed.
    """
    db = SessionLocal()
    try:
        run = db.get(CollectionRun, run_id) if run_id else None
        if run is None:
            run = CollectionRun(
                company_name=plan.company_name,
                consumer_type=plan.requester.value,
            )
            if run_id:
                run.id = run_id
            db.add(run)

        run.status = RunStatus.COMPLETED
        run.plan = plan.to_dict()
        run.source_status = {s.value: o.value for s, o in data.source_status.items()}
        run.summary = data.summary.to_dict()
        run.total_new_cost = data.total_new_cost
        run.total_cache_savings = data.total_cache_savings
        run.cache_hits = data.cache_hits
        run.new_api_calls = data.new_api_calls
        run.completed_at = datetime.utcnow()
        db.commit()
        return run.id
    except Exception:
        db.rollback()
        logger.exception(
            "Failed to write collection run",
            extra={"company_name": plan.company_name, "run_id": str(run_id) if run_id else None},
        )
        return None
    finally:
        db.close()


def mark_run_status(run_id: UUID, status: RunStatus, error_message: str | None = None) -> None:
    """Best-effort status transition for async runs."""
    db = SessionLocal()
    try:
        run = db.get(CollectionRun, run_id)
        if run is None:
            logger.warning("Collection run %s not found", run_id, extra={"run_id": str(run_id)})
            return
        run.status = status
        if error_message is not None:
            run.error_message = error_message[:2000]
        if status in (RunStatus.COMPLETED, RunStatus.FAILED):
            run.completed_at = datetime.utcnow()
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to update collection run status", extra={"run_id": str(run_id)})
    finally:
        db.close()
