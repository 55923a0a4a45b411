# backend/salesintel/services/tasks.py
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional
from uuid import UUID

from ..core.celery_app import COLLECTION_QUEUE, RUN_COLLECTION_TASK, celery_app
from ..models.collection_run import RunStatus
from .history import mark_run_status
from .orchestration_core import CostLimitExceeded
from .orchestrator import get_orchestrator

logger = logging.getLogger(__name__)


@celery_app.task(name=RUN_COLLECTION_TASK, bind=True, queue=COLLECTION_QUEUE)
def run_collection(
    self,
    run_id: str,
    company_name: str,
    consumer_type: str,
    max_cost: Optional[float] = None,
    required_sources: Optional[List[str]] = None,
) -> dict:
    """
    Worker entrypoint for POST /intelligence/collect/async.

    Celery workers are synchronous, so each task gets its own event loop.
    The history recorder completes the pending CollectionRun row.
    """
    run_uuid = UUID(run_id)
    log_extra = {"run_id": run_id, "company_name": company_name, "consumer_type": consumer_type}

    mark_run_status(run_uuid, RunStatus.PROCESSING)
    logger.info("Starting collection run", extra={**log_extra, "step": "start"})

    orchestrator = get_orchestrator()
    try:
        data = asyncio.run(
            orchestrator.get_multi_source_data(
                company_name,
                consumer_type,
                max_cost=max_cost,
                required_sources=required_sources,
                run_id=run_uuid,
            )
        )
    except CostLimitExceeded as e:
        # Budget refusals are final, no retry
        mark_run_status(run_uuid, RunStatus.FAILED, str(e))
        logger.warning("Collection run refused: %s", e, extra={**log_extra, "step": "budget"})
        return {"run_id": run_id, "status": RunStatus.FAILED.value, "error": str(e)}
    except Exception as e:
        mark_run_status(run_uuid, RunStatus.FAILED, str(e))
        logger.exception("Collection run failed", extra={**log_extra, "step": "failed"})
        raise

    logger.info("Collection run completed", extra={**log_extra, "step": "completed"})
    return {
        "run_id": run_id,
        "status": RunStatus.COMPLETED.value,
        "summary": data.summary.to_dict(),
    }
