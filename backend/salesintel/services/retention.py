from __future__ import annotations

from datetime import datetime, timedelta
import logging

from sqlalchemy.orm import Session

from ..core.celery_app import CLEANUP_RUNS_TASK, celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..models.collection_run import CollectionRun

logger = logging.getLogger(__name__)
settings = get_settings()


@celery_app.task(name=CLEANUP_RUNS_TASK)
def cleanup_expired() -> int:
    """
    Periodic task to enforce data retention policy.

    Current policy:
    - Delete CollectionRun rows older than COLLECTION_HISTORY_RETENTION_DAYS
      based on CollectionRun.created_at.

    Cached source payloads are not touched here; Redis TTLs expire them.
    """
    db: Session = SessionLocal()
    try:
        cutoff = datetime.utcnow() - timedelta(days=settings.COLLECTION_HISTORY_RETENTION_DAYS)
        deleted_runs = (
            db.query(CollectionRun)
            .filter(CollectionRun.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        db.commit()

        if not deleted_runs:
            logger.info(
                "No expired collection runs found for cleanup",
                extra={"step": "retention"},
            )
            return 0

        logger.info(
            "Deleted expired collection runs",
            extra={"step": "retention", "deleted_runs": deleted_runs},
        )
        return deleted_runs
    except Exception:
        db.rollback()
        logger.exception(
            "Error during cleanup_expired",
            extra={"step": "retention"},
        )
        raise
    finally:
        db.close()
