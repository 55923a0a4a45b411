from functools import lru_cache
from uuid import UUID, uuid4
import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Security
from fastapi.security.api_key import APIKeyHeader
from sqlalchemy.orm import Session

from ..core.celery_app import COLLECTION_QUEUE, RUN_COLLECTION_TASK, celery_app
from ..core.config import get_settings
from ..core.db import get_db
from ..models.collection_run import CollectionRun, RunStatus
from ..schemas.intelligence import (
    CollectionRequest,
    CollectionRunAccepted,
    CollectionRunOut,
    CustomerIntelligenceIn,
)
from ..services.orchestration_core import CostLimitExceeded
from ..services.orchestrator import DataSourceOrchestrator, get_orchestrator
from ..services.types import CustomerIntelligenceRequest

router = APIRouter(prefix="/intelligence", tags=["intelligence"])

settings = get_settings()
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
logger = logging.getLogger(__name__)


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Every intelligence endpoint spends money on paid sources, so callers must
    send X-API-Key matching API_AUTH_KEY. Only a dev deployment with no key
    configured is left open.
    """
    expected = settings.API_AUTH_KEY
    if not expected:
        if settings.ENV == "dev":
            return
        raise HTTPException(status_code=401, detail="API key not configured")

    if not api_key or not secrets.compare_digest(api_key.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid API key")


@lru_cache
def orchestrator_dependency() -> DataSourceOrchestrator:
    return get_orchestrator()


def _budget_error(e: CostLimitExceeded) -> HTTPException:
    return HTTPException(
        status_code=402,
        detail={
            "error": "cost_limit_exceeded",
            "estimated_cost": e.estimated_cost,
            "max_cost": e.max_cost,
        },
    )


@router.post("/plan")
async def preview_plan(
    payload: CollectionRequest,
    orchestrator: DataSourceOrchestrator = Depends(orchestrator_dependency),
    _: None = Depends(verify_api_key),
):
    try:
        plan = await orchestrator.create_collection_plan(
            payload.company_name,
            payload.consumer_type,
            payload.max_cost,
            payload.required_sources,
        )
    except CostLimitExceeded as e:
        raise _budget_error(e)
    return plan.to_dict()


@router.post("/collect")
async def collect(
    payload: CollectionRequest,
    orchestrator: DataSourceOrchestrator = Depends(orchestrator_dependency),
    _: None = Depends(verify_api_key),
):
    request_id = str(uuid4())
    logger.info(
        "Synchronous collection requested",
        extra={
            "request_id": request_id,
            "company_name": payload.company_name,
            "consumer_type": payload.consumer_type.value,
            "step": "collect",
        },
    )
    try:
        data = await orchestrator.get_multi_source_data(
            payload.company_name,
            payload.consumer_type,
            payload.max_cost,
            payload.required_sources,
        )
    except CostLimitExceeded as e:
        raise _budget_error(e)
    return data.to_dict()


@router.post("/collect/async", response_model=CollectionRunAccepted, status_code=202)
def collect_async(
    payload: CollectionRequest,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    run = CollectionRun(
        company_name=payload.company_name,
        consumer_type=payload.consumer_type.value,
        status=RunStatus.PENDING,
    )
    db.add(run)
    db.commit()
    db.refresh(run)

    logger.info(
        "Collection run created",
        extra={
            "run_id": str(run.id),
            "company_name": payload.company_name,
            "consumer_type": payload.consumer_type.value,
            "step": "run_created",
        },
    )

    celery_app.send_task(
        RUN_COLLECTION_TASK,
        args=[str(run.id), payload.company_name, payload.consumer_type.value],
        kwargs={"max_cost": payload.max_cost, "required_sources": payload.required_sources},
        queue=COLLECTION_QUEUE,
    )

    return CollectionRunAccepted(run_id=run.id, status=run.status)


@router.get("/runs/{run_id}", response_model=CollectionRunOut)
def get_collection_run(
    run_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    run = db.query(CollectionRun).filter(CollectionRun.id == run_id).first()
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


@router.post("/customer")
async def customer_intelligence(
    payload: CustomerIntelligenceIn,
    orchestrator: DataSourceOrchestrator = Depends(orchestrator_dependency),
    _: None = Depends(verify_api_key),
):
    request = CustomerIntelligenceRequest(
        customer_company=payload.customer_company,
        vendor_company=payload.vendor_company,
        consumer_type=payload.consumer_type,
        max_cost=payload.max_cost,
        urgency=payload.urgency,
        required_datasets=payload.required_datasets,
    )
    try:
        response = await orchestrator.get_customer_intelligence(request)
    except CostLimitExceeded as e:
        raise _budget_error(e)
    return response.to_dict()


@router.get("/status/{company_name}")
async def raw_data_status(
    company_name: str,
    orchestrator: DataSourceOrchestrator = Depends(orchestrator_dependency),
    _: None = Depends(verify_api_key),
):
    status = await orchestrator.get_raw_data_status(company_name)
    return status.to_dict()


@router.get("/health")
async def orchestration_health(
    orchestrator: DataSourceOrchestrator = Depends(orchestrator_dependency),
    _: None = Depends(verify_api_key),
):
    health = await orchestrator.check_orchestration_health()
    return health.to_dict()


@router.get("/metrics")
def spend_metrics(
    orchestrator: DataSourceOrchestrator = Depends(orchestrator_dependency),
    _: None = Depends(verify_api_key),
):
    return orchestrator.get_metrics().to_dict()
