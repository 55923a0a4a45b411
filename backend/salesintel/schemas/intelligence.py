# backend/salesintel/schemas/intelligence.py
from datetime import datetime
from typing import Any, Dict, List, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.collection_run import RunStatus
from ..services.types import ConsumerType

MAX_COMPANY_NAME_LEN = 200
MAX_SOURCES = 20
MAX_DATASETS = 40


def _clean_company_name(v: str, field_name: str) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError(f"{field_name} must not be empty")
    if len(v) > MAX_COMPANY_NAME_LEN:
        raise ValueError(f"{field_name} must be at most {MAX_COMPANY_NAME_LEN} characters")
    return v


class CollectionRequest(BaseModel):
    company_name: str
    consumer_type: ConsumerType = ConsumerType.profile
    max_cost: float | None = Field(default=None, ge=0)
    required_sources: List[str] | None = None

    @field_validator("company_name")
    @classmethod
    def validate_company_name(cls, v: str) -> str:
        return _clean_company_name(v, "company_name")

    @field_validator("required_sources")
    @classmethod
    def validate_required_sources(cls, v: List[str] | None) -> List[str] | None:
        if v is None:
            return None
        cleaned = [s.strip().lower() for s in v if s and s.strip()]
        if len(cleaned) > MAX_SOURCES:
            raise ValueError(f"required_sources must list at most {MAX_SOURCES} sources")
        return cleaned or None


class CustomerIntelligenceIn(BaseModel):
    customer_company: str
    vendor_company: str
    consumer_type: ConsumerType = ConsumerType.customer_intelligence
    max_cost: float | None = Field(default=None, ge=0)
    urgency: Literal["low", "medium", "high"] = "medium"
    required_datasets: List[str] | None = None

    @field_validator("customer_company")
    @classmethod
    def validate_customer_company(cls, v: str) -> str:
        return _clean_company_name(v, "customer_company")

    @field_validator("vendor_company")
    @classmethod
    def validate_vendor_company(cls, v: str) -> str:
        return _clean_company_name(v, "vendor_company")

    @field_validator("required_datasets")
    @classmethod
    def validate_required_datasets(cls, v: List[str] | None) -> List[str] | None:
        if v is None:
            return None
        if len(v) > MAX_DATASETS:
            raise ValueError(f"required_datasets must list at most {MAX_DATASETS} datasets")
        return [d.strip().lower() for d in v if d and d.strip()] or None


class CollectionRunAccepted(BaseModel):
    run_id: UUID
    status: RunStatus


class CollectionRunOut(BaseModel):
    id: UUID
    company_name: str
    consumer_type: str
    status: RunStatus
    plan: Dict[str, Any] | None = None
    source_status: Dict[str, str] | None = None
    summary: Dict[str, Any] | None = None
    total_new_cost: float
    total_cache_savings: float
    cache_hits: int
    new_api_calls: int
    created_at: datetime
    completed_at: datetime | None = None
    error_message: str | None = None

    model_config = ConfigDict(from_attributes=True)
