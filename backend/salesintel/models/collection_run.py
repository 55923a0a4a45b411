from sqlalchemy import Column, String, JSON, Enum, DateTime, Float, Integer, Uuid
from datetime import datetime
import uuid
import enum
from ..core.db import Base

class RunStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

class CollectionRun(Base):
    __tablename__ = "collection_runs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_name = Column(String, nullable=False, index=True)
    consumer_type = Column(String, nullable=False)
    status = Column(Enum(RunStatus), nullable=False, default=RunStatus.PENDING)
    plan = Column(JSON, nullable=True)            # DataCollectionPlan.to_dict()
    source_status = Column(JSON, nullable=True)   # {source: cached|collected|empty|errored|skipped}
    summary = Column(JSON, nullable=True)         # CollectionSummary.to_dict()
    total_new_cost = Column(Float, nullable=False, default=0.0)
    total_cache_savings = Column(Float, nullable=False, default=0.0)
    cache_hits = Column(Integer, nullable=False, default=0)
    new_api_calls = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(String, nullable=True)
