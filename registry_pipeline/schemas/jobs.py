from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from registry_pipeline.schemas.records import utcnow

JobStatus = Literal["pending", "processing", "completed", "failed"]


class Job(BaseModel):
    id: str
    job_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = "pending"
    priority: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    attempts: int = 0
    last_attempt: datetime | None = None
    error_message: str | None = None

    @property
    def business_id(self) -> str | None:
        value = self.payload.get("business_id")
        return str(value) if value else None

    @property
    def url(self) -> str | None:
        value = self.payload.get("url")
        return value if isinstance(value, str) and value.strip() else None


class AuditEntry(BaseModel):
    worker_name: str
    action: str
    related_entity_id: str | None = None
    url: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    success: bool = True
    timestamp: datetime = Field(default_factory=utcnow)
