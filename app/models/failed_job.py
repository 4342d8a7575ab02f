"""Dead-letter record for worker jobs (ledger audits) that raised."""

from datetime import datetime

from beanie import Document
from pydantic import Field

from app.storage.types import utcnow


class FailedJob(Document):
    job_name: str
    job_id: str
    attempt: int = 1  # arq job_try
    error_type: str
    reason: str = ""
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "failed_jobs"
        indexes = [[("job_name", 1), ("created_at", -1)]]
