"""
Ingestion job models.

A job carries either raw text or a reference to a file on disk. The payload
is a discriminated union tagged by ``kind`` so consumers can match on the
concrete type instead of probing for fields.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class JobState(Enum):
    """Queue state of an ingestion job"""
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class TextPayload(BaseModel):
    """Ingest text that was submitted directly"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str = Field(min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('text')
    @classmethod
    def validate_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Text cannot be blank')
        return v


class FilePayload(BaseModel):
    """Ingest a file that has to be parsed first"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["file"] = "file"
    file_path: str = Field(min_length=1)
    file_type: str = Field(min_length=1)
    filename: str = Field(min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    delete_after_processing: bool = False
    file_id: Optional[str] = None
    claim_token: Optional[str] = None

    @field_validator('file_type')
    @classmethod
    def normalize_file_type(cls, v: str) -> str:
        """Accept '.pdf' and 'PDF' alike"""
        return v.strip().lstrip('.').lower()


JobPayload = Annotated[Union[TextPayload, FilePayload], Field(discriminator="kind")]

payload_adapter: TypeAdapter = TypeAdapter(JobPayload)


class BackoffPolicy(BaseModel):
    """Exponential retry schedule: delay_ms, 2 * delay_ms, 4 * delay_ms, ..."""
    model_config = ConfigDict(frozen=True)

    type: Literal["exponential", "fixed"] = "exponential"
    delay_ms: int = Field(default=1000, ge=0)

    def delay_for(self, attempts_made: int) -> float:
        """Seconds to wait after the given number of failed attempts"""
        if attempts_made < 1:
            return 0.0
        if self.type == "fixed":
            return self.delay_ms / 1000
        return self.delay_ms * (2 ** (attempts_made - 1)) / 1000


class RetryPolicy(BaseModel):
    """Per-job retry and retention settings applied at enqueue time"""
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)


class JobResult(BaseModel):
    """Value returned by a successfully processed job"""
    id: str
    success: bool = True


class IngestionJob(BaseModel):
    """Durable unit of work held by the job queue"""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = "ingest-document"
    payload: JobPayload
    attempts: int = 0
    max_attempts: int = 3
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    state: JobState = JobState.WAITING
    progress: int = Field(default=0, ge=0, le=100)
    result: Optional[JobResult] = None
    failed_reason: Optional[str] = None
    available_at: float = 0.0
    created_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def is_file_job(self) -> bool:
        return isinstance(self.payload, FilePayload)

    @property
    def file_id(self) -> Optional[str]:
        if isinstance(self.payload, FilePayload):
            return self.payload.file_id
        return None

    @property
    def claim_token(self) -> Optional[str]:
        if isinstance(self.payload, FilePayload):
            return self.payload.claim_token
        return None

    @property
    def attempts_left(self) -> int:
        return max(self.max_attempts - self.attempts, 0)
