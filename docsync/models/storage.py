"""
Storage models for Qdrant integration and operation results.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VectorPoint(BaseModel):
    """Qdrant vector storage point representation"""
    model_config = ConfigDict(frozen=True)

    id: str
    vector: List[float]
    payload: Dict[str, Any]

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate point ID is not empty"""
        if not v.strip():
            raise ValueError('Point ID cannot be empty')
        return v

    @field_validator('vector')
    @classmethod
    def validate_vector(cls, v: List[float]) -> List[float]:
        if not v:
            raise ValueError('Vector cannot be empty')
        return v

    @property
    def text(self) -> str:
        return self.payload.get('text', '')

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.payload.get('metadata', {})


class SearchHit(BaseModel):
    """One ranked point returned by a vector query"""
    model_config = ConfigDict(frozen=True)

    id: str
    score: float
    text: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StorageResult(BaseModel):
    """Result of storage operations with detailed metrics"""

    operation: str  # upsert, delete, query, create_collection
    collection_name: str
    success: bool

    processing_time_ms: float = 0.0
    affected_count: int = 0

    error: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None

    started_at: datetime = Field(default_factory=datetime.now)

    @field_validator('operation')
    @classmethod
    def validate_operation(cls, v: str) -> str:
        """Validate operation type"""
        valid_ops = {'upsert', 'delete', 'query', 'create_collection'}
        if v.lower() not in valid_ops:
            raise ValueError(f'Invalid operation: {v}')
        return v.lower()

    @classmethod
    def successful(
        cls,
        operation: str,
        collection_name: str,
        count: int,
        processing_time_ms: float
    ) -> 'StorageResult':
        return cls(
            operation=operation,
            collection_name=collection_name,
            success=True,
            processing_time_ms=processing_time_ms,
            affected_count=count
        )

    @classmethod
    def failed_operation(
        cls,
        operation: str,
        collection_name: str,
        error: str,
        processing_time_ms: float,
        error_details: Optional[Dict[str, Any]] = None
    ) -> 'StorageResult':
        """Create failed operation result"""
        return cls(
            operation=operation,
            collection_name=collection_name,
            success=False,
            processing_time_ms=processing_time_ms,
            error=error,
            error_details=error_details
        )
