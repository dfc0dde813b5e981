"""
Configuration models for docsync.

Handles service settings, Qdrant configuration, embedding provider setup,
job queue policy and folder scanning defaults.
"""

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .jobs import BackoffPolicy, RetryPolicy


class QdrantConfig(BaseModel):
    """Qdrant vector database configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    # Connection settings
    url: str = "http://localhost:6333"
    api_key: Optional[str] = None
    timeout: float = 60.0

    # Collection settings
    collection_name: str = "documents"
    vector_size: int = Field(default=1536, ge=1)
    distance_metric: str = "cosine"

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Qdrant URL format"""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('Qdrant URL must start with http:// or https://')
        return v.rstrip('/')

    @field_validator('distance_metric')
    @classmethod
    def validate_distance_metric(cls, v: str) -> str:
        """Validate distance metric"""
        valid_metrics = {'cosine', 'euclidean', 'dot'}
        if v.lower() not in valid_metrics:
            raise ValueError(f'Distance metric must be one of: {valid_metrics}')
        return v.lower()

    @field_validator('collection_name')
    @classmethod
    def validate_collection_name(cls, v: str) -> str:
        if not v or not v.replace('-', '').replace('_', '').isalnum():
            raise ValueError('Collection name must be alphanumeric with dashes/underscores')
        return v


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    provider: Literal["openai", "sentence-transformers"] = "openai"
    model_name: str = "text-embedding-3-small"
    dimensions: int = Field(default=1536, ge=1)
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    # Local model settings
    device: Optional[str] = None  # Auto-detect if None
    batch_size: int = Field(default=32, ge=1, le=512)
    max_length: int = Field(default=8191, ge=1)
    normalize_embeddings: bool = True


class QueueConfig(BaseModel):
    """Job queue and worker pool configuration"""
    model_config = ConfigDict(validate_assignment=True)

    concurrency: int = Field(default=5, ge=1, le=64)
    max_attempts: int = Field(default=3, ge=1, le=50)
    backoff_delay_ms: int = Field(default=1000, ge=0)

    # Retention of terminal jobs
    remove_on_complete: int = Field(default=100, ge=0)
    remove_on_fail: int = Field(default=500, ge=0)

    poll_interval: float = Field(default=1.0, gt=0.0)

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff=BackoffPolicy(type="exponential", delay_ms=self.backoff_delay_ms)
        )


class ScanConfig(BaseModel):
    """Default folder scanning settings"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    watch_folder: Optional[Path] = None
    watch_folder_name: str = "default"
    recursive: bool = True
    scan_pattern: Optional[str] = None
    pending_batch_size: int = Field(default=50, ge=1, le=1000)

    exclude_dirs: List[str] = Field(
        default_factory=lambda: [
            "node_modules", "__pycache__", ".git", ".svn", ".hg",
            ".cache", ".pytest_cache", ".mypy_cache", "venv", ".venv",
        ]
    )


class ServiceConfig(BaseModel):
    """Top-level configuration of a docsync deployment"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    name: str = "docsync"
    data_dir: Path = Field(default_factory=lambda: Path("data"))

    qdrant: QdrantConfig = Field(default_factory=QdrantConfig)
    embeddings: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)

    @property
    def metadata_db_path(self) -> Path:
        return self.data_dir / "tracking.db"

    @property
    def queue_db_path(self) -> Path:
        return self.data_dir / "queue.db"

    def to_dict(self) -> dict:
        """Convert to a JSON-serializable dictionary"""
        return self.model_dump(mode="json")


class GlobalSettings(BaseSettings):
    """Process-wide settings with environment variable support"""
    model_config = SettingsConfigDict(
        env_prefix="DOCSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    config_file: Optional[Path] = None

    # Logging
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_to_file: bool = False
    log_dir: Path = Field(default_factory=lambda: Path("data") / "logs")

    def get_log_file(self) -> Optional[Path]:
        """Get log file path if logging to file is enabled"""
        if not self.log_to_file:
            return None
        self.log_dir.mkdir(parents=True, exist_ok=True)
        return self.log_dir / "docsync.log"
