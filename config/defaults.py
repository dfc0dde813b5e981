"""
Default configuration values for docsync.

Centralized defaults that can be overridden by a JSON config file or by
environment variables.
"""

from typing import Any, Dict

# Global default settings, same shape as ServiceConfig
DEFAULT_SETTINGS: Dict[str, Any] = {
    "name": "docsync",
    "data_dir": "data",

    # Qdrant configuration
    "qdrant": {
        "url": "http://localhost:6333",
        "timeout": 60.0,
        "collection_name": "documents",
        "vector_size": 1536,
        "distance_metric": "cosine"
    },

    # Embedding provider
    "embeddings": {
        "provider": "openai",
        "model_name": "text-embedding-3-small",
        "dimensions": 1536,
        "batch_size": 32,
        "max_length": 8191,
        "normalize_embeddings": True
    },

    # Job queue and workers
    "queue": {
        "concurrency": 5,
        "max_attempts": 3,
        "backoff_delay_ms": 1000,
        "remove_on_complete": 100,
        "remove_on_fail": 500,
        "poll_interval": 1.0
    },

    # Folder scanning
    "scan": {
        "watch_folder": None,
        "watch_folder_name": "default",
        "recursive": True,
        "scan_pattern": None,
        "pending_batch_size": 50
    }
}

# Default config file looked up in the working directory
DEFAULT_CONFIG_FILE = "docsync.json"

# Environment variable mappings
ENV_VAR_MAPPING = {
    'DOCSYNC_NAME': 'name',
    'DOCSYNC_DATA_DIR': 'data_dir',
    'DOCSYNC_QDRANT_URL': 'qdrant.url',
    'DOCSYNC_QDRANT_API_KEY': 'qdrant.api_key',
    'DOCSYNC_QDRANT_TIMEOUT': 'qdrant.timeout',
    'DOCSYNC_QDRANT_COLLECTION': 'qdrant.collection_name',
    'DOCSYNC_EMBEDDING_PROVIDER': 'embeddings.provider',
    'DOCSYNC_EMBEDDING_MODEL': 'embeddings.model_name',
    'DOCSYNC_EMBEDDING_DIMENSIONS': 'embeddings.dimensions',
    'DOCSYNC_EMBEDDING_DEVICE': 'embeddings.device',
    'OPENAI_API_KEY': 'embeddings.api_key',
    'OPENAI_BASE_URL': 'embeddings.base_url',
    'DOCSYNC_QUEUE_CONCURRENCY': 'queue.concurrency',
    'DOCSYNC_QUEUE_MAX_ATTEMPTS': 'queue.max_attempts',
    'DOCSYNC_QUEUE_BACKOFF_MS': 'queue.backoff_delay_ms',
    'DOCSYNC_WATCH_FOLDER': 'scan.watch_folder',
    'DOCSYNC_WATCH_FOLDER_NAME': 'scan.watch_folder_name',
    'DOCSYNC_SCAN_PATTERN': 'scan.scan_pattern',
}
