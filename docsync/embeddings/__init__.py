"""
Embedding providers for docsync.
"""

from .base import BaseEmbedder, EmbeddingResponse
from .openai_embedder import OpenAIEmbedder
from .registry import EmbedderRegistry, create_embedder
from .sentence_transformer import SentenceTransformerEmbedder

__all__ = [
    "BaseEmbedder",
    "EmbedderRegistry",
    "EmbeddingResponse",
    "OpenAIEmbedder",
    "SentenceTransformerEmbedder",
    "create_embedder",
]
