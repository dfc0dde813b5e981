"""
Base embedding interface for docsync.

Defines the abstract interface every embedding provider implements. The
pipeline only needs two calls: ``embed_query`` for a single text and
``embed_documents`` for a batch.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..errors import EmbeddingError


@dataclass
class EmbeddingResponse:
    """Response containing generated embeddings"""
    embeddings: List[List[float]]
    processing_time_ms: float
    model_info: Optional[Dict[str, Any]] = None

    @property
    def embedding_count(self) -> int:
        return len(self.embeddings)


class BaseEmbedder(ABC):
    """Abstract base class for embedding providers"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self._model = None
        self._is_loaded = False
        self._load_time: Optional[datetime] = None

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Get the name of the embedding model"""
        pass

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Get the dimensionality of the embeddings"""
        pass

    @property
    @abstractmethod
    def max_sequence_length(self) -> int:
        """Get the maximum sequence length supported"""
        pass

    @property
    def is_loaded(self) -> bool:
        """Check if the model is loaded and ready"""
        return self._is_loaded and self._model is not None

    @abstractmethod
    async def load_model(self) -> bool:
        """Load the embedding model or open the provider client"""
        pass

    @abstractmethod
    async def unload_model(self) -> None:
        """Release the model or client"""
        pass

    @abstractmethod
    async def _generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Internal method to generate embeddings"""
        pass

    async def embed_texts(self, texts: List[str]) -> EmbeddingResponse:
        """
        Generate embeddings for a list of texts.

        Raises:
            EmbeddingError: provider could not be loaded or failed
        """
        if not self.is_loaded and not await self.load_model():
            raise EmbeddingError(f"Embedding model {self.model_name} is not available")

        if not texts:
            return EmbeddingResponse(embeddings=[], processing_time_ms=0.0)

        loop = asyncio.get_running_loop()
        start_time = loop.time()

        try:
            embeddings = await self._generate_embeddings(self._validate_texts(texts))
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding generation failed: {e}") from e

        if len(embeddings) != len(texts):
            raise EmbeddingError(
                f"Provider returned {len(embeddings)} embeddings for {len(texts)} texts"
            )

        return EmbeddingResponse(
            embeddings=embeddings,
            processing_time_ms=(loop.time() - start_time) * 1000,
            model_info=self.get_model_info()
        )

    async def embed_query(self, text: str) -> List[float]:
        """Generate one embedding for a single text"""
        response = await self.embed_texts([text])
        return response.embeddings[0]

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for several texts in one provider call"""
        response = await self.embed_texts(texts)
        return response.embeddings

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the model"""
        return {
            "model_name": self.model_name,
            "dimensions": self.dimensions,
            "max_sequence_length": self.max_sequence_length,
            "is_loaded": self.is_loaded,
            "load_time": self._load_time.isoformat() if self._load_time else None,
        }

    def _validate_texts(self, texts: List[str]) -> List[str]:
        """Truncate overlong inputs; order and length are preserved"""
        if not isinstance(texts, list):
            raise ValueError("texts must be a list")

        valid_texts = []
        for text in texts:
            if text is None:
                text = ""
            if len(text) > self.max_sequence_length:
                text = text[:self.max_sequence_length]
            valid_texts.append(text)
        return valid_texts
