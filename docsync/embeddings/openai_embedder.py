"""
OpenAI embeddings provider.
"""

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from ..errors import EmbeddingError
from ..models.config import EmbeddingConfig
from .base import BaseEmbedder

logger = logging.getLogger(__name__)


class OpenAIEmbedder(BaseEmbedder):
    """
    Embeddings through the OpenAI API (``text-embedding-3-small`` by default).

    The API key falls back to the ``OPENAI_API_KEY`` environment variable
    when the config does not set one.
    """

    def __init__(self, config: Optional[EmbeddingConfig] = None, client: Optional[AsyncOpenAI] = None):
        self.embedding_config = config or EmbeddingConfig()
        super().__init__(self.embedding_config.model_dump(exclude={"api_key"}))
        self._client = client

        self._total_embeddings = 0
        self._total_requests = 0

        logger.info(f"Initialized OpenAIEmbedder: {self.embedding_config.model_name}")

    @property
    def model_name(self) -> str:
        return self.embedding_config.model_name

    @property
    def dimensions(self) -> int:
        return self.embedding_config.dimensions

    @property
    def max_sequence_length(self) -> int:
        # OpenAI limits are in tokens; characters are a conservative proxy
        return self.embedding_config.max_length * 4

    async def load_model(self) -> bool:
        if self.is_loaded:
            return True

        try:
            if self._client is None:
                self._client = AsyncOpenAI(
                    api_key=self.embedding_config.api_key,
                    base_url=self.embedding_config.base_url
                )
        except openai.OpenAIError as e:
            logger.error(f"Failed to create OpenAI client: {e}")
            return False

        self._model = self._client
        self._is_loaded = True
        self._load_time = datetime.now()
        return True

    async def unload_model(self) -> None:
        if self._client is not None:
            await self._client.close()
        self._client = None
        self._model = None
        self._is_loaded = False

    async def _generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        start_time = time.time()
        try:
            response = await self._client.embeddings.create(
                model=self.model_name,
                input=texts,
                encoding_format="float"
            )
        except openai.OpenAIError as e:
            logger.error(f"OpenAI embedding request failed: {e}")
            raise EmbeddingError(f"OpenAI embedding request failed: {e}") from e

        # Responses carry an index per input; do not rely on list order
        ordered = sorted(response.data, key=lambda item: item.index)
        embeddings = [list(item.embedding) for item in ordered]

        self._total_requests += 1
        self._total_embeddings += len(embeddings)
        logger.debug(
            f"Embedded {len(texts)} texts with {self.model_name} "
            f"in {(time.time() - start_time) * 1000:.2f}ms"
        )
        return embeddings

    def get_model_info(self) -> Dict[str, Any]:
        info = super().get_model_info()
        info.update({
            "provider": "openai",
            "total_requests": self._total_requests,
            "total_embeddings": self._total_embeddings,
        })
        return info
