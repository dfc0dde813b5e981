"""
Local embeddings with sentence-transformers.

The model is imported and loaded lazily so that deployments using the
OpenAI provider never pay the torch import cost.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from .base import BaseEmbedder
from ..models.config import EmbeddingConfig

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedder(BaseEmbedder):
    """Runs a sentence-transformers model in a worker thread"""

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        self.embedding_config = config or EmbeddingConfig(
            provider="sentence-transformers",
            model_name="sentence-transformers/all-MiniLM-L6-v2",
            dimensions=384,
            max_length=512
        )
        super().__init__(self.embedding_config.model_dump(exclude={"api_key"}))
        self._device: Optional[str] = None
        self._load_lock = asyncio.Lock()

        logger.info(f"Initialized SentenceTransformerEmbedder: {self.embedding_config.model_name}")

    @property
    def model_name(self) -> str:
        return self.embedding_config.model_name

    @property
    def dimensions(self) -> int:
        return self.embedding_config.dimensions

    @property
    def max_sequence_length(self) -> int:
        return self.embedding_config.max_length

    @property
    def device(self) -> Optional[str]:
        return self._device

    async def load_model(self) -> bool:
        """
        Load the model on the configured device.

        Returns:
            True if model loaded successfully, False otherwise
        """
        async with self._load_lock:
            if self.is_loaded:
                return True

            try:
                start_time = time.time()

                # Import here to avoid startup delays
                from sentence_transformers import SentenceTransformer

                self._model = await asyncio.to_thread(
                    SentenceTransformer,
                    self.model_name,
                    device=self.embedding_config.device
                )
                self._device = str(self._model.device)
                self._is_loaded = True
                self._load_time = datetime.now()

                model_dims = self._model.get_sentence_embedding_dimension()
                if model_dims and model_dims != self.dimensions:
                    logger.warning(
                        f"Model {self.model_name} produces {model_dims}-d vectors, "
                        f"configured dimensions is {self.dimensions}"
                    )

                logger.info(
                    f"Loaded {self.model_name} on {self._device} in {time.time() - start_time:.2f}s"
                )
                return True

            except Exception as e:
                logger.error(f"Failed to load sentence-transformers model {self.model_name}: {e}")
                self._model = None
                self._is_loaded = False
                return False

    async def unload_model(self) -> None:
        self._model = None
        self._is_loaded = False
        self._device = None
        logger.info(f"Unloaded {self.model_name}")

    async def _generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        embeddings = await asyncio.to_thread(
            self._model.encode,
            texts,
            batch_size=self.embedding_config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.embedding_config.normalize_embeddings
        )
        return embeddings.tolist()

    def get_model_info(self) -> Dict[str, Any]:
        info = super().get_model_info()
        info.update({"provider": "sentence-transformers", "device": self._device})
        return info
