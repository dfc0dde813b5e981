"""
Embedder registry and factory.
"""

import logging
from typing import Callable, Dict, List, Optional

from ..models.config import EmbeddingConfig
from .base import BaseEmbedder
from .openai_embedder import OpenAIEmbedder
from .sentence_transformer import SentenceTransformerEmbedder

logger = logging.getLogger(__name__)


EmbedderFactory = Callable[[EmbeddingConfig], BaseEmbedder]


class EmbedderRegistry:
    """Registry for embedder implementations keyed by provider name"""

    def __init__(self):
        self._factories: Dict[str, EmbedderFactory] = {}
        self._register_builtin_embedders()

    def _register_builtin_embedders(self) -> None:
        self.register_embedder("openai", OpenAIEmbedder)
        self.register_embedder("sentence-transformers", SentenceTransformerEmbedder)

    def register_embedder(self, name: str, factory: EmbedderFactory) -> None:
        """
        Register a provider.

        Args:
            name: Provider name as used in ``EmbeddingConfig.provider``
            factory: Callable building an embedder from an EmbeddingConfig
        """
        if not name or not isinstance(name, str):
            raise ValueError("Embedder name must be a non-empty string")
        self._factories[name] = factory
        logger.debug(f"Registered embedder: {name}")

    def create_embedder(self, config: Optional[EmbeddingConfig] = None) -> BaseEmbedder:
        """Build the embedder selected by ``config.provider``"""
        config = config or EmbeddingConfig()
        factory = self._factories.get(config.provider)
        if factory is None:
            raise ValueError(
                f"Unknown embedder provider: {config.provider}. "
                f"Available providers: {self.get_available_providers()}"
            )
        return factory(config)

    def get_available_providers(self) -> List[str]:
        return sorted(self._factories)


def create_embedder(config: Optional[EmbeddingConfig] = None) -> BaseEmbedder:
    """Build an embedder from configuration using the built-in providers"""
    return EmbedderRegistry().create_embedder(config)
