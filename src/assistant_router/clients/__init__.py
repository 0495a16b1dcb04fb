"""Clients for the external embedding, reranking and generation services."""

from .embedding import EmbeddingClient
from .generation import GenerationClient
from .http import ApiClient
from .reranking import RerankingClient

__all__ = [
    "ApiClient",
    "EmbeddingClient",
    "GenerationClient",
    "RerankingClient",
]
