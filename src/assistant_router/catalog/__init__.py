"""Catalog of endpoint descriptors and their embeddings."""

from .models import RetrievalCandidate, ToolDescriptor
from .openapi import descriptors_from_openapi, load_openapi_document
from .store import CatalogStore, InMemoryCatalogStore, load_catalog, save_catalog

__all__ = [
    "CatalogStore",
    "InMemoryCatalogStore",
    "RetrievalCandidate",
    "ToolDescriptor",
    "descriptors_from_openapi",
    "load_catalog",
    "load_openapi_document",
    "save_catalog",
]
