"""Repository abstractions for database interactions."""

from .catalog_repository import CatalogRepository
from .meta_repository import MetaRepository

__all__ = [
    "CatalogRepository",
    "MetaRepository",
]
