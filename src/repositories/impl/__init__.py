"""Repositories implementation package."""

from .keyword_repository import KeywordRepository
from .search_result_repository import SearchResultRepository

__all__ = ["KeywordRepository", "SearchResultRepository"]
