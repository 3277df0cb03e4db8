"""Query-time retrieval."""

from perceive.search.engine import QueryEngine, SearchConfig, SearchFilters, SearchResult

__all__ = ["QueryEngine", "SearchConfig", "SearchFilters", "SearchResult"]
