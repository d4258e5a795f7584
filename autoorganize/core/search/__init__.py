"""Search index and ranking."""

from autoorganize.core.search.ranking import make_snippet, rank_key, rank_results, tokenize
from autoorganize.core.search.search_index import SearchIndex, paginate

__all__ = ["SearchIndex", "make_snippet", "paginate", "rank_key", "rank_results", "tokenize"]
