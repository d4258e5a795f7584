"""
Ranking, tokenization and snippet helpers shared by the index and the
fallback scan.
"""

import re

from autoorganize.models.search import SearchResult

TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
        "is", "are", "was", "were", "be", "been", "being", "have", "has", "had", "do", "does",
        "did", "will", "would", "could", "should", "may", "might", "can", "this", "that",
        "these", "those", "i", "you", "he", "she", "it", "we", "they", "me", "him", "her",
        "us", "them",
    }
)


def tokenize(text: str, keep_stop_words: bool = False) -> list[str]:
    """Case-folded word tokens, stop words removed unless requested."""
    tokens = [t.casefold() for t in TOKEN_PATTERN.findall(text or "")]
    if keep_stop_words:
        return tokens
    return [t for t in tokens if t not in STOP_WORDS]


def query_terms(query: str) -> list[str]:
    """Distinct query terms in order; falls back to stop words for all-stop-word queries."""
    terms = tokenize(query) or tokenize(query, keep_stop_words=True)
    return list(dict.fromkeys(terms))


def rank_key(result: SearchResult, query: str) -> tuple:
    """
    Sort key for search results.

    Order: relevance descending, then titles containing the query
    (case-insensitive) first, then shorter titles, then id.
    """
    needle = query.strip().casefold()
    title = result.title or ""
    contains = bool(needle) and needle in title.casefold()
    return (-result.relevance_score, 0 if contains else 1, len(title), result.id)


def rank_results(results: list[SearchResult], query: str) -> list[SearchResult]:
    """Return results sorted by :func:`rank_key`."""
    return sorted(results, key=lambda r: rank_key(r, query))


def make_snippet(text: str, query: str, length: int = 160) -> str:
    """
    Extract a window of ``text`` around the first query match.

    Ellipsized on truncated sides. Falls back to the start of the text when
    nothing matches.
    """
    if not text:
        return ""
    flat = " ".join(text.split())
    if len(flat) <= length:
        return flat

    lowered = flat.casefold()
    position = lowered.find(query.strip().casefold()) if query.strip() else -1
    if position < 0:
        for term in query_terms(query):
            match = re.search(rf"\b{re.escape(term)}", lowered)
            if match:
                position = match.start()
                break

    if position < 0:
        return flat[:length].rstrip() + "..."

    start = max(0, position - length // 3)
    end = min(len(flat), start + length)
    start = max(0, end - length)
    snippet = flat[start:end].strip()
    if start > 0:
        snippet = "..." + snippet
    if end < len(flat):
        snippet = snippet + "..."
    return snippet
