"""
Tests for ranking, tokenization and snippets.
"""

from autoorganize.core.search import make_snippet, paginate, rank_results, tokenize
from autoorganize.core.search.ranking import query_terms
from autoorganize.models.search import ResultKind, SearchResult


def result(result_id: str, title: str, score: float) -> SearchResult:
    return SearchResult(id=result_id, kind=ResultKind.DOCUMENT, title=title, relevance_score=score)


class TestTokenize:
    def test_casefold_and_stop_words(self):
        assert tokenize("The Quick brown FOX and the dog") == ["quick", "brown", "fox", "dog"]

    def test_keep_stop_words(self):
        assert tokenize("to be", keep_stop_words=True) == ["to", "be"]

    def test_query_terms_dedup_and_fallback(self):
        assert query_terms("budget Budget report") == ["budget", "report"]
        assert query_terms("to be") == ["to", "be"]


class TestRankResults:
    """Ordering rules for equal and unequal scores."""

    def test_score_descending(self):
        ranked = rank_results([result("a", "x", 0.2), result("b", "y", 0.9)], "q")
        assert [r.id for r in ranked] == ["b", "a"]

    def test_title_containing_query_first_on_ties(self):
        ranked = rank_results(
            [result("a", "Notes", 0.5), result("b", "Budget notes", 0.5)], "budget"
        )
        assert [r.id for r in ranked] == ["b", "a"]

    def test_shorter_title_then_id(self):
        ranked = rank_results(
            [
                result("c", "Budget 2024 review", 0.5),
                result("b", "Budget", 0.5),
                result("a", "Budget", 0.5),
            ],
            "budget",
        )
        assert [r.id for r in ranked] == ["a", "b", "c"]


class TestSnippet:
    def test_short_text_returned_whole(self):
        assert make_snippet("Short   text\nhere", "text") == "Short text here"

    def test_window_around_match(self):
        text = ("filler " * 50) + "the budget was approved " + ("tail " * 50)
        snippet = make_snippet(text, "budget", length=60)

        assert "budget" in snippet
        assert snippet.startswith("...")
        assert snippet.endswith("...")

    def test_no_match_uses_start(self):
        snippet = make_snippet("word " * 100, "absent", length=20)
        assert snippet.startswith("word")
        assert snippet.endswith("...")

    def test_empty(self):
        assert make_snippet("", "q") == ""


class TestPaginate:
    def test_has_more(self):
        ranked = [result(f"d{i:02d}", "t", 1.0) for i in range(25)]

        first = paginate(ranked, "q", 0, 10)
        last = paginate(ranked, "q", 20, 10)
        beyond = paginate(ranked, "q", 30, 10)

        assert first.pagination.has_more is True
        assert len(first.results) == 10
        assert last.pagination.has_more is False
        assert len(last.results) == 5
        assert beyond.results == []
        assert beyond.pagination.has_more is False
        assert beyond.pagination.total == 25
