"""Unit tests for context assembly."""
from secondbrain.generation.context import build_context
from secondbrain.generation.prompts import FRAGMENT_SEPARATOR, build_prompt
from secondbrain.schemas import RankedFragment


def _fragment(fid: int, text: str, document_id: int = 1, chunk_index: int | None = None) -> RankedFragment:
    return RankedFragment(
        fragment_id=fid,
        document_id=document_id,
        chunk_index=fid if chunk_index is None else chunk_index,
        filename=f"doc-{document_id}.txt",
        text=text,
        similarity=1.0 / fid,
    )


class TestBuildContext:
    def test_budget_admits_only_first_fragment(self):
        ranked = [_fragment(i, chr(ord("a") + i) * 60) for i in (1, 2, 3)]

        assembled = build_context(ranked, max_chars=100)

        assert len(assembled.context) == 60
        assert assembled.fragments_used == 1
        assert [s.chunk_index for s in assembled.sources] == [1]

    def test_separators_count_toward_budget(self):
        ranked = [_fragment(1, "a" * 50), _fragment(2, "b" * 50)]

        assert build_context(ranked, max_chars=101).fragments_used == 1
        assembled = build_context(ranked, max_chars=102)
        assert assembled.fragments_used == 2
        assert assembled.context == "a" * 50 + FRAGMENT_SEPARATOR + "b" * 50

    def test_greedy_prefix_stops_at_first_overflow(self):
        ranked = [_fragment(1, "a" * 50), _fragment(2, "b" * 80), _fragment(3, "c" * 10)]

        assembled = build_context(ranked, max_chars=100)

        assert assembled.context == "a" * 50
        assert len(assembled.sources) == 1

    def test_duplicate_citations_collapse_first_occurrence_wins(self):
        ranked = [
            _fragment(1, "first", document_id=7, chunk_index=0),
            _fragment(2, "other", document_id=8, chunk_index=0),
            _fragment(3, "again", document_id=7, chunk_index=0),
        ]

        assembled = build_context(ranked, max_chars=1000)

        assert assembled.fragments_used == 3
        assert [(s.document_id, s.chunk_index) for s in assembled.sources] == [(7, 0), (8, 0)]

    def test_first_fragment_over_budget_gives_empty_context(self):
        assembled = build_context([_fragment(1, "x" * 500)], max_chars=100)

        assert assembled.is_empty
        assert assembled.sources == []

    def test_never_exceeds_budget(self):
        ranked = [_fragment(i, "w" * (i * 13)) for i in range(1, 20)]
        for budget in (1, 13, 40, 99, 250, 1000):
            assert len(build_context(ranked, budget).context) <= budget


def test_prompt_contains_context_and_question():
    prompt = build_prompt("  What is the budget?  ", "Budget is 10k.")

    assert "Budget is 10k." in prompt
    assert "QUESTION: What is the budget?" in prompt
    assert prompt.rstrip().endswith("ANSWER:")
