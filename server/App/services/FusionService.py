"""
Result Fusion - Hybrid Ranking

Merges the vector and lexical candidate lists into one ranked list:
- each list is rank-normalized independently (linear decay by position)
- vector positions are weighted by `vector_weight`, lexical by `lexical_weight`
- a chunk found by both branches sums its contributions and is tagged hybrid
"""

from typing import Dict, List, Optional, Sequence

from App.enums import RankOrigin
from App.schema.Search_schema import HYBRID_RESULT_CEILING, MAX_RESULTS_CAP, HybridWeights, SearchResult


def positional_scores(count: int, window: Optional[int] = None) -> List[float]:
    """
    Linear decay from 1.0 at the best position toward 0 at the end of the window.

    The window defaults to the list length; a list longer than the window
    decays over its own length instead.
    """
    if count <= 0:
        return []
    span = max(count, window or 0)
    return [(span - index) / span for index in range(count)]


def fuse_results(
    vector_results: Sequence[SearchResult],
    lexical_results: Sequence[SearchResult],
    weights: HybridWeights,
    window: int = MAX_RESULTS_CAP,
    ceiling: int = HYBRID_RESULT_CEILING,
) -> List[SearchResult]:
    """
    Combine both branches into one list ordered by descending combined score.

    Ties keep encounter order (vector list first, then lexical-only hits), so
    identical inputs always produce identical output. Both lists decay over
    the same fixed window, so the order never depends on the caller's result cap.
    """
    merged: Dict[str, SearchResult] = {}

    for result, score in zip(vector_results, positional_scores(len(vector_results), window)):
        if result.id in merged:
            continue
        merged[result.id] = result.model_copy(update={
            "lexical_score": None,
            "combined_score": score * weights.vector_weight,
            "rank_origin": RankOrigin.VECTOR,
        })

    for result, score in zip(lexical_results, positional_scores(len(lexical_results), window)):
        existing = merged.get(result.id)
        if existing is None:
            merged[result.id] = result.model_copy(update={
                "lexical_score": score,
                "combined_score": score * weights.lexical_weight,
                "rank_origin": RankOrigin.LEXICAL,
            })
        elif existing.rank_origin == RankOrigin.VECTOR:
            merged[result.id] = existing.model_copy(update={
                "lexical_score": score,
                "combined_score": (existing.combined_score or 0.0) + score * weights.lexical_weight,
                "rank_origin": RankOrigin.HYBRID,
            })

    ranked = sorted(merged.values(), key=lambda r: r.combined_score or 0.0, reverse=True)
    return ranked[:ceiling]
