from __future__ import annotations

from typing import List, Sequence

from .models import KnowledgeSearchResult


def merge_results(
    site_results: Sequence[KnowledgeSearchResult],
    curated_results: Sequence[KnowledgeSearchResult],
    limit: int = 5,
) -> List[KnowledgeSearchResult]:
    """
    Combine per-table results into one ranked list.

    Site results come first in the concatenation; the sort is stable, so on
    equal similarity site chunks rank ahead of curated ones.

    Returns
    -------
    List[KnowledgeSearchResult]
        Sorted by similarity descending, at most ``limit`` long.
    """
    if limit <= 0:
        return []
    combined = [*site_results, *curated_results]
    combined.sort(key=lambda r: r.similarity, reverse=True)
    return combined[:limit]
