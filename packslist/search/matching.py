# packslist/search/matching.py
from __future__ import annotations

from packslist.config import SEARCH_FUZZY_THRESHOLD


def levenshtein_distance(a: str, b: str) -> int:
    """
    Classic dynamic-programming edit distance.

    Insertions, deletions and substitutions each cost 1. Only two rows of the
    matrix are kept, so memory is O(min(len(a), len(b))).
    """
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            if ca == cb:
                current.append(previous[j - 1])
            else:
                current.append(
                    min(
                        previous[j - 1] + 1,  # substitution
                        current[j - 1] + 1,  # insertion
                        previous[j] + 1,  # deletion
                    )
                )
        previous = current
    return previous[-1]


def fuzzy_match(query: str, candidate: str, threshold: float = SEARCH_FUZZY_THRESHOLD) -> float:
    """
    Score how well `candidate` matches `query`, in [0.0, 1.0].

    Scoring rules:
      - Substring containment (case-insensitive) is always a perfect 1.0,
        however long the candidate is.
      - Otherwise similarity is 1 - distance / max(len(query), len(candidate)).
      - Similarities below `threshold` return 0.0, which callers must treat
        as "excluded" rather than a weak match.
    """
    q = (query or "").strip().lower()
    c = (candidate or "").lower()

    if q in c:
        return 1.0

    longest = max(len(q), len(c))
    if longest == 0:
        return 1.0
    similarity = 1.0 - (levenshtein_distance(q, c) / longest)
    return similarity if similarity >= threshold else 0.0


__all__ = ["levenshtein_distance", "fuzzy_match"]
