"""
Cosine similarity scoring and top-K ranking.

Scoring is total: vectors that can't be compared (different lengths,
empty, all zeros) score 0.0 instead of raising, so one odd entry in a
heterogeneous corpus never breaks a ranking.
"""

import os
import logging
from collections.abc import Mapping
from typing import Iterable, List, NamedTuple, Union

import numpy as np

from .corpus import ImageFeature

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = int(os.environ.get("DEFAULT_TOP_K", "5"))


class RankedCandidate(NamedTuple):
    identifier: str
    score: float


def cosine_similarity(a, b) -> float:
    """
    Cosine similarity of two feature vectors.

    Returns 0.0 when the vectors differ in length, either is empty, or
    either has zero norm. Otherwise dot(a, b) / (|a| * |b|), computed in
    float64 and clipped to [-1, 1].
    """
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)

    if a.size != b.size or a.size == 0:
        return 0.0

    aa = float(np.dot(a, a))
    bb = float(np.dot(b, b))
    if aa == 0.0 or bb == 0.0:
        return 0.0

    # sqrt(x * x) == x, so parallel vectors score exactly +-1
    denominator = float(np.sqrt(aa * bb))
    if denominator == 0.0 or not np.isfinite(denominator):
        # aa * bb under- or overflowed
        denominator = float(np.sqrt(aa)) * float(np.sqrt(bb))

    score = float(np.dot(a, b)) / denominator
    if not np.isfinite(score):
        return 0.0

    return min(1.0, max(-1.0, score))


def rank(query,
         corpus: Union[Mapping, Iterable[ImageFeature]],
         excluded: Iterable[str] = (),
         query_identifier: str = None,
         k: int = DEFAULT_TOP_K) -> List[RankedCandidate]:
    """
    Rank corpus entries by cosine similarity to a query vector.

    The entry named query_identifier and every excluded identifier are
    skipped. Sorting is stable, so equal scores keep corpus order and
    identical inputs always give identical output.

    Args:
        query: Query feature vector.
        corpus: Corpus (or any identifier -> vector mapping), or an
            iterable of ImageFeature.
        excluded: Identifiers that must not be returned.
        query_identifier: Identifier of the query image itself, if it
            is part of the corpus.
        k: Maximum number of results.

    Returns:
        Up to k RankedCandidate, highest score first.
    """
    if k <= 0:
        return []

    if isinstance(corpus, Mapping):
        entries = corpus.items()
    else:
        entries = corpus

    skip = set(excluded)
    if query_identifier is not None:
        skip.add(query_identifier)

    query = np.asarray(query, dtype=np.float64).reshape(-1)

    candidates = [
        RankedCandidate(identifier, cosine_similarity(query, vector))
        for identifier, vector in entries
        if identifier not in skip
    ]

    # sorted() with reverse=True keeps equal elements in their original order
    ranked = sorted(candidates, key=lambda c: c.score, reverse=True)[:k]

    logger.debug(
        f"Ranked {len(candidates)} candidates "
        f"({len(skip)} excluded) → top {len(ranked)}"
    )
    return ranked
