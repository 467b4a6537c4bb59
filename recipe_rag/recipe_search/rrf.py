"""
rrf.py
------

Reciprocal Rank Fusion (RRF) combines ranked lists from several
retrieval systems.  Each document receives ``1 / (k + rank + 1)`` from
every list it appears in (``rank`` counted from zero) and the
contributions are summed.  Because only rank positions matter, cosine
similarities and BM25 scores never have to be calibrated against each
other.

Ties in the fused score are broken by the order in which documents were
first seen, so the output is fully deterministic for identical inputs.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .utils import Document, ScoredResult

logger = logging.getLogger(__name__)

DEFAULT_RRF_K = 60


def reciprocal_rank_fusion(
    runs: Sequence[Sequence[str]],
    k: int = DEFAULT_RRF_K,
    weights: Optional[Sequence[float]] = None,
) -> List[Tuple[str, float]]:
    """Score identifiers by summed reciprocal rank across ``runs``.

    ``runs`` holds one best-first list of ids per retriever.  The list
    at position ``i`` contributes ``weights[i] / (k + rank + 1)`` for
    each id it contains; ``weights`` defaults to ``1.0`` per list.

    Returns ``(id, score)`` pairs, highest score first.
    """
    if weights is None:
        weights = [1.0] * len(runs)
    elif len(weights) != len(runs):
        raise ValueError(f"Expected {len(runs)} weights, got {len(weights)}")
    fused: Dict[str, float] = {}
    for run, weight in zip(runs, weights):
        for rank, doc_id in enumerate(run):
            fused[doc_id] = fused.get(doc_id, 0.0) + weight / (k + rank + 1)
    # Stable sort over an insertion-ordered dict: equal scores stay first-seen first.
    return sorted(fused.items(), key=lambda item: -item[1])


def fuse_documents(
    runs: Sequence[Sequence[Document]],
    k: int = DEFAULT_RRF_K,
    weights: Optional[Sequence[float]] = None,
) -> List[ScoredResult]:
    """Fuse ranked lists of documents, keyed by :attr:`Document.id`.

    The document object kept for an id is the first one encountered,
    scanning the runs in order.
    """
    representatives: Dict[str, Document] = {}
    for run in runs:
        for doc in run:
            representatives.setdefault(doc.id, doc)
    fused = reciprocal_rank_fusion([[doc.id for doc in run] for run in runs], k=k, weights=weights)
    logger.debug(
        "RRF fused %s candidates into %d documents: %s",
        [len(run) for run in runs],
        len(fused),
        [(doc_id[:8], round(score, 6)) for doc_id, score in fused],
    )
    return [ScoredResult(representatives[doc_id], score) for doc_id, score in fused]
