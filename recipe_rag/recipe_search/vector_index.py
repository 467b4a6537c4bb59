"""
vector_index.py
---------------

Dense vector retrieval by brute-force cosine similarity.

:class:`VectorIndex` keeps an ordered list of :class:`VectorEntry`
objects (embedding plus document) and ranks them against a query
embedding with a linear scan.  At the corpus sizes this system deals
with (a few thousand chunks) that is fast enough and keeps the index
trivially serialisable.  Anything that satisfies
:class:`VectorSearchBackend` can stand in for it, e.g. an approximate
nearest neighbour index.

The index can be written to and read from a single JSON file whose
content is an array of ``{"vector": [...], "document": {"metadata":
{...}, "pageContent": "..."}}`` records.
"""

from __future__ import annotations

import json
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Union

import numpy as np

from .errors import DimensionMismatch, MalformedSnapshot
from .utils import Document, ScoredResult

logger = logging.getLogger(__name__)

EmbedFn = Callable[[str], Sequence[float]]

PROGRESS_EVERY = 50


@dataclass(frozen=True)
class VectorEntry:
    """An embedding and the document it was computed from."""

    vector: Sequence[float]
    document: Document

    def to_snapshot(self) -> dict:
        return {"vector": [float(x) for x in self.vector], "document": self.document.to_snapshot()}


class VectorSearchBackend(Protocol):
    """What :class:`~recipe_search.hybrid_retrieval.HybridRetriever` needs from a vector index."""

    def __len__(self) -> int:
        ...

    def similarity_search(self, query_vector: Sequence[float], k: int) -> List[Document]:
        ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; ``0.0`` if either has zero magnitude."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise DimensionMismatch(va.shape[0], vb.shape[0])
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


class VectorIndex:
    """Flat, in-memory vector index with cosine similarity search.

    Every entry must have the same dimensionality as the first one.
    Searching is read-only and may happen from several threads at once
    as long as nobody mutates the index at the same time.
    """

    def __init__(self, entries: Optional[Iterable[VectorEntry]] = None) -> None:
        self.entries: List[VectorEntry] = []
        self.dim: Optional[int] = None
        self._matrix = np.zeros((0, 0), dtype=float)
        self._norms = np.zeros(0, dtype=float)
        if entries is not None:
            self.replace(entries)

    def __len__(self) -> int:
        return len(self.entries)

    @staticmethod
    def _check_dimension(expected: Optional[int], vector: Sequence[float]) -> int:
        dimension = len(vector)
        if expected is not None and dimension != expected:
            raise DimensionMismatch(expected, dimension)
        return dimension

    def add(self, entry: VectorEntry) -> None:
        """Append ``entry`` to the index.

        Raises
        ------
        DimensionMismatch
            If the index is non-empty and the vector length differs from
            the existing entries.
        """
        self.dim = self._check_dimension(self.dim, entry.vector)
        self.entries.append(entry)
        self._prepare()

    def replace(self, entries: Iterable[VectorEntry]) -> None:
        """Replace all entries at once.

        The new entries are validated before anything is swapped in, so a
        failure leaves the current contents untouched.
        """
        staged = list(entries)
        dim: Optional[int] = None
        for entry in staged:
            dim = self._check_dimension(dim, entry.vector)
        self.entries = staged
        self.dim = dim
        self._prepare()

    def _prepare(self) -> None:
        # Searches only read these arrays; every write rebuilds them.
        if not self.entries:
            self._matrix = np.zeros((0, 0), dtype=float)
            self._norms = np.zeros(0, dtype=float)
            return
        matrix = np.array([entry.vector for entry in self.entries], dtype=float)
        self._norms = np.linalg.norm(matrix, axis=1)
        self._matrix = matrix

    def similarities(self, query_vector: Sequence[float]) -> np.ndarray:
        """Cosine similarity of ``query_vector`` against every entry, in index order."""
        if not self.entries:
            return np.zeros(0, dtype=float)
        query = np.asarray(query_vector, dtype=float)
        if query.ndim != 1 or query.shape[0] != self.dim:
            raise DimensionMismatch(self.dim, query.shape[-1] if query.ndim else 0)
        matrix, norms = self._matrix, self._norms
        denom = norms * np.linalg.norm(query)
        dots = matrix @ query
        # Zero-magnitude vectors have no direction; rank them as similarity 0.
        return np.divide(dots, denom, out=np.zeros_like(dots), where=denom != 0)

    def similarity_search_with_scores(self, query_vector: Sequence[float], k: int) -> List[ScoredResult]:
        start = time.perf_counter()
        sims = self.similarities(query_vector)
        order = np.argsort(-sims, kind="stable")[:max(k, 0)]
        results = [ScoredResult(self.entries[i].document, float(sims[i])) for i in order]
        logger.debug(
            "Similarity search finished in %.1fms (candidates=%d, k=%d, hits=%s)",
            (time.perf_counter() - start) * 1000,
            len(self.entries),
            k,
            [(r.document.attributes.get("dishName", r.document.id), round(r.score, 4)) for r in results],
        )
        return results

    def similarity_search(self, query_vector: Sequence[float], k: int) -> List[Document]:
        """Return the ``k`` documents most similar to ``query_vector``.

        Documents are ordered by descending cosine similarity; equal
        similarities keep insertion order.  An empty index yields an
        empty list.
        """
        return [result.document for result in self.similarity_search_with_scores(query_vector, k)]

    # ------------------------------------------------------------------
    # Building

    @classmethod
    def build(cls, documents: Sequence[Document], embed: EmbedFn, *, max_workers: int = 8) -> "VectorIndex":
        """Embed every document and return a new index over them."""
        index = cls()
        index.rebuild(documents, embed, max_workers=max_workers)
        return index

    def rebuild(self, documents: Sequence[Document], embed: EmbedFn, *, max_workers: int = 8) -> None:
        """Re-embed ``documents`` and replace the contents of the index.

        Up to ``max_workers`` embedding requests run concurrently.
        Vectors are matched to documents by position, whatever order the
        requests complete in.  If any request fails the exception is
        raised unchanged and the current entries are kept.
        """
        start = time.perf_counter()
        logger.info("Building vector index for %d chunks", len(documents))
        entries: List[VectorEntry] = []
        if documents:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                vectors = executor.map(embed, [doc.text for doc in documents])
                try:
                    for position, (doc, vector) in enumerate(zip(documents, vectors), start=1):
                        entries.append(VectorEntry(vector=list(vector), document=doc))
                        if position % PROGRESS_EVERY == 0:
                            logger.info(
                                "Embedded %d/%d chunks (%.0fms)",
                                position,
                                len(documents),
                                (time.perf_counter() - start) * 1000,
                            )
                except Exception:
                    # Drop queued requests; the ones in flight finish on their own.
                    executor.shutdown(wait=False, cancel_futures=True)
                    raise
        self.replace(entries)
        logger.info(
            "Vector index built in %.0fms (entries=%d, dim=%s)",
            (time.perf_counter() - start) * 1000,
            len(self.entries),
            self.dim,
        )

    # ------------------------------------------------------------------
    # Persistence

    def save(self, path: Union[str, os.PathLike]) -> None:
        """Write every entry to ``path`` as a JSON array."""
        directory = os.path.dirname(os.fspath(path))
        if directory:
            os.makedirs(directory, exist_ok=True)
        payload = [entry.to_snapshot() for entry in self.entries]
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False)
        logger.info("Saved vector index to %s (entries=%d)", path, len(self.entries))

    def load(self, path: Union[str, os.PathLike]) -> bool:
        """Replace the index with the snapshot stored at ``path``.

        Returns ``False`` and leaves the index untouched when there is no
        file at ``path``; that is the normal cold-start case.

        Raises
        ------
        MalformedSnapshot
            If the file exists but does not hold a valid snapshot.  The
            index is left untouched.
        """
        if not os.path.isfile(path):
            logger.info("No vector index found at %s", path)
            return False
        start = time.perf_counter()
        try:
            with open(path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (ValueError, UnicodeDecodeError) as exc:
            raise MalformedSnapshot(f"{path} is not valid JSON: {exc}") from exc
        entries = _entries_from_snapshot(payload)
        try:
            self.replace(entries)
        except DimensionMismatch as exc:
            raise MalformedSnapshot(f"{path} mixes vector dimensions: {exc}") from exc
        logger.info(
            "Loaded vector index from %s in %.0fms (entries=%d)",
            path,
            (time.perf_counter() - start) * 1000,
            len(self.entries),
        )
        return True


def _entries_from_snapshot(payload: object) -> List[VectorEntry]:
    if not isinstance(payload, list):
        raise MalformedSnapshot("snapshot root must be an array")
    entries: List[VectorEntry] = []
    for position, item in enumerate(payload):
        if not isinstance(item, dict) or "vector" not in item or "document" not in item:
            raise MalformedSnapshot(f"entry {position} must have 'vector' and 'document'")
        vector = item["vector"]
        if not isinstance(vector, list) or not all(
            isinstance(x, (int, float)) and not isinstance(x, bool) for x in vector
        ):
            raise MalformedSnapshot(f"entry {position} has a non-numeric vector")
        try:
            document = Document.from_snapshot(item["document"])
        except MalformedSnapshot as exc:
            raise MalformedSnapshot(f"entry {position}: {exc}") from exc
        entries.append(VectorEntry(vector=[float(x) for x in vector], document=document))
    return entries
