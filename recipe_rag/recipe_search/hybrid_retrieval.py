"""
hybrid_retrieval.py
-------------------

This module implements hybrid retrieval: a BM25 ranking and a dense
vector ranking are computed independently for a query and merged into
a single list with Reciprocal Rank Fusion (RRF).

:class:`HybridRetriever` owns no external resources.  It is handed a
vector index, a lexical index and an ``embed`` callable, and never
mutates any of them while searching, so one retriever can serve many
queries at the same time.
"""

from __future__ import annotations

import logging
import time
from typing import List, Mapping, Optional, Sequence

from .config import RetrievalConfig
from .lexical import LexicalIndex
from .rrf import fuse_documents
from .utils import Document, ScoredResult
from .vector_index import EmbedFn, VectorSearchBackend

logger = logging.getLogger(__name__)


class HybridRetriever:
    """Coordinate lexical and vector retrieval and fuse the results.

    Parameters
    ----------
    documents : sequence of :class:`Document`
        The chunk corpus.  A :class:`LexicalIndex` is built over it
        unless ``lexical_index`` is given.
    vector_index : VectorSearchBackend
        Index holding the embeddings of the same chunks.
    embed : callable
        ``embed(text) -> vector`` used to embed queries.
    config : RetrievalConfig, optional
        Candidate width, ``top_k``, RRF constant and weights, and BM25
        parameters.
    lexical_index : LexicalIndex, optional
        A prebuilt lexical index.
    """

    def __init__(
        self,
        documents: Sequence[Document],
        vector_index: VectorSearchBackend,
        embed: EmbedFn,
        *,
        config: Optional[RetrievalConfig] = None,
        lexical_index: Optional[LexicalIndex] = None,
    ) -> None:
        self.config = config or RetrievalConfig()
        self.documents: List[Document] = list(documents)
        self.vector_index = vector_index
        self.embed = embed
        if lexical_index is None:
            lexical_index = LexicalIndex(self.documents, k1=self.config.k1, b=self.config.b)
        self.lexical_index = lexical_index

    def vector_search(self, query: str, k: int) -> List[Document]:
        if len(self.vector_index) == 0:
            return []
        query_vector = self.embed(query)
        return self.vector_index.similarity_search(query_vector, k)

    def lexical_search(self, query: str, k: int) -> List[Document]:
        return self.lexical_index.top_k(query, k)

    def hybrid_search_with_scores(self, query: str, top_k: Optional[int] = None) -> List[ScoredResult]:
        """Retrieve documents for ``query`` together with their RRF scores.

        ``config.candidate_width`` results are taken from each retriever,
        vector results first, then fused and cut down to ``top_k``
        (``config.top_k`` when omitted).  A blank query, or a vector index
        with nothing built or loaded yet, gives an empty list even when
        the lexical corpus is not empty.  Errors from ``embed`` propagate.
        """
        top_k = self.config.top_k if top_k is None else top_k
        if not query.strip():
            return []
        if len(self.vector_index) == 0:
            logger.warning("No vectors have been built or loaded; returning no results")
            return []
        start = time.perf_counter()
        width = self.config.candidate_width
        vector_docs = self.vector_search(query, width)
        lexical_docs = self.lexical_search(query, width)
        fused = fuse_documents(
            [vector_docs, lexical_docs],
            k=self.config.rrf_k,
            weights=[self.config.vector_weight, self.config.lexical_weight],
        )
        results = fused[:top_k]
        logger.info(
            "Hybrid search finished in %.0fms (query=%r, vector=%d, bm25=%d, returned=%d)",
            (time.perf_counter() - start) * 1000,
            query,
            len(vector_docs),
            len(lexical_docs),
            len(results),
        )
        return results

    def hybrid_search(self, query: str, top_k: Optional[int] = None) -> List[Document]:
        """Retrieve the ``top_k`` most relevant documents for ``query``."""
        return [result.document for result in self.hybrid_search_with_scores(query, top_k)]

    def metadata_filtered_search(
        self,
        query: str,
        filters: Mapping[str, str],
        top_k: Optional[int] = None,
    ) -> List[Document]:
        """Hybrid search restricted to documents matching every filter.

        Three times ``top_k`` candidates are retrieved first so that the
        filter still has something to choose from.
        """
        top_k = self.config.top_k if top_k is None else top_k
        candidates = self.hybrid_search(query, top_k * 3)
        matches = [
            doc for doc in candidates
            if all(doc.attributes.get(key) == value for key, value in filters.items())
        ]
        return matches[:top_k]
