"""
lexical.py
----------

Lexical retrieval with Okapi BM25.

The recipe corpus is Chinese text, so the tokenizer treats every
character as a token of its own after stripping punctuation and
whitespace (both full-width and half-width forms).  Latin letters and
digits are split the same way, so a query for ``200`` still matches
``200g``.  There is no stemming and no case folding.  The same
:func:`tokenize` is used when the index is built and when a query is
scored, so token identity always agrees.
"""

from __future__ import annotations

import logging
import math
import re
import time
from collections import Counter
from typing import Dict, List, Sequence

import numpy as np

from .utils import Document, ScoredResult

logger = logging.getLogger(__name__)

STRIP_CHARACTERS = "，,。.！!？?、；;：:“”\"‘’'（）()【】[]《》<>#*-~…"

_STRIP_RE = re.compile("[" + re.escape(STRIP_CHARACTERS) + r"\s]+")
_TOKEN_RE = re.compile(r"\S")


def tokenize(text: str) -> List[str]:
    """Split ``text`` into tokens.

    >>> tokenize("鸡肉，怎么做？")
    ['鸡', '肉', '怎', '么', '做']
    >>> tokenize("加入200g糖")
    ['加', '入', '2', '0', '0', 'g', '糖']
    """
    cleaned = _STRIP_RE.sub(" ", text)
    return _TOKEN_RE.findall(cleaned)


class LexicalIndex:
    """BM25 index over a fixed, ordered corpus of documents.

    Term statistics are computed once at construction.  Scores are
    returned aligned with the order of the documents passed in.

    Parameters
    ----------
    documents : sequence of :class:`Document`
        The corpus.  Order matters: ties are broken by position.
    k1 : float, optional
        Term frequency saturation.  Defaults to 1.5.
    b : float, optional
        Document length normalisation.  Defaults to 0.75.
    """

    def __init__(self, documents: Sequence[Document], *, k1: float = 1.5, b: float = 0.75) -> None:
        self.documents: List[Document] = list(documents)
        self.k1 = k1
        self.b = b
        self.corpus_tokens: List[List[str]] = [tokenize(doc.text) for doc in self.documents]
        self.doc_lens = np.array([len(tokens) for tokens in self.corpus_tokens], dtype=float)
        self.avgdl = float(self.doc_lens.mean()) if len(self.doc_lens) else 0.0
        self.tf: List[Counter] = [Counter(tokens) for tokens in self.corpus_tokens]
        self.df: Dict[str, int] = {}
        for tokens in self.corpus_tokens:
            for term in set(tokens):
                self.df[term] = self.df.get(term, 0) + 1
        # Length part of the BM25 denominator; zero-length documents (or a
        # corpus of only empty documents) keep only the (1 - b) term.
        if self.avgdl > 0:
            ratio = self.doc_lens / self.avgdl
        else:
            ratio = np.zeros_like(self.doc_lens)
        self._length_norm = self.k1 * (1 - self.b + self.b * ratio)

    def __len__(self) -> int:
        return len(self.documents)

    def idf(self, term: str) -> float:
        n = len(self.documents)
        df = self.df.get(term, 0)
        return math.log((n - df + 0.5) / (df + 0.5) + 1)

    def score(self, query: str) -> List[float]:
        """Return the BM25 score of every document for ``query``.

        Each distinct query term counts once.  Terms that never occur in
        the corpus contribute nothing, and a document sharing no term
        with the query scores exactly ``0.0``.
        """
        if not self.documents:
            return []
        scores = np.zeros(len(self.documents), dtype=float)
        for term in dict.fromkeys(tokenize(query)):
            if term not in self.df:
                continue
            idf = self.idf(term)
            tf = np.array([counts.get(term, 0) for counts in self.tf], dtype=float)
            present = tf > 0
            scores[present] += idf * tf[present] * (self.k1 + 1) / (
                tf[present] + self._length_norm[present]
            )
        return scores.tolist()

    def top_k_with_scores(self, query: str, k: int) -> List[ScoredResult]:
        start = time.perf_counter()
        scores = self.score(query)
        order = sorted(range(len(scores)), key=lambda i: -scores[i])[:max(k, 0)]
        results = [ScoredResult(self.documents[i], scores[i]) for i in order]
        logger.debug(
            "BM25 search finished in %.1fms (query=%r, k=%d, hits=%s)",
            (time.perf_counter() - start) * 1000,
            query,
            k,
            [(r.document.attributes.get("dishName", r.document.id), round(r.score, 4)) for r in results],
        )
        return results

    def top_k(self, query: str, k: int) -> List[Document]:
        """Return the ``k`` best documents for ``query``, best first.

        Documents with equal scores keep their corpus order.
        """
        return [result.document for result in self.top_k_with_scores(query, k)]
