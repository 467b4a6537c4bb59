"""
main.py
-------

This module exposes a high level interface that wires the pieces
together: recipe loading and chunking, building (or loading) the
vector index, hybrid retrieval and answer generation.  It defines
:class:`RecipeRAG` and a few convenience functions for users who prefer
a functional interface over instantiating classes directly.

If you wish to integrate the retrieval engine into a larger
application, import :class:`~recipe_search.hybrid_retrieval.HybridRetriever`
directly and build your own orchestration layer.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

from .config import RetrievalConfig
from .embedding import EmbeddingModel
from .errors import ConfigurationError, IndexUnavailable
from .generation import ChatCompletion, CompleteFn, RecipeAnswerGenerator
from .hybrid_retrieval import HybridRetriever
from .lexical import LexicalIndex
from .utils import Document, chunk_documents, load_recipe_documents
from .vector_index import EmbedFn, VectorIndex

logger = logging.getLogger(__name__)


class ReadWriteGate:
    """Many concurrent readers or a single writer, never both.

    A waiting writer blocks new readers so that a rebuild is not starved
    by a steady stream of queries.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writing = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writing or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


class RecipeRAG:
    """High level interface for the recipe retrieval-augmented generation system.

    Parameters
    ----------
    documents : sequence of :class:`Document`
        The chunk corpus to index.
    embed : callable
        ``embed(text) -> vector``, used both to build the vector index
        and to embed queries.
    complete : callable, optional
        ``complete(prompt) -> text``; required only by :meth:`answer`.
    config : RetrievalConfig, optional
        Retrieval and generation options.
    """

    def __init__(
        self,
        documents: Sequence[Document],
        embed: EmbedFn,
        complete: Optional[CompleteFn] = None,
        *,
        config: Optional[RetrievalConfig] = None,
    ) -> None:
        self.config = config or RetrievalConfig()
        self.documents: List[Document] = list(documents)
        self.embed = embed
        self.complete = complete
        self.vector_index = VectorIndex()
        self.lexical_index = LexicalIndex(self.documents, k1=self.config.k1, b=self.config.b)
        self._retriever: Optional[HybridRetriever] = None
        self._gate = ReadWriteGate()

    @classmethod
    def from_directory(
        cls,
        data_dir: str,
        *,
        config: Optional[RetrievalConfig] = None,
        embed: Optional[EmbedFn] = None,
        complete: Optional[CompleteFn] = None,
    ) -> "RecipeRAG":
        """Load and chunk the recipes under ``data_dir``.

        Without explicit providers, an :class:`EmbeddingModel` and a
        :class:`ChatCompletion` are created from ``config`` and the
        ``OPENAI_API_KEY`` environment variable.  The index is not built
        yet; call :meth:`load_or_build_index`.
        """
        config = config or RetrievalConfig.from_env()
        if embed is None:
            embed = EmbeddingModel(config.embedding_model)
        if complete is None:
            complete = ChatCompletion(config.chat_model, config.temperature, config.max_tokens)
        chunks = chunk_documents(load_recipe_documents(data_dir))
        return cls(chunks, embed, complete, config=config)

    @property
    def retriever(self) -> HybridRetriever:
        if self._retriever is None:
            raise IndexUnavailable(
                "The vector index has not been built or loaded; call load_or_build_index() first."
            )
        return self._retriever

    def _attach(self) -> None:
        self._retriever = HybridRetriever(
            self.documents,
            self.vector_index,
            self.embed,
            config=self.config,
            lexical_index=self.lexical_index,
        )

    def build_index(self) -> None:
        """Embed every chunk and replace the vector index.

        Queries are held back while the rebuild runs.  Embedding errors
        propagate and leave the previous index in place.
        """
        with self._gate.write():
            self.vector_index.rebuild(
                self.documents,
                self.embed,
                max_workers=self.config.embedding_concurrency,
            )
            self._attach()

    def load_index(self, path: Optional[str] = None) -> bool:
        """Load the vector index snapshot; ``False`` if there is none."""
        path = path or self.config.index_path
        with self._gate.write():
            loaded = self.vector_index.load(path)
            if loaded:
                self._attach()
        return loaded

    def save_index(self, path: Optional[str] = None) -> None:
        with self._gate.read():
            self.vector_index.save(path or self.config.index_path)

    def load_or_build_index(self, path: Optional[str] = None) -> bool:
        """Load the snapshot at ``path`` or build and save a fresh index.

        Returns ``True`` when an existing snapshot was loaded.
        """
        path = path or self.config.index_path
        if self.load_index(path):
            return True
        self.build_index()
        self.save_index(path)
        return False

    def retrieve(self, query: str, top_k: Optional[int] = None) -> List[Document]:
        """Retrieve the most relevant chunks for ``query``.

        An empty list means nothing relevant was found, including before
        any index was built or loaded; failures raise.
        """
        with self._gate.read():
            try:
                retriever = self.retriever
            except IndexUnavailable as exc:
                logger.warning("%s Returning no results for %r", exc, query)
                return []
            return retriever.hybrid_search(query, top_k)

    def answer(self, query: str, top_k: Optional[int] = None) -> str:
        """Retrieve context for ``query`` and generate an answer from it."""
        if self.complete is None:
            raise ConfigurationError("No completion provider configured; pass complete=...")
        docs = self.retrieve(query, top_k)
        generator = RecipeAnswerGenerator(
            self.complete, context_max_length=self.config.context_max_length
        )
        return generator.answer(query, docs)


def initialise_rag(data_dir: str, *, config: Optional[RetrievalConfig] = None) -> RecipeRAG:
    """Load recipes from ``data_dir`` and load or build their vector index."""
    client = RecipeRAG.from_directory(data_dir, config=config)
    client.load_or_build_index()
    return client


def query_rag(client: RecipeRAG, question: str, *, top_k: Optional[int] = None) -> List[Document]:
    """Retrieve relevant recipe chunks for a question."""
    return client.retrieve(question, top_k=top_k)


def answer_question(client: RecipeRAG, question: str, *, top_k: Optional[int] = None) -> str:
    """Generate an answer to a question using retrieved context."""
    return client.answer(question, top_k=top_k)
