"""
Recipe Hybrid Retrieval
=======================

This package retrieves the recipe passages most relevant to a
natural-language question from a corpus of markdown recipes.  It
combines a lexical BM25 ranking with a dense embedding ranking and
fuses the two with Reciprocal Rank Fusion (RRF) before the passages are
handed to a language model to write the answer.

Modules
-------

- :mod:`lexical`: The tokenizer and the BM25 :class:`LexicalIndex`.
- :mod:`vector_index`: The cosine-similarity :class:`VectorIndex` with
  JSON snapshots and concurrent index building.
- :mod:`rrf`: Reciprocal Rank Fusion over ranked lists.
- :mod:`hybrid_retrieval`: The :class:`HybridRetriever` tying the
  three together.
- :mod:`embedding` / :mod:`generation`: OpenAI-backed ``embed`` and
  ``complete`` providers, and the answer generator.
- :mod:`utils`: The :class:`Document` model and the recipe loader.
- :mod:`config` / :mod:`errors`: Options and exceptions.
- :mod:`main`: :class:`RecipeRAG`, the high level client.

The retrieval engine never creates API clients itself: ``embed`` and
``complete`` are passed in, so tests can substitute fixed stubs.

Example
-------

>>> from recipe_search.main import initialise_rag, query_rag
>>> client = initialise_rag('data/cook')
>>> for doc in query_rag(client, '宫保鸡丁怎么做'):
...     print(doc.attributes['dishName'])
...     print(doc.text[:200])
"""

from .config import RetrievalConfig, load_env
from .errors import (
    ConfigurationError,
    DimensionMismatch,
    EmbeddingFailure,
    GenerationFailure,
    IndexUnavailable,
    MalformedSnapshot,
    RecipeRAGError,
)
from .embedding import EmbeddingModel
from .generation import ChatCompletion, RecipeAnswerGenerator
from .hybrid_retrieval import HybridRetriever
from .lexical import LexicalIndex, tokenize
from .main import RecipeRAG
from .rrf import fuse_documents, reciprocal_rank_fusion
from .utils import Document, ScoredResult, chunk_documents, load_recipe_documents, split_markdown_sections
from .vector_index import VectorEntry, VectorIndex, VectorSearchBackend, cosine_similarity
