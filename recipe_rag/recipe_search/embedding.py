"""
embedding.py
------------

This module defines the :class:`EmbeddingModel` class which wraps
OpenAI's embedding API.  It converts text into dense vectors for the
vector index and for queries.

The retrieval code never talks to OpenAI directly: it receives an
``embed(text) -> vector`` callable.  An :class:`EmbeddingModel`
instance is such a callable, and tests substitute a plain function
returning fixed vectors.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import List, Optional, Sequence

import openai
from openai import OpenAI

from .config import load_env
from .errors import ConfigurationError, EmbeddingFailure

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1/"


def create_openai_client(api_key: Optional[str] = None, base_url: Optional[str] = None) -> OpenAI:
    """Create an OpenAI client from explicit settings or the environment.

    ``OPENAI_API_KEY`` and ``OPENAI_BASE_URL`` are read (after loading a
    ``.env`` file, if any) when the arguments are omitted.
    """
    load_env()
    api_key = api_key or os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ConfigurationError(
            "OpenAI API key not found; set OPENAI_API_KEY or pass api_key explicitly."
        )
    base_url = base_url or os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL)
    return OpenAI(api_key=api_key, base_url=base_url)


class EmbeddingModel:
    """Compute embeddings with an OpenAI embedding model.

    Parameters
    ----------
    model_name : str, optional
        The name of the OpenAI embedding model.  Defaults to
        ``text-embedding-3-small``.
    openai_api_key : str, optional
        Explicit OpenAI API key.  If omitted, the ``OPENAI_API_KEY``
        environment variable is used.
    client : openai.OpenAI, optional
        A preconfigured client.  Takes precedence over the key.

    Notes
    -----
    Failed requests are not retried here; they raise
    :class:`~recipe_search.errors.EmbeddingFailure` and the caller
    decides whether to try again.
    """

    def __init__(self, model_name: str = "text-embedding-3-small",
                 openai_api_key: Optional[str] = None,
                 *, client: Optional[OpenAI] = None) -> None:
        self.model_name = model_name
        self._api_key = openai_api_key
        self._client = client
        self._client_lock = threading.Lock()

    @property
    def client(self) -> OpenAI:
        # Index building calls this from several worker threads at once.
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = create_openai_client(self._api_key)
        return self._client

    def __call__(self, text: str) -> List[float]:
        return self.embed(text)

    def embed(self, text: str) -> List[float]:
        """Embed a single text."""
        return self.embed_texts([text])[0]

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed multiple texts with one API request.

        Parameters
        ----------
        texts : sequence of str
            The raw text of each document or query.

        Returns
        -------
        list of list of float
            The embedding vectors, in the order of ``texts``.

        Raises
        ------
        EmbeddingFailure
            If the API request fails or returns the wrong number of
            vectors.
        """
        if not texts:
            return []
        try:
            response = self.client.embeddings.create(
                model=self.model_name,
                input=list(texts),
            )
        except openai.OpenAIError as exc:
            logger.error("OpenAI embedding request failed: %s", exc)
            raise EmbeddingFailure(f"Embedding request failed: {exc}") from exc
        # The API returns items tagged with the index of their input
        ordered = sorted(response.data, key=lambda item: item.index)
        if len(ordered) != len(texts):
            raise EmbeddingFailure(
                f"Expected {len(texts)} embeddings, received {len(ordered)}"
            )
        return [list(item.embedding) for item in ordered]
