"""
config.py
---------

Configuration for the recipe retrieval system.

Two pieces live here: :func:`load_env`, which reads a ``.env`` file of
``KEY=VALUE`` lines into ``os.environ`` (used for ``OPENAI_API_KEY``
and ``OPENAI_BASE_URL``), and :class:`RetrievalConfig`, a pydantic-settings
model of the recognised policy options such as the BM25 parameters, the
candidate width pulled from each retriever before fusion and the RRF constant.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

ENV_PREFIX = "RECIPE_RAG_"

_ENV_LOADED = False


def load_env(path: Optional[Union[str, Path]] = None) -> None:
    """Load KEY=VALUE pairs from a .env file into ``os.environ``.

    Variables that are already set win over the file.  A missing or
    unreadable file is not an error.
    """
    global _ENV_LOADED
    if _ENV_LOADED and path is None:
        return
    candidate = Path(path) if path is not None else Path(__file__).resolve().parents[1] / ".env"
    try:
        with candidate.open("r", encoding="utf-8") as handle:
            for raw_line in handle:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                key = key.strip()
                if key.startswith("export "):
                    key = key[len("export "):].strip()
                value = value.strip()
                if not key:
                    continue
                if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
                    value = value[1:-1]
                os.environ.setdefault(key, value)
    except OSError:
        pass
    if path is None:
        _ENV_LOADED = True


def _describe(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or 'config'}: {error['msg']}"
        for error in exc.errors()
    )


class RetrievalConfig(BaseSettings):  # type: ignore[misc]
    """Recognised options for retrieval, indexing and generation.

    Every option can also be set through a ``RECIPE_RAG_<OPTION>``
    environment variable.  Unknown options passed to the constructor
    are rejected, and instances are immutable.
    """

    k1: float = Field(1.5, ge=0, description="BM25 term-frequency saturation")
    b: float = Field(0.75, ge=0, le=1, description="BM25 document length normalisation")
    rrf_k: int = Field(60, ge=0, description="Constant added to every rank in Reciprocal Rank Fusion")
    vector_weight: float = Field(1.0, ge=0, description="RRF weight of the vector ranking")
    lexical_weight: float = Field(1.0, ge=0, description="RRF weight of the BM25 ranking")
    candidate_width: int = Field(5, ge=1, description="Results pulled from each retriever before fusion")
    top_k: int = Field(3, ge=1, description="Fused results returned to the caller")
    embedding_model: str = Field("text-embedding-3-small", description="OpenAI embedding model name")
    embedding_concurrency: int = Field(
        8, ge=1, description="Embedding requests in flight while building the vector index"
    )
    chat_model: str = Field("gpt-4o-mini", description="OpenAI chat model used to generate answers")
    temperature: float = Field(0.1, ge=0, description="Sampling temperature for answer generation")
    max_tokens: int = Field(2048, ge=1, description="Maximum number of tokens to generate")
    context_max_length: int = Field(
        4000, ge=1, description="Character budget for the recipe context placed in a prompt"
    )
    index_path: str = Field("vector_index.json", description="Location of the vector index snapshot")

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="forbid", frozen=True)

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "RetrievalConfig":
        """Build a config from a mapping of option names to raw values.

        String values are converted to the type of the matching option.

        Raises
        ------
        ConfigurationError
            If an option is unknown or a value is invalid.
        """
        try:
            return cls(**dict(options))
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {_describe(exc)}") from exc

    @classmethod
    def from_env(cls) -> "RetrievalConfig":
        """Build a config from ``RECIPE_RAG_<OPTION>`` environment variables.

        The ``.env`` file is loaded first; variables already set win.
        """
        load_env()
        return cls.from_mapping({})

    def replace(self, **changes: Any) -> "RetrievalConfig":
        """Return a validated copy with ``changes`` applied."""
        return type(self).from_mapping({**self.model_dump(), **changes})
