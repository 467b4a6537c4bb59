"""
utils.py
--------

Document model and helpers for loading recipe files from disk and
splitting them into retrievable chunks.

Recipes are markdown files laid out as ``<data_dir>/<category>/<dish>.md``.
Each file becomes a parent :class:`Document`; each heading section of
the file becomes a child chunk.  Chunk identifiers are derived from the
relative source path, the chunk position and the chunk text, so
rebuilding the corpus from the same files yields the same identifiers.
"""

from __future__ import annotations

import hashlib
import logging
import pathlib
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from .errors import MalformedSnapshot

logger = logging.getLogger(__name__)

# Directory name -> category label used in the recipe corpus.
CATEGORY_MAPPING: Dict[str, str] = {
    "meat_dish": "荤菜",
    "vegetable_dish": "素菜",
    "soup": "汤品",
    "dessert": "甜品",
    "breakfast": "早餐",
    "staple": "主食",
    "aquatic": "水产",
    "condiment": "调料",
    "drink": "饮品",
}

# Checked from the most stars down; the first match wins.
DIFFICULTY_LEVELS = (
    ("★★★★★", "非常困难"),
    ("★★★★", "困难"),
    ("★★★", "中等"),
    ("★★", "简单"),
    ("★", "非常简单"),
)

_HEADING_RE = re.compile(r"^#{1,3}\s")


@dataclass(frozen=True)
class Document:
    """A retrievable unit of text.

    Attributes
    ----------
    id : str
        Stable identifier, unique per retrievable unit.  Used as the
        fusion key when merging rankings.
    text : str
        The textual content of the document (or chunk).
    attributes : dict
        String metadata such as ``category``, ``dishName`` and
        ``difficulty``.
    """

    id: str
    text: str
    attributes: Dict[str, str] = field(default_factory=dict)

    def __hash__(self) -> int:
        # ``attributes`` is a dict; equal documents always share an id.
        return hash(self.id)

    def to_snapshot(self) -> Dict[str, Any]:
        """Return the ``{metadata, pageContent}`` record stored in index snapshots."""
        metadata: Dict[str, Any] = dict(self.attributes)
        metadata["chunkId"] = self.id
        return {"metadata": metadata, "pageContent": self.text}

    @classmethod
    def from_snapshot(cls, payload: Any) -> "Document":
        """Recreate a document from a snapshot record.

        Raises
        ------
        MalformedSnapshot
            If the record does not have the expected shape.
        """
        if not isinstance(payload, Mapping):
            raise MalformedSnapshot("document record must be an object")
        metadata = payload.get("metadata")
        text = payload.get("pageContent")
        if not isinstance(metadata, Mapping):
            raise MalformedSnapshot("document record is missing 'metadata'")
        if not isinstance(text, str):
            raise MalformedSnapshot("document record is missing 'pageContent'")
        doc_id = metadata.get("chunkId")
        if not isinstance(doc_id, str) or not doc_id:
            raise MalformedSnapshot("document metadata is missing 'chunkId'")
        attributes: Dict[str, str] = {}
        for key, value in metadata.items():
            if key == "chunkId" or value is None:
                continue
            if isinstance(value, (dict, list)):
                raise MalformedSnapshot(f"metadata field {key!r} must be a scalar")
            attributes[str(key)] = str(value)
        return cls(id=doc_id, text=text, attributes=attributes)


@dataclass(frozen=True)
class ScoredResult:
    """A document paired with the score it received from one search call."""

    document: Document
    score: float


def split_markdown_sections(content: str) -> List[str]:
    """Split markdown text into sections at level 1-3 headings.

    A heading line starts a new section and belongs to it.  Text before
    the first heading forms its own section.  Sections are stripped and
    empty sections are dropped.
    """
    sections: List[str] = []
    current: List[str] = []
    for line in content.split("\n"):
        if _HEADING_RE.match(line):
            if current:
                sections.append("\n".join(current).strip())
            current = [line]
        else:
            current.append(line)
    if current:
        sections.append("\n".join(current).strip())
    return [section for section in sections if section]


def _stable_id(*parts: str) -> str:
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part.encode("utf-8"))
        digest.update(b"\x00")
    return digest.hexdigest()


def infer_category(relative_path: pathlib.PurePath) -> str:
    for directory in relative_path.parts[:-1]:
        if directory in CATEGORY_MAPPING:
            return CATEGORY_MAPPING[directory]
    return ""


def infer_difficulty(content: str) -> str:
    for stars, label in DIFFICULTY_LEVELS:
        if stars in content:
            return label
    return ""


def load_recipe_documents(
    data_dir: str,
    *,
    encoding: str = "utf-8",
) -> List[Document]:
    """Recursively load recipe markdown files as parent documents.

    Files are visited in sorted path order so that the resulting list
    (and everything derived from it) is reproducible.

    Parameters
    ----------
    data_dir : str
        Directory containing ``.md`` recipe files, usually grouped in
        one sub-directory per category.
    encoding : str, optional
        Text encoding to use when reading files.

    Returns
    -------
    list of :class:`Document`
        One parent document per file, with ``source``, ``parentId``,
        ``docType``, ``category``, ``dishName`` and ``difficulty``
        attributes.
    """
    base_path = pathlib.Path(data_dir)
    if not base_path.is_dir():
        raise FileNotFoundError(f"Data directory not found: {data_dir}")
    documents: List[Document] = []
    for path in sorted(base_path.rglob("*.md")):
        content = path.read_text(encoding=encoding)
        relative = path.relative_to(base_path)
        source = relative.as_posix()
        parent_id = _stable_id(source)
        attributes = {
            "source": source,
            "parentId": parent_id,
            "docType": "parent",
            "category": infer_category(relative),
            "dishName": path.stem,
            "difficulty": infer_difficulty(content),
        }
        documents.append(Document(id=parent_id, text=content, attributes=attributes))
    logger.info("Loaded %d recipe documents from %s", len(documents), data_dir)
    return documents


def chunk_documents(documents: List[Document]) -> List[Document]:
    """Split parent documents into heading-delimited chunk documents.

    Each chunk inherits its parent's attributes and adds ``docType``
    (``child``), ``chunkIndex`` and ``chunkSize``.
    """
    chunks: List[Document] = []
    for parent in documents:
        sections = split_markdown_sections(parent.text)
        source = parent.attributes.get("source", parent.id)
        for index, section in enumerate(sections):
            attributes = dict(parent.attributes)
            attributes.update({
                "parentId": parent.id,
                "docType": "child",
                "chunkIndex": str(index),
                "chunkSize": str(len(sections)),
            })
            chunk_id = _stable_id(source, str(index), section)
            chunks.append(Document(id=chunk_id, text=section, attributes=attributes))
    logger.info("Split %d documents into %d chunks", len(documents), len(chunks))
    return chunks
