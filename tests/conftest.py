import sys
from pathlib import Path
from typing import Dict, List, Sequence

import pytest

# Ensure the package directory is on the import path for local imports during tests.
PACKAGE_DIR = Path(__file__).resolve().parents[1] / "recipe_rag"
if str(PACKAGE_DIR) not in sys.path:
    sys.path.insert(0, str(PACKAGE_DIR))

from recipe_search.utils import Document  # noqa: E402


SCENARIO_TEXTS = [
    "红烧肉需要五花肉和生姜",
    "宫保鸡丁需要鸡胸肉和花生",
    "西红柝炒蛋需要西红柝和鸡蛋",
]


class StaticEmbedder:
    """Returns the vector of the first keyword found in the text."""

    def __init__(self, mapping: Dict[str, Sequence[float]], default: Sequence[float]):
        self.mapping = mapping
        self.default = default
        self.calls: List[str] = []

    def __call__(self, text: str) -> List[float]:
        self.calls.append(text)
        for key, vector in self.mapping.items():
            if key in text:
                return list(vector)
        return list(self.default)


@pytest.fixture
def scenario_docs() -> List[Document]:
    names = ["红烧肉", "宫保鸡丁", "西红柿炒蛋"]
    return [
        Document(id=f"doc-{i}", text=text, attributes={"dishName": name, "category": "荤菜"})
        for i, (text, name) in enumerate(zip(SCENARIO_TEXTS, names), start=1)
    ]


@pytest.fixture
def scenario_embedder() -> StaticEmbedder:
    return StaticEmbedder(
        {
            "红烧肉": [1.0, 0.0, 0.0],
            "宫保鸡丁": [0.0, 1.0, 0.0],
            "西红柝": [0.0, 0.0, 1.0],
            "鸡": [0.2, 0.9, 0.1],
        },
        default=[0.3, 0.3, 0.3],
    )
