import json
import threading
import time

import pytest

from recipe_search.errors import DimensionMismatch, EmbeddingFailure, MalformedSnapshot
from recipe_search.utils import Document
from recipe_search.vector_index import VectorEntry, VectorIndex, cosine_similarity


def _entry(doc_id, vector, **attributes):
    return VectorEntry(vector=vector, document=Document(id=doc_id, text=f"text {doc_id}", attributes=attributes))


@pytest.fixture
def index():
    return VectorIndex([
        _entry("a", [1.0, 0.0], dishName="红烧肉"),
        _entry("b", [0.0, 1.0], dishName="宫保鸡丁"),
        _entry("c", [1.0, 1.0], dishName="西红柿炒蛋"),
    ])


def test_cosine_similarity_of_vector_with_itself_is_one():
    assert cosine_similarity([0.3, -1.2, 4.0], [0.3, -1.2, 4.0]) == pytest.approx(1.0)


def test_cosine_similarity_is_symmetric():
    a = [0.1, 0.7, -0.2]
    b = [0.9, -0.4, 0.5]

    assert cosine_similarity(a, b) == cosine_similarity(b, a)


def test_cosine_similarity_with_zero_vector_is_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0.0


def test_similarity_search_orders_by_descending_similarity(index):
    results = index.similarity_search([1.0, 0.1], 3)

    assert [doc.id for doc in results] == ["a", "c", "b"]


def test_similarity_search_truncates_to_k(index):
    assert [doc.id for doc in index.similarity_search([0.0, 1.0], 1)] == ["b"]
    assert index.similarity_search([0.0, 1.0], 0) == []
    assert len(index.similarity_search([0.0, 1.0], 10)) == 3


def test_similarity_search_with_scores_reports_cosine(index):
    results = index.similarity_search_with_scores([1.0, 1.0], 3)

    assert results[0].document.id == "c"
    assert results[0].score == pytest.approx(1.0)
    assert results[1].score == pytest.approx(2 ** -0.5)


def test_equal_similarities_keep_insertion_order():
    index = VectorIndex([_entry("x", [1.0, 0.0]), _entry("y", [2.0, 0.0]), _entry("z", [0.0, 1.0])])

    assert [doc.id for doc in index.similarity_search([1.0, 0.0], 3)] == ["x", "y", "z"]


def test_zero_vectors_rank_as_zero_similarity():
    index = VectorIndex([_entry("zero", [0.0, 0.0]), _entry("neg", [-1.0, 0.0]), _entry("pos", [1.0, 0.0])])

    results = index.similarity_search_with_scores([1.0, 0.0], 3)

    assert [r.document.id for r in results] == ["pos", "zero", "neg"]
    assert results[1].score == 0.0


def test_zero_query_vector_gives_zero_everywhere(index):
    results = index.similarity_search_with_scores([0.0, 0.0], 3)

    assert [r.score for r in results] == [0.0, 0.0, 0.0]
    assert [r.document.id for r in results] == ["a", "b", "c"]


def test_empty_index_returns_no_results():
    assert VectorIndex().similarity_search([1.0, 2.0, 3.0], 5) == []


def test_add_rejects_dimension_mismatch(index):
    with pytest.raises(DimensionMismatch) as excinfo:
        index.add(_entry("d", [1.0, 2.0, 3.0]))

    assert excinfo.value.expected == 2
    assert excinfo.value.actual == 3
    assert len(index) == 3


def test_add_then_search_sees_new_entry(index):
    index.add(_entry("d", [-1.0, 0.0]))

    assert index.similarity_search([-1.0, 0.0], 1)[0].id == "d"


def test_search_reads_arrays_prepared_by_add(index):
    index.add(_entry("d", [0.0, 2.0]))
    matrix, norms = index._matrix, index._norms

    assert matrix.shape == (4, 2)
    assert norms[-1] == pytest.approx(2.0)

    index.similarity_search([1.0, 0.0], 2)
    index.similarity_search([0.0, 1.0], 2)

    assert index._matrix is matrix
    assert index._norms is norms


def test_query_with_wrong_dimension_raises(index):
    with pytest.raises(DimensionMismatch):
        index.similarity_search([1.0, 0.0, 0.0], 2)


def test_save_then_load_reproduces_search_results(index, tmp_path):
    path = tmp_path / "vector_index.json"
    before = index.similarity_search_with_scores([0.4, 0.6], 3)

    index.save(path)
    restored = VectorIndex()
    assert restored.load(path) is True

    after = restored.similarity_search_with_scores([0.4, 0.6], 3)
    assert [r.document for r in after] == [r.document for r in before]
    assert [r.score for r in after] == pytest.approx([r.score for r in before])


def test_snapshot_file_format(index, tmp_path):
    path = tmp_path / "nested" / "vector_index.json"

    index.save(path)

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert isinstance(payload, list)
    assert payload[0] == {
        "vector": [1.0, 0.0],
        "document": {"metadata": {"dishName": "红烧肉", "chunkId": "a"}, "pageContent": "text a"},
    }


def test_load_missing_file_returns_false_and_keeps_index_empty(tmp_path):
    index = VectorIndex()

    assert index.load(tmp_path / "missing.json") is False
    assert len(index) == 0


def test_load_missing_file_keeps_existing_entries(index, tmp_path):
    assert index.load(tmp_path / "missing.json") is False
    assert len(index) == 3


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps({"vector": [1.0], "document": {}}),
        json.dumps([{"vector": [1.0]}]),
        json.dumps([{"vector": ["x"], "document": {"metadata": {"chunkId": "a"}, "pageContent": ""}}]),
        json.dumps([{"vector": [1.0], "document": {"metadata": {}, "pageContent": "no id"}}]),
        json.dumps([{"vector": [1.0], "document": {"metadata": {"chunkId": "a"}}}]),
        json.dumps([
            {"vector": [1.0], "document": {"metadata": {"chunkId": "a"}, "pageContent": ""}},
            {"vector": [1.0, 2.0], "document": {"metadata": {"chunkId": "b"}, "pageContent": ""}},
        ]),
    ],
)
def test_load_malformed_snapshot_raises_and_keeps_index(index, tmp_path, content):
    path = tmp_path / "broken.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(MalformedSnapshot):
        index.load(path)

    assert [doc.id for doc in index.similarity_search([1.0, 0.0], 3)] == ["a", "c", "b"]


def test_load_accepts_non_string_metadata_values(tmp_path):
    path = tmp_path / "index.json"
    path.write_text(json.dumps([
        {"vector": [1, 0], "document": {"metadata": {"chunkId": "a", "chunkIndex": 0}, "pageContent": "红烧肉"}},
    ]), encoding="utf-8")
    index = VectorIndex()

    assert index.load(path)

    assert index.entries[0].document.attributes == {"chunkIndex": "0"}


def test_build_aligns_vectors_with_documents_regardless_of_completion_order():
    docs = [Document(id=str(i), text=str(i)) for i in range(12)]

    def slow_for_early_documents(text):
        position = int(text)
        time.sleep(0.002 * (12 - position))
        return [float(position), 1.0]

    index = VectorIndex.build(docs, slow_for_early_documents, max_workers=4)

    assert [entry.document.id for entry in index.entries] == [doc.id for doc in docs]
    assert [entry.vector[0] for entry in index.entries] == [float(i) for i in range(12)]


def test_build_respects_concurrency_limit():
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def embed(text):
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.005)
        with lock:
            state["active"] -= 1
        return [1.0, 0.0]

    docs = [Document(id=str(i), text=str(i)) for i in range(10)]
    VectorIndex.build(docs, embed, max_workers=3)

    assert 1 <= state["peak"] <= 3


def test_rebuild_failure_propagates_and_keeps_previous_entries(index):
    docs = [Document(id="x", text="ok"), Document(id="y", text="boom")]

    def embed(text):
        if text == "boom":
            raise EmbeddingFailure("provider down")
        return [0.0, 1.0]

    with pytest.raises(EmbeddingFailure, match="provider down"):
        index.rebuild(docs, embed, max_workers=2)

    assert [entry.document.id for entry in index.entries] == ["a", "b", "c"]


def test_rebuild_with_inconsistent_embeddings_raises_dimension_mismatch():
    docs = [Document(id="x", text="short"), Document(id="y", text="long")]
    index = VectorIndex()

    with pytest.raises(DimensionMismatch):
        index.rebuild(docs, lambda text: [1.0] if text == "short" else [1.0, 2.0])

    assert len(index) == 0


def test_build_empty_corpus_gives_empty_index():
    index = VectorIndex.build([], lambda text: pytest.fail("embed should not be called"))

    assert len(index) == 0
    assert index.similarity_search([1.0], 3) == []
