"""Tests for document loading and chunking in the indexing pipeline."""

from kgrag.build_graph_index import chunk_documents, load_documents


def test_load_documents_filters_extensions_and_empty_files(tmp_path):
    (tmp_path / "a.txt").write_text("alpha text")
    (tmp_path / "b.md").write_text("# beta")
    (tmp_path / "c.pdf").write_text("ignored")
    (tmp_path / "empty.txt").write_text("   ")

    documents = load_documents(tmp_path, [".txt", ".md"])

    assert sorted(text for _, _, text in documents) == ["# beta", "alpha text"]
    assert len({doc_id for doc_id, _, _ in documents}) == 2


def test_chunk_ids_are_per_document_sequences():
    documents = [("doc1", "doc1.txt", "word " * 200), ("doc2", "doc2.txt", "short")]

    chunks = chunk_documents(documents, chunk_size=100, chunk_overlap=10)

    doc1_ids = [chunk_id for chunk_id, doc_id, _, _ in chunks if doc_id == "doc1"]
    assert len(doc1_ids) > 1
    assert doc1_ids == [f"doc1_chunk_{i}" for i in range(len(doc1_ids))]
    assert chunks[-1] == ("doc2_chunk_0", "doc2", "doc2.txt", "short")
    assert all(len(text) <= 100 for _, _, _, text in chunks)
