"""
Tests for embeddings and semantic relations in bitacora/services/embeddings.py.

Pure helpers first, then the storage-backed operations against a temp SQLite
database with a keyword-driven fake embedder.
"""
from __future__ import annotations

import math

import pytest
from sqlalchemy.exc import OperationalError

from bitacora.services.embeddings import (
    EmbeddingsService,
    build_entry_embedding_text,
    content_hash,
    cosine_similarity,
)
from bitacora.services.provider import ProviderError

USER = "user-a"


# ============================================================================
# cosine_similarity
# ============================================================================


def test_cosine_identical_vectors():
    assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)


def test_cosine_orthogonal_vectors():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)


def test_cosine_opposite_vectors():
    assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)


def test_cosine_is_symmetric():
    a, b = [0.3, -1.2, 4.0, 0.5], [2.0, 0.1, -0.7, 3.3]
    assert cosine_similarity(a, b) == cosine_similarity(b, a)


def test_cosine_zero_vector_is_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0


def test_cosine_length_mismatch_raises():
    with pytest.raises(ValueError):
        cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


def test_cosine_known_value():
    assert cosine_similarity([1.0, 0.0], [1.0, 1.0]) == pytest.approx(1 / math.sqrt(2))


# ============================================================================
# Text helpers
# ============================================================================


def test_build_entry_embedding_text_combines_summary_and_text():
    assert build_entry_embedding_text("Resumen", "Texto original") == "Resumen\nTexto original"


def test_build_entry_embedding_text_caps_original_text():
    text = build_entry_embedding_text("R", "x" * 5000)
    assert text == "R\n" + "x" * 1000


def test_content_hash_is_deterministic_sha256():
    assert content_hash("hola") == content_hash("hola")
    assert content_hash("hola") != content_hash("hola ")
    assert len(content_hash("hola")) == 64


# ============================================================================
# embed
# ============================================================================


def test_embed_rejects_empty_text(make_provider, gateway):
    service = EmbeddingsService(make_provider(), gateway)
    with pytest.raises(ValueError):
        service.embed("   ")


def test_embed_truncates_input(make_provider, gateway):
    provider = make_provider()
    EmbeddingsService(provider, gateway, max_chars=10).embed("a" * 50)
    assert provider.embed_calls == ["a" * 10]


def test_embed_propagates_provider_errors(make_provider, gateway):
    provider = make_provider(embedder=ProviderError("down"))
    with pytest.raises(ProviderError):
        EmbeddingsService(provider, gateway).embed("hola")


def test_embed_rejects_empty_vector(make_provider, gateway):
    provider = make_provider(embedder=[])
    with pytest.raises(ValueError):
        EmbeddingsService(provider, gateway).embed("hola")


def test_model_comes_from_provider(make_provider, gateway):
    assert EmbeddingsService(make_provider(), gateway).model == "fake-embedding"


# ============================================================================
# Storage-backed operations
# ============================================================================


@pytest.fixture()
def service(make_provider, make_embedder, gateway, storage):
    embedder = make_embedder(
        {
            "erp": [1.0, 0.0, 0.0],
            "sap": [0.9, 0.1, 0.0],
            "cumple": [0.0, 1.0, 0.0],
        }
    )
    return EmbeddingsService(make_provider(embedder=embedder), gateway, storage)


def _save(storage, text: str, user_id: str = USER):
    book, _ = storage.get_or_create_book(user_id, "General")
    return storage.create_entry(user_id, book.id, text, summary=text)


def test_embed_entry_stores_vector(service, storage):
    entry = _save(storage, "Migración ERP")
    vector = service.embed_entry(entry)

    stored = storage.get_embeddings_by_entry_ids(USER, [entry.id], service.model)
    assert stored[entry.id] == pytest.approx(vector)
    assert storage.get_embedding_hash(USER, entry.id, service.model) is not None


def test_embed_entry_reuses_vector_for_unchanged_content(service, storage):
    entry = _save(storage, "Migración ERP")
    service.embed_entry(entry)
    service.embed_entry(entry)
    assert len(service.provider.embed_calls) == 1


def test_embed_entry_replaces_vector_when_content_changes(service, storage):
    entry = _save(storage, "Migración ERP")
    service.embed_entry(entry)

    changed = entry.model_copy(update={"summary": "Cumpleaños", "original_text": "Cumpleaños de Ana"})
    service.embed_entry(changed)

    stored = storage.get_embeddings_by_entry_ids(USER, [entry.id], service.model)
    assert stored[entry.id] == pytest.approx([0.0, 1.0, 0.0])


def test_find_similar_filters_sorts_and_limits(service, storage):
    erp = _save(storage, "Migración ERP")
    sap = _save(storage, "Conector SAP")
    cumple = _save(storage, "Cumpleaños de Ana")
    for entry in (erp, sap, cumple):
        service.embed_entry(entry)

    results = service.find_similar([1.0, 0.0, 0.0], USER, limit=10, threshold=0.7)
    assert [r.entry.id for r in results] == [erp.id, sap.id]
    assert results[0].similarity >= results[1].similarity

    limited = service.find_similar([1.0, 0.0, 0.0], USER, limit=1, threshold=0.7)
    assert [r.entry.id for r in limited] == [erp.id]


def test_find_similar_is_user_scoped(service, storage):
    mine = _save(storage, "Migración ERP", user_id=USER)
    theirs = _save(storage, "Migración ERP", user_id="user-b")
    service.embed_entry(mine)
    service.embed_entry(theirs)

    results = service.find_similar([1.0, 0.0, 0.0], USER, threshold=0.5)
    assert [r.entry.id for r in results] == [mine.id]


def test_find_similar_skips_dimension_mismatch(service, storage):
    entry = _save(storage, "Migración ERP")
    service.embed_entry(entry)
    assert service.find_similar([1.0, 0.0], USER, threshold=0.0) == []


def test_detect_and_persist_relations_creates_edges(service, storage):
    erp = _save(storage, "Migración ERP")
    sap = _save(storage, "Conector SAP")
    cumple = _save(storage, "Cumpleaños de Ana")
    for entry in (erp, sap, cumple):
        service.embed_entry(entry)

    vector = storage.get_embeddings_by_entry_ids(USER, [erp.id], service.model)[erp.id]
    edges = service.detect_and_persist_relations(erp.id, vector, [erp, sap, cumple], USER)

    assert [e["target_id"] for e in edges] == [sap.id]
    relations = storage.list_relations(USER, erp.id)
    assert len(relations) == 1
    assert relations[0].other_end(erp.id) == sap.id


def test_detect_and_persist_relations_upserts_instead_of_duplicating(service, storage):
    erp = _save(storage, "Migración ERP")
    sap = _save(storage, "Conector SAP")
    service.embed_entry(erp)
    vector = service.embed_entry(sap)

    service.detect_and_persist_relations(sap.id, vector, [erp, sap], USER)
    service.detect_and_persist_relations(sap.id, vector, [erp, sap], USER)
    # the reverse direction is the same edge
    erp_vector = storage.get_embeddings_by_entry_ids(USER, [erp.id], service.model)[erp.id]
    service.detect_and_persist_relations(erp.id, erp_vector, [erp, sap], USER)

    assert len(storage.list_relations(USER, erp.id)) == 1
    assert len(storage.list_relations(USER, sap.id)) == 1


def test_failed_edge_is_skipped(service, storage, monkeypatch):
    erp = _save(storage, "Migración ERP")
    sap = _save(storage, "Conector SAP")
    sap2 = _save(storage, "Otro conector SAP")
    for entry in (erp, sap, sap2):
        service.embed_entry(entry)

    real_upsert = storage.upsert_relation

    def flaky_upsert(user_id, source, target, strength):
        if target == sap.id:
            raise OperationalError("INSERT", {}, Exception("locked"))
        return real_upsert(user_id, source, target, strength)

    monkeypatch.setattr(storage, "upsert_relation", flaky_upsert)
    edges = service.detect_and_persist_relations(erp.id, [1.0, 0.0, 0.0], [sap, sap2], USER)

    assert [e["target_id"] for e in edges] == [sap2.id]


def test_note_deleted_mid_batch_is_skipped(service, storage, monkeypatch):
    erp = _save(storage, "Migración ERP")
    gone = _save(storage, "Conector SAP")
    kept = _save(storage, "Otro conector SAP")
    for entry in (erp, gone, kept):
        service.embed_entry(entry)

    real_upsert = storage.upsert_relation

    def upsert_after_delete(user_id, source, target, strength):
        if target == gone.id:
            storage.delete_entry(user_id, gone.id)
        return real_upsert(user_id, source, target, strength)

    monkeypatch.setattr(storage, "upsert_relation", upsert_after_delete)
    edges = service.detect_and_persist_relations(erp.id, [1.0, 0.0, 0.0], [gone, kept], USER)

    assert [e["target_id"] for e in edges] == [kept.id]
    assert [r.other_end(erp.id) for r in storage.list_relations(USER, erp.id)] == [kept.id]


def test_operations_without_storage_raise(make_provider, gateway):
    service = EmbeddingsService(make_provider(), gateway)
    with pytest.raises(RuntimeError):
        service.find_similar([1.0], USER)
