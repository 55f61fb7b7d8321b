"""Tests for per-model vec table management."""

from __future__ import annotations

import pytest

from quarry.db.vectors import (
    ensure_vec_table,
    list_vec_tables,
    model_to_slug,
    vec_table_exists,
    vec_table_for_model,
)


def test_model_to_slug():
    assert model_to_slug("openai/text-embedding-3-small") == "openai_text_embedding_3_small"
    assert model_to_slug("Cohere/Embed-v3.0") == "cohere_embed_v3_0"


def test_vec_table_for_model():
    assert vec_table_for_model("openai/text-embedding-3-small") == (
        "vec_chunks_openai_text_embedding_3_small"
    )


def test_ensure_vec_table_creates_once(tmp_db):
    name = ensure_vec_table(tmp_db, "test_model", 4)
    assert name == "vec_chunks_test_model"
    assert vec_table_exists(tmp_db, name)
    assert ensure_vec_table(tmp_db, "test_model", 4) == name
    assert list_vec_tables(tmp_db) == [name]


def test_list_vec_tables_multiple_models(tmp_db):
    ensure_vec_table(tmp_db, "b_model", 3)
    ensure_vec_table(tmp_db, "a_model", 3)
    assert list_vec_tables(tmp_db) == ["vec_chunks_a_model", "vec_chunks_b_model"]


def test_ensure_vec_table_rejects_unsanitized_slug(tmp_db):
    with pytest.raises(ValueError, match="Invalid model_slug"):
        ensure_vec_table(tmp_db, "bad-slug; DROP TABLE chunks", 4)


def test_ensure_vec_table_rejects_zero_dimensions(tmp_db):
    with pytest.raises(ValueError, match="dimensions"):
        ensure_vec_table(tmp_db, "test_model", 0)
