"""Tests for the rule-based query helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from quarry.lexicon import RECENCY_UNKNOWN, adjust_weights, expand_term, fold, recency_score

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_fold_strips_case_and_accents() -> None:
    assert fold("Información") == "informacion"
    assert fold("CONTRASEÑA") == "contrasena"


def test_expand_term_synonyms_keep_original_first() -> None:
    assert expand_term("Precio") == ["Precio", "costo", "tarifa", "valor", "importe"]


def test_expand_term_acronym() -> None:
    assert expand_term("faq") == ["faq", "preguntas frecuentes"]


def test_expand_term_unknown_word_unchanged() -> None:
    assert expand_term("zapatos") == ["zapatos"]


@pytest.mark.parametrize(
    "query, expected",
    [
        ('precio del "plan premium" anual', (0.35, 0.65, "quoted_phrase")),
        ("Necesito la API del CRM hoy", (0.35, 0.65, "many_capitals")),
        ("reembolso", (0.4, 0.6, "short_query")),
        ("como cancelo mi suscripcion mensual", (0.5, 0.5, "default")),
    ],
)
def test_adjust_weights(query: str, expected: tuple) -> None:
    vector, lexical, reason = adjust_weights(query, 0.5, 0.5)
    assert (vector, lexical) == pytest.approx(expected[:2])
    assert reason == expected[2]


def test_adjust_weights_caps_lexical_at_one() -> None:
    vector, lexical, _ = adjust_weights('"dar de baja"', 0.1, 0.95)
    assert lexical == 1.0
    assert vector == 0.0


def test_recency_decays_linearly_over_a_year() -> None:
    assert recency_score(NOW.isoformat(), now=NOW) == 1.0
    assert recency_score((NOW - timedelta(days=73)).isoformat(), now=NOW) == pytest.approx(0.8)
    assert recency_score("2024-06-01 10:00:00", now=NOW) == 0.0


def test_recency_reads_sqlite_and_zulu_stamps_as_utc() -> None:
    assert recency_score("2025-12-31 00:00:00", now=NOW) == pytest.approx(1 - 1 / 365)
    assert recency_score("2025-12-31T00:00:00Z", now=NOW) == pytest.approx(1 - 1 / 365)


def test_recency_future_stamp_capped() -> None:
    assert recency_score("2026-03-01 00:00:00", now=NOW) == 1.0


@pytest.mark.parametrize("stamp", [None, "", "last tuesday"])
def test_recency_unknown(stamp) -> None:
    assert recency_score(stamp, now=NOW) == RECENCY_UNKNOWN
