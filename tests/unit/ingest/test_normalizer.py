"""Tests for normalize_text."""

from __future__ import annotations

import pytest

from quarry.ingest.normalizer import normalize_text


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Hola   Mundo", "hola mundo"),
        ("  padded\n\ttext  ", "padded text"),
        ("Really!!!  Why??", "really! why?"),
        ("ﬁnal ﬂow", "final flow"),
        ("“Quoted” — ‘dash’", "\"quoted\" - 'dash'"),
        ("zero\u200bwidth\ufeff", "zerowidth"),
        ("café", "café"),
    ],
)
def test_basic_canonicalisation(raw, expected):
    assert normalize_text(raw) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Ver p. ej. la Fig. 3", "ver por ejemplo la figura 3"),
        ("Manzanas, peras, etc.", "manzanas, peras, etcétera"),
        ("El Sr. Pérez y la Dra. Gómez", "el señor pérez y la doctora gómez"),
        ("Ej. sencillo", "ejemplo sencillo"),
        ("Aprox. 20 minutos", "aproximadamente 20 minutos"),
    ],
)
def test_abbreviations_expanded(raw, expected):
    assert normalize_text(raw) == expected


def test_abbreviation_needs_word_boundary():
    # "sud." must not be read as "ud."
    assert normalize_text("Sud. America") == "sud. america"


@pytest.mark.parametrize("empty", [None, "", "   "])
def test_empty_input(empty):
    assert normalize_text(empty) == ""


@pytest.mark.parametrize(
    "raw",
    [
        "Mixed CASE… with “quotes”, etc.... and ﬁ ligatures!!",
        "p.ej. Sr. Dr. Uds. — cap. 4",
        "Already normal text.",
    ],
)
def test_idempotent(raw):
    once = normalize_text(raw)
    assert normalize_text(once) == once
