"""Text normalizer: canonical form of chunk and query text before embedding."""

from __future__ import annotations

import re
import unicodedata

_ABBREVIATIONS: dict[str, str] = {
    "p. ej.": "por ejemplo",
    "p.ej.": "por ejemplo",
    "p.e.": "por ejemplo",
    "ej.": "ejemplo",
    "etc.": "etcétera",
    "sr.": "señor",
    "sra.": "señora",
    "dr.": "doctor",
    "dra.": "doctora",
    "ud.": "usted",
    "uds.": "ustedes",
    "fig.": "figura",
    "cap.": "capítulo",
    "aprox.": "aproximadamente",
}

# Longest first so "p. ej." wins over "ej.".
_ABBREVIATION_RE = re.compile(
    r"(?<!\w)("
    + "|".join(re.escape(a) for a in sorted(_ABBREVIATIONS, key=len, reverse=True))
    + r")",
    re.IGNORECASE,
)

_LIGATURES = str.maketrans(
    {
        "ﬀ": "ff",
        "ﬁ": "fi",
        "ﬂ": "fl",
        "ﬃ": "ffi",
        "ﬄ": "ffl",
        "ﬅ": "st",
        "ﬆ": "st",
        "œ": "oe",
        "æ": "ae",
    }
)

_QUOTES_AND_DASHES = str.maketrans(
    {
        "‘": "'",
        "’": "'",
        "‚": "'",
        "‛": "'",
        "“": '"',
        "”": '"',
        "„": '"',
        "«": '"',
        "»": '"',
        "‐": "-",
        "‑": "-",
        "‒": "-",
        "–": "-",
        "—": "-",
        "―": "-",
        "−": "-",
    }
)

_ZERO_WIDTH_RE = re.compile("[​‌‍⁠﻿]")
_REPEATED_PUNCT_RE = re.compile(r"([!?.,;:])\1+")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str | None) -> str:
    """Return the canonical form of *text*.

    NFC, lower case, ligatures expanded, typographic quotes and dashes made
    ASCII, zero-width characters removed, abbreviations expanded, repeated
    punctuation collapsed and whitespace squeezed. Never raises; falsy
    input gives "".
    """
    if not text:
        return ""
    out = unicodedata.normalize("NFC", text).lower()
    out = out.translate(_LIGATURES).translate(_QUOTES_AND_DASHES)
    out = _ZERO_WIDTH_RE.sub("", out)
    out = _ABBREVIATION_RE.sub(lambda m: _ABBREVIATIONS[m.group(1).lower()], out)
    out = _REPEATED_PUNCT_RE.sub(r"\1", out)
    return _WHITESPACE_RE.sub(" ", out).strip()
