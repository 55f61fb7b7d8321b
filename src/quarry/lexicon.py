"""Rule-based query helpers: acronym and synonym expansion, weight hints, recency.

Nothing here calls a model. The tables are Spanish, like the normalizer's
abbreviation table.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import datetime, timezone

THESAURUS: dict[str, list[str]] = {
    "precio": ["costo", "tarifa", "valor", "importe"],
    "soporte": ["ayuda", "asistencia", "atención", "apoyo"],
    "problema": ["inconveniente", "error", "falla", "incidencia", "dificultad"],
    "solución": ["respuesta", "resolución", "arreglo"],
    "documento": ["archivo", "informe", "texto", "guía", "manual"],
    "buscar": ["encontrar", "localizar", "consultar", "ubicar"],
    "empezar": ["iniciar", "comenzar", "configurar", "arrancar"],
    "cómo": ["manera", "forma", "modo", "instrucciones"],
    "información": ["detalles", "datos", "especificaciones"],
    "plan": ["suscripción", "membresía", "tarifa", "modelo"],
    "pago": ["facturación", "cobro", "transacción", "abonar"],
    "cuenta": ["perfil", "usuario", "registro", "credenciales"],
    "cancelar": ["anular", "dar de baja", "suspender", "rescindir"],
    "contraseña": ["clave", "acceso", "password", "pin"],
    "límite": ["restricción", "tope", "cuota", "capacidad"],
    "característica": ["función", "funcionalidad", "opción", "capacidad"],
    "guía": ["tutorial", "manual", "documentación", "instructivo"],
    "integración": ["conectar", "sincronizar", "vincular", "enlazar"],
    "configurar": ["ajustar", "personalizar", "establecer"],
    "ejemplo": ["caso", "muestra", "ilustración"],
}

ACRONYMS: dict[str, str] = {
    "IA": "Inteligencia Artificial",
    "CRM": "Customer Relationship Management",
    "FAQ": "Preguntas Frecuentes",
    "API": "Application Programming Interface",
    "SDK": "Software Development Kit",
    "KPI": "Key Performance Indicator",
}

QUOTED_BOOST = 0.15
SHORT_QUERY_BOOST = 0.1
RECENCY_HORIZON_DAYS = 365.0
RECENCY_UNKNOWN = 0.5

_QUOTED_RE = re.compile(r"[\"“”][^\"“”]+[\"“”]")
_CAPITAL_RE = re.compile(r"[A-Z]")


def fold(term: str) -> str:
    """Lower-case *term* and strip its diacritics."""
    decomposed = unicodedata.normalize("NFD", term.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


_THESAURUS_FOLDED = {fold(k): v for k, v in THESAURUS.items()}
_ACRONYMS_FOLDED = {fold(k): v.lower() for k, v in ACRONYMS.items()}


def expand_term(token: str) -> list[str]:
    """Return *token* followed by its known synonyms or acronym expansion.

    Lookup ignores case and accents. Entries may be multi-word phrases.
    """
    key = fold(token)
    terms = [token]
    if key in _ACRONYMS_FOLDED:
        terms.append(_ACRONYMS_FOLDED[key])
    terms.extend(_THESAURUS_FOLDED.get(key, []))
    return terms


def adjust_weights(
    query: str, vector_weight: float, lexical_weight: float
) -> tuple[float, float, str]:
    """Shift weight toward the lexical signal for keyword-like queries.

    *query* must be the raw user text, since quotes and capitals are the
    cues. A quoted phrase or more than three capitals adds
    ``QUOTED_BOOST``; otherwise fewer than three words add
    ``SHORT_QUERY_BOOST``. The vector weight becomes the complement.

    Returns:
        ``(vector_weight, lexical_weight, reason)``; reason is "default"
        when the weights are unchanged.
    """
    if _QUOTED_RE.search(query):
        boost, reason = QUOTED_BOOST, "quoted_phrase"
    elif len(_CAPITAL_RE.findall(query)) > 3:
        boost, reason = QUOTED_BOOST, "many_capitals"
    elif 0 < len(query.split()) < 3:
        boost, reason = SHORT_QUERY_BOOST, "short_query"
    else:
        return vector_weight, lexical_weight, "default"
    lexical = min(1.0, lexical_weight + boost)
    return 1.0 - lexical, lexical, reason


def recency_score(updated_at: str | None, now: datetime | None = None) -> float:
    """Linear decay from 1.0 (updated now) to 0.0 at ``RECENCY_HORIZON_DAYS``.

    Stamps without a zone are read as UTC, matching SQLite's
    ``datetime('now')``. Missing or unparseable stamps score
    ``RECENCY_UNKNOWN``.
    """
    if not updated_at:
        return RECENCY_UNKNOWN
    try:
        stamp = datetime.fromisoformat(updated_at.replace("Z", "+00:00"))
    except ValueError:
        return RECENCY_UNKNOWN
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    age_days = (now - stamp).total_seconds() / 86400
    return max(0.0, min(1.0, 1.0 - age_days / RECENCY_HORIZON_DAYS))
