"""
Natureza de operação text handling.

Issuers type the same operation in many ways ("VENDA DE MERCADORIA",
"Venda  de mercadoria ", "venda de mercadoria").  Three forms are derived
from the raw text:

    sanitize_nat_op  -- whitespace collapsed and trimmed (what we store raw)
    nat_op_key       -- sanitized + casefolded (identity key for aliases)
    normalize_nat_op -- Portuguese title case (what we display)

nat_op_key is part of the alias identity: it is written to the alias row and
computed again on lookup, so the unique index is over the key, not the raw
text.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from fiscal_kernel.db.types import to_decimal

_WHITESPACE = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^A-Z0-9]")

TITLE_CASE_EXCEPTIONS = frozenset({"DA", "DE", "DO", "DOS", "DAS", "E"})


def sanitize_nat_op(value: Any) -> str | None:
    """Collapse internal whitespace and trim; blank text becomes None."""
    if value is None:
        return None
    trimmed = _WHITESPACE.sub(" ", str(value)).strip()
    return trimmed or None


def nat_op_key(value: Any) -> str | None:
    """Identity key for alias lookups: sanitized and casefolded."""
    sanitized = sanitize_nat_op(value)
    if sanitized is None:
        return None
    return sanitized.casefold()


def _title_case_term(term: str, first: bool) -> str:
    upper = term.upper()
    if not first and upper in TITLE_CASE_EXCEPTIONS:
        return upper.lower()
    lowered = upper.lower()
    return lowered[:1].upper() + lowered[1:]


def normalize_nat_op(value: Any) -> str | None:
    """
    Display form: title case with Portuguese connectives kept lower-case.

    >>> normalize_nat_op("VENDA DE PRODUCAO DO ESTABELECIMENTO")
    'Venda de Producao do Estabelecimento'
    """
    sanitized = sanitize_nat_op(value)
    if sanitized is None:
        return None
    words = sanitized.split(" ")
    return " ".join(
        _title_case_term(word, index == 0) for index, word in enumerate(words)
    )


def build_cfop_composite(cfop_code: Any, descricao: Any) -> str | None:
    """'5102 - Venda de Mercadoria', or just the code when there is no text."""
    code = sanitize_nat_op(cfop_code)
    if code is None:
        return None
    text = sanitize_nat_op(descricao)
    if text is None:
        return code
    return f"{code} - {text}"


def determine_primary_cfop(items: Iterable[Mapping[str, Any]]) -> str | None:
    """
    Pick the CFOP that best represents a multi-line document.

    Most frequent code wins; ties go to the larger gross sum, then to the
    lexicographically smaller code.  Items are mappings with ``cfop_code``
    and ``gross`` keys.
    """
    stats: dict[str, list[Any]] = {}
    for item in items:
        code = sanitize_nat_op(item.get("cfop_code"))
        if code is None:
            continue
        gross = to_decimal(item.get("gross"))
        if not gross.is_finite():
            gross = Decimal("0")
        entry = stats.setdefault(code, [0, Decimal("0")])
        entry[0] += 1
        entry[1] += gross

    if not stats:
        return None

    ranked = sorted(stats.items(), key=lambda kv: (-kv[1][0], -kv[1][1], kv[0]))
    return ranked[0][0]


def strip_key(value: Any) -> str | None:
    """
    Accent-free, upper-case, alphanumeric-only key.

    Used for product descriptions and unit names coming from documents
    ("Fardo 5kg" -> "FARDO5KG", "Saca" -> "SACA").
    """
    if value is None:
        return None
    decomposed = unicodedata.normalize("NFD", str(value))
    without_marks = "".join(
        ch for ch in decomposed if unicodedata.category(ch) != "Mn"
    )
    key = _NON_ALNUM.sub("", without_marks.upper())
    return key or None
