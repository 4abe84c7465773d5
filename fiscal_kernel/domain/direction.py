"""
Document direction inference.

An NF-e does not say "inbound" or "outbound" for a given company; that
follows from who issued it, who received it and the tpNF flag
(0 = entrada, 1 = saída).  A company that issues an entrada to itself
(e.g. a return or an internal transfer it documents on its own pad) yields an
inbound movement with ``is_self_issued_entrada`` set.
"""

from __future__ import annotations

import re
from typing import Any

from fiscal_kernel.domain.movement import Direction
from fiscal_kernel.exceptions import UnsupportedDocumentLayoutError

_NON_DIGIT = re.compile(r"\D")

TP_NF_ENTRADA = "0"
TP_NF_SAIDA = "1"


def normalize_tax_id(value: Any) -> str | None:
    """Digits of a CPF (11) or CNPJ (14); anything else is None."""
    if value is None:
        return None
    digits = _NON_DIGIT.sub("", str(value))
    if len(digits) in (11, 14):
        return digits
    return None


def derive_document_direction(
    tp_nf: Any,
    issuer_cnpj: Any,
    recipient_cnpj: Any,
    company_cnpj: Any,
) -> tuple[Direction, bool]:
    """
    Return ``(direction, is_self_issued_entrada)`` for the company.

    Raises:
        UnsupportedDocumentLayoutError: a tax id is missing/invalid or the
            company is neither issuer nor recipient.
    """
    company = normalize_tax_id(company_cnpj)
    issuer = normalize_tax_id(issuer_cnpj)
    recipient = normalize_tax_id(recipient_cnpj)

    if not company or not issuer or not recipient:
        raise UnsupportedDocumentLayoutError("missing or invalid tax id")

    tp = str(tp_nf).strip() if tp_nf is not None else None

    if tp == TP_NF_ENTRADA and issuer == company:
        return Direction.IN, True
    if tp == TP_NF_SAIDA and recipient == company:
        return Direction.IN, issuer == company
    if tp == TP_NF_SAIDA and issuer == company:
        return Direction.OUT, False
    if recipient == company:
        return Direction.IN, issuer == company
    if issuer == company:
        return Direction.OUT, False

    raise UnsupportedDocumentLayoutError("company is neither issuer nor recipient")


def direction_from_cfop(cfop_code: Any) -> Direction | None:
    """
    CFOP first digit: 1/2/3 are entradas, 5/6/7 are saídas.

    Returns None for blank or malformed codes.
    """
    if cfop_code is None:
        return None
    code = str(cfop_code).strip()
    if not code:
        return None
    head = code[0]
    if head in "123":
        return Direction.IN
    if head in "567":
        return Direction.OUT
    return None
