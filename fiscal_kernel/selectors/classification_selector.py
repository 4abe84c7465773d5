"""
Module: fiscal_kernel.selectors.classification_selector
Responsibility: Database-backed ClassificationLookup -- aliases and CFOP rules
    of a company projected to NaturezaView.
Architecture position: Kernel > Selectors.

Every query filters by company_id; an alias or rule of another company is
never returned even if its natureza id is known.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select

from fiscal_kernel.domain.movement import Direction, NaturezaView
from fiscal_kernel.models.classification import (
    CfopRule,
    NaturezaOperacao,
    NaturezaOperacaoAlias,
)
from fiscal_kernel.selectors.base import BaseSelector


def natureza_view(natureza: NaturezaOperacao) -> NaturezaView:
    return NaturezaView(
        id=natureza.id,
        name=natureza.name,
        dre_include=natureza.dre_include,
        dre_category=natureza.dre_category,
        dre_label=natureza.display_label,
        dre_sign=natureza.dre_sign,
        affects_inventory=natureza.affects_inventory,
    )


class ClassificationSelector(BaseSelector):
    """Implements the ClassificationLookup protocol over the session."""

    def find_aliases(
        self,
        company_id: UUID,
        nat_op_key: str,
        cfop_code: str,
        cfop_type: Direction,
        is_self_issued_entrada: bool,
    ) -> Sequence[NaturezaView]:
        rows = self.session.execute(
            select(NaturezaOperacao)
            .join(
                NaturezaOperacaoAlias,
                NaturezaOperacaoAlias.natureza_operacao_id == NaturezaOperacao.id,
            )
            .where(
                NaturezaOperacaoAlias.company_id == company_id,
                NaturezaOperacaoAlias.nat_op_key == nat_op_key,
                NaturezaOperacaoAlias.cfop_code == cfop_code,
                NaturezaOperacaoAlias.cfop_type == Direction(cfop_type).value,
                NaturezaOperacaoAlias.is_self_issued_entrada
                == bool(is_self_issued_entrada),
                NaturezaOperacao.company_id == company_id,
            )
        ).scalars().all()
        return tuple(natureza_view(n) for n in rows)

    def find_cfop_rule(
        self,
        company_id: UUID,
        cfop_code: str,
        cfop_type: Direction,
    ) -> NaturezaView | None:
        natureza = self.session.execute(
            select(NaturezaOperacao)
            .join(CfopRule, CfopRule.natureza_operacao_id == NaturezaOperacao.id)
            .where(
                CfopRule.company_id == company_id,
                CfopRule.cfop_code == cfop_code,
                CfopRule.type == Direction(cfop_type).value,
                NaturezaOperacao.company_id == company_id,
            )
        ).scalar_one_or_none()
        return natureza_view(natureza) if natureza is not None else None

    def get_natureza(self, company_id: UUID, natureza_id: UUID) -> NaturezaView | None:
        natureza = self.session.execute(
            select(NaturezaOperacao).where(
                NaturezaOperacao.id == natureza_id,
                NaturezaOperacao.company_id == company_id,
            )
        ).scalar_one_or_none()
        return natureza_view(natureza) if natureza is not None else None

    def list_naturezas(self, company_id: UUID) -> list[NaturezaView]:
        rows = self.session.execute(
            select(NaturezaOperacao)
            .where(NaturezaOperacao.company_id == company_id)
            .order_by(NaturezaOperacao.name)
        ).scalars().all()
        return [natureza_view(n) for n in rows]
