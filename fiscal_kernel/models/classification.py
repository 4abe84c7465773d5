"""
Module: fiscal_kernel.models.classification
Responsibility: ORM persistence for the classification configuration of a
    company: NaturezaOperacao (typed meaning), CfopRule (CFOP + direction
    default) and NaturezaOperacaoAlias (exact natOp + CFOP match).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - NaturezaOperacao.name unique per company.
    - dre_sign is +1 or -1 (CHECK constraint).
    - One CfopRule per (company_id, cfop_code, type).
    - One alias per (company_id, nat_op_key, cfop_code, cfop_type,
      is_self_issued_entrada); nat_op_key is the normalized identity key, so
      the unique index is insensitive to case and whitespace.

Failure modes:
    - IntegrityError on duplicate natureza name, CFOP rule or alias tuple.
"""

from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fiscal_kernel.db.base import TimestampedBase


class NaturezaOperacao(TimestampedBase):
    """What a family of document lines means for reporting and costing."""

    __tablename__ = "naturezas_operacao"

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_natureza_company_name"),
        CheckConstraint("dre_sign IN (1, -1)", name="ck_natureza_dre_sign"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Display form (normalize_nat_op)
    descricao: Mapped[str | None] = mapped_column(String(255), nullable=True)

    dre_include: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # REVENUE, RETURN, CMV, EXPENSE, ... (configured)
    dre_category: Mapped[str | None] = mapped_column(String(30), nullable=True)

    dre_label: Mapped[str | None] = mapped_column(String(255), nullable=True)

    dre_sign: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    affects_inventory: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    @property
    def display_label(self) -> str:
        """DRE label fallback chain: dre_label, descricao, name."""
        return self.dre_label or self.descricao or self.name

    def __repr__(self) -> str:
        return f"<NaturezaOperacao {self.name}>"


class CfopRule(TimestampedBase):
    """Default natureza for a CFOP in one direction."""

    __tablename__ = "cfop_rules"

    __table_args__ = (
        UniqueConstraint("company_id", "cfop_code", "type", name="uq_cfop_rule"),
        CheckConstraint("type IN ('IN', 'OUT')", name="ck_cfop_rule_type"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    cfop_code: Mapped[str] = mapped_column(String(4), nullable=False)

    type: Mapped[str] = mapped_column(String(3), nullable=False)

    natureza_operacao_id: Mapped[UUID] = mapped_column(
        ForeignKey("naturezas_operacao.id", ondelete="RESTRICT"),
        nullable=False,
    )

    natureza: Mapped[NaturezaOperacao] = relationship(lazy="joined")


class NaturezaOperacaoAlias(TimestampedBase):
    """Exact natOp text + CFOP + direction + self-issued -> natureza."""

    __tablename__ = "natureza_operacao_aliases"

    __table_args__ = (
        UniqueConstraint(
            "company_id",
            "nat_op_key",
            "cfop_code",
            "cfop_type",
            "is_self_issued_entrada",
            name="uq_natureza_alias_identity",
        ),
        CheckConstraint("cfop_type IN ('IN', 'OUT')", name="ck_alias_cfop_type"),
        Index("idx_alias_target", "natureza_operacao_id"),
    )

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )

    nat_op_key: Mapped[str] = mapped_column(String(255), nullable=False)

    # Sanitized text as first seen
    nat_op_raw: Mapped[str] = mapped_column(String(255), nullable=False)

    cfop_code: Mapped[str] = mapped_column(String(4), nullable=False)

    cfop_type: Mapped[str] = mapped_column(String(3), nullable=False)

    is_self_issued_entrada: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    natureza_operacao_id: Mapped[UUID] = mapped_column(
        ForeignKey("naturezas_operacao.id", ondelete="RESTRICT"),
        nullable=False,
    )

    natureza: Mapped[NaturezaOperacao] = relationship(lazy="joined")
