"""
ClassificationService -- natureza registry and resolver over the database.

Responsibility:
    Maintain a company's classification configuration (naturezas, CFOP
    rules, aliases), merge duplicate naturezas, and classify document lines
    with the pure resolver chain through ClassificationSelector.

Architecture position:
    Services -- stateful orchestration.  Flush-only.

Invariants enforced:
    - Every id passed in must belong to ``company_id``; a foreign id raises
      CompanyScopeError and nothing is written.
    - Aliases store nat_op_key(); two aliases never share an identity tuple.
      Re-registering with a different target requires ``replace=True``.
    - dre_sign defaults to the configured sign of the natureza's category
      (+1 for an unknown or missing category).

Failure modes:
    - AmbiguousAliasError, NaturezaNotFoundError, NaturezaMergeError,
      CompanyNotFoundError, CompanyScopeError.
    - ValueError for an alias without natOp text or CFOP code, and for a
      natureza included in the DRE without a category.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from fiscal_config import FiscalSettings, describe_cfop, get_active_config
from fiscal_engines.classification import resolve_classification
from fiscal_kernel.domain.direction import direction_from_cfop
from fiscal_kernel.domain.movement import (
    Direction,
    DocumentLine,
    LedgerStatus,
    MovementDescriptor,
    UnclassifiedMovement,
)
from fiscal_kernel.domain.natop import (
    build_cfop_composite,
    nat_op_key,
    normalize_nat_op,
    sanitize_nat_op,
)
from fiscal_kernel.exceptions import (
    AmbiguousAliasError,
    CompanyNotFoundError,
    CompanyScopeError,
    NaturezaMergeError,
    NaturezaNotFoundError,
)
from fiscal_kernel.logging_config import get_logger
from fiscal_kernel.models.classification import (
    CfopRule,
    NaturezaOperacao,
    NaturezaOperacaoAlias,
)
from fiscal_kernel.models.company import Company
from fiscal_kernel.models.inventory import MovementRecord
from fiscal_kernel.selectors.classification_selector import ClassificationSelector
from fiscal_kernel.services.base import BaseService
from fiscal_services.ledger_service import LedgerService

logger = get_logger("services.classification")


class ClassificationService(BaseService):
    def __init__(self, session: Session, settings: FiscalSettings | None = None):
        super().__init__(session)
        self.settings = settings or get_active_config()
        self.selector = ClassificationSelector(session)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def require_company(self, company_id: UUID) -> Company:
        company = self.session.get(Company, company_id)
        if company is None:
            raise CompanyNotFoundError(str(company_id))
        return company

    def get_natureza(self, company_id: UUID, natureza_id: UUID) -> NaturezaOperacao:
        natureza = self.session.get(NaturezaOperacao, natureza_id)
        if natureza is None:
            raise NaturezaNotFoundError(str(natureza_id), str(company_id))
        if natureza.company_id != company_id:
            raise CompanyScopeError("NaturezaOperacao", str(natureza_id), str(company_id))
        return natureza

    def find_natureza_by_name(self, company_id: UUID, name: str) -> NaturezaOperacao | None:
        return self.session.execute(
            select(NaturezaOperacao).where(
                NaturezaOperacao.company_id == company_id,
                NaturezaOperacao.name == sanitize_nat_op(name),
            )
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def create_natureza(
        self,
        company_id: UUID,
        name: str,
        descricao: str | None = None,
        dre_include: bool = False,
        dre_category: str | None = None,
        dre_label: str | None = None,
        dre_sign: int | None = None,
        affects_inventory: bool = True,
    ) -> NaturezaOperacao:
        self.require_company(company_id)
        clean_name = sanitize_nat_op(name)
        if clean_name is None:
            raise ValueError("natureza name is required")

        dre_category = sanitize_nat_op(dre_category)
        if dre_include and dre_category is None:
            raise ValueError("a natureza included in the DRE needs a dre_category")

        if dre_sign is None:
            dre_sign = self.settings.dre.sign_for(dre_category)
        if dre_sign not in (1, -1):
            raise ValueError(f"dre_sign must be +1 or -1, got {dre_sign}")

        natureza = NaturezaOperacao(
            company_id=company_id,
            name=clean_name,
            descricao=sanitize_nat_op(descricao) or normalize_nat_op(clean_name),
            dre_include=dre_include,
            dre_category=dre_category,
            dre_label=sanitize_nat_op(dre_label),
            dre_sign=dre_sign,
            affects_inventory=affects_inventory,
        )
        self.session.add(natureza)
        self.session.flush()

        logger.info(
            "natureza_created",
            extra={
                "company_id": str(company_id),
                "natureza_id": str(natureza.id),
                "natureza_name": clean_name,
                "dre_category": dre_category,
                "dre_sign": dre_sign,
            },
        )
        return natureza

    def upsert_cfop_rule(
        self,
        company_id: UUID,
        cfop_code: str,
        type: Direction | str,
        natureza_id: UUID,
    ) -> CfopRule:
        self.get_natureza(company_id, natureza_id)
        code = sanitize_nat_op(cfop_code)
        if code is None:
            raise ValueError("cfop_code is required")
        direction = Direction(type)

        rule = self.session.execute(
            select(CfopRule).where(
                CfopRule.company_id == company_id,
                CfopRule.cfop_code == code,
                CfopRule.type == direction.value,
            )
        ).scalar_one_or_none()

        if rule is None:
            rule = CfopRule(
                company_id=company_id,
                cfop_code=code,
                type=direction.value,
                natureza_operacao_id=natureza_id,
            )
            self.session.add(rule)
        else:
            rule.natureza_operacao_id = natureza_id
        self.session.flush()

        logger.info(
            "cfop_rule_upserted",
            extra={
                "company_id": str(company_id),
                "cfop_code": code,
                "type": direction.value,
                "natureza_id": str(natureza_id),
            },
        )
        return rule

    def register_alias(
        self,
        company_id: UUID,
        nat_op: str,
        cfop_code: str,
        type: Direction | str,
        is_self_issued_entrada: bool,
        target_id: UUID,
        replace: bool = False,
    ) -> NaturezaOperacaoAlias:
        """
        Point an exact (natOp, CFOP, direction, self-issued) tuple at a natureza.

        Registering the same tuple for the same target is a no-op.

        Raises:
            AmbiguousAliasError: the tuple already points elsewhere and
                ``replace`` is False.
        """
        self.get_natureza(company_id, target_id)
        key = nat_op_key(nat_op)
        code = sanitize_nat_op(cfop_code)
        if key is None or code is None:
            raise ValueError("alias requires natOp text and a CFOP code")
        direction = Direction(type)

        existing = self.session.execute(
            select(NaturezaOperacaoAlias).where(
                NaturezaOperacaoAlias.company_id == company_id,
                NaturezaOperacaoAlias.nat_op_key == key,
                NaturezaOperacaoAlias.cfop_code == code,
                NaturezaOperacaoAlias.cfop_type == direction.value,
                NaturezaOperacaoAlias.is_self_issued_entrada
                == bool(is_self_issued_entrada),
            )
        ).scalar_one_or_none()

        if existing is not None:
            if existing.natureza_operacao_id == target_id:
                return existing
            if not replace:
                raise AmbiguousAliasError(
                    company_id=str(company_id),
                    nat_op_key=key,
                    cfop_code=code,
                    cfop_type=direction.value,
                    is_self_issued_entrada=bool(is_self_issued_entrada),
                )
            existing.natureza_operacao_id = target_id
            self.session.flush()
            logger.info(
                "natureza_alias_replaced",
                extra={"alias_id": str(existing.id), "target_id": str(target_id)},
            )
            return existing

        alias = NaturezaOperacaoAlias(
            company_id=company_id,
            nat_op_key=key,
            nat_op_raw=sanitize_nat_op(nat_op),
            cfop_code=code,
            cfop_type=direction.value,
            is_self_issued_entrada=bool(is_self_issued_entrada),
            natureza_operacao_id=target_id,
        )
        self.session.add(alias)
        self.session.flush()
        logger.info(
            "natureza_alias_registered",
            extra={
                "company_id": str(company_id),
                "nat_op_key": key,
                "cfop_code": code,
                "cfop_type": direction.value,
                "target_id": str(target_id),
            },
        )
        return alias

    def merge_naturezas(
        self,
        company_id: UUID,
        target_id: UUID,
        source_ids: Iterable[UUID],
    ) -> NaturezaOperacao:
        """
        Fold duplicate naturezas into ``target_id``.

        Aliases, CFOP rules and movement records of the sources are
        repointed to the target (movement snapshots take the target's DRE
        fields and inventory flag), then the sources are deleted.  Products
        whose records enter or leave the ledger through the new inventory
        flag are replayed.
        """
        target = self.get_natureza(company_id, target_id)
        sources = list(dict.fromkeys(source_ids))
        if not sources:
            raise NaturezaMergeError(str(target_id), "no source naturezas given")
        if target_id in sources:
            raise NaturezaMergeError(str(target_id), "target cannot be merged into itself")
        for source_id in sources:
            self.get_natureza(company_id, source_id)

        affected: set[UUID] = set()
        flipped = self.session.execute(
            select(MovementRecord).where(
                MovementRecord.company_id == company_id,
                MovementRecord.natureza_operacao_id.in_(sources),
                MovementRecord.affects_inventory != target.affects_inventory,
            )
        ).scalars().all()
        for record in flipped:
            was_costable = record.is_costable
            record.affects_inventory = target.affects_inventory
            if not record.is_costable:
                record.ledger_status = LedgerStatus.NOT_COSTED.value
                record.flags = []
            elif not was_costable:
                record.ledger_status = LedgerStatus.PENDING.value
            if record.product_id is not None and (was_costable or record.is_costable):
                affected.add(record.product_id)
        self.session.flush()

        aliases_moved = self.session.execute(
            update(NaturezaOperacaoAlias)
            .where(
                NaturezaOperacaoAlias.company_id == company_id,
                NaturezaOperacaoAlias.natureza_operacao_id.in_(sources),
            )
            .values(natureza_operacao_id=target_id)
            .execution_options(synchronize_session=False)
        ).rowcount
        rules_moved = self.session.execute(
            update(CfopRule)
            .where(
                CfopRule.company_id == company_id,
                CfopRule.natureza_operacao_id.in_(sources),
            )
            .values(natureza_operacao_id=target_id)
            .execution_options(synchronize_session=False)
        ).rowcount
        movements_moved = self.session.execute(
            update(MovementRecord)
            .where(
                MovementRecord.company_id == company_id,
                MovementRecord.natureza_operacao_id.in_(sources),
            )
            .values(
                natureza_operacao_id=target_id,
                dre_include=target.dre_include,
                dre_category=target.dre_category,
                dre_label=target.display_label,
                dre_sign=target.dre_sign,
                affects_inventory=target.affects_inventory,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        self.session.execute(
            delete(NaturezaOperacao)
            .where(
                NaturezaOperacao.company_id == company_id,
                NaturezaOperacao.id.in_(sources),
            )
            .execution_options(synchronize_session=False)
        )
        self.session.flush()
        self.session.expire_all()

        replayed = sorted(affected, key=str)
        ledgers = LedgerService(self.session, self.settings)
        for product_id in replayed:
            ledgers.replay_product(company_id, product_id)

        logger.info(
            "naturezas_merged",
            extra={
                "company_id": str(company_id),
                "target_id": str(target_id),
                "source_ids": [str(s) for s in sources],
                "aliases_moved": aliases_moved,
                "rules_moved": rules_moved,
                "movements_moved": movements_moved,
                "products_replayed": len(replayed),
            },
        )
        return self.get_natureza(company_id, target_id)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, line: DocumentLine) -> MovementDescriptor | UnclassifiedMovement:
        self.require_company(line.company_id)
        return resolve_classification(line, self.selector)

    def describe_cfop(self, code: str | None) -> str | None:
        """'5102 - Venda de mercadoria ...' from the catalog, or the bare code."""
        return build_cfop_composite(code, describe_cfop(code))

    def default_direction(self, cfop_code: str | None) -> Direction | None:
        return direction_from_cfop(cfop_code)
