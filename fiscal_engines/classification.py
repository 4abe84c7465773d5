"""
fiscal_engines.classification -- CFOP / natureza de operação resolver.

Responsibility:
    Map a normalized DocumentLine to a MovementDescriptor (typed meaning:
    DRE category, label, sign, inventory effect) or to an
    UnclassifiedMovement.  Resolution is an explicit ordered chain of
    strategies; the first strategy that returns a natureza wins.

        1. AliasStrategy     (company, natOp key, CFOP, direction, self-issued)
        2. CfopRuleStrategy  (company, CFOP, direction)
        3. nothing matched   -> UnclassifiedMovement(NO_RULE)

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Data comes in through the
    ClassificationLookup protocol: InMemoryClassificationLookup here,
    ClassificationSelector over the database in the kernel.

Invariants enforced:
    - A line is never defaulted into a category.  No match means
      UnclassifiedMovement.
    - An alias always takes precedence over a CFOP rule.
    - Alias identity uses nat_op_key(), so lookups are insensitive to case
      and whitespace.
    - The descriptor's direction is the line's direction.

Failure modes:
    - AmbiguousAliasError when the lookup returns more than one alias for
      one identity tuple (a configuration-integrity fault).

Usage:
    lookup = InMemoryClassificationLookup()
    venda = lookup.add_natureza(name="Venda", dre_category="REVENUE")
    lookup.add_cfop_rule(company_id, "5102", Direction.OUT, venda)
    result = resolve_classification(line, lookup)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID, uuid4

from fiscal_engines.tracer import traced_engine
from fiscal_kernel.domain.movement import (
    ClassificationSource,
    Direction,
    DocumentLine,
    MovementDescriptor,
    NaturezaView,
    UnclassifiedMovement,
    UnclassifiedReason,
)
from fiscal_kernel.domain.natop import nat_op_key, sanitize_nat_op
from fiscal_kernel.exceptions import AmbiguousAliasError
from fiscal_kernel.logging_config import get_logger

logger = get_logger("engines.classification")


class ClassificationLookup(Protocol):
    """Read access to aliases and CFOP rules of one tenant store."""

    def find_aliases(
        self,
        company_id: UUID,
        nat_op_key: str,
        cfop_code: str,
        cfop_type: Direction,
        is_self_issued_entrada: bool,
    ) -> Sequence[NaturezaView]:
        ...

    def find_cfop_rule(
        self,
        company_id: UUID,
        cfop_code: str,
        cfop_type: Direction,
    ) -> NaturezaView | None:
        ...


class ResolutionStrategy(Protocol):
    source: ClassificationSource

    def resolve(
        self, line: DocumentLine, lookup: ClassificationLookup
    ) -> NaturezaView | None:
        ...


class AliasStrategy:
    """Exact alias match on the full identity tuple."""

    source = ClassificationSource.ALIAS

    def resolve(
        self, line: DocumentLine, lookup: ClassificationLookup
    ) -> NaturezaView | None:
        key = nat_op_key(line.nat_op)
        cfop = sanitize_nat_op(line.cfop_code)
        if key is None or cfop is None:
            return None

        matches = lookup.find_aliases(
            line.company_id,
            key,
            cfop,
            line.direction,
            line.is_self_issued_entrada,
        )
        if not matches:
            return None
        if len(matches) > 1:
            raise AmbiguousAliasError(
                company_id=str(line.company_id),
                nat_op_key=key,
                cfop_code=cfop,
                cfop_type=line.direction.value,
                is_self_issued_entrada=line.is_self_issued_entrada,
                candidates=len(matches),
            )
        return matches[0]


class CfopRuleStrategy:
    """Company-wide rule for a CFOP in one direction."""

    source = ClassificationSource.CFOP_RULE

    def resolve(
        self, line: DocumentLine, lookup: ClassificationLookup
    ) -> NaturezaView | None:
        cfop = sanitize_nat_op(line.cfop_code)
        if cfop is None:
            return None
        return lookup.find_cfop_rule(line.company_id, cfop, line.direction)


DEFAULT_STRATEGIES: tuple[ResolutionStrategy, ...] = (
    AliasStrategy(),
    CfopRuleStrategy(),
)


def descriptor_for(
    natureza: NaturezaView,
    direction: Direction,
    source: ClassificationSource,
) -> MovementDescriptor:
    return MovementDescriptor(
        natureza_operacao_id=natureza.id,
        natureza_name=natureza.name,
        dre_include=natureza.dre_include,
        dre_category=natureza.dre_category,
        dre_label=natureza.dre_label,
        dre_sign=natureza.dre_sign,
        direction=direction,
        affects_inventory=natureza.affects_inventory,
        source=source,
    )


@traced_engine("classification", "1.0", fingerprint_fields=("line",))
def resolve_classification(
    line: DocumentLine,
    lookup: ClassificationLookup,
    strategies: Sequence[ResolutionStrategy] = DEFAULT_STRATEGIES,
) -> MovementDescriptor | UnclassifiedMovement:
    """
    Classify one document line.

    Returns:
        MovementDescriptor from the first strategy that matches, otherwise
        UnclassifiedMovement (MISSING_CFOP when the line has no CFOP,
        NO_RULE when nothing matched).

    Raises:
        AmbiguousAliasError: more than one alias for the identity tuple.
    """
    if sanitize_nat_op(line.cfop_code) is None:
        return UnclassifiedMovement(
            line=line, reason=UnclassifiedReason.MISSING_CFOP
        )

    for strategy in strategies:
        natureza = strategy.resolve(line, lookup)
        if natureza is not None:
            return descriptor_for(natureza, line.direction, strategy.source)

    logger.info(
        "movement_unclassified",
        extra={
            "company_id": str(line.company_id),
            "cfop_code": line.cfop_code,
            "direction": line.direction.value,
            "nat_op": line.nat_op,
            "source_ref": line.source_ref,
        },
    )
    return UnclassifiedMovement(line=line, reason=UnclassifiedReason.NO_RULE)


# ---------------------------------------------------------------------------
# In-memory lookup
# ---------------------------------------------------------------------------


@dataclass
class InMemoryClassificationLookup:
    """
    Dictionary-backed ClassificationLookup.

    Used by engine tests and by tooling that classifies without a database.
    Aliases are stored as lists per identity so an inconsistent setup
    (two aliases, one key) can be represented and detected.
    """

    aliases: dict[tuple, list[NaturezaView]] = field(default_factory=dict)
    cfop_rules: dict[tuple, NaturezaView] = field(default_factory=dict)

    def add_natureza(
        self,
        name: str,
        dre_category: str | None = None,
        dre_label: str | None = None,
        dre_sign: int = 1,
        dre_include: bool = True,
        affects_inventory: bool = True,
        natureza_id: UUID | None = None,
    ) -> NaturezaView:
        return NaturezaView(
            id=natureza_id or uuid4(),
            name=name,
            dre_include=dre_include,
            dre_category=dre_category,
            dre_label=dre_label,
            dre_sign=dre_sign,
            affects_inventory=affects_inventory,
        )

    def add_alias(
        self,
        company_id: UUID,
        nat_op: str,
        cfop_code: str,
        cfop_type: Direction,
        is_self_issued_entrada: bool,
        target: NaturezaView,
    ) -> None:
        key = (
            company_id,
            nat_op_key(nat_op),
            sanitize_nat_op(cfop_code),
            Direction(cfop_type),
            bool(is_self_issued_entrada),
        )
        self.aliases.setdefault(key, []).append(target)

    def add_cfop_rule(
        self,
        company_id: UUID,
        cfop_code: str,
        cfop_type: Direction,
        target: NaturezaView,
    ) -> None:
        key = (company_id, sanitize_nat_op(cfop_code), Direction(cfop_type))
        self.cfop_rules[key] = target

    def find_aliases(
        self,
        company_id: UUID,
        nat_op_key: str,
        cfop_code: str,
        cfop_type: Direction,
        is_self_issued_entrada: bool,
    ) -> Sequence[NaturezaView]:
        key = (company_id, nat_op_key, cfop_code, cfop_type, is_self_issued_entrada)
        return tuple(self.aliases.get(key, ()))

    def find_cfop_rule(
        self,
        company_id: UUID,
        cfop_code: str,
        cfop_type: Direction,
    ) -> NaturezaView | None:
        return self.cfop_rules.get((company_id, cfop_code, cfop_type))
