"""
Settings schema.

Frozen dataclasses the loader parses ``defaults.yaml`` (and any override
file) into.  Nothing here reads files or the environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    url: str
    echo: bool = False


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# DRE
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DRECategoryDef:
    """A DRE category and the sign its movements carry by default."""

    code: str
    title: str
    sign: int = 1

    def __post_init__(self) -> None:
        if self.sign not in (1, -1):
            raise ValueError(
                f"DRE category {self.code}: sign must be 1 or -1, got {self.sign}"
            )


@dataclass(frozen=True)
class DRESettings:
    categories: tuple[DRECategoryDef, ...] = ()
    include_cte_freight: bool = True
    freight_deduction_title: str = "Fretes (CT-e)"
    include_unconditional_discounts: bool = False
    discount_deduction_title: str = "Descontos incondicionais"

    def category(self, code: str | None) -> DRECategoryDef | None:
        if code is None:
            return None
        for cat in self.categories:
            if cat.code == code:
                return cat
        return None

    def sign_for(self, code: str | None) -> int:
        """Configured sign of a category; +1 when the category is unknown."""
        cat = self.category(code)
        return cat.sign if cat is not None else 1


# ---------------------------------------------------------------------------
# Ledger / batches / units
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerSettings:
    decimal_places: int = 9


@dataclass(frozen=True)
class ReprocessSettings:
    default_batch_size: int = 500
    max_batch_size: int = 5000
    sample_limit: int = 20

    def clamp(self, batch_size: int | None) -> int:
        if batch_size is None:
            batch_size = self.default_batch_size
        return max(1, min(int(batch_size), self.max_batch_size))


@dataclass(frozen=True)
class UnitSettings:
    """Extra document-unit spellings per product unit (SC, KG, FD)."""

    aliases: tuple[tuple[str, tuple[str, ...]], ...] = ()

    def as_mapping(self) -> dict[str, tuple[str, ...]]:
        return {unit: names for unit, names in self.aliases}


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FiscalSettings:
    database: DatabaseSettings
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    dre: DRESettings = field(default_factory=DRESettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    reprocess: ReprocessSettings = field(default_factory=ReprocessSettings)
    units: UnitSettings = field(default_factory=UnitSettings)
    version: int = 1
    checksum: str = ""
