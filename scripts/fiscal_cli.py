#!/usr/bin/env python3
"""
Command line access to the fiscal engine.

Sub-commands:
    init-db     create every table on the configured database
    balance     current ledger balance of one product
    replay      rebuild the ledger of one product (or all of a company)
    dre         income statement of a company for a period
    reprocess   re-run classification over stored movements

Usage:
    python3 scripts/fiscal_cli.py init-db
    python3 scripts/fiscal_cli.py balance --company <uuid> --product <uuid>
    python3 scripts/fiscal_cli.py dre --company <uuid> --start 2025-01-01 --end 2025-01-31 --json
    python3 scripts/fiscal_cli.py reprocess --company <uuid> --mode commit
"""

import argparse
import json
import sys
from dataclasses import asdict, is_dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from uuid import UUID

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from fiscal_config import get_active_config  # noqa: E402
from fiscal_kernel.db.engine import (  # noqa: E402
    create_tables,
    init_engine_from_url,
    session_scope,
)
from fiscal_kernel.exceptions import FiscalKernelError  # noqa: E402
from fiscal_kernel.logging_config import configure_logging  # noqa: E402
from fiscal_kernel.selectors.inventory_selector import InventorySelector  # noqa: E402
from fiscal_services import DREService, LedgerService, ReprocessService  # noqa: E402


def _json_default(obj):
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (date, UUID)):
        return str(obj)
    if is_dataclass(obj):
        return asdict(obj)
    if hasattr(obj, "value"):
        return obj.value
    raise TypeError(f"not serializable: {type(obj).__name__}")


def _emit(payload, as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, default=_json_default, indent=2, ensure_ascii=False))
        return
    for key, value in (asdict(payload) if is_dataclass(payload) else payload).items():
        print(f"{key:>20}: {value}")


def fmt_amount(value: Decimal) -> str:
    return f"{value:,.2f}"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_init_db(args, settings) -> int:
    create_tables()
    print("tables created")
    return 0


def cmd_balance(args, settings) -> int:
    with session_scope() as session:
        balance = LedgerService(session, settings).current_balance(args.company, args.product)
    _emit(balance, args.json)
    return 0


def cmd_replay(args, settings) -> int:
    with session_scope() as session:
        products = (
            [args.product]
            if args.product
            else InventorySelector(session).products_with_movements(args.company)
        )
    for product_id in products:
        with session_scope() as session:
            outcome = LedgerService(session, settings).replay_product(args.company, product_id)
        print(
            f"{product_id}: applied={outcome.applied} flagged={outcome.flagged} "
            f"skipped={outcome.skipped} sc={outcome.state.sc_equivalent} "
            f"value={fmt_amount(outcome.state.total_value)}"
        )
    return 0


def cmd_dre(args, settings) -> int:
    with session_scope() as session:
        report = DREService(session, settings).compute_dre(args.company, args.start, args.end)

    if args.json:
        _emit(report, True)
        return 0

    print(f"DRE {report.period.start} .. {report.period.end}")
    for group in report.categories:
        print(f"  [{group.category}] {group.label:<40} {fmt_amount(group.total):>18}")
        for item in group.items:
            print(
                f"      {item.product:<38} qty={item.qty} "
                f"avg={fmt_amount(item.avg_price)} {fmt_amount(item.total):>18}"
            )
    print(f"  {'Total':<47} {fmt_amount(report.total_categories):>18}")
    for deduction in report.deductions:
        print(f"  (-) {deduction.title:<43} {fmt_amount(deduction.amount):>18}")
    print(f"  {'Resultado':<47} {fmt_amount(report.net):>18}")
    if report.unclassified_count:
        print(f"  {report.unclassified_count} unclassified movement(s) excluded")
    return 0


def cmd_reprocess(args, settings) -> int:
    with session_scope() as session:
        result = ReprocessService(session, settings).reprocess_company(
            args.company,
            mode=args.mode,
            batch_size=args.batch_size,
            since=args.since,
            only_unclassified=args.only_unclassified,
        )
    payload = {
        "batch_id": result.batch_id,
        "mode": result.mode,
        **result.stats.as_dict(),
        "replayed_products": result.replayed_products,
        "warnings": result.warnings,
    }
    if args.json:
        payload["samples"] = result.samples
    _emit(payload, args.json)
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fiscal classification, costing and DRE")
    parser.add_argument("--config", help="YAML file merged over the defaults")
    parser.add_argument("--database-url", help="overrides database.url")
    parser.add_argument("--json", action="store_true", help="print JSON")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create all tables").set_defaults(func=cmd_init_db)

    p = sub.add_parser("balance", help="current product balance")
    p.add_argument("--company", type=UUID, required=True)
    p.add_argument("--product", type=UUID, required=True)
    p.set_defaults(func=cmd_balance)

    p = sub.add_parser("replay", help="rebuild product ledgers")
    p.add_argument("--company", type=UUID, required=True)
    p.add_argument("--product", type=UUID)
    p.set_defaults(func=cmd_replay)

    p = sub.add_parser("dre", help="income statement for a period")
    p.add_argument("--company", type=UUID, required=True)
    p.add_argument("--start", type=date.fromisoformat, required=True)
    p.add_argument("--end", type=date.fromisoformat, required=True)
    p.set_defaults(func=cmd_dre)

    p = sub.add_parser("reprocess", help="re-run classification")
    p.add_argument("--company", type=UUID, required=True)
    p.add_argument("--mode", choices=("dry-run", "commit"), default="dry-run")
    p.add_argument("--batch-size", type=int)
    p.add_argument("--since", type=date.fromisoformat)
    p.add_argument("--only-unclassified", action="store_true")
    p.set_defaults(func=cmd_reprocess)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_active_config(args.config)

    configure_logging(level=settings.logging.level)
    init_engine_from_url(
        args.database_url or settings.database.url,
        echo=settings.database.echo,
    )

    try:
        return args.func(args, settings)
    except FiscalKernelError as exc:
        print(f"error [{exc.code}]: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
