"""
Tests for the command line entry point.

Covers:
- init-db against a fresh SQLite file
- dre --json output
- Kernel errors mapped to exit status 2
- Argument validation
"""

import json
from uuid import uuid4

import pytest

from fiscal_kernel.db.engine import session_scope
from fiscal_kernel.models.company import Company
from scripts.fiscal_cli import build_parser, main


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def cli_company(database_url, capsys):
    assert main(["--database-url", database_url, "init-db"]) == 0
    with session_scope() as session:
        company = Company(name="Armazém Geral Mantiqueira")
        session.add(company)
        session.flush()
        company_id = company.id
    capsys.readouterr()
    return company_id


class TestCommands:
    def test_init_db(self, database_url, capsys):
        assert main(["--database-url", database_url, "init-db"]) == 0
        assert "tables created" in capsys.readouterr().out

    def test_dre_json(self, database_url, cli_company, capsys):
        code = main([
            "--database-url", database_url, "--json",
            "dre", "--company", str(cli_company), "--start", "2025-01-01", "--end", "2025-01-31",
        ])

        assert code == 0
        report = json.loads(capsys.readouterr().out)
        assert report["company_id"] == str(cli_company)
        assert report["period"] == {"start": "2025-01-01", "end": "2025-01-31"}
        assert report["categories"] == []
        assert report["unclassified_count"] == 0

    def test_dre_text(self, database_url, cli_company, capsys):
        main([
            "--database-url", database_url,
            "dre", "--company", str(cli_company), "--start", "2025-01-01", "--end", "2025-01-31",
        ])

        out = capsys.readouterr().out
        assert out.startswith("DRE 2025-01-01 .. 2025-01-31")
        assert "Resultado" in out

    def test_reprocess_dry_run(self, database_url, cli_company, capsys):
        code = main(["--database-url", database_url, "--json",
                     "reprocess", "--company", str(cli_company)])

        assert code == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["mode"] == "dry-run"
        assert payload["scanned"] == 0


class TestErrors:
    def test_unknown_product(self, database_url, cli_company, capsys):
        code = main([
            "--database-url", database_url,
            "balance", "--company", str(cli_company), "--product", str(uuid4()),
        ])

        assert code == 2
        assert "error [PRODUCT_NOT_FOUND]" in capsys.readouterr().err

    def test_inverted_period(self, database_url, cli_company, capsys):
        code = main([
            "--database-url", database_url,
            "dre", "--company", str(cli_company), "--start", "2025-02-01", "--end", "2025-01-01",
        ])

        assert code == 2
        assert "INVALID_PERIOD" in capsys.readouterr().err


class TestParser:
    def test_mode_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["reprocess", "--company", str(uuid4()), "--mode", "apply"])

    def test_company_must_be_a_uuid(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["replay", "--company", "serra-azul"])
