"""
Tests for fiscal_config.

Covers:
- Shipped defaults
- Override file deep-merge
- Environment overrides and the cache key
- Checksum determinism
- Category signs and batch clamping
- CFOP catalog lookup
"""

import pytest
import yaml

from fiscal_config import (
    DRECategoryDef,
    cfop_catalog,
    clear_config_cache,
    compute_checksum,
    describe_cfop,
    get_active_config,
)
from fiscal_config.loader import deep_merge, load_settings


def _write(tmp_path, data):
    path = tmp_path / "override.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestDefaults:
    def test_shipped_values(self, settings):
        assert settings.version == 1
        assert settings.database.url.startswith("sqlite")
        assert settings.logging.level == "INFO"
        assert settings.ledger.decimal_places == 9
        assert settings.reprocess.default_batch_size == 500
        assert settings.dre.include_cte_freight is True
        assert settings.dre.include_unconditional_discounts is False

    def test_category_signs(self, settings):
        assert settings.dre.sign_for("REVENUE") == 1
        assert settings.dre.sign_for("RETURN") == -1
        assert settings.dre.sign_for("CMV") == -1
        assert settings.dre.sign_for("UNKNOWN") == 1
        assert settings.dre.sign_for(None) == 1

    def test_unit_aliases(self, settings):
        aliases = settings.units.as_mapping()
        assert "QUILO" in aliases["KG"]
        assert "FARDO 5KG" in aliases["FD"]

    def test_settings_are_cached(self):
        assert get_active_config() is get_active_config()


class TestOverrides:
    def test_file_is_deep_merged(self, tmp_path):
        path = _write(tmp_path, {"reprocess": {"max_batch_size": 50}, "logging": {"level": "debug"}})

        settings = get_active_config(path)

        assert settings.reprocess.max_batch_size == 50
        assert settings.reprocess.default_batch_size == 500
        assert settings.logging.level == "DEBUG"
        assert settings.dre.sign_for("RETURN") == -1

    def test_path_from_environment(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"dre": {"include_cte_freight": False}})
        monkeypatch.setenv("FISCAL_CONFIG_PATH", str(path))

        assert get_active_config().dre.include_cte_freight is False

    def test_database_url_from_environment(self, monkeypatch):
        before = get_active_config()
        monkeypatch.setenv("FISCAL_DATABASE_URL", "postgresql+psycopg://u:p@db/fiscal")

        after = get_active_config()

        assert after.database.url == "postgresql+psycopg://u:p@db/fiscal"
        assert after.checksum != before.checksum

    def test_log_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("FISCAL_LOG_LEVEL", "warning")

        assert get_active_config().logging.level == "WARNING"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_invalid_sign(self, tmp_path):
        path = _write(tmp_path, {"dre": {"categories": {"REVENUE": {"sign": 2}}}})

        with pytest.raises(ValueError):
            load_settings(path)

    def test_missing_database_url(self, tmp_path):
        path = _write(tmp_path, {"database": None})

        with pytest.raises((KeyError, TypeError)):
            load_settings(path)

    def test_deep_merge_replaces_non_mappings(self):
        merged = deep_merge({"a": {"b": 1, "c": [1]}, "d": 1}, {"a": {"c": [2]}, "d": {"x": 1}})

        assert merged == {"a": {"b": 1, "c": [2]}, "d": {"x": 1}}


class TestChecksum:
    def test_deterministic_and_order_insensitive(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})

    def test_reload_gives_same_checksum(self):
        first = get_active_config().checksum
        clear_config_cache()
        assert get_active_config().checksum == first


class TestReprocessClamp:
    @pytest.mark.parametrize(
        "requested,expected", [(None, 500), (0, 1), (-5, 1), (100, 100), (10**6, 5000)]
    )
    def test_clamp(self, settings, requested, expected):
        assert settings.reprocess.clamp(requested) == expected


class TestCategoryDef:
    def test_sign_must_be_unit(self):
        with pytest.raises(ValueError):
            DRECategoryDef(code="X", title="X", sign=0)


class TestCatalog:
    def test_known_codes(self):
        assert describe_cfop("5102").startswith("Venda de mercadoria")
        assert describe_cfop("1.102") == "Compra para comercialização"

    def test_unknown_code(self):
        assert describe_cfop("9999") is None
        assert describe_cfop(None) is None

    def test_catalog_is_read_only(self):
        with pytest.raises(TypeError):
            cfop_catalog()["0000"] = "x"
