"""
Tests for statutory configuration loading.

Covers the bundled table, bracket validation, resolution order and caching.
"""

from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from payroll_config import (
    DEFAULT_CONFIG_PATH,
    ENV_CONFIG_PATH,
    clear_config_cache,
    get_active_config,
)
from payroll_config.loader import (
    compute_checksum,
    load_statutory_config,
    parse_decimal,
    parse_statutory_config,
)
from payroll_kernel.exceptions import ConfigurationError


@pytest.fixture
def bundled_data():
    return yaml.safe_load(DEFAULT_CONFIG_PATH.read_bytes())


def _write(tmp_path: Path, data: dict, name: str = "statutory.yaml") -> Path:
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data, sort_keys=False))
    return path


class TestBundledTable:

    def test_loads(self):
        config = get_active_config()

        assert config.jurisdiction == "TZ"
        assert config.currency == "TZS"
        assert config.tax_table.name == "resident_paye_2023_07"
        assert config.tax_table.non_resident_rate == Decimal("30")
        assert config.tax_table.nil_band_upper == Decimal("270000")
        assert config.source == str(DEFAULT_CONFIG_PATH.resolve())

    def test_brackets(self):
        brackets = get_active_config().tax_table.brackets

        assert [b.lower for b in brackets] == [0, 270000, 520000, 760000, 1000000]
        assert [b.rate for b in brackets] == [0, 8, 20, 25, 30]
        assert [b.fixed_amount for b in brackets] == [0, 0, 20000, 68000, 128000]
        assert brackets[-1].upper is None

    def test_contributions_and_levies(self):
        contributions = get_active_config().contributions

        assert contributions.employee_rate == Decimal("10")
        assert contributions.employer_rate == Decimal("10")
        assert (contributions.levy_one.code, contributions.levy_one.rate) == ("WCF", Decimal("1"))
        assert (contributions.levy_two.code, contributions.levy_two.rate) == ("SDL", Decimal("1"))

    def test_lifecycle_settings(self):
        lifecycle = get_active_config().lifecycle

        assert lifecycle.approver_roles == ("payroll_approver", "finance_manager")
        assert lifecycle.lock_timeout_seconds == 0.0

    def test_checksum_is_of_file_bytes(self):
        config = get_active_config()

        assert config.checksum == compute_checksum(DEFAULT_CONFIG_PATH.read_bytes())
        assert len(config.checksum) == 64


class TestValidation:

    def test_gap_between_brackets_rejected(self, tmp_path, bundled_data):
        bundled_data["paye"]["brackets"][2]["lower"] = 530000
        path = _write(tmp_path, bundled_data)

        with pytest.raises(ConfigurationError) as exc_info:
            load_statutory_config(path)

        assert "gap or overlap" in exc_info.value.detail

    def test_inconsistent_fixed_amount_rejected(self, tmp_path, bundled_data):
        bundled_data["paye"]["brackets"][3]["fixed_amount"] = 70000
        path = _write(tmp_path, bundled_data)

        with pytest.raises(ConfigurationError) as exc_info:
            load_statutory_config(path)

        assert "fixed_amount" in exc_info.value.detail

    def test_bounded_top_bracket_rejected(self, tmp_path, bundled_data):
        bundled_data["paye"]["brackets"][-1]["upper"] = 5000000
        path = _write(tmp_path, bundled_data)

        with pytest.raises(ConfigurationError):
            load_statutory_config(path)

    def test_rate_out_of_range_rejected(self, bundled_data):
        bundled_data["contributions"]["employer_rate"] = 150

        with pytest.raises(ConfigurationError):
            parse_statutory_config(bundled_data)

    def test_missing_key_names_source(self, tmp_path, bundled_data):
        del bundled_data["contributions"]
        path = _write(tmp_path, bundled_data)

        with pytest.raises(ConfigurationError) as exc_info:
            load_statutory_config(path)

        assert exc_info.value.source == str(path)
        assert "contributions" in exc_info.value.detail

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("paye: [unclosed\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_statutory_config(path)

        assert "malformed YAML" in exc_info.value.detail

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_statutory_config(tmp_path / "absent.yaml")

    def test_empty_approver_roles_rejected(self, bundled_data):
        bundled_data["lifecycle"]["approver_roles"] = []

        with pytest.raises(ConfigurationError):
            parse_statutory_config(bundled_data)


class TestParseDecimal:

    def test_float_goes_through_string(self):
        assert parse_decimal(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("value", [None, True, "abc", "inf"])
    def test_rejected(self, value):
        with pytest.raises(ValueError):
            parse_decimal(value)


class TestActiveConfig:

    def test_environment_override(self, tmp_path, bundled_data, monkeypatch):
        bundled_data["paye"]["non_resident_rate"] = 25
        bundled_data["paye"]["name"] = "override"
        path = _write(tmp_path, bundled_data)
        monkeypatch.setenv(ENV_CONFIG_PATH, str(path))

        config = get_active_config()

        assert config.tax_table.name == "override"
        assert config.tax_table.non_resident_rate == Decimal("25")

    def test_explicit_path_wins_over_environment(self, tmp_path, bundled_data, monkeypatch):
        monkeypatch.setenv(ENV_CONFIG_PATH, str(tmp_path / "absent.yaml"))

        config = get_active_config(DEFAULT_CONFIG_PATH)

        assert config.tax_table.name == "resident_paye_2023_07"

    def test_cached_per_path(self):
        assert get_active_config() is get_active_config()

    def test_clear_cache_reloads(self):
        first = get_active_config()
        clear_config_cache()

        second = get_active_config()

        assert second is not first
        assert second == first

    def test_load_is_traced(self, captured_logs):
        config = get_active_config()

        (trace,) = [r for r in captured_logs() if r["message"] == "PAYROLL_CONFIG_TRACE"]
        assert trace["checksum"] == config.checksum
        assert trace["bracket_count"] == 5
        assert trace["effective_from"] == "2023-07-01"
