"""Tests for the injectable statutory tables."""

import json
from decimal import Decimal

import pytest

from bankruptcy_core.exceptions import ConfigurationError
from bankruptcy_core.standards import (
    StandardsTables,
    default_standards,
    load_standards,
)


@pytest.fixture
def tables() -> StandardsTables:
    return default_standards()


class TestMedianIncome:
    """State median lookup with documented defaults."""

    def test_listed_state(self, tables):
        lookup = tables.median_income_for("CA", 4)

        assert lookup.median == Decimal("102368")
        assert lookup.is_default is False
        assert lookup.description == "CA household size 4"

    def test_lower_case_state(self, tables):
        assert tables.median_income_for("tx", 1).median == Decimal("54727")

    def test_unlisted_state_uses_default(self, tables):
        lookup = tables.median_income_for("WY", 2)

        assert lookup.is_default is True
        assert lookup.median == Decimal("72000")

    def test_large_household_clamped(self, tables):
        lookup = tables.median_income_for("CA", 8)

        assert lookup.median == Decimal("107386")
        assert lookup.bracket_size == 5
        assert "clamped from 8" in lookup.description


class TestNationalStandards:
    def test_household_of_one(self, tables):
        national = tables.national_standards_for(1)

        assert national.food == Decimal("458")
        assert national.total == Decimal("785")

    def test_additional_person_beyond_table(self, tables):
        national = tables.national_standards_for(6)

        # Four-person total 1921 plus two additional people at 358
        assert national.total == Decimal("2637")
        assert national.food == Decimal("1648")


class TestHousing:
    """County, then state, then national default."""

    def test_state_figure_split_into_utilities(self, tables):
        housing = tables.housing_for("CA", None, 1)

        assert housing.level == "state"
        assert housing.utilities == Decimal("460")
        assert housing.housing == Decimal("2413")

    def test_county_figure_preferred(self):
        tables = StandardsTables(
            county_housing={
                "ca:los angeles": {
                    1: {"housing": "2400", "utilities": "420"},
                    3: {"housing": "2900", "utilities": "480"},
                }
            }
        )
        housing = tables.housing_for("CA", "Los Angeles", 4)

        assert housing.level == "county"
        assert housing.housing == Decimal("2900")
        assert housing.utilities == Decimal("480")

    def test_unknown_county_falls_back_to_state(self, tables):
        assert tables.housing_for("NY", "Kings", 2).level == "state"

    def test_built_in_tables_have_no_county_figures(self):
        tables = StandardsTables()

        assert tables.county_housing == {}
        assert tables.housing_for("CA", "Los Angeles", 1).level == "state"

    def test_unknown_state_uses_national_default(self, tables):
        housing = tables.housing_for("WY", None, 2)

        assert housing.level == "national_default"
        assert housing.housing == Decimal("1800")
        assert housing.utilities == Decimal("350")


class TestTransportation:
    def test_no_vehicle_gets_public_transport(self, tables):
        transport = tables.transportation_for("CA", 0)

        assert transport.total == Decimal("242")
        assert transport.num_vehicles == 0

    def test_vehicles_capped_at_two(self, tables):
        transport = tables.transportation_for("TX", 3)

        assert transport.num_vehicles == 2
        assert transport.region == "south"
        assert transport.total == Decimal("588") * 2 + Decimal("290") * 2

    def test_unlisted_state_is_west(self, tables):
        assert tables.region_for_state("CA") == "west"
        assert tables.region_for_state("ny") == "northeast"


class TestTableValidation:
    def test_median_requires_default(self):
        with pytest.raises(ValueError):
            StandardsTables(median_income={"CA": [Decimal("1")]})

    def test_national_standards_start_at_one(self):
        with pytest.raises(ValueError):
            StandardsTables(national_standards={2: {"food": "1"}})


class TestLoadStandards:
    """Revised tables load from JSON without code changes."""

    def test_loads_partial_override(self, tmp_path):
        path = tmp_path / "standards.json"
        path.write_text(json.dumps({
            "version": "2025-04",
            "median_income": {"DEFAULT": [60000, 75000], "CA": [70000]},
        }))

        tables = load_standards(path)

        assert tables.version == "2025-04"
        assert tables.median_income_for("CA", 3).median == Decimal("70000")
        # Untouched tables keep built-in values
        assert tables.national_standards_for(1).total == Decimal("785")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_standards(tmp_path / "missing.json")

        assert exc_info.value.config_key == "standards_path"

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            load_standards(path)

    def test_invalid_tables(self, tmp_path):
        path = tmp_path / "invalid.json"
        path.write_text(json.dumps({"median_income": {"CA": [1]}}))

        with pytest.raises(ConfigurationError):
            load_standards(path)
