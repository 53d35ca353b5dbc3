"""Statutory tables for the Chapter 7 means test.

The means test depends on three published tables that change with every
statutory revision:

- State median family income by household size (U.S. Trustee Program)
- IRS National Standards (food, housekeeping, apparel, personal care, misc)
- IRS Local Standards (housing and utilities by state/county, transportation
  by region and vehicle count)

They are held in a StandardsTables value that is injected into the
calculator. The built-in tables are defaults only; a revised set is loaded
from JSON (``MeansTestConfig.standards_path``) without code changes.

The built-in tables carry state-level housing and utilities only. County
figures come solely from a standards file; without one every lookup falls
back to the state figure and the result says so in its warnings.

Sources:
- Median income: https://www.justice.gov/ust/means-testing
- National Standards: https://www.irs.gov/businesses/small-businesses-self-employed/national-standards-food-clothing-and-other-items
- Local Standards: https://www.irs.gov/businesses/small-businesses-self-employed/local-standards-housing-and-utilities
"""

import json
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Optional, Union

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError
from .models.means_test import NationalStandards

logger = structlog.get_logger()


STANDARDS_VERSION = "2024-04"
DEFAULT_KEY = "DEFAULT"


# =============================================================================
# BUILT-IN TABLES
# =============================================================================

# Annual median family income, household sizes 1-5
MEDIAN_INCOME_BY_STATE: dict[str, list[Decimal]] = {
    "CA": [Decimal("62677"), Decimal("82476"), Decimal("92236"), Decimal("102368"), Decimal("107386")],
    "TX": [Decimal("54727"), Decimal("71998"), Decimal("80478"), Decimal("89420"), Decimal("93891")],
    "NY": [Decimal("60129"), Decimal("79108"), Decimal("88441"), Decimal("98268"), Decimal("103181")],
    "FL": [Decimal("52594"), Decimal("69191"), Decimal("77351"), Decimal("85946"), Decimal("90243")],
    DEFAULT_KEY: [Decimal("55000"), Decimal("72000"), Decimal("80000"), Decimal("89000"), Decimal("93000")],
}

NATIONAL_STANDARDS_BY_SIZE: dict[int, NationalStandards] = {
    1: NationalStandards(
        food=Decimal("458"), housekeeping=Decimal("40"), apparel=Decimal("99"),
        personal_care=Decimal("45"), miscellaneous=Decimal("143"),
    ),
    2: NationalStandards(
        food=Decimal("820"), housekeeping=Decimal("75"), apparel=Decimal("168"),
        personal_care=Decimal("80"), miscellaneous=Decimal("267"),
    ),
    3: NationalStandards(
        food=Decimal("938"), housekeeping=Decimal("70"), apparel=Decimal("206"),
        personal_care=Decimal("84"), miscellaneous=Decimal("300"),
    ),
    4: NationalStandards(
        food=Decimal("1158"), housekeeping=Decimal("80"), apparel=Decimal("268"),
        personal_care=Decimal("99"), miscellaneous=Decimal("316"),
    ),
}

# Added per person beyond the largest listed household size
NATIONAL_STANDARDS_ADDITIONAL_PERSON = NationalStandards(
    food=Decimal("245"), housekeeping=Decimal("20"), apparel=Decimal("40"),
    personal_care=Decimal("18"), miscellaneous=Decimal("35"),
)

# Combined housing and utilities, household sizes 1-5 (5 covers 5 or more)
HOUSING_UTILITIES_BY_STATE: dict[str, dict[int, Decimal]] = {
    "CA": {1: Decimal("2873"), 2: Decimal("3380"), 3: Decimal("3380"), 4: Decimal("3380"), 5: Decimal("3595")},
    "FL": {1: Decimal("1893"), 2: Decimal("2227"), 3: Decimal("2227"), 4: Decimal("2227"), 5: Decimal("2369")},
    "IL": {1: Decimal("1900"), 2: Decimal("2235"), 3: Decimal("2235"), 4: Decimal("2235"), 5: Decimal("2378")},
    "MA": {1: Decimal("2673"), 2: Decimal("3145"), 3: Decimal("3145"), 4: Decimal("3145"), 5: Decimal("3346")},
    "NJ": {1: Decimal("2873"), 2: Decimal("3380"), 3: Decimal("3380"), 4: Decimal("3380"), 5: Decimal("3595")},
    "NY": {1: Decimal("3297"), 2: Decimal("3879"), 3: Decimal("3879"), 4: Decimal("3879"), 5: Decimal("4131")},
    "OH": {1: Decimal("1486"), 2: Decimal("1748"), 3: Decimal("1748"), 4: Decimal("1748"), 5: Decimal("1860")},
    "PA": {1: Decimal("1756"), 2: Decimal("2066"), 3: Decimal("2066"), 4: Decimal("2066"), 5: Decimal("2198")},
    "TX": {1: Decimal("1756"), 2: Decimal("2066"), 3: Decimal("2066"), 4: Decimal("2066"), 5: Decimal("2198")},
    "WA": {1: Decimal("2178"), 2: Decimal("2563"), 3: Decimal("2563"), 4: Decimal("2563"), 5: Decimal("2727")},
}

# Share of a combined state figure attributed to utilities
STATE_UTILITIES_SHARE = Decimal("0.16")

VEHICLE_OWNERSHIP_PER_VEHICLE = Decimal("588")
MAX_VEHICLES = 2
PUBLIC_TRANSPORTATION_ALLOWANCE = Decimal("242")
DEFAULT_OPERATING_COST = Decimal("300")

VEHICLE_OPERATING_BY_REGION: dict[str, Decimal] = {
    "northeast": Decimal("341"),
    "midwest": Decimal("287"),
    "south": Decimal("290"),
    "west": Decimal("323"),
}

REGION_STATES: dict[str, list[str]] = {
    "northeast": ["CT", "ME", "MA", "NH", "NJ", "NY", "PA", "RI", "VT"],
    "midwest": ["IL", "IN", "IA", "KS", "MI", "MN", "MO", "NE", "ND", "OH", "SD", "WI"],
    "south": [
        "AL", "AR", "DE", "DC", "FL", "GA", "KY", "LA", "MD", "MS",
        "NC", "OK", "SC", "TN", "TX", "VA", "WV",
    ],
}


# =============================================================================
# TABLE MODEL
# =============================================================================

class HousingAllowance(BaseModel):
    """Housing and utilities allowance split."""
    housing: Decimal = Field(ge=0)
    utilities: Decimal = Field(ge=0)


@dataclass
class MedianLookup:
    """Median income with the table entry that supplied it."""
    median: Decimal
    table_key: str
    bracket_size: int
    household_size: int

    @property
    def is_default(self) -> bool:
        return self.table_key == DEFAULT_KEY

    @property
    def description(self) -> str:
        text = f"{self.table_key} household size {self.bracket_size}"
        if self.bracket_size < self.household_size:
            text += f" (clamped from {self.household_size})"
        return text


@dataclass
class HousingLookup:
    """Housing and utilities allowance with the table level that supplied it."""
    housing: Decimal
    utilities: Decimal
    level: str  # county, state or national_default


@dataclass
class TransportationStandard:
    """Transportation allowance breakdown."""
    ownership_allowance: Decimal
    operating_allowance: Decimal
    public_transport_allowance: Decimal
    total: Decimal
    num_vehicles: int
    region: str


class StandardsTables(BaseModel):
    """Injectable set of statutory tables.

    Attributes:
        version: Revision identifier recorded on every result
        median_income: State code to annual medians by household size
            (index 0 = one person). Must contain a "DEFAULT" entry.
        national_standards: Household size to National Standards
        national_additional_person: Added per person above the largest size
        state_housing: State code to combined housing and utilities by size
        county_housing: "ST:COUNTY" to split housing/utilities by size.
            Empty in the built-in tables; loaded from ``standards_path``
        default_housing: Used when neither county nor state data exists
        state_utilities_share: Utilities share of a combined state figure
    """

    version: str = STANDARDS_VERSION
    median_income: dict[str, list[Decimal]] = Field(
        default_factory=lambda: {k: list(v) for k, v in MEDIAN_INCOME_BY_STATE.items()}
    )
    national_standards: dict[int, NationalStandards] = Field(
        default_factory=lambda: dict(NATIONAL_STANDARDS_BY_SIZE)
    )
    national_additional_person: NationalStandards = Field(
        default_factory=lambda: NATIONAL_STANDARDS_ADDITIONAL_PERSON.model_copy()
    )
    state_housing: dict[str, dict[int, Decimal]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in HOUSING_UTILITIES_BY_STATE.items()}
    )
    county_housing: dict[str, dict[int, HousingAllowance]] = Field(default_factory=dict)
    default_housing: HousingAllowance = Field(
        default_factory=lambda: HousingAllowance(housing=Decimal("1800"), utilities=Decimal("350"))
    )
    state_utilities_share: Decimal = Field(default=STATE_UTILITIES_SHARE, ge=0, le=1)
    vehicle_ownership_per_vehicle: Decimal = VEHICLE_OWNERSHIP_PER_VEHICLE
    max_vehicles: int = Field(default=MAX_VEHICLES, ge=0)
    vehicle_operating_by_region: dict[str, Decimal] = Field(
        default_factory=lambda: dict(VEHICLE_OPERATING_BY_REGION)
    )
    default_operating_cost: Decimal = DEFAULT_OPERATING_COST
    public_transportation: Decimal = PUBLIC_TRANSPORTATION_ALLOWANCE
    region_states: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in REGION_STATES.items()}
    )

    @field_validator("median_income")
    @classmethod
    def validate_median_income(cls, v: dict[str, list[Decimal]]) -> dict[str, list[Decimal]]:
        normalized = {state.upper(): brackets for state, brackets in v.items()}
        if DEFAULT_KEY not in normalized:
            raise ValueError("median_income must contain a DEFAULT entry")
        for state, brackets in normalized.items():
            if not brackets:
                raise ValueError(f"median_income[{state}] has no household-size brackets")
        return normalized

    @field_validator("national_standards")
    @classmethod
    def validate_national_standards(
        cls, v: dict[int, NationalStandards]
    ) -> dict[int, NationalStandards]:
        if not v:
            raise ValueError("national_standards cannot be empty")
        if min(v) != 1:
            raise ValueError("national_standards must start at household size 1")
        return v

    @field_validator("state_housing", "county_housing")
    @classmethod
    def upper_case_keys(cls, v: dict) -> dict:
        return {key.upper(): value for key, value in v.items()}

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def median_income_for(self, state: str, household_size: int) -> MedianLookup:
        """Median income for a state and household size.

        Unlisted states use the DEFAULT entry. Household sizes beyond the
        table are clamped to the largest available bracket.
        """
        key = state.upper() if state.upper() in self.median_income else DEFAULT_KEY
        brackets = self.median_income[key]
        index = min(max(household_size, 1), len(brackets)) - 1
        return MedianLookup(
            median=brackets[index],
            table_key=key,
            bracket_size=index + 1,
            household_size=household_size,
        )

    def national_standards_for(self, household_size: int) -> NationalStandards:
        """National Standards for a household, extended per additional person."""
        size = max(household_size, 1)
        largest = max(self.national_standards)
        if size in self.national_standards:
            return self.national_standards[size]
        if size < largest:
            # Gap in a custom table: use the next listed size down
            return self.national_standards[max(s for s in self.national_standards if s < size)]

        base = self.national_standards[largest]
        extra = Decimal(size - largest)
        add = self.national_additional_person
        return NationalStandards(
            food=base.food + add.food * extra,
            housekeeping=base.housekeeping + add.housekeeping * extra,
            apparel=base.apparel + add.apparel * extra,
            personal_care=base.personal_care + add.personal_care * extra,
            miscellaneous=base.miscellaneous + add.miscellaneous * extra,
        )

    def housing_for(
        self,
        state: str,
        county: Optional[str],
        household_size: int,
    ) -> HousingLookup:
        """Housing and utilities allowance: county, then state, then national default."""
        if county:
            county_table = self.county_housing.get(f"{state.upper()}:{county.strip().upper()}")
            if county_table:
                allowance = county_table[_clamp_size(county_table, household_size)]
                return HousingLookup(allowance.housing, allowance.utilities, "county")

        state_table = self.state_housing.get(state.upper())
        if state_table:
            combined = state_table[_clamp_size(state_table, household_size)]
            utilities = (combined * self.state_utilities_share).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
            return HousingLookup(combined - utilities, utilities, "state")

        return HousingLookup(
            self.default_housing.housing,
            self.default_housing.utilities,
            "national_default",
        )

    def region_for_state(self, state: str) -> str:
        """Census region for transportation operating costs; West otherwise."""
        state_upper = state.upper()
        for region, states in self.region_states.items():
            if state_upper in states:
                return region
        return "west"

    def transportation_for(self, state: str, vehicle_count: int) -> TransportationStandard:
        """Ownership per vehicle plus regional operating cost, capped vehicles.

        Households without a vehicle receive the public transportation
        allowance instead.
        """
        region = self.region_for_state(state)
        vehicles = min(max(vehicle_count, 0), self.max_vehicles)

        if vehicles == 0:
            return TransportationStandard(
                ownership_allowance=Decimal("0"),
                operating_allowance=Decimal("0"),
                public_transport_allowance=self.public_transportation,
                total=self.public_transportation,
                num_vehicles=0,
                region=region,
            )

        operating_per_vehicle = self.vehicle_operating_by_region.get(
            region, self.default_operating_cost
        )
        ownership = self.vehicle_ownership_per_vehicle * vehicles
        operating = operating_per_vehicle * vehicles
        return TransportationStandard(
            ownership_allowance=ownership,
            operating_allowance=operating,
            public_transport_allowance=Decimal("0"),
            total=ownership + operating,
            num_vehicles=vehicles,
            region=region,
        )


def _clamp_size(table: dict[int, object], household_size: int) -> int:
    """Largest listed size not above the household size (smallest if none)."""
    eligible = [size for size in table if size <= household_size]
    return max(eligible) if eligible else min(table)


def default_standards() -> StandardsTables:
    """Built-in tables."""
    return StandardsTables()


def load_standards(path: Union[str, Path]) -> StandardsTables:
    """Load a revised set of tables from a JSON file.

    Keys omitted from the file keep their built-in values.

    Raises:
        ConfigurationError: If the file is missing, not JSON, or invalid
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Standards file not found: {path}",
            config_key="standards_path",
            expected="path to a JSON file",
            actual=str(path),
        ) from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Standards file is not valid JSON: {e}",
            config_key="standards_path",
            expected="JSON object",
            actual=str(path),
        ) from e

    try:
        tables = StandardsTables.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(
            f"Standards file {path} failed validation: {e.error_count()} error(s)",
            config_key="standards_path",
            expected="valid statutory tables",
            actual=str(path),
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e

    logger.info("standards_loaded", path=str(path), version=tables.version)
    return tables
