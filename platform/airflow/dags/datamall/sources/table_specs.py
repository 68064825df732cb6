from functools import partial

from datamall import settings
from datamall.collectors.updater.spec import TableDescriptor
from datamall.parsers.transforms import (
    clean_special_chars,
    collapse_slash_spacing,
    compose,
    to_number,
    to_number_or_zero,
    uppercase,
)

BASE_URL = settings.LTA_DATAMALL_BASE_URL
SCHEMA = settings.TARGET_SCHEMA

# "B.M.W." and "bmw" are the same make.
clean_make = compose(partial(clean_special_chars, separator="."), uppercase)


CARS = TableDescriptor(
    name="cars",
    target_table="cars",
    target_schema=SCHEMA,
    source_url=f"{BASE_URL}/Monthly New Registration of Cars by Make.zip",
    key_fields=("month", "make", "fuel_type", "vehicle_type"),
    partition_field="month",
    field_transforms={
        "make": clean_make,
        "vehicle_type": collapse_slash_spacing,
        "number": to_number_or_zero,
    },
)

COE = TableDescriptor(
    name="coe",
    target_table="coe",
    target_schema=SCHEMA,
    source_url=f"{BASE_URL}/COE Bidding Results.zip",
    csv_file_name="M11-coe_results.csv",
    key_fields=("month", "bidding_no", "vehicle_class"),
    partition_field="month",
    field_transforms={
        "quota": to_number,
        "bids_success": to_number,
        "bids_received": to_number,
        "premium": to_number,
    },
)

COE_PQP = TableDescriptor(
    name="coe_pqp",
    target_table="pqp",
    target_schema=SCHEMA,
    source_url=f"{BASE_URL}/COE Bidding Results.zip",
    csv_file_name="M11-coe_results_pqp.csv",
    key_fields=("month", "vehicle_class", "pqp"),
    partition_field="month",
    field_transforms={"pqp": to_number},
)

DEREGISTRATIONS = TableDescriptor(
    name="deregistrations",
    target_table="deregistrations",
    target_schema=SCHEMA,
    source_url=(
        f"{BASE_URL}/Monthly De-Registered Motor Vehicles under "
        "Vehicle Quota System (VQS).zip"
    ),
    key_fields=("month", "category"),
    partition_field="month",
    field_transforms={"number": to_number_or_zero},
)

CAR_POPULATION = TableDescriptor(
    name="car_population",
    target_table="car_population",
    target_schema=SCHEMA,
    source_url=f"{BASE_URL}/Vehicle Population/Annual Car Population by Make.zip",
    key_fields=("year", "make", "fuel_type"),
    partition_field="year",
    field_transforms={
        "make": clean_make,
        "number": to_number_or_zero,
    },
)

VEHICLE_POPULATION = TableDescriptor(
    name="vehicle_population",
    target_table="vehicle_population",
    target_schema=SCHEMA,
    source_url=(
        f"{BASE_URL}/Vehicle Population/"
        "Annual Motor Vehicle Population by Vehicle Type.zip"
    ),
    key_fields=("year", "category", "fuel_type"),
    partition_field="year",
    column_mapping={"type": "category", "engine": "fuel_type"},
    field_transforms={"number": to_number_or_zero},
)


ALL_TABLE_SPECS = (
    CARS,
    COE,
    COE_PQP,
    DEREGISTRATIONS,
    CAR_POPULATION,
    VEHICLE_POPULATION,
)
TABLE_SPECS_BY_NAME = {spec.name: spec for spec in ALL_TABLE_SPECS}


def get_table_spec(name: str) -> TableDescriptor:
    try:
        return TABLE_SPECS_BY_NAME[name]
    except KeyError:
        raise KeyError(
            f"Unknown dataset {name!r}. Known: {sorted(TABLE_SPECS_BY_NAME)}"
        ) from None
