import pytest
from datamall import settings
from datamall.parsers.csv_parser import parse_records
from datamall.sources import table_specs
from datamall.sources.table_specs import (
    ALL_TABLE_SPECS,
    CARS,
    COE,
    COE_PQP,
    VEHICLE_POPULATION,
    get_table_spec,
)
from datamall.sources.update_configs import ALL_UPDATE_CONFIGS


class TestTableSpecs:
    def test_names_are_unique(self):
        names = [spec.name for spec in ALL_TABLE_SPECS]
        assert len(names) == len(set(names))

    @pytest.mark.parametrize("spec", ALL_TABLE_SPECS, ids=lambda s: s.name)
    def test_partition_field_is_a_key_field(self, spec):
        assert spec.partition_field in spec.key_fields

    @pytest.mark.parametrize("spec", ALL_TABLE_SPECS, ids=lambda s: s.name)
    def test_urls_use_configured_base(self, spec):
        assert spec.source_url.startswith(settings.LTA_DATAMALL_BASE_URL + "/")
        assert spec.source_url.endswith(".zip")

    def test_coe_tables_share_archive_with_distinct_entries(self):
        assert COE.source_url == COE_PQP.source_url
        assert COE.csv_file_name == "M11-coe_results.csv"
        assert COE_PQP.csv_file_name == "M11-coe_results_pqp.csv"

    def test_get_table_spec(self):
        assert get_table_spec("cars") is CARS

    def test_get_table_spec_unknown(self):
        with pytest.raises(KeyError, match="Unknown dataset 'bikes'"):
            get_table_spec("bikes")


class TestFieldTransforms:
    def test_cars_make_is_cleaned(self):
        assert CARS.field_transforms["make"]("m.g.") == "MG"
        assert table_specs.clean_make("Mercedes Benz") == "MERCEDES BENZ"

    def test_cars_vehicle_type_spacing(self):
        assert CARS.field_transforms["vehicle_type"]("Saloon / Sports") == "Saloon/Sports"

    def test_cars_blank_number_is_zero(self):
        assert CARS.field_transforms["number"]("") == 0
        assert CARS.field_transforms["number"](None) == 0

    def test_coe_numbers_with_thousands_separators(self):
        for field in ("quota", "bids_success", "bids_received", "premium"):
            assert COE.field_transforms[field]("1,234") == 1234

    def test_pqp_value(self):
        assert COE_PQP.field_transforms["pqp"]("45,000") == 45000

    def test_vehicle_population_number_blank_is_zero(self):
        number = VEHICLE_POPULATION.field_transforms["number"]
        assert number("") == 0
        assert number("100") == 100


class TestVehiclePopulation:
    def test_descriptor(self):
        assert get_table_spec("vehicle_population") is VEHICLE_POPULATION
        assert VEHICLE_POPULATION.partition_field == "year"
        assert VEHICLE_POPULATION.key_fields == ("year", "category", "fuel_type")
        assert "Annual Motor Vehicle Population" in VEHICLE_POPULATION.source_url

    def test_headers_map_to_key_fields(self, tmp_path):
        path = tmp_path / "vehicle_population.csv"
        path.write_text(
            "year,type,engine,number\n"
            "2023,Cars,Petrol,1000\n"
            "2023,Cars,Electric,\n"
        )

        records = parse_records(
            path,
            column_mapping=VEHICLE_POPULATION.column_mapping,
            field_transforms=VEHICLE_POPULATION.field_transforms,
        )

        assert records[0]["category"] == "Cars"
        assert records[0]["fuel_type"] == "Petrol"
        assert records[1]["number"] == 0
        for record in records:
            assert set(VEHICLE_POPULATION.key_fields) <= set(record)


class TestUpdateConfigs:
    def test_every_table_name_resolves(self):
        for config in ALL_UPDATE_CONFIGS:
            assert config.table_names
            for name in config.table_names:
                get_table_spec(name)

    def test_every_table_is_scheduled_once(self):
        scheduled = [name for c in ALL_UPDATE_CONFIGS for name in c.table_names]
        assert sorted(scheduled) == sorted(spec.name for spec in ALL_TABLE_SPECS)

    def test_coe_results_run_before_pqp(self):
        coe_config = next(c for c in ALL_UPDATE_CONFIGS if c.dataset_id == "lta_coe")
        assert coe_config.table_names == ["coe", "coe_pqp"]
