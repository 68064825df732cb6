"""Tests for infer_scalar and parse_records."""

import csv
from pathlib import Path

import pytest
from datamall.collectors.exceptions import ParseError
from datamall.parsers.csv_parser import infer_scalar, parse_records
from datamall.parsers.transforms import to_number, uppercase


def _write_csv(tmp_path: Path, headers: list[str], rows: list[list], **kwargs) -> Path:
    """Write a CSV file and return its path."""
    filepath = tmp_path / kwargs.get("name", "cars.csv")
    with open(filepath, "w", newline="", encoding=kwargs.get("encoding", "utf-8")) as f:
        writer = csv.writer(f, delimiter=kwargs.get("delimiter", ","))
        writer.writerow(headers)
        writer.writerows(rows)
    return filepath


# ── infer_scalar ───────────────────────────────────────────────────


class TestInferScalar:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("42", 42),
            ("-7", -7),
            ("0", 0),
            ("3.5", 3.5),
            ("0.25", 0.25),
        ],
    )
    def test_plain_numbers_are_converted(self, raw, expected):
        assert infer_scalar(raw) == expected
        assert type(infer_scalar(raw)) is type(expected)

    @pytest.mark.parametrize("raw", ["007", "01", "2024-01", "45,000", "1e5", "Petrol", ""])
    def test_other_text_is_unchanged(self, raw):
        assert infer_scalar(raw) == raw

    def test_non_strings_pass_through(self):
        assert infer_scalar(None) is None
        assert infer_scalar(12) == 12


# ── parse_records ──────────────────────────────────────────────────


class TestParseRecords:
    def test_values_are_stripped_and_blanks_become_none(self, tmp_path):
        filepath = tmp_path / "cars.csv"
        filepath.write_text("month,make,fuel_type\n 2024-01 ,  TOYOTA ,   \n")

        records = parse_records(filepath)

        assert records == [{"month": "2024-01", "make": "TOYOTA", "fuel_type": None}]

    def test_numbers_are_inferred(self, tmp_path):
        filepath = _write_csv(tmp_path, ["year", "number"], [["2023", "120"]])

        records = parse_records(filepath)

        assert records == [{"year": 2023, "number": 120}]

    def test_inference_can_be_disabled(self, tmp_path):
        filepath = _write_csv(tmp_path, ["year"], [["2023"]])

        assert parse_records(filepath, infer_types=False) == [{"year": "2023"}]

    def test_column_mapping_renames_headers(self, tmp_path):
        filepath = _write_csv(tmp_path, ["Month", "Make"], [["2024-01", "KIA"]])

        records = parse_records(
            filepath, column_mapping={"Month": "month", "Make": "make"}
        )

        assert records == [{"month": "2024-01", "make": "KIA"}]

    def test_transforms_apply_to_renamed_fields(self, tmp_path):
        filepath = _write_csv(tmp_path, ["Make", "Premium"], [["honda", "45,000"]])

        records = parse_records(
            filepath,
            column_mapping={"Make": "make", "Premium": "premium"},
            field_transforms={"make": uppercase, "premium": to_number},
        )

        assert records == [{"make": "HONDA", "premium": 45000}]

    def test_transforms_for_absent_fields_are_ignored(self, tmp_path):
        filepath = _write_csv(tmp_path, ["month"], [["2024-01"]])

        records = parse_records(filepath, field_transforms={"premium": to_number})

        assert records == [{"month": "2024-01"}]

    def test_utf8_bom_is_not_part_of_first_header(self, tmp_path):
        filepath = tmp_path / "bom.csv"
        filepath.write_bytes("\ufeffmonth,make\n2024-01,BYD\n".encode("utf-8"))

        records = parse_records(filepath)

        assert records == [{"month": "2024-01", "make": "BYD"}]

    def test_empty_file_with_header_yields_no_records(self, tmp_path):
        filepath = tmp_path / "empty.csv"
        filepath.write_text("month,make\n")

        assert parse_records(filepath) == []

    def test_tab_delimiter(self, tmp_path):
        filepath = tmp_path / "tabs.tsv"
        filepath.write_text("month\tmake\n2024-01\tBMW\n")

        records = parse_records(filepath, delimiter="\t")

        assert records == [{"month": "2024-01", "make": "BMW"}]

    def test_quoted_newline_is_kept_inside_value(self, tmp_path):
        filepath = _write_csv(
            tmp_path, ["month", "make"], [["2024-01", "ALFA\nROMEO"]]
        )

        records = parse_records(filepath)

        assert records[0]["make"] == "ALFA\nROMEO"


class TestParseRecordsErrors:
    def test_missing_file_raises_parse_error(self, tmp_path):
        missing = tmp_path / "nope.csv"

        with pytest.raises(ParseError) as exc_info:
            parse_records(missing)

        assert exc_info.value.filepath == str(missing)
        assert exc_info.value.kind == "parse"

    def test_row_longer_than_header_raises(self, tmp_path):
        filepath = tmp_path / "ragged.csv"
        filepath.write_text("month,make\n2024-01,BMW\n2024-02,AUDI,extra\n")

        with pytest.raises(ParseError) as exc_info:
            parse_records(filepath)

        assert exc_info.value.line_number == 3
        assert "ragged.csv" in str(exc_info.value)

    def test_failing_transform_names_field_and_line(self, tmp_path):
        filepath = _write_csv(tmp_path, ["premium"], [["12"], ["n/a"]])

        with pytest.raises(ParseError) as exc_info:
            parse_records(filepath, field_transforms={"premium": to_number})

        err = exc_info.value
        assert err.field == "premium"
        assert err.line_number == 3
        assert isinstance(err.__cause__, ValueError)

    def test_undecodable_bytes_raise_parse_error(self, tmp_path):
        filepath = tmp_path / "latin.csv"
        filepath.write_bytes("make\nCitroën\n".encode("latin-1"))

        with pytest.raises(ParseError, match="Cannot decode"):
            parse_records(filepath)
